"""Admin API routes for order sync."""

from fastapi import APIRouter

from affhelper.api.deps import AdminUser, SyncService
from affhelper.api.middleware.error_handler import ConflictError
from affhelper.schemas.orders import SyncRunResult
from affhelper.services.order_sync_service import TRIGGER_MANUAL

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/orders/sync",
    response_model=SyncRunResult,
    summary="Run order sync now",
    description="Fetch recent orders from all marketplaces and reconcile them. Returns 409 if a sync is already running.",
    responses={
        403: {"description": "Admin role required"},
        409: {"description": "A sync run is already in progress"},
    },
)
async def trigger_order_sync(admin: AdminUser, sync_service: SyncService) -> SyncRunResult:
    """Run one order sync synchronously and return its counters.

    Raises:
        ConflictError: 409 if a scheduled or manual run is in progress.
    """
    result = await sync_service.run_sync(TRIGGER_MANUAL)
    if result is None:
        raise ConflictError("Order sync is already in progress", error_type="sync_in_progress")
    return result
