"""Health check endpoints for monitoring and deployment verification."""

import time

from fastapi import APIRouter, Response, status

from affhelper.api.deps import SyncService
from affhelper.core.config import get_settings
from affhelper.core.supabase import check_database_connection
from affhelper.schemas.common import CheckResult, HealthResponse, HealthStatus, ReadinessResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description="Basic health check to verify the service is running. Used for liveness probes.",
)
async def health_check() -> HealthResponse:
    """Return basic health status without checking dependencies."""
    return HealthResponse(status=HealthStatus.HEALTHY)


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "All dependencies healthy"},
        503: {"description": "One or more dependencies unhealthy"},
    },
    summary="Readiness check",
    description="Check database connectivity and the outcome of the last order sync.",
)
async def readiness_check(response: Response, sync_service: SyncService) -> ReadinessResponse:
    """Check readiness of the database and order sync.

    The database check is skipped for the in-memory ledger backend. The
    order sync check reports the last run; a platform whose fetch failed
    is shown in the detail but does not fail readiness.

    Returns 503 if any dependency is unhealthy.
    """
    checks: list[CheckResult] = []

    if get_settings().ledger_backend == "supabase":
        start_time = time.perf_counter()
        db_result = await check_database_connection()
        latency_ms = (time.perf_counter() - start_time) * 1000
        checks.append(
            CheckResult(
                name="database",
                healthy=db_result["healthy"],
                latency_ms=round(latency_ms, 2),
                error=db_result.get("error"),
            )
        )

    last = sync_service.last_result
    checks.append(
        CheckResult(
            name="order_sync",
            healthy=True,
            detail={
                "running": sync_service.is_running,
                "last_run": last.model_dump(mode="json") if last else None,
            },
        )
    )

    all_healthy = all(check.healthy for check in checks)
    if not all_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ReadinessResponse(
        status=HealthStatus.HEALTHY if all_healthy else HealthStatus.UNHEALTHY,
        checks=checks,
    )
