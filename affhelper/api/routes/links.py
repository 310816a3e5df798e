"""Affiliate link conversion API routes."""

from fastapi import APIRouter, Query, status

from affhelper.api.deps import CurrentUser, LinkService
from affhelper.api.middleware.error_handler import UpstreamServiceError, ValidationError
from affhelper.providers.base import LinkGenerationError
from affhelper.schemas.links import LinkConversionResponse, LinkConvertRequest, LinkHistoryResponse
from affhelper.services.link_conversion_service import UnsupportedPlatformError

router = APIRouter(prefix="/links", tags=["links"])


@router.post(
    "/convert",
    response_model=LinkConversionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Convert a product URL",
    description="Turn a Shopee or TikTok Shop product URL into an affiliate link tracked to the current user.",
    responses={
        400: {"description": "Unsupported marketplace URL"},
        502: {"description": "Marketplace failed to generate a link"},
    },
)
async def convert_link(
    data: LinkConvertRequest,
    user: CurrentUser,
    service: LinkService,
) -> LinkConversionResponse:
    """Convert a product URL into an affiliate link.

    Raises:
        ValidationError: 400 if the URL is not a supported marketplace.
        UpstreamServiceError: 502 if the marketplace refuses the link.
    """
    try:
        return await service.convert_link(user.user_id, data.url)
    except UnsupportedPlatformError as e:
        raise ValidationError(str(e)) from e
    except LinkGenerationError as e:
        raise UpstreamServiceError(f"Failed to generate affiliate link: {e}") from e


@router.get(
    "/history",
    response_model=LinkHistoryResponse,
    summary="List my converted links",
    description="Returns the current user's link conversions, newest first.",
)
async def link_history(
    user: CurrentUser,
    service: LinkService,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> LinkHistoryResponse:
    """List link conversions for the current user."""
    return await service.get_history(user.user_id, limit=limit, offset=offset)
