"""Process-wide marketplace provider instances."""

from functools import lru_cache

from affhelper.core.http import shutdown_http_client
from affhelper.models.order import Platform
from affhelper.providers.shopee import ShopeeProvider
from affhelper.providers.tiktok import TikTokProvider


@lru_cache
def get_providers() -> dict[Platform, ShopeeProvider | TikTokProvider]:
    """Get one provider per marketplace.

    Shared by link conversion and order sync so a refreshed TikTok access
    token is seen by both.
    """
    return {
        Platform.SHOPEE: ShopeeProvider(),
        Platform.TIKTOK: TikTokProvider(),
    }


async def shutdown_providers() -> None:
    """Close the shared HTTP client and drop providers bound to it. Call at shutdown."""
    await shutdown_http_client()
    get_providers.cache_clear()
