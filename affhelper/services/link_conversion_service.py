"""Link conversion business logic service."""

import logging
from decimal import ROUND_HALF_UP, Decimal
from functools import lru_cache
from uuid import UUID

from affhelper.core.config import LedgerConfig
from affhelper.models.order import Platform
from affhelper.providers.base import AffiliateLinkProvider, LinkGenerationError, UpstreamError
from affhelper.providers.registry import get_providers
from affhelper.schemas.links import (
    LinkConversionResponse,
    LinkHistoryItem,
    LinkHistoryResponse,
    ProductMetadata,
)
from affhelper.services.ledger_store import LedgerStore, get_ledger_store

logger = logging.getLogger(__name__)


class UnsupportedPlatformError(Exception):
    """The URL does not belong to a supported marketplace."""

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__("Unsupported platform. Please use Shopee or TikTok links.")


def detect_platform(url: str) -> Platform:
    """Detect the marketplace of a product URL.

    Raises:
        UnsupportedPlatformError: If the URL is neither Shopee nor TikTok.
    """
    lowered = url.lower()
    if "shopee" in lowered or "shp.ee" in lowered:
        return Platform.SHOPEE
    if "tiktok" in lowered:
        return Platform.TIKTOK
    raise UnsupportedPlatformError(url)


def tracking_id_for(user_id: UUID) -> str:
    """Tracking identifier embedded in affiliate links for a user.

    Undashed hex so it survives marketplaces that reject '-' in sub IDs.
    """
    return user_id.hex


class LinkConversionService:
    """Service for converting product URLs into affiliate-tracked links."""

    def __init__(
        self,
        store: LedgerStore,
        providers: dict[Platform, AffiliateLinkProvider],
        config: LedgerConfig,
    ) -> None:
        self.store = store
        self.providers = providers
        self.config = config

    async def convert_link(self, user_id: UUID, url: str) -> LinkConversionResponse:
        """Convert a product URL into an affiliate link for the user.

        Metadata lookup is best-effort; the link is returned and recorded
        even when it fails.

        Args:
            user_id: The requesting user.
            url: Shopee or TikTok product URL (short links allowed).

        Returns:
            LinkConversionResponse: The affiliate link with product details.

        Raises:
            UnsupportedPlatformError: If the URL is not a supported marketplace.
            LinkGenerationError: If the marketplace fails to generate a link.
        """
        platform = detect_platform(url)
        provider = self.providers.get(platform)
        if provider is None:
            raise UnsupportedPlatformError(url)

        resolved_url = await provider.resolve_url(url)
        product_id = provider.extract_product_id(resolved_url)

        short_link = await provider.generate_link(resolved_url, [tracking_id_for(user_id)])
        if not short_link:
            raise LinkGenerationError(f"{platform.value} returned an empty affiliate link")

        metadata = await self._fetch_metadata(provider, product_id, resolved_url)
        if metadata and metadata.product_id and not product_id:
            product_id = metadata.product_id

        self.store.record_link_conversion(
            {
                "user_id": user_id,
                "platform": platform,
                "original_url": url,
                "affiliate_url": short_link,
                "product_id": product_id,
            }
        )
        logger.info("Converted %s link for user %s (product %s)", platform.value, user_id, product_id)

        return LinkConversionResponse(
            original_url=resolved_url,
            short_link=short_link,
            platform=platform,
            product_id=product_id,
            product_name=metadata.name if metadata else None,
            product_image=metadata.image if metadata else None,
            price=metadata.price_min if metadata else None,
            commission_rate=metadata.commission_rate if metadata else None,
            estimated_cashback=self.estimate_cashback(metadata),
        )

    async def _fetch_metadata(
        self,
        provider: AffiliateLinkProvider,
        product_id: str | None,
        resolved_url: str,
    ) -> ProductMetadata | None:
        try:
            return await provider.fetch_product_metadata(product_id, resolved_url)
        except UpstreamError as e:
            logger.warning("Product metadata lookup failed for %s: %s", resolved_url, e.message)
            return None
        except Exception as e:
            logger.error("Unexpected error reading product metadata for %s: %s", resolved_url, e, exc_info=True)
            return None

    def estimate_cashback(self, metadata: ProductMetadata | None) -> Decimal | None:
        """price × commission rate × cashback rate, when price and rate are known."""
        if metadata is None or metadata.price_min is None or metadata.commission_rate is None:
            return None
        estimate = metadata.price_min * metadata.commission_rate * self.config.cashback_rate
        return estimate.quantize(self.config.amount_precision, rounding=ROUND_HALF_UP)

    async def get_history(self, user_id: UUID, limit: int = 20, offset: int = 0) -> LinkHistoryResponse:
        """List the user's link conversions, newest first.

        Args:
            user_id: The requesting user.
            limit: Page size.
            offset: Page offset.

        Returns:
            LinkHistoryResponse: One page of conversions and the total count.
        """
        links, total = self.store.list_link_conversions(user_id, limit, offset)
        return LinkHistoryResponse(
            items=[LinkHistoryItem.model_validate(link) for link in links],
            total=total,
            limit=limit,
            offset=offset,
        )


@lru_cache
def get_link_conversion_service() -> LinkConversionService:
    """Get the process-wide link conversion service."""
    return LinkConversionService(
        get_ledger_store(),
        get_providers(),
        LedgerConfig.from_settings(),
    )
