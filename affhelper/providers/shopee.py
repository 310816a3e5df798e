"""Shopee Affiliate Open API integration (GraphQL)."""

import hashlib
import hmac
import json
import logging
import re
import time
from datetime import datetime
from decimal import Decimal
from typing import Any
from urllib.parse import parse_qs, urlparse

from affhelper.core.config import Settings, get_settings
from affhelper.core.http import MarketplaceHTTPClient, get_http_client
from affhelper.models.order import Platform
from affhelper.providers.base import (
    LinkGenerationError,
    UpstreamError,
    build_events,
    follow_redirects,
    request_json,
    to_decimal,
)
from affhelper.schemas.links import ProductMetadata
from affhelper.schemas.orders import OrderBatch

logger = logging.getLogger(__name__)

PRODUCT_URL_PATTERNS = [
    re.compile(r"shopee\.vn/.*-i\.(\d+)\.(\d+)"),
    re.compile(r"shopee\.vn/product/(\d+)/(\d+)"),
]
SHORT_LINK_HOSTS = ("shp.ee", "s.shopee.vn")

CONVERSION_REPORT_PAGE_SIZE = 500
CONVERSION_REPORT_MAX_PAGES = 20


def extract_shop_and_item(url: str) -> tuple[str, str] | None:
    """Extract (shop_id, item_id) from a Shopee product URL."""
    for pattern in PRODUCT_URL_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1), match.group(2)

    query = parse_qs(urlparse(url).query)
    shop_id = (query.get("shopid") or query.get("shop") or [None])[0]
    item_id = (query.get("itemid") or query.get("item") or [None])[0]
    if shop_id and item_id:
        return shop_id, item_id
    return None


def tracking_id_from_utm_content(utm_content: str | None) -> str | None:
    """Shopee echoes sub IDs back joined by '-'; the first one is ours."""
    if not utm_content:
        return None
    first = utm_content.split("-", 1)[0].strip()
    return first or None


def conversion_to_payloads(node: dict[str, Any]) -> list[dict[str, Any]]:
    """Flatten one conversionReport node into RawOrderEvent payloads.

    A conversion can carry several orders; each becomes its own event.
    """
    payloads: list[dict[str, Any]] = []
    tracking_id = tracking_id_from_utm_content(node.get("utmContent"))

    for order in node.get("orders") or []:
        items = order.get("items") or []
        total = Decimal("0")
        commission = Decimal("0")
        quantity = 0
        for item in items:
            qty = int(to_decimal(item.get("qty")) or 1)
            total += (to_decimal(item.get("itemPrice")) or Decimal("0")) * qty
            commission += to_decimal(item.get("itemTotalCommission")) or Decimal("0")
            quantity += qty

        rate_percent = (commission / total * 100) if total > 0 else Decimal("0")
        first_item = items[0] if items else {}
        payloads.append(
            {
                "external_order_id": order.get("orderId"),
                "tracking_id": tracking_id,
                "external_item_id": first_item.get("itemId"),
                "total_amount": total,
                "commission_rate_percent": rate_percent,
                "external_status": order.get("orderStatus"),
                "created_at_epoch_seconds": node.get("purchaseTime"),
                "product_name": first_item.get("itemName"),
                "product_image": first_item.get("imageUrl"),
                "quantity": quantity or 1,
            }
        )
    return payloads


class ShopeeProvider:
    """Shopee affiliate link provider and conversion-report order source.

    Usage:
        shopee = ShopeeProvider()
        link = await shopee.generate_link(url, [user_id.hex])
        batch = await shopee.fetch_recent(start, end)
    """

    platform = Platform.SHOPEE

    def __init__(
        self,
        settings: Settings | None = None,
        http: MarketplaceHTTPClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.http = http or get_http_client()
        if not self.settings.shopee_configured:
            logger.warning("Shopee App ID or Secret Key is missing")

    def _headers(self) -> dict[str, str]:
        timestamp = int(time.time())
        payload = f"{self.settings.shopee_app_id}{timestamp}"
        signature = hmac.new(
            self.settings.shopee_secret_key.encode(),
            payload.encode(),
            hashlib.sha256,
        ).hexdigest()
        return {
            "Content-Type": "application/json",
            "Authorization": (
                f"SHA256 Credential={self.settings.shopee_app_id}, "
                f"Signature={signature}, Timestamp={timestamp}"
            ),
        }

    async def _graphql(self, query: str, operation: str) -> dict[str, Any]:
        body = await request_json(
            self.http,
            self.platform,
            "POST",
            self.settings.shopee_api_url,
            operation=f"shopee.{operation}",
            json={"query": query},
            headers=self._headers(),
        )
        errors = body.get("errors")
        if errors:
            message = errors[0].get("message") if isinstance(errors[0], dict) else str(errors[0])
            raise UpstreamError(self.platform, f"{operation}: {message}")
        data = body.get("data")
        if not isinstance(data, dict):
            raise UpstreamError(self.platform, f"{operation}: response has no data")
        return data

    def matches(self, url: str) -> bool:
        return "shopee" in url or "shp.ee" in url

    async def resolve_url(self, url: str) -> str:
        host = urlparse(url).netloc.lower()
        if host.endswith(SHORT_LINK_HOSTS):
            return await follow_redirects(self.http, url)
        return url

    def extract_product_id(self, url: str) -> str | None:
        ids = extract_shop_and_item(url)
        return ids[1] if ids else None

    async def generate_link(self, url: str, tracking_ids: list[str]) -> str:
        """Generate a Shopee short link carrying the tracking IDs as sub IDs."""
        query = (
            "mutation { generateShortLink(input: { "
            f"originUrl: {json.dumps(url)}, subIds: {json.dumps(tracking_ids)}"
            " }) { shortLink } }"
        )
        try:
            data = await self._graphql(query, "generateShortLink")
        except UpstreamError as e:
            logger.error("Failed to generate Shopee link: %s", e.message)
            raise LinkGenerationError(e.message) from e

        short_link = (data.get("generateShortLink") or {}).get("shortLink")
        if not short_link:
            raise LinkGenerationError("Shopee returned no short link")
        return short_link

    async def fetch_product_metadata(self, product_id: str | None, resolved_url: str) -> ProductMetadata | None:
        """Look up the product offer; returns None when Shopee has nothing."""
        ids = extract_shop_and_item(resolved_url)
        item_id = product_id or (ids[1] if ids else None)
        if not item_id or not item_id.isdigit():
            return None
        shop_id = ids[0] if ids else "0"

        query = (
            f"query {{ productOfferV2(itemId: {int(item_id)}, shopId: {int(shop_id)}, limit: 1) {{ "
            "nodes { itemId productName priceMin priceMax commissionRate imageUrl offerLink } } }"
        )
        try:
            data = await self._graphql(query, "productOfferV2")
        except UpstreamError as e:
            logger.error("Failed to get Shopee product offer: %s", e.message)
            return None

        nodes = (data.get("productOfferV2") or {}).get("nodes") or []
        if not nodes:
            return None
        node = nodes[0]
        return ProductMetadata(
            product_id=str(node.get("itemId") or item_id),
            name=node.get("productName"),
            image=node.get("imageUrl"),
            price_min=to_decimal(node.get("priceMin")),
            commission_rate=to_decimal(node.get("commissionRate")),
        )

    async def fetch_recent(self, window_start: datetime, window_end: datetime) -> OrderBatch:
        """Fetch conversions purchased in the window, following scroll pages."""
        if not self.settings.shopee_configured:
            logger.warning("Shopee credentials not configured, skipping sync")
            return OrderBatch()

        payloads: list[dict[str, Any]] = []
        scroll_id: str | None = None
        for _ in range(CONVERSION_REPORT_MAX_PAGES):
            scroll_arg = f", scrollId: {json.dumps(scroll_id)}" if scroll_id else ""
            query = (
                "query { conversionReport("
                f"purchaseTimeStart: {int(window_start.timestamp())}, "
                f"purchaseTimeEnd: {int(window_end.timestamp())}, "
                f"limit: {CONVERSION_REPORT_PAGE_SIZE}{scroll_arg}"
                ") { nodes { conversionId purchaseTime totalCommission utmContent "
                "orders { orderId orderStatus items { itemId itemName itemPrice qty itemTotalCommission imageUrl } } } "
                "pageInfo { hasNextPage scrollId } } }"
            )
            data = await self._graphql(query, "conversionReport")
            report = data.get("conversionReport") or {}
            for node in report.get("nodes") or []:
                payloads.extend(conversion_to_payloads(node))

            page_info = report.get("pageInfo") or {}
            scroll_id = page_info.get("scrollId")
            if not page_info.get("hasNextPage") or not scroll_id:
                break
        else:
            logger.warning("Shopee conversion report truncated at %d pages", CONVERSION_REPORT_MAX_PAGES)

        return build_events(self.platform, payloads)
