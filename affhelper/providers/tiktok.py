"""TikTok Shop Open API integration (affiliate creator endpoints)."""

import hashlib
import hmac
import json
import logging
import re
import time
from datetime import datetime
from decimal import Decimal
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

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

API_VERSION = "202405"
ORDERS_SEARCH_PATH = f"/affiliate_creator/{API_VERSION}/orders/search"
GENERATE_LINK_PATH = f"/affiliate_creator/{API_VERSION}/affiliate_sharing_links/general_publishers/generate_batch"
SHOWCASE_ADD_PATH = f"/affiliate_creator/{API_VERSION}/showcases/products/add"
SHOWCASE_LIST_PATH = f"/affiliate_creator/{API_VERSION}/showcases/products"

ORDERS_PAGE_SIZE = 50
ORDERS_MAX_PAGES = 20

# Commission estimate used when TikTok does not report one
DEFAULT_COMMISSION_RATE = Decimal("0.03")

PRODUCT_ID_PATTERNS = [
    re.compile(r"/product/(\d+)"),
    re.compile(r"/view/product/(\d+)"),
    re.compile(r"@[^/]+/product/(\d+)"),
    re.compile(r"product_id=(\d+)"),
]
SHORT_LINK_HOSTS = ("vt.tiktok.com", "vm.tiktok.com")

# Query params that bloat shared links without affecting attribution
STRIPPED_LINK_PARAMS = ("_svg", "checksum", "encode_params", "_r", "sec_uid")


def sign_request(secret: str, path: str, params: dict[str, str], body: dict[str, Any] | None = None) -> str:
    """HMAC-SHA256 request signature for TikTok Shop Open API.

    Signs secret + path + sorted key/value pairs (+ JSON body) + secret,
    excluding the sign and access_token params.
    """
    base = secret + path
    for key in sorted(params):
        if key in ("sign", "access_token"):
            continue
        base += key + params[key]
    if body is not None:
        base += json.dumps(body, separators=(",", ":"))
    base += secret
    return hmac.new(secret.encode(), base.encode(), hashlib.sha256).hexdigest()


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first_text(*values: Any) -> str | None:
    return next((v for v in values if isinstance(v, str) and v), None)


def order_to_payload(order: dict[str, Any]) -> dict[str, Any]:
    """Map one TikTok affiliate order onto RawOrderEvent fields."""
    sub_ids = order.get("sub_ids")
    if isinstance(sub_ids, list) and sub_ids:
        tracking_id = sub_ids[0]
    else:
        tracking_id = _as_dict(order.get("tracking_info")).get("sub_id")
    return {
        "external_order_id": order.get("order_id"),
        "tracking_id": tracking_id,
        "external_item_id": order.get("product_id"),
        "total_amount": order.get("total_amount"),
        "commission_rate_percent": order.get("commission_rate"),
        "external_status": order.get("order_status"),
        "created_at_epoch_seconds": order.get("create_time"),
        "product_name": order.get("product_name"),
        "product_image": order.get("product_image"),
        "quantity": order.get("quantity"),
    }


class TikTokProvider:
    """TikTok Shop affiliate link provider and affiliate order source.

    The access token is refreshed in place when a showcase lookup fails,
    at most once per lookup.
    """

    platform = Platform.TIKTOK

    def __init__(
        self,
        settings: Settings | None = None,
        http: MarketplaceHTTPClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.http = http or get_http_client()
        self.access_token = self.settings.tiktok_access_token
        self.refresh_token = self.settings.tiktok_refresh_token
        if not self.settings.tiktok_configured:
            logger.warning("TikTok App Key or Secret is missing")

    def _signed_url(self, path: str, extra_params: dict[str, str] | None = None, body: dict[str, Any] | None = None) -> str:
        params = {
            "app_key": self.settings.tiktok_app_key,
            "timestamp": str(int(time.time())),
        }
        if extra_params:
            params.update(extra_params)
        params["sign"] = sign_request(self.settings.tiktok_app_secret, path, params, body)
        params["access_token"] = self.access_token
        return f"{self.settings.tiktok_api_url}{path}?{urlencode(params)}"

    async def _call(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        extra_params: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = self._signed_url(path, extra_params, body)
        kwargs: dict[str, Any] = {"headers": {"x-tts-access-token": self.access_token}}
        if body is not None:
            # Send exactly the bytes that were signed
            kwargs["content"] = json.dumps(body, separators=(",", ":"))
            kwargs["headers"]["Content-Type"] = "application/json"
        response = await request_json(
            self.http, self.platform, method, url, operation=f"tiktok.{operation}", **kwargs
        )
        if response.get("code") != 0:
            raise UpstreamError(
                self.platform,
                f"{operation}: code={response.get('code')}, message={response.get('message')}",
            )
        return response.get("data") or {}

    async def refresh_access_token(self) -> bool:
        """Exchange the refresh token for a new access token."""
        if not self.refresh_token:
            return False
        try:
            data = await request_json(
                self.http,
                self.platform,
                "GET",
                f"{self.settings.tiktok_auth_url}/api/v2/token/refresh",
                operation="tiktok.token_refresh",
                params={
                    "app_key": self.settings.tiktok_app_key,
                    "app_secret": self.settings.tiktok_app_secret,
                    "refresh_token": self.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except UpstreamError as e:
            logger.warning("Token refresh request failed: %s", e.message)
            return False

        token_data = data.get("data") or {}
        if data.get("code") == 0 and token_data.get("access_token"):
            self.access_token = token_data["access_token"]
            self.refresh_token = token_data.get("refresh_token") or self.refresh_token
            logger.info("TikTok token refreshed successfully")
            return True

        logger.warning("Token refresh failed: code=%s, message=%s", data.get("code"), data.get("message"))
        return False

    def matches(self, url: str) -> bool:
        return "tiktok" in url

    async def resolve_url(self, url: str) -> str:
        host = urlparse(url).netloc.lower()
        if host in SHORT_LINK_HOSTS:
            return await follow_redirects(self.http, url)
        return url

    def extract_product_id(self, url: str) -> str | None:
        for pattern in PRODUCT_ID_PATTERNS:
            match = pattern.search(url)
            if match:
                return match.group(1)
        return None

    async def generate_link(self, url: str, tracking_ids: list[str]) -> str:
        """Generate an affiliate link, falling back to a tracked product URL.

        The creator API is used when an access token and product ID are
        available. Otherwise (or when it fails) the resolved URL gets
        affiliate_id and sub1 query params.
        """
        product_id = self.extract_product_id(url)

        if self.access_token and product_id:
            try:
                data = await self._call(
                    "POST",
                    GENERATE_LINK_PATH,
                    "generate_link",
                    body={"material": {"ids": [product_id], "type": "PRODUCT"}},
                )
                links = data.get("links") or []
                if links and links[0].get("url"):
                    return links[0]["url"]
                logger.warning("No link returned from TikTok API, using fallback")
            except UpstreamError as e:
                logger.warning("TikTok API call failed: %s, using fallback", e.message)

        return self.build_fallback_link(url, tracking_ids)

    def build_fallback_link(self, url: str, tracking_ids: list[str]) -> str:
        """Attach affiliate tracking params to the product URL."""
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            raise LinkGenerationError(f"Cannot build affiliate link from {url!r}")

        query = {
            key: values[-1]
            for key, values in parse_qs(parsed.query, keep_blank_values=True).items()
            if key not in STRIPPED_LINK_PARAMS
        }
        if self.settings.tiktok_app_key:
            query["affiliate_id"] = self.settings.tiktok_app_key
        if tracking_ids:
            query["sub1"] = tracking_ids[0]
        return urlunparse(parsed._replace(query=urlencode(query)))

    async def fetch_product_metadata(self, product_id: str | None, resolved_url: str) -> ProductMetadata | None:
        """Merge og_info from the share URL with showcase price data."""
        base = self._metadata_from_og_info(resolved_url, product_id)

        if product_id:
            priced = await self._fetch_showcase_metadata(product_id)
            if priced is not None:
                if base is None:
                    return priced
                return ProductMetadata(
                    product_id=priced.product_id or base.product_id,
                    name=priced.name or base.name,
                    image=priced.image or base.image,
                    price_min=priced.price_min or base.price_min,
                    commission_rate=priced.commission_rate or base.commission_rate,
                )

        return base

    def _metadata_from_og_info(self, resolved_url: str, product_id: str | None) -> ProductMetadata | None:
        raw = (parse_qs(urlparse(resolved_url).query).get("og_info") or [None])[0]
        if not raw:
            logger.info("No og_info found in resolved URL")
            return None
        try:
            og_info = json.loads(raw)
        except ValueError as e:
            logger.warning("Failed to extract og_info: %s", e)
            return None
        if not isinstance(og_info, dict):
            return None

        title = _first_text(og_info.get("title"), og_info.get("name"))
        image = _first_text(og_info.get("image"), og_info.get("cover"))
        if not title and not image:
            return None
        return ProductMetadata(
            product_id=product_id,
            name=title,
            image=image,
            price_min=None,
            commission_rate=DEFAULT_COMMISSION_RATE,
        )

    async def _fetch_showcase_metadata(self, product_id: str, retried: bool = False) -> ProductMetadata | None:
        if self.access_token:
            try:
                await self._call(
                    "POST",
                    SHOWCASE_ADD_PATH,
                    "showcase_add",
                    body={"product_ids": [product_id], "add_type": "PRODUCT_ID"},
                )
                data = await self._call(
                    "GET",
                    SHOWCASE_LIST_PATH,
                    "showcase_list",
                    extra_params={"origin": "SHOWCASE", "page_size": "20"},
                )
                return self._metadata_from_showcase(product_id, data)
            except UpstreamError as e:
                logger.warning("Showcase lookup failed: %s", e.message)

        if not retried and self.refresh_token:
            logger.info("Showcase API calls failed, attempting token refresh...")
            if await self.refresh_access_token():
                return await self._fetch_showcase_metadata(product_id, retried=True)
        return None

    @staticmethod
    def _metadata_from_showcase(product_id: str, data: dict[str, Any]) -> ProductMetadata | None:
        products = data.get("products")
        if not isinstance(products, list):
            products = []
        product = next(
            (p for p in products if isinstance(p, dict) and product_id in (str(p.get("id")), str(p.get("product_id")))),
            None,
        )
        if product is None:
            logger.info("Product %s not found in Showcase list (%d products returned)", product_id, len(products))
            return None

        price = _as_dict(product.get("price"))
        amount = (
            _as_dict(price.get("original_price")).get("minimum_amount")
            or _as_dict(price.get("sale_price")).get("minimum_amount")
            or price.get("min_amount")
        )
        rate_percent = to_decimal(product.get("commission_rate"))
        images = product.get("images")
        first_image = _as_dict(images[0]) if isinstance(images, list) and images else {}
        image = first_image.get("url")
        title = product.get("title")
        return ProductMetadata(
            product_id=str(product.get("id") or product_id),
            name=title if isinstance(title, str) and title else None,
            image=image if isinstance(image, str) and image else None,
            price_min=to_decimal(amount),
            commission_rate=rate_percent / 100 if rate_percent is not None else DEFAULT_COMMISSION_RATE,
        )

    async def fetch_recent(self, window_start: datetime, window_end: datetime) -> OrderBatch:
        """Fetch affiliate orders created in the window, following page tokens."""
        if not (self.settings.tiktok_configured and self.access_token):
            logger.warning("TikTok credentials not configured, skipping sync")
            return OrderBatch()

        payloads: list[dict[str, Any]] = []
        page_token: str | None = None
        for _ in range(ORDERS_MAX_PAGES):
            body: dict[str, Any] = {
                "create_time_from": int(window_start.timestamp()),
                "create_time_to": int(window_end.timestamp()),
                "page_size": ORDERS_PAGE_SIZE,
            }
            if page_token:
                body["page_token"] = page_token
            data = await self._call("POST", ORDERS_SEARCH_PATH, "orders_search", body=body)

            orders = data.get("orders") or []
            if not isinstance(orders, list):
                raise UpstreamError(self.platform, "orders_search: orders is not a list")
            payloads.extend(order_to_payload(order) for order in orders if isinstance(order, dict))

            page_token = data.get("next_page_token")
            if not page_token:
                break
        else:
            logger.warning("TikTok order search truncated at %d pages", ORDERS_MAX_PAGES)

        return build_events(self.platform, payloads)
