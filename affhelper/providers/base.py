"""Contracts and shared helpers for marketplace integrations."""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from affhelper.core.http import MarketplaceHTTPClient
from affhelper.models.order import Platform
from affhelper.schemas.links import ProductMetadata
from affhelper.schemas.orders import OrderBatch, RawOrderEvent

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """A marketplace API call failed or returned an unusable response."""

    def __init__(self, platform: Platform, message: str) -> None:
        self.platform = platform
        self.message = message
        super().__init__(f"{platform.value}: {message}")


class LinkGenerationError(Exception):
    """The marketplace refused or failed to generate an affiliate link."""


class OrderSource(Protocol):
    """Fetches externally recorded purchase events for a time window."""

    platform: Platform

    async def fetch_recent(self, window_start: datetime, window_end: datetime) -> OrderBatch:
        """Return events in the window; raises UpstreamError on failure."""
        ...


class AffiliateLinkProvider(Protocol):
    """Turns product URLs into affiliate-tracked links for one marketplace."""

    platform: Platform

    def matches(self, url: str) -> bool: ...

    async def resolve_url(self, url: str) -> str: ...

    def extract_product_id(self, url: str) -> str | None: ...

    async def generate_link(self, url: str, tracking_ids: list[str]) -> str: ...

    async def fetch_product_metadata(self, product_id: str | None, resolved_url: str) -> ProductMetadata | None: ...


def to_decimal(value: Any) -> Decimal | None:
    """Parse a loosely formatted number, returning None when it is not one."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(str(value).replace(",", "").strip())
    except InvalidOperation:
        return None


def build_events(platform: Platform, payloads: list[dict[str, Any]]) -> OrderBatch:
    """Validate adapter payloads into RawOrderEvent, dropping malformed ones.

    Args:
        platform: Marketplace the payloads came from (for logging).
        payloads: Dicts shaped like RawOrderEvent fields.

    Returns:
        OrderBatch: The valid events, in input order, and how many were dropped.
    """
    events: list[RawOrderEvent] = []
    dropped = 0
    for payload in payloads:
        try:
            events.append(RawOrderEvent.model_validate(payload))
        except ValidationError as e:
            logger.warning(
                "Dropping malformed %s order payload %s: %s",
                platform.value,
                payload.get("external_order_id"),
                e.errors(include_url=False),
            )
            dropped += 1
    return OrderBatch(events=events, dropped=dropped)


async def request_json(
    http: MarketplaceHTTPClient,
    platform: Platform,
    method: str,
    url: str,
    *,
    operation: str,
    **kwargs: Any,
) -> dict[str, Any]:
    """Send a request and decode a JSON object body.

    Raises:
        UpstreamError: On transport failure, non-2xx status or a body that
            is not a JSON object.
    """
    try:
        response = await http.request(method, url, operation=operation, **kwargs)
        response.raise_for_status()
        body = response.json()
    except httpx.HTTPStatusError as e:
        raise UpstreamError(platform, f"{operation} returned HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise UpstreamError(platform, f"{operation} failed: {type(e).__name__}: {e}") from e
    except ValueError as e:
        raise UpstreamError(platform, f"{operation} returned malformed JSON") from e

    if not isinstance(body, dict):
        raise UpstreamError(platform, f"{operation} returned {type(body).__name__}, expected object")
    return body


async def follow_redirects(http: MarketplaceHTTPClient, url: str) -> str:
    """Resolve a short link to its final URL, or return it unchanged on failure."""
    try:
        response = await http.request("GET", url, operation="resolve_short_url", follow_redirects=True)
    except httpx.HTTPError as e:
        logger.warning("Failed to resolve short URL %s: %s", url, e)
        return url
    final_url = str(response.url)
    logger.info("Resolved: %s -> %s", url, final_url)
    return final_url
