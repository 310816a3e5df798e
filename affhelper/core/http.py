"""Shared async HTTP client for marketplace APIs with timing and retry logic."""

import logging
import time
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from affhelper.core.config import get_settings

logger = logging.getLogger(__name__)

# Retry configuration
MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 10

# Latency thresholds for logging (milliseconds)
SLOW_CALL_THRESHOLD_MS = 3000
VERY_SLOW_CALL_THRESHOLD_MS = 8000

DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


class MarketplaceHTTPClient:
    """httpx.AsyncClient wrapper with bounded timeout, retry and latency logging.

    Only transport-level failures (connection errors, timeouts) are retried.
    HTTP error statuses are returned to the caller untouched.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        max_retries: int = 3,
        min_wait_seconds: float = MIN_WAIT_SECONDS,
    ) -> None:
        self._client = client
        self._max_retries = max_retries
        self._min_wait_seconds = min_wait_seconds

    async def request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, retrying transient transport errors.

        Args:
            method: HTTP method.
            url: Absolute request URL.
            operation: Short label used in log lines.
            **kwargs: Passed through to httpx.AsyncClient.request.

        Returns:
            httpx.Response: The final response.

        Raises:
            httpx.TransportError: If every attempt failed at the transport level.
        """
        start_time = time.perf_counter()
        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(httpx.TransportError),
                stop=stop_after_attempt(self._max_retries),
                wait=wait_exponential(
                    multiplier=self._min_wait_seconds,
                    min=self._min_wait_seconds,
                    max=MAX_WAIT_SECONDS,
                ),
                reraise=True,
            ):
                with attempt:
                    attempts += 1
                    response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.error(
                "%s failed after %d attempt(s): %s: %s",
                operation,
                attempts,
                type(e).__name__,
                str(e),
            )
            raise

        latency_ms = (time.perf_counter() - start_time) * 1000
        if latency_ms >= VERY_SLOW_CALL_THRESHOLD_MS:
            logger.warning("VERY SLOW marketplace call %s: %.0fms", operation, latency_ms)
        elif latency_ms >= SLOW_CALL_THRESHOLD_MS:
            logger.info("Slow marketplace call %s: %.0fms", operation, latency_ms)
        else:
            logger.debug("%s -> %d in %.0fms", operation, response.status_code, latency_ms)

        return response

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()


# Global singleton instance
_http_client: MarketplaceHTTPClient | None = None


def get_http_client() -> MarketplaceHTTPClient:
    """Get or create the global marketplace HTTP client."""
    global _http_client
    if _http_client is None:
        settings = get_settings()
        _http_client = MarketplaceHTTPClient(
            httpx.AsyncClient(
                timeout=httpx.Timeout(settings.http_timeout_seconds),
                headers={"User-Agent": DEFAULT_USER_AGENT},
            ),
            max_retries=settings.http_max_retries,
        )
    return _http_client


async def shutdown_http_client() -> None:
    """Close the global HTTP client. Call at app shutdown."""
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None
