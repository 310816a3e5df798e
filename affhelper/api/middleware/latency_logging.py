"""Request latency logging middleware."""

import logging
import time
from typing import Callable

from fastapi import Request, Response

logger = logging.getLogger(__name__)

# Thresholds for log levels (in milliseconds)
SLOW_REQUEST_THRESHOLD_MS = 1000
VERY_SLOW_REQUEST_THRESHOLD_MS = 3000

HEALTH_PATHS = ("/health", "/health/ready")

# Routes that call marketplace APIs or run a full sync are expected to be slow
LONG_RUNNING_PATHS = ("/api/v1/admin/orders/sync",)
LONG_RUNNING_THRESHOLD_MS = 60000


async def latency_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Log method, path, status and latency of every request.

    Slow requests are logged at warning/error level; health checks only
    when they take longer than 100ms.
    """
    start_time = time.perf_counter()
    method = request.method
    path = request.url.path

    response = None
    error_occurred = False
    try:
        response = await call_next(request)
        return response
    except Exception:
        error_occurred = True
        raise
    finally:
        latency_ms = (time.perf_counter() - start_time) * 1000
        status_code = response.status_code if response else 500
        log_data = {
            "method": method,
            "path": path,
            "status_code": status_code,
            "latency_ms": round(latency_ms, 2),
            "error": error_occurred,
        }
        log_msg = "%s %s - %d - %.2fms"
        args = (method, path, status_code, latency_ms)

        if path in LONG_RUNNING_PATHS:
            slow_ms = very_slow_ms = LONG_RUNNING_THRESHOLD_MS
        else:
            slow_ms, very_slow_ms = SLOW_REQUEST_THRESHOLD_MS, VERY_SLOW_REQUEST_THRESHOLD_MS

        if path in HEALTH_PATHS:
            if latency_ms > 100:
                logger.debug(log_msg, *args, extra=log_data)
        elif error_occurred or status_code >= 500:
            logger.error(log_msg, *args, extra=log_data)
        elif latency_ms > very_slow_ms:
            logger.error("VERY SLOW REQUEST: " + log_msg, *args, extra=log_data)
        elif latency_ms > slow_ms:
            logger.warning("SLOW REQUEST: " + log_msg, *args, extra=log_data)
        elif status_code >= 400:
            logger.warning(log_msg, *args, extra=log_data)
        else:
            logger.info(log_msg, *args, extra=log_data)
