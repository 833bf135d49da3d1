"""Request latency logging middleware."""

import logging
import time
from typing import Callable

from fastapi import Request, Response

logger = logging.getLogger(__name__)

# Thresholds for log levels (in milliseconds)
SLOW_REQUEST_THRESHOLD_MS = 1000
VERY_SLOW_REQUEST_THRESHOLD_MS = 3000

# Webhook deliveries are acknowledged before settlement, so they should stay fast
SLOW_WEBHOOK_THRESHOLD_MS = 500

HEALTH_PATHS = frozenset({"/health", "/health/ready"})


async def latency_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Log method, path, status and latency of every request.

    Health probes are logged at debug level. Slow requests, 4xx and 5xx
    are logged at elevated levels.
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
        log_args = (method, path, status_code, latency_ms)

        if path in HEALTH_PATHS:
            logger.debug("%s %s - %d - %.2fms", *log_args)
        elif error_occurred or status_code >= 500:
            logger.error("%s %s - %d - %.2fms", *log_args)
        elif latency_ms > VERY_SLOW_REQUEST_THRESHOLD_MS:
            logger.error("VERY SLOW REQUEST: %s %s - %d - %.2fms", *log_args)
        elif latency_ms > SLOW_REQUEST_THRESHOLD_MS:
            logger.warning("SLOW REQUEST: %s %s - %d - %.2fms", *log_args)
        elif path.startswith("/api/v1/webhooks/") and latency_ms > SLOW_WEBHOOK_THRESHOLD_MS:
            logger.warning("SLOW WEBHOOK ACK: %s %s - %d - %.2fms", *log_args)
        elif status_code >= 400:
            logger.warning("%s %s - %d - %.2fms", *log_args)
        else:
            logger.info("%s %s - %d - %.2fms", *log_args)
