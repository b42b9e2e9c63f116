"""Request latency logging middleware."""

import logging
import time
from typing import Callable

from fastapi import Request, Response

logger = logging.getLogger(__name__)

# Checkout requests wait on up to three external providers, so the
# thresholds are looser than for plain reads.
SLOW_REQUEST_THRESHOLD_MS = 3000
VERY_SLOW_REQUEST_THRESHOLD_MS = 8000

HEALTH_PATHS = ("/health", "/health/ready")


async def latency_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Log method, path, status and latency for every request.

    Health checks are logged at debug level only when slow. Everything
    else is logged at a level chosen from the status code and latency.

    Args:
        request: The incoming request.
        call_next: The next middleware/handler in the chain.

    Returns:
        Response: The response from the handler.
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
        log_msg = f"{method} {path} - {status_code} - {latency_ms:.2f}ms"

        if path in HEALTH_PATHS:
            if latency_ms > 100:
                logger.debug(log_msg)
        elif error_occurred or status_code >= 500:
            logger.error(log_msg)
        elif latency_ms > VERY_SLOW_REQUEST_THRESHOLD_MS:
            logger.error(f"VERY SLOW REQUEST: {log_msg}")
        elif latency_ms > SLOW_REQUEST_THRESHOLD_MS:
            logger.warning(f"SLOW REQUEST: {log_msg}")
        elif status_code >= 400:
            logger.warning(log_msg)
        else:
            logger.info(log_msg)
