"""
Request ID and request logging middleware.

- Reuses an incoming X-Request-ID or generates a UUID4
- Binds it to the logging context and request.state
- Returns it in X-Request-ID together with X-Response-Time
- Logs one completion entry per request, levelled by outcome:
  throttled (423/429) and 5xx responses stand out from normal traffic

Usage in main.py:
    app.add_middleware(RequestIdMiddleware)  # Add LAST so it runs FIRST
"""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from login_guard.utils.structured_logger import clear_request_id, get_logger, set_request_id

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
RESPONSE_TIME_HEADER = "X-Response-Time"

# 423 = account locked, 429 = admission control
THROTTLED_STATUS_CODES = frozenset({423, 429})


def completion_log_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code in THROTTLED_STATUS_CODES:
        return logging.WARNING
    return logging.INFO


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Outermost middleware: everything after it, 429s included, logs with the request ID."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        set_request_id(request_id)
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed with exception",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            raise
        else:
            duration_ms = (time.perf_counter() - started) * 1000
            response.headers[REQUEST_ID_HEADER] = request_id
            response.headers[RESPONSE_TIME_HEADER] = f"{duration_ms:.0f}ms"
            logger.log(
                completion_log_level(response.status_code),
                "Request completed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                    "throttled": response.status_code in THROTTLED_STATUS_CODES,
                },
            )
            return response
        finally:
            clear_request_id()
