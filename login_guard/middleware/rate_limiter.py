"""
Admission Control Middleware

Runs every inbound request through the token-bucket AdmissionController
before it reaches routing. Buckets are keyed by client address.

Usage:
    from login_guard.middleware.rate_limiter import AdmissionControlMiddleware

    app.add_middleware(AdmissionControlMiddleware, controller=controller)

Rejected requests get 429 with X-Rate-Limit-Retry-After-Seconds and
Retry-After headers. Excluded paths (health checks, docs) bypass the bucket.
"""

from typing import Optional

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from config.loader import get_settings
from login_guard.services.admission_controller import AdmissionController
from login_guard.services.counter_store import get_store
from login_guard.utils.response_models import RateLimitedData, error_response
from login_guard.utils.structured_logger import get_logger, set_client_key, clear_client_key

logger = get_logger(__name__)

RETRY_AFTER_HEADER = "X-Rate-Limit-Retry-After-Seconds"
REMAINING_HEADER = "X-Rate-Limit-Remaining"


def get_client_key(request: Request, trust_forwarded_for: bool = False) -> str:
    """Extract the client address used as the bucket key.

    X-Forwarded-For is client-controlled, so it is only honoured when the
    service runs behind a proxy that sets it.
    """
    if trust_forwarded_for:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            # First IP in the chain is the original client
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


class AdmissionControlMiddleware(BaseHTTPMiddleware):
    """FastAPI middleware for token-bucket admission control"""

    def __init__(
        self,
        app,
        controller: Optional[AdmissionController] = None,
        trust_forwarded_for: Optional[bool] = None,
    ):
        super().__init__(app)
        settings = get_settings()
        self.controller = controller or AdmissionController.from_settings(get_store(), settings)
        self.trust_forwarded_for = (
            settings.trust_forwarded_for if trust_forwarded_for is None else trust_forwarded_for
        )

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if self.controller.is_excluded(path):
            return await call_next(request)

        client_key = get_client_key(request, self.trust_forwarded_for)
        set_client_key(client_key)
        try:
            decision = await self.controller.try_consume(client_key)

            if not decision.allowed:
                retry_after = str(decision.retry_after_seconds)
                logger.warning(
                    "Request rejected by admission control",
                    extra={"path": path, "reason": decision.reason, "retry_after": decision.retry_after_seconds},
                )
                return JSONResponse(
                    status_code=429,
                    content=error_response(
                        "Too many requests",
                        detail=f"Retry after {retry_after} seconds",
                        code=decision.reason,
                        data=RateLimitedData(retry_after_seconds=decision.retry_after_seconds),
                    ),
                    headers={
                        RETRY_AFTER_HEADER: retry_after,
                        "Retry-After": retry_after,
                    },
                )

            response = await call_next(request)
            response.headers[REMAINING_HEADER] = str(decision.remaining_tokens)
            return response
        finally:
            clear_client_key()
