"""
Error Handler Utility - Secure Error Response Generation

Centralized handling of infrastructure faults so internal details never leak
into API responses. Full details are logged for operators; clients get a
generic message.

Expected throttling outcomes (locked account, invalid credentials, rate
limited) are NOT errors and never pass through here; they are returned as
values by the services and rendered by the routes and middleware.

Usage:
    from login_guard.utils.error_handler import register_exception_handlers, safe_error_response

    register_exception_handlers(app)

    try:
        ...
    except SomeInfraError as e:
        raise safe_error_response(503, "reading login statistics", e, logger)
"""

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from login_guard.services.counter_store import StoreUnavailable
from login_guard.utils.response_models import error_response
from login_guard.utils.structured_logger import get_logger

logger = get_logger(__name__)


def safe_error_response(
    status_code: int,
    operation: str,
    exception: Exception,
    logger: logging.Logger
) -> HTTPException:
    """
    Create a safe HTTPException that doesn't expose internal details.

    Logs the full exception with traceback, then returns an HTTPException
    with a generic user-facing message.

    Args:
        status_code: HTTP status code (e.g., 500, 503)
        operation: Description of what operation failed (e.g., "unlocking account")
        exception: The caught exception
        logger: Logger instance for recording the error
    """
    logger.error(f"{operation} failed: {exception}", exc_info=True)

    if status_code >= 500:
        detail = f"An internal error occurred while {operation}. Please try again later."
    else:
        detail = f"Error while {operation}. Please check your request and try again."

    return HTTPException(status_code=status_code, detail=detail)


async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    """Map an escaped StoreUnavailable to 503 (operational alert, generic body)."""
    logger.error(
        f"Counter store unavailable: {exc}",
        extra={"path": request.url.path, "operation": exc.operation},
    )
    return JSONResponse(
        status_code=503,
        content=error_response(
            "Service temporarily unavailable",
            detail="Please try again shortly.",
            code="store_unavailable",
        ),
        headers={"Retry-After": "1"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StoreUnavailable, store_unavailable_handler)
