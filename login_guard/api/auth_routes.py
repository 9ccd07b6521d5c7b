"""
Authentication API Routes

Login endpoint guarded by the throttled login flow:
    1. Reject if the account is locked                   -> 423 Locked
    2. Apply progressive delay before checking the password
    3. Verify credentials                                 -> 200 on success
    4. Record the failure and report remaining attempts   -> 401 / 423

Token issuance is left to the surrounding application; this service only
decides whether the attempt succeeded.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from login_guard.services.throttled_login import (
    DenialReason,
    LoginDenied,
    LoginSucceeded,
    ThrottledLoginOrchestrator,
)
from login_guard.utils.error_handler import safe_error_response
from login_guard.utils.response_models import (
    APIResponse,
    ErrorResponse,
    InvalidCredentialsData,
    LockedData,
    LoginSuccessData,
    error_response,
    success_response,
)
from login_guard.utils.structured_logger import get_logger

logger = get_logger(__name__)

auth_router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


# ==================== Pydantic Models ====================

class LoginRequest(BaseModel):
    username_or_email: str = Field(..., min_length=1, max_length=320)
    password: str = Field(..., min_length=1, max_length=1024)


# ==================== Dependencies ====================

def get_login_orchestrator(request: Request) -> ThrottledLoginOrchestrator:
    """Orchestrator built by create_app() and shared by all requests"""
    return request.app.state.login_orchestrator


# ==================== Response Rendering ====================

def locked_message(remaining_seconds: int) -> str:
    minutes, seconds = divmod(remaining_seconds, 60)
    return (
        "Account is locked due to too many failed login attempts. "
        f"Please try again in {minutes} minutes and {seconds} seconds."
    )


def render_denial(result: LoginDenied) -> JSONResponse:
    if result.reason is DenialReason.LOCKED:
        return JSONResponse(
            status_code=423,
            content=error_response(
                locked_message(result.remaining_seconds),
                code=result.reason.value,
                data=LockedData.from_seconds(result.remaining_seconds),
            ),
        )

    if result.reason is DenialReason.INVALID_CREDENTIALS:
        if result.remaining_attempts is None:
            message = "Invalid credentials."
        else:
            message = f"Invalid credentials. Remaining attempts: {result.remaining_attempts}"
        return JSONResponse(
            status_code=401,
            content=error_response(
                message,
                code=result.reason.value,
                data=InvalidCredentialsData(remaining_attempts=result.remaining_attempts),
            ),
        )

    return JSONResponse(
        status_code=503,
        content=error_response(
            "Login is temporarily unavailable. Please try again shortly.",
            code=result.reason.value,
        ),
        headers={"Retry-After": "1"},
    )


# ==================== Auth Endpoints ====================

@auth_router.post(
    "/login",
    response_model=APIResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        423: {"model": ErrorResponse, "description": "Account locked"},
        503: {"model": ErrorResponse, "description": "Throttle store unavailable"},
    },
)
async def login(
    login_data: LoginRequest,
    orchestrator: ThrottledLoginOrchestrator = Depends(get_login_orchestrator),
):
    """
    Authenticate a user with login throttling.

    HTTP Status Codes:
    - 200 OK: Login successful
    - 401 Unauthorized: Invalid credentials (with remaining attempts)
    - 423 Locked: Account locked due to too many failed attempts
    - 503 Service Unavailable: throttle store down and policy is fail-closed
    """
    try:
        result = await orchestrator.attempt(login_data.username_or_email, login_data.password)
    except Exception as e:
        raise safe_error_response(500, "processing login", e, logger)

    if isinstance(result, LoginSucceeded):
        logger.info("Successful authentication", extra={"identity": result.identity})
        return success_response(data=LoginSuccessData(identity=result.identity), message="Login successful")

    return render_denial(result)
