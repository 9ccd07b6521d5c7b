"""
Admin API Routes - login throttle administration

Endpoints:
- POST /api/v1/auth/admin/unlock/{identity}           manual unlock (idempotent)
- GET  /api/v1/auth/admin/login-attempts/{identity}   throttle statistics

Protected by the X-Admin-Token header, compared against ADMIN_API_TOKEN.
With no token configured the admin API is disabled.
"""

import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from login_guard.services.login_attempt_gate import LoginAttemptGate
from login_guard.utils.response_models import APIResponse, success_response
from login_guard.utils.structured_logger import get_logger

logger = get_logger(__name__)

admin_router = APIRouter(prefix="/api/v1/auth/admin", tags=["Authentication Admin"])


# ==================== Dependencies ====================

def require_admin_token(
    request: Request,
    x_admin_token: str = Header(None, alias="X-Admin-Token"),
) -> None:
    expected = request.app.state.settings.admin_api_token
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API disabled: ADMIN_API_TOKEN is not configured")

    if not x_admin_token or not secrets.compare_digest(x_admin_token.encode(), expected.encode()):
        logger.warning("Rejected admin request with invalid token", extra={"path": request.url.path})
        raise HTTPException(status_code=401, detail="Invalid admin token")


def get_login_gate(request: Request) -> LoginAttemptGate:
    return request.app.state.login_gate


# ==================== Admin Endpoints ====================

@admin_router.post(
    "/unlock/{identity}",
    response_model=APIResponse,
    dependencies=[Depends(require_admin_token)],
)
async def unlock_account(identity: str, gate: LoginAttemptGate = Depends(get_login_gate)):
    """
    Manually unlock an account locked due to failed login attempts.

    Succeeds whether or not the account was locked.
    """
    await gate.unlock(identity)
    logger.info("Account manually unlocked by admin", extra={"identity": identity})
    return success_response(message=f"Account '{identity}' unlocked successfully")


@admin_router.get(
    "/login-attempts/{identity}",
    response_model=APIResponse,
    dependencies=[Depends(require_admin_token)],
)
async def get_login_attempts(identity: str, gate: LoginAttemptGate = Depends(get_login_gate)):
    """View login attempt statistics and lock status for a user."""
    stats = await gate.stats(identity)
    logger.debug("Admin retrieved login statistics", extra={"identity": stats.identity})
    return success_response(data=stats.model_dump(), message="Login attempt statistics retrieved")
