"""
Response bodies for the login guard API.

All endpoints answer with the envelope {"success", "data", "message", "error", "code"}.
The payload models below describe "data" for each outcome so the OpenAPI
schema documents what clients can branch on.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


# ==================== Payloads ====================

class LoginSuccessData(BaseModel):
    identity: str = Field(..., description="Normalized (trimmed, lower-cased) login identity")


class InvalidCredentialsData(BaseModel):
    remaining_attempts: Optional[int] = Field(
        None, description="Failures left before lockout; null when the throttle store is unavailable"
    )


class LockedData(BaseModel):
    remaining_seconds: int
    remaining_minutes: int

    @classmethod
    def from_seconds(cls, remaining_seconds: int) -> "LockedData":
        return cls(remaining_seconds=remaining_seconds, remaining_minutes=remaining_seconds // 60)


class RateLimitedData(BaseModel):
    retry_after_seconds: int


# ==================== Envelopes ====================

class APIResponse(BaseModel):
    success: bool = True
    data: Optional[Any] = None
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: Optional[str] = None
    detail: Optional[str] = None
    data: Optional[Any] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": False,
                "error": "Invalid credentials. Remaining attempts: 3",
                "code": "invalid_credentials",
                "data": {"remaining_attempts": 3},
            }
        }
    }


def _payload(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return data


def success_response(data: Any = None, message: Optional[str] = None) -> dict:
    """Success envelope; pydantic payloads are dumped to plain dicts."""
    body = {"success": True}
    if data is not None:
        body["data"] = _payload(data)
    if message:
        body["message"] = message
    return body


def error_response(
    error: str,
    detail: Optional[str] = None,
    code: Optional[str] = None,
    data: Any = None,
) -> dict:
    body = {"success": False, "error": error}
    for key, value in (("detail", detail), ("code", code), ("data", _payload(data))):
        if value is not None:
            body[key] = value
    return body
