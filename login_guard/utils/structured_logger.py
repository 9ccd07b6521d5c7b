"""
Structured logging for login guard.

- JSON output for log pipelines, plain text for local development
- request_id and client_key carried in contextvars and stamped on every entry
- Optional masking of login identities (usernames / emails are personal data)

Usage:
    from login_guard.utils.structured_logger import setup_structured_logging, get_logger

    setup_structured_logging(level="INFO", json_output=True, mask_identities=True)
    logger = get_logger(__name__)
    logger.warning("Account locked", extra={"identity": "alice@example.com"})
    # -> ... "extra": {"identity": "a***@example.com"}
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional


SERVICE_NAME = "login-guard"

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
client_key_var: ContextVar[Optional[str]] = ContextVar('client_key', default=None)

# extra={} keys holding a login identity
IDENTITY_FIELDS = frozenset({"identity"})

# Attributes every LogRecord has; anything else came in through extra={}
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


# ==================== Context ====================

def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def clear_request_id() -> None:
    request_id_var.set(None)


def set_client_key(client_key: str) -> None:
    """Bind the admission client key (the caller's address) to the current request."""
    client_key_var.set(client_key)


def get_client_key() -> Optional[str]:
    return client_key_var.get()


def clear_client_key() -> None:
    client_key_var.set(None)


# ==================== Masking ====================

def mask_identity(identity: Any) -> Any:
    """Keep the first character and the email domain: alice@example.com -> a***@example.com"""
    if not isinstance(identity, str) or not identity:
        return identity
    local, at, domain = identity.partition("@")
    return f"{local[:1]}***{at}{domain}"


def _extra_fields(record: logging.LogRecord, mask_identities: bool) -> Dict[str, Any]:
    fields = {}
    for key, value in record.__dict__.items():
        if key in _RECORD_ATTRS or key.startswith('_'):
            continue
        if mask_identities and key in IDENTITY_FIELDS:
            value = mask_identity(value)
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            value = str(value)
        fields[key] = value
    return fields


# ==================== Formatters ====================

class JSONFormatter(logging.Formatter):
    """One JSON object per line.

    {
        "timestamp": "2024-01-21T15:30:00.123456Z",
        "level": "WARNING",
        "logger": "login_guard.services.login_attempt_gate",
        "message": "Account locked for 15 minutes",
        "request_id": "abc-123",
        "client_key": "203.0.113.7",
        "service": "login-guard",
        "source": {"file": "login_attempt_gate.py", "line": 210, "function": "_lock"},
        "extra": {"identity": "alice"}
    }
    """

    def __init__(self, service_name: str = SERVICE_NAME, mask_identities: bool = False):
        super().__init__()
        self.service_name = service_name
        self.mask_identities = mask_identities

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": get_request_id(),
            "client_key": get_client_key(),
            "service": self.service_name,
            "source": {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": self.formatException(record.exc_info),
            }

        extra = _extra_fields(record, self.mask_identities)
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str)


class PlainFormatter(logging.Formatter):
    """Human-readable development format.

    2024-01-21 15:30:00 - logger - WARNING - [request_id] message key=value ...
    """

    def __init__(self, mask_identities: bool = False):
        super().__init__()
        self.mask_identities = mask_identities

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')
        request_id = get_request_id()
        prefix = f"[{request_id}] " if request_id else ""

        line = f"{timestamp} - {record.name} - {record.levelname} - {prefix}{record.getMessage()}"

        extra = _extra_fields(record, self.mask_identities)
        if extra:
            line += " " + " ".join(f"{k}={v}" for k, v in extra.items())

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ==================== Setup ====================

def setup_structured_logging(
    level: str = "INFO",
    json_output: bool = True,
    service_name: str = SERVICE_NAME,
    mask_identities: bool = False,
) -> None:
    """Install a single stdout handler on the root logger.

    Call once at startup (create_app does). Replaces any existing root handlers.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter(service_name=service_name, mask_identities=mask_identities))
    else:
        handler.setFormatter(PlainFormatter(mask_identities=mask_identities))
    root_logger.addHandler(handler)

    # Access logs duplicate RequestIdMiddleware's completion entries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
