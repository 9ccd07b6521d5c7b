"""
Credential verification collaborators.

The throttled login flow does not know how passwords are stored; it calls a
CredentialVerifier. StaticCredentialVerifier checks bcrypt hashes from
configuration and is what the bundled app uses.
"""

import asyncio
import secrets
from typing import Dict

import bcrypt

from login_guard.services.login_attempt_gate import normalize_identity
from login_guard.utils.structured_logger import get_logger

logger = get_logger(__name__)

DEFAULT_ROUNDS = 12
# bcrypt only reads the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Produce a credentials entry for `password`."""
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password longer than {MAX_PASSWORD_BYTES} bytes cannot be hashed with bcrypt")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_password(password: str, hashed: str) -> bool:
    """Raises ValueError when `hashed` is not a bcrypt hash."""
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        # No stored hash can match; still pay for one comparison
        bcrypt.checkpw(b"", hashed.encode("utf-8"))
        return False
    return bcrypt.checkpw(encoded, hashed.encode("utf-8"))


class CredentialVerifier:
    """Base class for credential checks"""

    async def verify(self, identity: str, password: str) -> bool:
        raise NotImplementedError


class StaticCredentialVerifier(CredentialVerifier):
    """Verifies against a fixed identity -> bcrypt hash mapping."""

    def __init__(self, credentials: Dict[str, str], rounds: int = DEFAULT_ROUNDS):
        self._credentials = {normalize_identity(k): v for k, v in credentials.items()}
        # Unknown identities hash against this so response time does not reveal
        # whether an account exists.
        self._dummy_hash = hash_password(secrets.token_hex(8), rounds=rounds)

    async def verify(self, identity: str, password: str) -> bool:
        hashed = self._credentials.get(normalize_identity(identity))
        if hashed is None:
            await asyncio.to_thread(check_password, password, self._dummy_hash)
            return False
        try:
            return await asyncio.to_thread(check_password, password, hashed)
        except ValueError as e:
            logger.error(f"Malformed credential entry: {e}", extra={"identity": normalize_identity(identity)})
            return False
