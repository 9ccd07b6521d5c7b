"""
Throttled Login Orchestrator

The call sequence every login must follow:
    1. Reject immediately if the identity is locked
    2. Wait out the progressive delay (before hashing, so throttled attempts
       cost the server nothing and timing does not depend on the outcome)
    3. Verify credentials
    4. Record the outcome in the login attempt gate

Locked and invalid-credential outcomes are returned as LoginDenied values,
never raised, so callers have to branch on them.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from login_guard.services.counter_store import StoreUnavailable
from login_guard.services.credential_verifier import CredentialVerifier
from login_guard.services.login_attempt_gate import (
    AlreadyLocked,
    FailureOutcome,
    JustLocked,
    LoginAttemptGate,
    normalize_identity,
)
from login_guard.utils.structured_logger import get_logger

logger = get_logger(__name__)


class StoreFailurePolicy(str, Enum):
    """What the login flow does when the counter store is unreachable."""
    OPEN = "open"      # skip throttling, still verify credentials
    CLOSED = "closed"  # refuse the login attempt


class DenialReason(str, Enum):
    LOCKED = "locked"
    INVALID_CREDENTIALS = "invalid_credentials"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass(frozen=True)
class LoginSucceeded:
    identity: str
    kind: str = field(default="success", init=False)


@dataclass(frozen=True)
class LoginDenied:
    identity: str
    reason: DenialReason
    remaining_seconds: int = 0
    remaining_attempts: Optional[int] = None
    kind: str = field(default="denied", init=False)


LoginResult = Union[LoginSucceeded, LoginDenied]


class ThrottledLoginOrchestrator:
    """Runs one login attempt through lock check, delay, verification and bookkeeping."""

    def __init__(
        self,
        gate: LoginAttemptGate,
        verifier: CredentialVerifier,
        store_failure_policy: StoreFailurePolicy = StoreFailurePolicy.CLOSED,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gate = gate
        self.verifier = verifier
        self.store_failure_policy = StoreFailurePolicy(store_failure_policy)
        self._sleep = sleep

    def _store_fault(self, identity: str, step: str, error: StoreUnavailable) -> None:
        logger.error(
            f"Counter store unavailable during login {step} (policy: fail-{self.store_failure_policy.value})",
            extra={"identity": identity, "step": step, "error": str(error)},
        )

    async def attempt(self, identity: str, password: str) -> LoginResult:
        identity = normalize_identity(identity)

        try:
            if await self.gate.is_locked(identity):
                remaining = await self.gate.remaining_lock_seconds(identity)
                logger.warning(
                    "Login rejected, account locked",
                    extra={"identity": identity, "remaining_seconds": remaining},
                )
                return LoginDenied(identity, DenialReason.LOCKED, remaining_seconds=remaining, remaining_attempts=0)
            delay = await self.gate.progressive_delay_seconds(identity)
        except StoreUnavailable as e:
            self._store_fault(identity, "lock check", e)
            if self.store_failure_policy is StoreFailurePolicy.CLOSED:
                return LoginDenied(identity, DenialReason.STORE_UNAVAILABLE)
            delay = 0

        if delay > 0:
            logger.debug(
                f"Applying progressive delay of {delay} seconds",
                extra={"identity": identity, "delay_seconds": delay},
            )
            # A cancelled request abandons the wait here; counters already committed stay.
            await self._sleep(delay)

        if await self.verifier.verify(identity, password):
            try:
                await self.gate.record_success(identity)
            except StoreUnavailable as e:
                self._store_fault(identity, "success bookkeeping", e)
            return LoginSucceeded(identity)

        try:
            outcome = await self.gate.record_failure(identity)
        except StoreUnavailable as e:
            self._store_fault(identity, "failure bookkeeping", e)
            # An uncounted failure under fail-closed must not look like an ordinary 401
            if self.store_failure_policy is StoreFailurePolicy.CLOSED:
                return LoginDenied(identity, DenialReason.STORE_UNAVAILABLE)
            return LoginDenied(identity, DenialReason.INVALID_CREDENTIALS)

        return self._denial_for(identity, outcome)

    def _denial_for(self, identity: str, outcome: FailureOutcome) -> LoginDenied:
        if isinstance(outcome, AlreadyLocked):
            return LoginDenied(
                identity, DenialReason.LOCKED,
                remaining_seconds=outcome.remaining_seconds, remaining_attempts=0,
            )
        if isinstance(outcome, JustLocked):
            return LoginDenied(
                identity, DenialReason.LOCKED,
                remaining_seconds=outcome.lock_seconds, remaining_attempts=0,
            )
        return LoginDenied(
            identity, DenialReason.INVALID_CREDENTIALS,
            remaining_attempts=outcome.remaining_attempts,
        )
