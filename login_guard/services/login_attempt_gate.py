"""
Per-identity login attempt gate to prevent brute-force attacks.

Tracks failed logins per username/email in the shared counter store:
- login:attempts:<identity>  failed attempt count (TTL = lock window)
- login:locked:<identity>    lock flag (TTL = lock window)
- login:delay:<identity>     progressive delay in seconds (TTL = lock window)

Locks an identity for the lock window once max_attempts failures accumulate.
Between failures an exponential delay (1s, 2s, 4s, 8s, ...) is imposed before
the next credential check. Clears on successful login or admin unlock.

The gate holds no mutable state; every counter lives in the store and is
mutated with the store's atomic primitives, so any number of process
instances can share one gate configuration.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Union

from pydantic import BaseModel

from config.loader import Settings
from login_guard.services.counter_store import CounterStore
from login_guard.utils.structured_logger import get_logger

logger = get_logger(__name__)

ATTEMPT_PREFIX = "login:attempts:"
LOCK_PREFIX = "login:locked:"
DELAY_PREFIX = "login:delay:"

LOCKED_VALUE = "locked"


def normalize_identity(identity: str) -> str:
    """Usernames and emails are tracked case-insensitively."""
    return identity.strip().lower()


def compute_progressive_delay(failed_count: int, cap_seconds: int) -> int:
    """Delay before the next attempt: 2^(n-2) seconds for n > 1, capped."""
    if failed_count <= 1:
        return 0
    return min(2 ** (failed_count - 2), cap_seconds)


# ==================== Failure Outcomes ====================

@dataclass(frozen=True)
class AlreadyLocked:
    """Identity was locked before this attempt; nothing was counted."""
    remaining_seconds: int
    kind: str = field(default="already_locked", init=False)


@dataclass(frozen=True)
class JustLocked:
    """This failure reached max_attempts and locked the identity."""
    lock_seconds: int
    kind: str = field(default="just_locked", init=False)


@dataclass(frozen=True)
class Failed:
    """Failure counted; identity still has attempts left."""
    remaining_attempts: int
    kind: str = field(default="failed", init=False)


FailureOutcome = Union[AlreadyLocked, JustLocked, Failed]


class LoginAttemptStats(BaseModel):
    """Login attempt snapshot for diagnostics and admin monitoring"""
    identity: str
    failed_attempts: int
    is_locked: bool
    remaining_lock_seconds: int
    progressive_delay_seconds: int
    max_attempts: int
    lock_duration_minutes: int
    lock_duration_seconds: int
    remaining_attempts: int
    can_attempt_login: bool
    approaching_threshold: bool


# ==================== Gate ====================

class LoginAttemptGate:
    """Failed-login counter with lockout and progressive delay."""

    def __init__(
        self,
        store: CounterStore,
        *,
        max_attempts: int = 5,
        lock_duration_minutes: int = 15,
        progressive_delay_enabled: bool = True,
        delay_cap_seconds: int = 8,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if lock_duration_minutes < 1:
            raise ValueError("lock_duration_minutes must be at least 1")
        self.store = store
        self.max_attempts = max_attempts
        self.lock_duration_minutes = lock_duration_minutes
        self.progressive_delay_enabled = progressive_delay_enabled
        self.delay_cap_seconds = delay_cap_seconds

    @classmethod
    def from_settings(cls, store: CounterStore, settings: Settings) -> "LoginAttemptGate":
        return cls(
            store,
            max_attempts=settings.max_attempts,
            lock_duration_minutes=settings.lock_duration_minutes,
            progressive_delay_enabled=settings.progressive_delay_enabled,
            delay_cap_seconds=settings.delay_cap_seconds,
        )

    @property
    def lock_duration_seconds(self) -> int:
        return self.lock_duration_minutes * 60

    def _keys(self, identity: str) -> tuple:
        return (
            ATTEMPT_PREFIX + identity,
            LOCK_PREFIX + identity,
            DELAY_PREFIX + identity,
        )

    async def _read_int(self, key: str, label: str) -> int:
        raw = await self.store.get(key)
        if raw is None:
            return 0
        try:
            return int(raw)
        except ValueError:
            logger.error(f"Invalid {label} value in store: {raw!r}", extra={"key": key})
            return 0

    # ---------- reads ----------

    async def is_locked(self, identity: str) -> bool:
        """True iff an unexpired lock exists for the identity."""
        return await self.store.exists(LOCK_PREFIX + normalize_identity(identity))

    async def remaining_lock_seconds(self, identity: str) -> int:
        """Seconds left on the lock, 0 when not locked."""
        return await self.store.ttl_remaining(LOCK_PREFIX + normalize_identity(identity))

    async def progressive_delay_seconds(self, identity: str) -> int:
        """Delay to impose before the next credential check."""
        if not self.progressive_delay_enabled:
            return 0
        return await self._read_int(DELAY_PREFIX + normalize_identity(identity), "delay")

    async def failed_attempt_count(self, identity: str) -> int:
        count = await self._read_int(ATTEMPT_PREFIX + normalize_identity(identity), "attempt")
        # concurrent failures racing past the lock check can overshoot the counter
        return min(count, self.max_attempts)

    # ---------- writes ----------

    async def record_success(self, identity: str) -> None:
        """Clear all throttle state for the identity. Idempotent."""
        identity = normalize_identity(identity)
        await self.store.delete(*self._keys(identity))
        logger.info("Successful login, throttle state cleared", extra={"identity": identity})

    async def record_failure(self, identity: str) -> FailureOutcome:
        """Count a failed login and lock the identity at max_attempts.

        Attempts made while locked are not counted, so hammering a locked
        account neither extends nor resets its lock.
        """
        identity = normalize_identity(identity)
        attempt_key, lock_key, _ = self._keys(identity)

        if await self.store.exists(lock_key):
            remaining = await self.store.ttl_remaining(lock_key)
            logger.warning(
                "Login attempt on locked account",
                extra={"identity": identity, "remaining_seconds": remaining},
            )
            return AlreadyLocked(remaining_seconds=remaining)

        attempts = await self.store.increment(attempt_key, ttl_seconds=self.lock_duration_seconds)
        logger.warning(
            f"Failed login attempt #{attempts}",
            extra={"identity": identity, "failed_attempts": attempts, "max_attempts": self.max_attempts},
        )

        if attempts > self.max_attempts:
            # Lost a race with the request that reached max_attempts first.
            remaining = await self.store.ttl_remaining(lock_key)
            if remaining == 0:
                await self._lock(identity)
                remaining = self.lock_duration_seconds
            else:
                # INCR above pushed the counter past the lock; it must expire with it
                await self.store.expire(attempt_key, remaining)
            return AlreadyLocked(remaining_seconds=remaining)

        if attempts == self.max_attempts:
            await self._lock(identity)
            return JustLocked(lock_seconds=self.lock_duration_seconds)

        if self.progressive_delay_enabled and attempts > 1:
            await self._set_progressive_delay(identity, attempts)

        return Failed(remaining_attempts=self.max_attempts - attempts)

    async def unlock(self, identity: str) -> None:
        """Administrative override: drop lock, counter and delay."""
        identity = normalize_identity(identity)
        await self.store.delete(*self._keys(identity))
        logger.info("Account manually unlocked", extra={"identity": identity})

    async def _lock(self, identity: str) -> None:
        await self.store.set_with_ttl(LOCK_PREFIX + identity, LOCKED_VALUE, self.lock_duration_seconds)
        logger.warning(
            f"Account locked for {self.lock_duration_minutes} minutes",
            extra={"identity": identity},
        )

    async def _set_progressive_delay(self, identity: str, attempts: int) -> None:
        delay = compute_progressive_delay(attempts, self.delay_cap_seconds)
        await self.store.set_with_ttl(DELAY_PREFIX + identity, str(delay), self.lock_duration_seconds)
        logger.debug(
            f"Set progressive delay of {delay} seconds",
            extra={"identity": identity, "delay_seconds": delay},
        )

    # ---------- diagnostics ----------

    async def stats(self, identity: str) -> LoginAttemptStats:
        """Read-only snapshot of the identity's throttle state."""
        identity = normalize_identity(identity)
        failed, locked, remaining, delay = await asyncio.gather(
            self.failed_attempt_count(identity),
            self.is_locked(identity),
            self.remaining_lock_seconds(identity),
            self.progressive_delay_seconds(identity),
        )
        return LoginAttemptStats(
            identity=identity,
            failed_attempts=failed,
            is_locked=locked,
            remaining_lock_seconds=remaining,
            progressive_delay_seconds=delay,
            max_attempts=self.max_attempts,
            lock_duration_minutes=self.lock_duration_minutes,
            lock_duration_seconds=self.lock_duration_seconds,
            remaining_attempts=max(0, self.max_attempts - failed),
            can_attempt_login=not locked,
            approaching_threshold=failed >= self.max_attempts - 1,
        )
