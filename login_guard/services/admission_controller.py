"""
Admission Controller - distributed token bucket per client key

Every inbound request spends tokens from its client's bucket. Buckets start
full at `capacity` and refill continuously at `refill_rate_per_second`.
The refill-then-consume step runs atomically inside the counter store, so
concurrent requests from one client can never both spend the last token.

Usage:
    controller = AdmissionController(store, capacity=10, refill_rate_per_second=1.0)
    decision = await controller.try_consume("203.0.113.7")
    if not decision.allowed:
        ...  # 429, Retry-After: decision.retry_after_seconds
"""

import math
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from config.loader import Settings
from login_guard.services.counter_store import CounterStore, StoreUnavailable
from login_guard.utils.structured_logger import get_logger

logger = get_logger(__name__)

BUCKET_PREFIX = "ratelimit:bucket:"

PathPredicate = Callable[[str], bool]


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    retry_after_seconds: int = 0
    remaining_tokens: int = 0
    reason: Optional[str] = None


def excluded_prefix_predicate(prefixes: Iterable[str]) -> PathPredicate:
    """Build a predicate matching any path that starts with one of `prefixes`."""
    normalized = tuple(p for p in prefixes if p)

    def is_excluded(path: str) -> bool:
        return path.startswith(normalized) if normalized else False

    return is_excluded


def _never_excluded(path: str) -> bool:
    return False


class AdmissionController:
    """Token bucket admission control shared across all instances via the store"""

    def __init__(
        self,
        store: CounterStore,
        capacity: int,
        refill_rate_per_second: float,
        excluded_path_predicate: Optional[PathPredicate] = None,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_rate_per_second <= 0:
            raise ValueError("refill_rate_per_second must be positive")
        self.store = store
        self.capacity = capacity
        self.refill_rate_per_second = float(refill_rate_per_second)
        self.excluded_path_predicate = excluded_path_predicate or _never_excluded

    @classmethod
    def from_settings(cls, store: CounterStore, settings: Settings) -> "AdmissionController":
        return cls(
            store,
            capacity=settings.bucket_capacity,
            refill_rate_per_second=settings.bucket_refill_per_second,
            excluded_path_predicate=excluded_prefix_predicate(settings.excluded_path_prefixes),
        )

    @property
    def idle_ttl_seconds(self) -> int:
        """Time for an empty bucket to refill completely, plus one second.

        An idle bucket older than this is full again, so the store may drop it.
        """
        return math.ceil(self.capacity / self.refill_rate_per_second) + 1

    def is_excluded(self, path: str) -> bool:
        return self.excluded_path_predicate(path)

    async def try_consume(self, client_key: str, cost: int = 1) -> AdmissionDecision:
        """Spend `cost` tokens from the client's bucket if it has them."""
        if cost < 1:
            raise ValueError("cost must be at least 1")
        if cost > self.capacity:
            raise ValueError(f"cost {cost} exceeds bucket capacity {self.capacity}")

        try:
            state = await self.store.consume_tokens(
                BUCKET_PREFIX + client_key,
                capacity=self.capacity,
                refill_rate=self.refill_rate_per_second,
                cost=cost,
                idle_ttl=self.idle_ttl_seconds,
            )
        except StoreUnavailable as e:
            # Fail closed: an unreachable store must not turn into unlimited admission.
            logger.error(
                "Admission store unavailable, rejecting request",
                extra={"client_key": client_key, "error": str(e)},
            )
            return AdmissionDecision(allowed=False, retry_after_seconds=1, reason="store_unavailable")

        if state.allowed:
            return AdmissionDecision(allowed=True, remaining_tokens=int(state.tokens))

        missing = cost - state.tokens
        retry_after = max(1, math.ceil(missing / self.refill_rate_per_second))
        logger.debug(
            "Rate limit exceeded",
            extra={"client_key": client_key, "available_tokens": state.tokens, "retry_after": retry_after},
        )
        return AdmissionDecision(
            allowed=False,
            retry_after_seconds=retry_after,
            remaining_tokens=int(state.tokens),
            reason="rate_limited",
        )
