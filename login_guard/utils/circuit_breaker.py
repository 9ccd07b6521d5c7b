"""
Circuit breaker for the shared counter store.

After `failure_threshold` consecutive Redis errors the breaker opens and
RedisCounterStore raises StoreUnavailable immediately, so a dead Redis costs
callers nothing instead of a socket timeout per request. Once
`recovery_timeout` seconds have passed a single probe is let through
(half-open); its outcome closes or reopens the breaker.
"""
import threading
import time
from enum import Enum
from typing import Callable

from login_guard.utils.structured_logger import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class CircuitBreaker:
    """Consecutive-failure breaker; safe to share across threads and tasks."""

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        recovery_timeout: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = CircuitState.CLOSED
        self._clock = clock
        self._lock = threading.Lock()

    def _seconds_until_probe(self) -> float:
        return max(0.0, self.recovery_timeout - (self._clock() - self.last_failure_time))

    def can_execute(self) -> bool:
        """False only while open and still inside the recovery window."""
        with self._lock:
            if self.state != CircuitState.OPEN:
                return True
            if self._seconds_until_probe() > 0:
                return False
            self.state = CircuitState.HALF_OPEN
            logger.info("Counter store circuit half-open, probing", extra={"circuit": self.name})
            return True

    def record_success(self) -> None:
        with self._lock:
            if self.state != CircuitState.CLOSED:
                logger.info("Counter store circuit closed, store recovered", extra={"circuit": self.name})
            self.state = CircuitState.CLOSED
            self.failures = 0

    def record_failure(self) -> None:
        with self._lock:
            self.failures += 1
            self.last_failure_time = self._clock()
            tripped = self.state == CircuitState.HALF_OPEN or self.failures >= self.failure_threshold
            if tripped and self.state != CircuitState.OPEN:
                logger.error(
                    "Counter store circuit opened",
                    extra={"circuit": self.name, "failures": self.failures},
                )
            if tripped:
                self.state = CircuitState.OPEN

    def get_status(self) -> dict:
        """Snapshot for the readiness probe."""
        with self._lock:
            status = {
                "name": self.name,
                "state": CircuitState(self.state).value,
                "failures": self.failures,
                "threshold": self.failure_threshold,
            }
            if self.state == CircuitState.OPEN:
                status["retry_in_seconds"] = round(self._seconds_until_probe(), 1)
            return status
