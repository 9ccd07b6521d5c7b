"""
Retry decorator for counter store calls.

Uses tenacity with a short fixed wait: store calls sit on the request path, so
a single quick retry covers a dropped pooled connection without stretching
request latency. Pair with the circuit breaker from
login_guard.utils.circuit_breaker.
"""

import logging

from redis.exceptions import ConnectionError as RedisConnectionError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_fixed,
    retry_if_exception_type,
    before_sleep_log,
)

logger = logging.getLogger(__name__)


def retry_on_store_connection_error(max_attempts: int = 2, wait_seconds: float = 0.05):
    """Retry decorator for async Redis calls.

    Retries on connection errors only. Timeouts and command errors are not
    retried: the caller has a latency budget and must apply its failure policy.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(wait_seconds),
        retry=retry_if_exception_type(RedisConnectionError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
