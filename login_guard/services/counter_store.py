"""
Shared Counter Store

Key-value store with atomic increment, TTL and token-bucket primitives.
The login attempt gate and the admission controller keep ALL of their state
here, so every process instance sees the same counters.

Backends:
    InMemoryCounterStore - single process only (development, tests)
    RedisCounterStore    - shared across instances (production)

Usage:
    from login_guard.services.counter_store import get_store

    store = get_store()
    count = await store.increment("login:attempts:alice", ttl_seconds=900)
"""

import asyncio
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config.loader import get_settings
from login_guard.utils.circuit_breaker import CircuitBreaker
from login_guard.utils.retry_utils import retry_on_store_connection_error
from login_guard.utils.structured_logger import get_logger

logger = get_logger(__name__)


class StoreUnavailable(Exception):
    """The shared counter store could not complete an operation in time."""

    def __init__(self, operation: str, cause: Any = None):
        self.operation = operation
        self.cause = cause
        message = f"Counter store unavailable during {operation}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


@dataclass(frozen=True)
class TokenBucketState:
    """Result of one atomic refill-then-consume step."""
    allowed: bool
    tokens: float


class CounterStore:
    """Base class for counter storage.

    Every method is a coroutine and must be atomic per key.
    """

    async def increment(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        raise NotImplementedError

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        raise NotImplementedError

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def delete(self, *keys: str) -> int:
        raise NotImplementedError

    async def exists(self, key: str) -> bool:
        raise NotImplementedError

    async def ttl_remaining(self, key: str) -> int:
        raise NotImplementedError

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Reset the TTL of an existing key. False when the key is missing."""
        raise NotImplementedError

    async def consume_tokens(
        self,
        key: str,
        capacity: int,
        refill_rate: float,
        cost: int,
        idle_ttl: int,
    ) -> TokenBucketState:
        raise NotImplementedError

    async def ping(self) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class InMemoryCounterStore(CounterStore):
    """In-memory counter storage (single instance only)"""

    SWEEP_INTERVAL_SECONDS = 60

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._values: Dict[str, str] = {}
        self._buckets: Dict[str, tuple] = {}
        self._expiry: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    # Callers hold self._lock for everything below until the public methods.

    def _drop(self, key: str) -> bool:
        existed = key in self._values or key in self._buckets
        self._values.pop(key, None)
        self._buckets.pop(key, None)
        self._expiry.pop(key, None)
        return existed

    def _expire_key(self, key: str, now: float) -> None:
        expiry = self._expiry.get(key)
        if expiry is not None and expiry <= now:
            self._drop(key)

    def _clean_expired(self, now: float) -> None:
        """Remove expired entries"""
        if now - self._last_sweep < self.SWEEP_INTERVAL_SECONDS:
            return
        self._last_sweep = now
        expired = [k for k, exp in self._expiry.items() if exp <= now]
        for k in expired:
            self._drop(k)

    def _contains(self, key: str) -> bool:
        return key in self._values or key in self._buckets

    async def increment(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        with self._lock:
            now = self._clock()
            self._clean_expired(now)
            self._expire_key(key, now)
            count = int(self._values.get(key, "0")) + 1
            self._values[key] = str(count)
            if ttl_seconds is not None:
                self._expiry[key] = now + ttl_seconds
            return count

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            self._clean_expired(now)
            self._buckets.pop(key, None)
            self._values[key] = str(value)
            self._expiry[key] = now + ttl_seconds

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            self._expire_key(key, self._clock())
            return self._values.get(key)

    async def delete(self, *keys: str) -> int:
        with self._lock:
            now = self._clock()
            removed = 0
            for key in keys:
                self._expire_key(key, now)
                if self._drop(key):
                    removed += 1
            return removed

    async def exists(self, key: str) -> bool:
        with self._lock:
            self._expire_key(key, self._clock())
            return self._contains(key)

    async def ttl_remaining(self, key: str) -> int:
        with self._lock:
            now = self._clock()
            self._expire_key(key, now)
            expiry = self._expiry.get(key)
            if expiry is None or not self._contains(key):
                return 0
            return max(0, math.ceil(expiry - now))

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        with self._lock:
            now = self._clock()
            self._expire_key(key, now)
            if not self._contains(key):
                return False
            self._expiry[key] = now + ttl_seconds
            return True

    async def consume_tokens(
        self,
        key: str,
        capacity: int,
        refill_rate: float,
        cost: int,
        idle_ttl: int,
    ) -> TokenBucketState:
        with self._lock:
            now = self._clock()
            self._clean_expired(now)
            self._expire_key(key, now)
            tokens, last_refill = self._buckets.get(key, (float(capacity), now))

            elapsed = max(0.0, now - last_refill)
            tokens = min(float(capacity), tokens + elapsed * refill_rate)

            allowed = tokens >= cost
            if allowed:
                tokens -= cost

            self._values.pop(key, None)
            self._buckets[key] = (tokens, now)
            self._expiry[key] = now + idle_ttl
            return TokenBucketState(allowed=allowed, tokens=tokens)

    async def ping(self) -> bool:
        return True


# Refill-then-consume in one server-side step. Uses the Redis server clock so
# instances with skewed clocks still agree on elapsed time.
TOKEN_BUCKET_SCRIPT = """
local key = KEYS[1]
local capacity = tonumber(ARGV[1])
local rate = tonumber(ARGV[2])
local cost = tonumber(ARGV[3])
local idle_ttl = tonumber(ARGV[4])

local clock = redis.call('TIME')
local now = tonumber(clock[1]) + tonumber(clock[2]) / 1000000

local state = redis.call('HMGET', key, 'tokens', 'ts')
local tokens = tonumber(state[1])
local ts = tonumber(state[2])
if tokens == nil or ts == nil then
    tokens = capacity
    ts = now
end

local elapsed = math.max(0, now - ts)
tokens = math.min(capacity, tokens + elapsed * rate)

local allowed = 0
if tokens >= cost then
    tokens = tokens - cost
    allowed = 1
end

redis.call('HSET', key, 'tokens', tostring(tokens), 'ts', tostring(now))
redis.call('EXPIRE', key, idle_ttl)
return {allowed, tostring(tokens)}
"""


class RedisCounterStore(CounterStore):
    """Redis-based counter storage (for production)"""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        socket_timeout: float = 0.5,
        circuit: Optional[CircuitBreaker] = None,
        client: Optional[Any] = None,
    ):
        safe_url = redis_url.split('@')[-1] if '@' in redis_url else redis_url
        logger.info(f"Using Redis counter store at {safe_url}")

        self._redis = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._circuit = circuit or CircuitBreaker(name="redis_counter_store")
        self._bucket_script = self._redis.register_script(TOKEN_BUCKET_SCRIPT)

    @property
    def circuit(self) -> CircuitBreaker:
        return self._circuit

    async def _execute(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        if not self._circuit.can_execute():
            raise StoreUnavailable(operation, "circuit open")

        @retry_on_store_connection_error()
        async def attempt():
            return await call()

        try:
            result = await attempt()
        except (RedisError, asyncio.TimeoutError, OSError) as e:
            self._circuit.record_failure()
            raise StoreUnavailable(operation, e) from e

        self._circuit.record_success()
        return result

    async def increment(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        async def call():
            pipe = self._redis.pipeline(transaction=True)
            pipe.incr(key)
            if ttl_seconds is not None:
                pipe.expire(key, ttl_seconds)
            return await pipe.execute()

        results = await self._execute("increment", call)
        return int(results[0])

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._execute("set", lambda: self._redis.set(key, str(value), ex=ttl_seconds))

    async def get(self, key: str) -> Optional[str]:
        value = await self._execute("get", lambda: self._redis.get(key))
        if isinstance(value, bytes):
            return value.decode()
        return value

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._execute("delete", lambda: self._redis.delete(*keys)))

    async def exists(self, key: str) -> bool:
        return int(await self._execute("exists", lambda: self._redis.exists(key))) > 0

    async def ttl_remaining(self, key: str) -> int:
        # -2 = missing key, -1 = no expiry
        ttl = await self._execute("ttl", lambda: self._redis.ttl(key))
        return int(ttl) if ttl and ttl > 0 else 0

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        return bool(await self._execute("expire", lambda: self._redis.expire(key, ttl_seconds)))

    async def consume_tokens(
        self,
        key: str,
        capacity: int,
        refill_rate: float,
        cost: int,
        idle_ttl: int,
    ) -> TokenBucketState:
        result = await self._execute(
            "consume_tokens",
            lambda: self._bucket_script(keys=[key], args=[capacity, refill_rate, cost, idle_ttl]),
        )
        allowed, tokens = result
        return TokenBucketState(allowed=int(allowed) == 1, tokens=float(tokens))

    async def ping(self) -> bool:
        try:
            return bool(await self._execute("ping", lambda: self._redis.ping()))
        except StoreUnavailable:
            return False

    async def close(self) -> None:
        await self._redis.aclose()


# Global store instance
_store: Optional[CounterStore] = None


def get_store() -> CounterStore:
    """Get or create the process-wide counter store"""
    global _store
    if _store is None:
        settings = get_settings()
        if settings.redis_url:
            _store = RedisCounterStore(
                settings.redis_url,
                socket_timeout=settings.redis_socket_timeout,
            )
        else:
            _store = InMemoryCounterStore()
            logger.info("Using in-memory counter store (set REDIS_URL for multi-instance deployments)")
    return _store


def set_store(store: Optional[CounterStore]) -> None:
    """Replace the process-wide store (tests, app factory)"""
    global _store
    _store = store


async def get_store_info(store: Optional[CounterStore] = None) -> dict:
    """Get information about the current counter store."""
    store = store or get_store()
    is_redis = isinstance(store, RedisCounterStore)
    healthy = await store.ping()
    info = {
        "backend": "redis" if is_redis else "memory",
        "healthy": healthy,
        "shared": is_redis,
        "message": "Redis counter store active" if is_redis else "In-memory counter store (single instance only)",
    }
    if is_redis:
        info["circuit"] = store.circuit.get_status()
    return info
