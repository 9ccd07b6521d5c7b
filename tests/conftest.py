"""
Test Configuration and Fixtures

Central configuration for pytest including:
- Deterministic clock for TTL and refill tests
- In-memory counter store, gate and admission controller fixtures
- Stub credential verifier
- Application / TestClient setup

Usage:
    All fixtures defined here are automatically available to all tests.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
import os
import sys

# Ensure the project root is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

ADMIN_TOKEN = "test-admin-token"


# ==================== Clock Fixtures ====================

class FakeClock:
    """Manually advanced clock, callable like time.time."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ==================== Store Fixtures ====================

@pytest.fixture
def memory_store(clock):
    """In-memory counter store driven by the fake clock."""
    from login_guard.services.counter_store import InMemoryCounterStore
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def mock_redis():
    """Mock redis.asyncio client.

    Coroutine commands are AsyncMocks; register_script returns an awaitable
    script mock available as mock_redis.script.
    """
    client = MagicMock()
    for command in ("get", "set", "delete", "exists", "ttl", "expire", "ping", "aclose"):
        setattr(client, command, AsyncMock())

    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[1, True])
    client.pipeline.return_value = pipe
    client.pipe = pipe

    script = AsyncMock(return_value=[1, "9"])
    client.register_script.return_value = script
    client.script = script
    return client


@pytest.fixture
async def fake_redis():
    """In-process Redis that runs Lua, so TOKEN_BUCKET_SCRIPT executes for real."""
    import fakeredis

    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def failing_store():
    """Counter store whose every operation raises StoreUnavailable."""
    from login_guard.services.counter_store import CounterStore, StoreUnavailable

    store = MagicMock(spec=CounterStore)
    error = StoreUnavailable("test", "connection refused")
    for method in ("increment", "set_with_ttl", "get", "delete", "exists",
                   "ttl_remaining", "expire", "consume_tokens"):
        setattr(store, method, AsyncMock(side_effect=error))
    store.ping = AsyncMock(return_value=False)
    store.close = AsyncMock()
    return store


# ==================== Service Fixtures ====================

@pytest.fixture
def gate(memory_store):
    """Login attempt gate with the default limits (5 attempts, 15 minutes)."""
    from login_guard.services.login_attempt_gate import LoginAttemptGate
    return LoginAttemptGate(memory_store)


class StubVerifier:
    """Accepts exactly one password for every identity and records calls."""

    def __init__(self, password: str = "correct-password"):
        self.password = password
        self.calls = []

    async def verify(self, identity: str, password: str) -> bool:
        self.calls.append((identity, password))
        return password == self.password


@pytest.fixture
def verifier():
    return StubVerifier()


@pytest.fixture
def no_sleep():
    """Replacement for asyncio.sleep that records requested delays."""
    return AsyncMock(return_value=None)


# ==================== Settings Fixtures ====================

@pytest.fixture(autouse=True)
def reset_global_state():
    """Drop cached settings and store between tests."""
    from config.loader import reset_settings
    from login_guard.services.counter_store import set_store

    reset_settings()
    yield
    reset_settings()
    set_store(None)


@pytest.fixture
def test_settings():
    """Settings with a small bucket so admission limits are easy to reach."""
    from config.loader import Settings
    return Settings(
        max_attempts=5,
        lock_duration_minutes=15,
        store_failure_policy="closed",
        store_failure_policy_explicit=True,
        bucket_capacity=10,
        bucket_refill_per_second=1.0,
        admin_api_token=ADMIN_TOKEN,
        log_json=False,
    )


# ==================== App Fixtures ====================

@pytest.fixture
def app(test_settings, memory_store, verifier, no_sleep):
    from main import create_app
    return create_app(settings=test_settings, store=memory_store, verifier=verifier, sleep=no_sleep)


@pytest.fixture
def test_client(app):
    """FastAPI TestClient bound to the test application."""
    from fastapi.testclient import TestClient
    return TestClient(app)


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}
