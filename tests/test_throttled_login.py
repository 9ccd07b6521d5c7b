"""
Tests for the throttled login orchestrator.

The orchestrator must check the lock first, sleep the progressive delay
before verifying credentials, and then record the outcome.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock


@pytest.fixture
def orchestrator(gate, verifier, no_sleep):
    from login_guard.services.throttled_login import ThrottledLoginOrchestrator
    return ThrottledLoginOrchestrator(gate, verifier, sleep=no_sleep)


class TestLoginFlow:
    """End-to-end login state machine over the in-memory store."""

    @pytest.mark.asyncio
    async def test_successful_login(self, orchestrator):
        from login_guard.services.throttled_login import LoginSucceeded

        result = await orchestrator.attempt("Alice", "correct-password")
        assert result == LoginSucceeded("alice")

    @pytest.mark.asyncio
    async def test_wrong_password_reports_remaining_attempts(self, orchestrator):
        from login_guard.services.throttled_login import DenialReason

        result = await orchestrator.attempt("alice", "wrong")

        assert result.reason is DenialReason.INVALID_CREDENTIALS
        assert result.remaining_attempts == 4

    @pytest.mark.asyncio
    async def test_fifth_failure_locks(self, orchestrator):
        from login_guard.services.throttled_login import DenialReason

        for _ in range(4):
            await orchestrator.attempt("alice", "wrong")
        result = await orchestrator.attempt("alice", "wrong")

        assert result.reason is DenialReason.LOCKED
        assert result.remaining_seconds == 900
        assert result.remaining_attempts == 0

    @pytest.mark.asyncio
    async def test_locked_account_rejects_correct_password(self, orchestrator, verifier):
        """A locked identity never reaches credential verification."""
        from login_guard.services.throttled_login import DenialReason

        for _ in range(5):
            await orchestrator.attempt("alice", "wrong")
        verifier.calls.clear()

        result = await orchestrator.attempt("alice", "correct-password")

        assert result.reason is DenialReason.LOCKED
        assert verifier.calls == []

    @pytest.mark.asyncio
    async def test_success_clears_failures(self, orchestrator, gate):
        for _ in range(3):
            await orchestrator.attempt("alice", "wrong")

        await orchestrator.attempt("alice", "correct-password")

        assert await gate.failed_attempt_count("alice") == 0
        assert await gate.progressive_delay_seconds("alice") == 0

    @pytest.mark.asyncio
    async def test_login_allowed_after_lock_expires(self, orchestrator, clock):
        from login_guard.services.throttled_login import LoginSucceeded

        for _ in range(5):
            await orchestrator.attempt("alice", "wrong")
        clock.advance(900)

        result = await orchestrator.attempt("alice", "correct-password")
        assert isinstance(result, LoginSucceeded)


class TestProgressiveDelayApplication:

    @pytest.mark.asyncio
    async def test_no_delay_on_first_attempts(self, orchestrator, no_sleep):
        await orchestrator.attempt("alice", "wrong")
        await orchestrator.attempt("alice", "wrong")
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delay_grows_with_failures(self, orchestrator, no_sleep):
        for _ in range(4):
            await orchestrator.attempt("alice", "wrong")

        delays = [call.args[0] for call in no_sleep.await_args_list]
        assert delays == [1, 2]

    @pytest.mark.asyncio
    async def test_delay_happens_before_verification(self, gate):
        from login_guard.services.throttled_login import ThrottledLoginOrchestrator

        events = []

        async def sleep(seconds):
            events.append(("sleep", seconds))

        verifier = MagicMock()

        async def verify(identity, password):
            events.append(("verify", identity))
            return False

        verifier.verify = verify
        orchestrator = ThrottledLoginOrchestrator(gate, verifier, sleep=sleep)

        await gate.record_failure("alice")
        await gate.record_failure("alice")
        await orchestrator.attempt("alice", "wrong")

        assert events == [("sleep", 1), ("verify", "alice")]

    @pytest.mark.asyncio
    async def test_cancel_during_delay_keeps_committed_state(self, gate, verifier):
        from login_guard.services.throttled_login import ThrottledLoginOrchestrator

        orchestrator = ThrottledLoginOrchestrator(gate, verifier, sleep=asyncio.sleep)
        await gate.record_failure("alice")
        await gate.record_failure("alice")

        task = asyncio.ensure_future(orchestrator.attempt("alice", "correct-password"))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert verifier.calls == []
        assert await gate.failed_attempt_count("alice") == 2


class TestStoreFailurePolicy:

    def _orchestrator(self, failing_store, verifier, policy):
        from login_guard.services.login_attempt_gate import LoginAttemptGate
        from login_guard.services.throttled_login import ThrottledLoginOrchestrator

        return ThrottledLoginOrchestrator(
            LoginAttemptGate(failing_store), verifier,
            store_failure_policy=policy, sleep=AsyncMock(),
        )

    @pytest.mark.asyncio
    async def test_fail_closed_refuses_login(self, failing_store, verifier):
        from login_guard.services.throttled_login import DenialReason, StoreFailurePolicy

        orchestrator = self._orchestrator(failing_store, verifier, StoreFailurePolicy.CLOSED)
        result = await orchestrator.attempt("alice", "correct-password")

        assert result.reason is DenialReason.STORE_UNAVAILABLE
        assert verifier.calls == []

    @pytest.mark.asyncio
    async def test_fail_open_still_verifies(self, failing_store, verifier):
        from login_guard.services.throttled_login import LoginSucceeded

        orchestrator = self._orchestrator(failing_store, verifier, "open")
        result = await orchestrator.attempt("alice", "correct-password")

        assert isinstance(result, LoginSucceeded)

    @pytest.mark.asyncio
    async def test_fail_open_wrong_password_is_still_denied(self, failing_store, verifier):
        from login_guard.services.throttled_login import DenialReason, StoreFailurePolicy

        orchestrator = self._orchestrator(failing_store, verifier, StoreFailurePolicy.OPEN)
        result = await orchestrator.attempt("alice", "wrong")

        assert result.reason is DenialReason.INVALID_CREDENTIALS
        assert result.remaining_attempts is None

    def test_unknown_policy_rejected(self, gate, verifier):
        from login_guard.services.throttled_login import ThrottledLoginOrchestrator

        with pytest.raises(ValueError):
            ThrottledLoginOrchestrator(gate, verifier, store_failure_policy="sometimes")

    @pytest.mark.asyncio
    async def test_fail_closed_unrecorded_failure_is_store_unavailable(self, gate, memory_store, verifier):
        """Reads succeed but the failure cannot be counted: fail-closed answers 503, not 401."""
        from login_guard.services.counter_store import StoreUnavailable
        from login_guard.services.throttled_login import (
            DenialReason, StoreFailurePolicy, ThrottledLoginOrchestrator,
        )

        memory_store.increment = AsyncMock(side_effect=StoreUnavailable("increment", "connection reset"))
        orchestrator = ThrottledLoginOrchestrator(
            gate, verifier, store_failure_policy=StoreFailurePolicy.CLOSED, sleep=AsyncMock(),
        )

        result = await orchestrator.attempt("alice", "wrong")

        assert result.reason is DenialReason.STORE_UNAVAILABLE
        assert verifier.calls == [("alice", "wrong")]

    @pytest.mark.asyncio
    async def test_fail_open_unrecorded_failure_is_invalid_credentials(self, gate, memory_store, verifier):
        from login_guard.services.counter_store import StoreUnavailable
        from login_guard.services.throttled_login import DenialReason, ThrottledLoginOrchestrator

        memory_store.increment = AsyncMock(side_effect=StoreUnavailable("increment", "connection reset"))
        orchestrator = ThrottledLoginOrchestrator(gate, verifier, store_failure_policy="open", sleep=AsyncMock())

        result = await orchestrator.attempt("alice", "wrong")

        assert result.reason is DenialReason.INVALID_CREDENTIALS
        assert result.remaining_attempts is None
