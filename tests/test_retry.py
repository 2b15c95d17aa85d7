"""Tests for bounded provider retries."""

import asyncio

import pytest

from attendance_api.exceptions import (
    AuthError,
    RequestRejectedError,
    RetryExhaustedError,
    SyncCancelledError,
    TransportError,
)
from attendance_api.services.retry import RetryPhase, RetryPolicy, RetryState, call_with_retry


class RecordingSleeper:
    """Sleeper that records requested delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def flaky(failures: list[Exception], result: str = "ok"):
    """Operation that raises the given errors in order, then succeeds."""
    calls = {"count": 0}

    async def operation() -> str:
        calls["count"] += 1
        if failures:
            raise failures.pop(0)
        return result

    return operation, calls


class TestRetryPolicy:
    """Test delay computation."""

    def test_exponential_delays(self) -> None:
        policy = RetryPolicy(base_delay=2.0)

        assert [policy.delay_for(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    def test_fixed_delays(self) -> None:
        policy = RetryPolicy(base_delay=5.0, backoff="fixed")

        assert [policy.delay_for(n) for n in (1, 2, 3)] == [5.0, 5.0, 5.0]

    def test_delay_is_capped(self) -> None:
        policy = RetryPolicy(base_delay=10.0, max_delay=15.0)

        assert policy.delay_for(4) == 15.0


class TestRetryState:
    """Test the retry state machine."""

    def test_transitions(self) -> None:
        state = RetryState(RetryPolicy(max_retries=1))

        state.begin_attempt()
        assert state.phase == RetryPhase.ATTEMPTING
        assert state.fail(TransportError("503")) == RetryPhase.WAITING
        assert state.next_delay == 2.0

        state.begin_attempt()
        assert state.fail(TransportError("503")) == RetryPhase.EXHAUSTED

    def test_non_retryable_aborts(self) -> None:
        state = RetryState(RetryPolicy())

        state.begin_attempt()

        assert state.fail(AuthError("denied")) == RetryPhase.ABORTED
        assert state.delays == []


class TestCallWithRetry:
    """Test retried calls."""

    def test_transient_failures_then_success(self) -> None:
        sleeper = RecordingSleeper()
        operation, calls = flaky([TransportError("HTTP 503", 503), TransportError("HTTP 503", 503)])

        result = asyncio.run(call_with_retry(operation, RetryPolicy(), sleeper=sleeper))

        assert result == "ok"
        assert calls["count"] == 3
        assert sleeper.delays == [2.0, 4.0]

    def test_exhaustion_after_budget(self) -> None:
        sleeper = RecordingSleeper()
        operation, calls = flaky([TransportError("HTTP 503", 503) for _ in range(10)])

        with pytest.raises(RetryExhaustedError) as exc_info:
            asyncio.run(call_with_retry(operation, RetryPolicy(max_retries=3), sleeper=sleeper))

        assert calls["count"] == 4
        assert exc_info.value.attempts == 4
        assert exc_info.value.status_code == 503
        assert sleeper.delays == [2.0, 4.0, 8.0]

    @pytest.mark.parametrize("error", [AuthError("denied", 401), RequestRejectedError("bad request", 400)])
    def test_non_retryable_errors_are_not_retried(self, error: Exception) -> None:
        sleeper = RecordingSleeper()
        operation, calls = flaky([error])

        with pytest.raises(type(error)):
            asyncio.run(call_with_retry(operation, RetryPolicy(), sleeper=sleeper))

        assert calls["count"] == 1
        assert sleeper.delays == []

    def test_zero_retries_fails_fast(self) -> None:
        operation, calls = flaky([TransportError("timeout")])

        with pytest.raises(RetryExhaustedError):
            asyncio.run(call_with_retry(operation, RetryPolicy(max_retries=0), sleeper=RecordingSleeper()))

        assert calls["count"] == 1

    def test_cancellation_between_attempts(self) -> None:
        operation, calls = flaky([TransportError("timeout"), TransportError("timeout")])

        with pytest.raises(SyncCancelledError):
            asyncio.run(
                call_with_retry(
                    operation,
                    RetryPolicy(),
                    sleeper=RecordingSleeper(),
                    is_cancelled=lambda: True,
                )
            )

        assert calls["count"] == 1
