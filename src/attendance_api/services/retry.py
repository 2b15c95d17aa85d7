"""Bounded retries for provider calls.

Retrying is modelled as a small state machine (``RetryState``) so the
orchestrator and its tests can see exactly which attempt is running and how
long the next wait will be. Waiting goes through an injectable sleeper.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal, TypeVar

from attendance_api.config import Settings
from attendance_api.exceptions import ProviderError, RetryExhaustedError, SyncCancelledError
from attendance_api.utils.secure_logging import log_warning

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[None]]


class RetryPhase(StrEnum):
    """Phase of a retried call."""

    READY = "ready"
    ATTEMPTING = "attempting"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"


@dataclass(frozen=True)
class RetryPolicy:
    """How many times and how patiently to retry.

    ``max_retries`` counts retries after the first attempt.
    """

    max_retries: int = 3
    base_delay: float = 2.0
    backoff: Literal["fixed", "exponential"] = "exponential"
    max_delay: float = 60.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_delay_seconds,
            backoff=settings.retry_backoff,
            max_delay=settings.retry_max_delay_seconds,
        )

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (1-based)."""
        if self.backoff == "fixed":
            delay = self.base_delay
        else:
            delay = self.base_delay * (2 ** (retry_number - 1))
        return min(delay, self.max_delay)


@dataclass
class RetryState:
    """Attempt counter and next delay for one retried call."""

    policy: RetryPolicy
    attempt: int = 0
    phase: RetryPhase = RetryPhase.READY
    next_delay: float | None = None
    last_error: ProviderError | None = None
    delays: list[float] = field(default_factory=list)

    def begin_attempt(self) -> None:
        self.attempt += 1
        self.phase = RetryPhase.ATTEMPTING
        self.next_delay = None

    def succeed(self) -> None:
        self.phase = RetryPhase.SUCCEEDED

    def fail(self, error: ProviderError) -> RetryPhase:
        """Record a failed attempt and decide what happens next."""
        self.last_error = error
        if not error.retryable:
            self.phase = RetryPhase.ABORTED
        elif self.attempt > self.policy.max_retries:
            self.phase = RetryPhase.EXHAUSTED
        else:
            self.phase = RetryPhase.WAITING
            self.next_delay = self.policy.delay_for(self.attempt)
            self.delays.append(self.next_delay)
        return self.phase


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleeper: Sleeper = asyncio.sleep,
    description: str = "provider call",
    is_cancelled: Callable[[], bool] | None = None,
) -> T:
    """Run ``operation`` under ``policy``.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        policy: Retry policy
        sleeper: Awaitable used to wait between attempts
        description: Label for log lines
        is_cancelled: Checked after each wait; aborts further attempts

    Returns:
        The operation's result

    Raises:
        ProviderError: Non-retryable failures, unchanged
        RetryExhaustedError: Retryable failures past the retry budget
        SyncCancelledError: Cancellation observed between attempts
    """
    state = RetryState(policy)
    while True:
        state.begin_attempt()
        try:
            result = await operation()
        except ProviderError as e:
            phase = state.fail(e)
            if phase == RetryPhase.ABORTED:
                raise
            if phase == RetryPhase.EXHAUSTED:
                raise RetryExhaustedError(state.attempt, e) from e
            log_warning(
                logger,
                f"{description} failed (attempt {state.attempt}/{policy.max_retries + 1}), "
                f"retrying in {state.next_delay}s",
                e,
            )
            await sleeper(state.next_delay)
            if is_cancelled is not None and is_cancelled():
                raise SyncCancelledError(f"{description} cancelled while retrying")
            continue

        state.succeed()
        if state.attempt > 1:
            logger.info(f"{description} succeeded after {state.attempt} attempts")
        return result
