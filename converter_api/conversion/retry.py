"""Retry policy for backend conversion attempts."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_incrementing,
)

from converter_api.conversion.backends.base import PerformanceProfile, degrade, get_profile
from converter_api.core.errors import TransientBackendError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# An attempt receives the profile to use and its 1-based attempt number
Attempt = Callable[[PerformanceProfile, int], Awaitable[T]]


class RetryPolicy:
    """
    Retry transient backend failures with escalating backoff and degradation.

    Only ``TransientBackendError`` is retried, at most ``max_retries``
    times. Each retry waits longer than the previous one and runs with the
    next, more conservative performance profile. Any other error, or the
    last transient one once retries are exhausted, is re-raised unchanged.
    """

    def __init__(
        self,
        max_retries: int = 3,
        backoff_seconds: float = 2.0,
        backoff_max_seconds: float = 30.0,
        base_profile: PerformanceProfile | str = "balanced",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.base_profile = (
            get_profile(base_profile) if isinstance(base_profile, str) else base_profile
        )
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return 1 + self.max_retries

    def profile_for(self, attempt_number: int) -> PerformanceProfile:
        return degrade(self.base_profile, attempt_number - 1)

    def delay_for(self, attempt_number: int) -> float:
        """Delay slept after the given failed attempt."""
        state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})  # type: ignore[arg-type]
        state.attempt_number = attempt_number
        return self._wait(state)

    @property
    def _wait(self):
        # The incrementing term keeps delays growing once the exponential term is capped
        return wait_exponential(
            multiplier=self.backoff_seconds, max=self.backoff_max_seconds
        ) + wait_incrementing(start=0, increment=self.backoff_seconds)

    async def run(self, attempt: Attempt[T], *, task_id: str | None = None) -> tuple[T, int]:
        """
        Run ``attempt`` under the policy.

        Returns:
            (result, number of attempts made)
        """

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "Transient backend failure, retrying",
                task_id=task_id,
                attempt=retry_state.attempt_number,
                max_attempts=self.max_attempts,
                next_profile=self.profile_for(retry_state.attempt_number + 1).name,
                delay_seconds=round(retry_state.upcoming_sleep, 2),
                error=str(error),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(TransientBackendError),
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        async for retry_attempt in retrying:
            with retry_attempt:
                number = retry_attempt.retry_state.attempt_number
                result = await attempt(self.profile_for(number), number)
        return result, number
