"""Unit tests for the retry policy and performance profile ladder."""

import pytest

from converter_api.conversion.backends.base import PROFILES, degrade, get_profile
from converter_api.conversion.retry import RetryPolicy
from converter_api.core.errors import (
    ConfigurationError,
    PermanentBackendError,
    TransientBackendError,
)


class ScriptedAttempt:
    """Attempt callable that fails the first ``failures`` times."""

    def __init__(self, failures: int = 0, error: Exception | None = None):
        self.failures = failures
        self.error = error or TransientBackendError("connection reset")
        self.profiles: list[str] = []

    async def __call__(self, profile, number):
        self.profiles.append(profile.name)
        if number <= self.failures:
            raise self.error
        return f"result-{number}"


class TestProfiles:
    def test_ladder_degrades_toward_compatibility(self):
        assert degrade(get_profile("aggressive")).name == "balanced"
        assert degrade(get_profile("balanced"), 2).name == "compatibility"
        assert degrade(get_profile("compatibility"), 5).name == "compatibility"
        assert degrade(get_profile("conservative"), 0).name == "conservative"

    def test_degraded_profiles_are_more_conservative(self):
        aggressive, compatibility = PROFILES["aggressive"], PROFILES["compatibility"]

        assert compatibility.concurrent_fragments < aggressive.concurrent_fragments
        assert compatibility.http_timeout_seconds > aggressive.http_timeout_seconds

    def test_unknown_profile(self):
        with pytest.raises(ValueError, match="Unknown performance profile"):
            get_profile("turbo")


class TestRetryPolicy:
    """Test retry classification, bounds, backoff and degradation."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, retry_policy, recording_sleep):
        attempt = ScriptedAttempt()

        result, attempts = await retry_policy.run(attempt)

        assert result == "result-1"
        assert attempts == 1
        assert attempt.profiles == ["balanced"]
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried_with_degradation(
        self, retry_policy, recording_sleep
    ):
        attempt = ScriptedAttempt(failures=2)

        result, attempts = await retry_policy.run(attempt)

        assert result == "result-3"
        assert attempts == 3
        assert attempt.profiles == ["balanced", "conservative", "compatibility"]
        assert len(recording_sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_backoff_strictly_escalates(self, retry_policy, recording_sleep):
        attempt = ScriptedAttempt(failures=10)

        with pytest.raises(TransientBackendError):
            await retry_policy.run(attempt)

        delays = recording_sleep.delays
        assert len(delays) == 3
        assert all(later > earlier for earlier, later in zip(delays, delays[1:]))

    def test_backoff_keeps_growing_past_the_cap(self):
        policy = RetryPolicy(max_retries=8, backoff_seconds=2.0, backoff_max_seconds=10.0)

        delays = [policy.delay_for(n) for n in range(1, 9)]

        assert all(later > earlier for earlier, later in zip(delays, delays[1:]))

    @pytest.mark.asyncio
    async def test_exhausted_retries_reraise_last_error(self, retry_policy):
        attempt = ScriptedAttempt(failures=10)

        with pytest.raises(TransientBackendError, match="connection reset"):
            await retry_policy.run(attempt)

        assert len(attempt.profiles) == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [PermanentBackendError("Video unavailable"), ConfigurationError("missing key")],
    )
    async def test_non_transient_errors_fail_fast(self, retry_policy, recording_sleep, error):
        attempt = ScriptedAttempt(failures=10, error=error)

        with pytest.raises(type(error)):
            await retry_policy.run(attempt)

        assert len(attempt.profiles) == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_zero_retries(self, recording_sleep):
        policy = RetryPolicy(max_retries=0, sleep=recording_sleep)
        attempt = ScriptedAttempt(failures=1)

        with pytest.raises(TransientBackendError):
            await policy.run(attempt)

        assert policy.max_attempts == 1
        assert len(attempt.profiles) == 1
