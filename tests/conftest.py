"""Shared test configuration and fixtures for all tests."""

import asyncio
import os
from typing import Any

import pytest

# Keep tests away from real credentials and shared stores
os.environ["RAPIDAPI_KEY"] = ""
os.environ["REDIS_URL"] = ""
os.environ["CONVERTER_URL"] = "http://localhost:8000"

from converter_api.conversion.backends.base import (  # noqa: E402
    ConversionBackend,
    ConversionResult,
    PerformanceProfile,
    ProgressCallback,
)
from converter_api.conversion.dispatch import Dispatcher, Runner  # noqa: E402
from converter_api.conversion.orchestrator import ConversionOrchestrator  # noqa: E402
from converter_api.conversion.retry import RetryPolicy  # noqa: E402
from converter_api.core.artifacts import ArtifactStore  # noqa: E402
from converter_api.core.kv_store import InMemoryKeyValueStore  # noqa: E402
from converter_api.core.result_cache import ResultCache  # noqa: E402
from converter_api.core.task_manager import TaskManager  # noqa: E402

SAMPLE_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
SAMPLE_VIDEO_ID = "dQw4w9WgXcQ"
SAMPLE_AUDIO = b"ID3" + bytes(range(256)) * 4


class FakeBackend(ConversionBackend):
    """
    Scripted backend.

    Each attempt consumes the next outcome: an exception instance is raised,
    a ConversionResult is returned. Once the script is exhausted the last
    outcome repeats.
    """

    name = "fake"

    def __init__(
        self,
        outcomes: list[Any] | None = None,
        delay: float = 0.0,
        progress_steps: tuple[int, ...] = (20, 60, 90),
    ):
        self.outcomes = outcomes or [ConversionResult(audio_bytes=SAMPLE_AUDIO, title="Sample Song")]
        self.delay = delay
        self.progress_steps = progress_steps
        self.calls: list[tuple[str, PerformanceProfile]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def attempt_conversion(
        self,
        video_id: str,
        *,
        profile: PerformanceProfile,
        progress: ProgressCallback | None = None,
    ) -> ConversionResult:
        self.calls.append((video_id, profile))
        outcome = self.outcomes[min(len(self.calls) - 1, len(self.outcomes) - 1)]

        if progress:
            for step in self.progress_steps:
                await progress(step)
        if self.delay:
            await asyncio.sleep(self.delay)

        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def health(self) -> dict[str, Any]:
        return {"status": "healthy", "backend": self.name}


class RecordingDispatcher(Dispatcher):
    """Records dispatched task ids; tests call ``orchestrator.run`` themselves."""

    mode = "recording"

    def __init__(self, fail_with: Exception | None = None):
        self.dispatched: list[str] = []
        self.fail_with = fail_with

    async def dispatch(self, task_id: str, runner: Runner, background_tasks=None) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.dispatched.append(task_id)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    """Create a fresh in-memory store for each test."""
    return InMemoryKeyValueStore(cleanup_interval_minutes=1)


@pytest.fixture
def task_manager(store) -> TaskManager:
    return TaskManager(store, ttl_seconds=3600)


@pytest.fixture
def artifacts(store) -> ArtifactStore:
    return ArtifactStore(store, ttl_seconds=3600)


@pytest.fixture
def result_cache(store, artifacts) -> ResultCache:
    return ResultCache(store, artifacts, validity_seconds=3600)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def retry_policy(recording_sleep) -> RetryPolicy:
    return RetryPolicy(
        max_retries=3,
        backoff_seconds=1.0,
        backoff_max_seconds=30.0,
        base_profile="balanced",
        sleep=recording_sleep,
    )


@pytest.fixture
def make_orchestrator(task_manager, result_cache, artifacts, dispatcher, retry_policy):
    """Factory for orchestrators sharing the test store, with a chosen backend."""

    def _make(
        backend: ConversionBackend,
        *,
        timeout: float = 5.0,
        dispatcher_override: Dispatcher | None = None,
    ) -> ConversionOrchestrator:
        return ConversionOrchestrator(
            task_manager=task_manager,
            result_cache=result_cache,
            artifacts=artifacts,
            backend=backend,
            dispatcher=dispatcher_override or dispatcher,
            retry_policy=retry_policy,
            conversion_timeout_seconds=timeout,
            store_retry_attempts=3,
            store_retry_backoff_seconds=0,
        )

    return _make


@pytest.fixture
def orchestrator(make_orchestrator, fake_backend) -> ConversionOrchestrator:
    return make_orchestrator(fake_backend)
