"""
Conversion Orchestrator.

Drives a task through ``queued -> processing -> finished | error``:

1. ``submit`` validates the URL, answers from the Result Cache when it can,
   otherwise creates a queued task and dispatches it
2. ``run`` picks the task up, re-checks the cache, invokes the backend under
   the retry policy and the conversion timeout, and writes the terminal state
3. ``force_error`` and ``retry`` are the operator actions

Every write made by a run after pickup is guarded by the run's ``run_id``:
once a task has been timed out, force-errored or reset for retry, late
results from the old run are discarded instead of resurrecting it.
"""

import asyncio
from dataclasses import dataclass
from typing import Any
import uuid

from fastapi import BackgroundTasks
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from converter_api.conversion.backends.base import (
    PROFILE_LADDER,
    PROFILES,
    ConversionBackend,
    PerformanceProfile,
)
from converter_api.conversion.dispatch import Dispatcher
from converter_api.conversion.retry import RetryPolicy
from converter_api.core.artifacts import ArtifactStore
from converter_api.core.errors import (
    BackendError,
    ConfigurationError,
    ConverterError,
    DispatchError,
    InvalidPerformanceModeError,
    PermanentBackendError,
    StoreUnavailableError,
    TaskNotFoundError,
    TransientBackendError,
)
from converter_api.core.kv_store import KeyValueStore
from converter_api.core.result_cache import ResultCache
from converter_api.core.task_manager import Task, TaskManager, TaskStatus
from converter_api.core.validation import cache_key, validate_source_url

logger = structlog.get_logger(__name__)

PICKUP_PROGRESS = 5
FILE_URL_TEMPLATE = "/download/{task_id}"
CLEANUP_MESSAGE = (
    "Task was manually cleaned up after being stuck in processing. "
    "Please retry the conversion."
)


class RunSuperseded(Exception):
    """The task no longer belongs to this run (timed out, cleaned up or retried)."""


@dataclass
class SubmitResult:
    task_id: str
    status: TaskStatus
    message: str
    file_url: str | None = None
    title: str | None = None
    cached: bool = False


@dataclass
class TaskActionResult:
    task_id: str
    status: TaskStatus
    message: str
    changed: bool


class ConversionOrchestrator:
    """Owns every state transition of a conversion task."""

    def __init__(
        self,
        task_manager: TaskManager,
        result_cache: ResultCache,
        artifacts: ArtifactStore,
        backend: ConversionBackend,
        dispatcher: Dispatcher,
        retry_policy: RetryPolicy | None = None,
        conversion_timeout_seconds: float = 300.0,
        store_retry_attempts: int = 3,
        store_retry_backoff_seconds: float = 0.2,
    ):
        self.task_manager = task_manager
        self.result_cache = result_cache
        self.artifacts = artifacts
        self.backend = backend
        self.dispatcher = dispatcher
        self.retry_policy = retry_policy or RetryPolicy()
        self.conversion_timeout_seconds = conversion_timeout_seconds
        self.store_retry_attempts = store_retry_attempts
        self.store_retry_backoff_seconds = store_retry_backoff_seconds

    @staticmethod
    def file_url_for(task_id: str) -> str:
        return FILE_URL_TEMPLATE.format(task_id=task_id)

    async def _store_call(self, operation, *args: Any, **kwargs: Any) -> Any:
        """Run a store operation, retrying StoreUnavailableError a bounded number of times."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.store_retry_attempts),
            wait=wait_exponential(multiplier=self.store_retry_backoff_seconds, max=2),
            retry=retry_if_exception_type(StoreUnavailableError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "Retrying store operation",
                        operation=getattr(operation, "__name__", str(operation)),
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await operation(*args, **kwargs)

    # Submission

    async def submit(
        self, url: str | None, background_tasks: BackgroundTasks | None = None
    ) -> SubmitResult:
        """
        Accept a conversion request.

        Raises:
            InvalidSourceUrlError: Before any task is created
            StoreUnavailableError: If the task could not be recorded
            DispatchError: If the task could not be handed to a runner (the
                queued task is removed)
        """
        video_id, normalized_url = validate_source_url(url)
        url_hash = cache_key(normalized_url)
        task_id = str(uuid.uuid4())

        entry = await self.result_cache.lookup(url_hash)
        if entry is not None:
            file_url = self.file_url_for(task_id)
            task = Task(
                task_id=task_id,
                status=TaskStatus.FINISHED,
                source_url=normalized_url,
                video_id=video_id,
                progress=100,
                title=entry.title,
                file_url=file_url,
                artifact_ref=entry.artifact_ref,
            )
            await self._store_call(self.task_manager.create, task_id, task)
            logger.info("Cache hit, task finished immediately", task_id=task_id, video_id=video_id)
            return SubmitResult(
                task_id=task_id,
                status=TaskStatus.FINISHED,
                message="Conversion served from cache",
                file_url=file_url,
                title=entry.title,
                cached=True,
            )

        task = Task(
            task_id=task_id,
            status=TaskStatus.QUEUED,
            source_url=normalized_url,
            video_id=video_id,
        )
        await self._store_call(self.task_manager.create, task_id, task)

        try:
            await self.dispatcher.dispatch(task_id, self.run, background_tasks)
        except (ConverterError, RuntimeError) as e:
            logger.error("Dispatch failed, removing queued task", task_id=task_id, error=str(e))
            try:
                await self.task_manager.delete(task_id)
            except StoreUnavailableError as delete_error:
                logger.error(
                    "Failed to remove undispatched task",
                    task_id=task_id,
                    error=str(delete_error),
                )
            raise DispatchError(f"Failed to start conversion: {e}") from e

        logger.info(
            "Conversion task queued",
            task_id=task_id,
            video_id=video_id,
            dispatch_mode=self.dispatcher.mode,
        )
        return SubmitResult(
            task_id=task_id,
            status=TaskStatus.QUEUED,
            message="Conversion task created, processing started",
        )

    # Execution

    async def run(self, task_id: str) -> None:
        """
        Execute a queued task to a terminal state.

        Never raises: every failure ends up in the task record or, when the
        store itself is unreachable, in the log.
        """
        try:
            await self._execute(task_id)
        except RunSuperseded:
            logger.info("Run superseded, result discarded", task_id=task_id)
        except StoreUnavailableError as e:
            logger.error("Store unavailable, conversion abandoned", task_id=task_id, error=str(e))

    async def _execute(self, task_id: str) -> None:
        task = await self._store_call(self.task_manager.get, task_id)
        if task is None:
            logger.warning("Task vanished before pickup", task_id=task_id)
            return
        if task.status != TaskStatus.QUEUED:
            logger.info(
                "Task not queued, skipping run",
                task_id=task_id,
                status=task.status.value,
            )
            return

        run_id = uuid.uuid4().hex
        task = await self._store_call(
            self.task_manager.update,
            task_id,
            status=TaskStatus.PROCESSING,
            progress=PICKUP_PROGRESS,
            run_id=run_id,
            attempts=0,
            error=None,
        )
        if task is None:
            logger.warning("Task expired at pickup", task_id=task_id)
            return

        log = logger.bind(task_id=task_id, run_id=run_id, video_id=task.video_id)
        log.info("Conversion started", backend=self.backend.name)

        url_hash = cache_key(task.source_url)
        entry = await self.result_cache.lookup(url_hash)
        if entry is not None:
            await self._guarded_update(
                task_id,
                run_id,
                status=TaskStatus.FINISHED,
                progress=100,
                title=entry.title,
                artifact_ref=entry.artifact_ref,
                file_url=self.file_url_for(task_id),
            )
            log.info("Cache hit on run, backend skipped")
            return

        attempts = 0

        async def report_progress(value: int) -> None:
            try:
                updated = await self._guarded_update(task_id, run_id, progress=value)
            except StoreUnavailableError as e:
                log.warning("Progress update failed", progress=value, error=str(e))
                return
            # Stop converting for a task that is no longer ours
            if updated is None:
                raise RunSuperseded(task_id)

        async def attempt(profile: PerformanceProfile, number: int):
            nonlocal attempts
            attempts = number
            log.info("Backend attempt", attempt=number, profile=profile.name)
            return await self.backend.attempt_conversion(
                task.video_id, profile=profile, progress=report_progress
            )

        try:
            result, attempts = await asyncio.wait_for(
                self.retry_policy.run(attempt, task_id=task_id),
                timeout=self.conversion_timeout_seconds,
            )
        except TimeoutError:
            await self._fail(
                task_id,
                run_id,
                f"Conversion timed out after {self.conversion_timeout_seconds:.0f} seconds",
                attempts,
            )
            return
        except (PermanentBackendError, ConfigurationError) as e:
            await self._fail(task_id, run_id, f"Conversion failed: {e}", attempts)
            return
        except TransientBackendError as e:
            await self._fail(
                task_id, run_id, f"Conversion failed after {attempts} attempts: {e}", attempts
            )
            return
        except BackendError as e:
            await self._fail(task_id, run_id, f"Conversion failed: {e}", attempts)
            return
        except (RunSuperseded, StoreUnavailableError):
            raise
        except Exception as e:
            log.exception("Unexpected conversion failure")
            await self._fail(task_id, run_id, f"Unexpected conversion error: {e}", attempts)
            return

        try:
            artifact_ref = await self._store_call(self.artifacts.save, result.audio_bytes)
        except StoreUnavailableError as e:
            await self._fail(task_id, run_id, f"Failed to store converted audio: {e}", attempts)
            return
        await self.result_cache.store(url_hash, artifact_ref, result.title)

        finished = await self._guarded_update(
            task_id,
            run_id,
            status=TaskStatus.FINISHED,
            progress=100,
            title=result.title,
            file_url=self.file_url_for(task_id),
            artifact_ref=artifact_ref,
            artifact_bytes=result.audio_bytes,
            attempts=attempts,
        )
        if finished is None:
            raise RunSuperseded(task_id)

        log.info(
            "Conversion finished",
            attempts=attempts,
            size_bytes=result.size_bytes,
            artifact_ref=artifact_ref,
        )

    async def _guarded_update(self, task_id: str, run_id: str, **changes: Any) -> Task | None:
        """
        Apply changes only while the task is processing under ``run_id``.

        Progress is never lowered. Returns None when the write was discarded.
        """
        current = await self._store_call(self.task_manager.get, task_id)
        if current is None or current.status != TaskStatus.PROCESSING or current.run_id != run_id:
            logger.info(
                "Discarding write from superseded run",
                task_id=task_id,
                run_id=run_id,
                current_status=current.status.value if current else None,
            )
            return None

        if "progress" in changes:
            changes["progress"] = max(int(changes["progress"]), current.progress)
            if set(changes) == {"progress"} and changes["progress"] == current.progress:
                return current

        return await self._store_call(self.task_manager.update, task_id, **changes)

    async def _fail(self, task_id: str, run_id: str, message: str, attempts: int) -> None:
        logger.warning("Conversion failed", task_id=task_id, attempts=attempts, error=message)
        try:
            updated = await self._guarded_update(
                task_id, run_id, status=TaskStatus.ERROR, error=message, attempts=attempts
            )
        except StoreUnavailableError as e:
            logger.error(
                "Failed to record task error",
                task_id=task_id,
                error=message,
                store_error=str(e),
            )
            return
        if updated is None:
            raise RunSuperseded(task_id)

    # Operator actions

    async def force_error(self, task_id: str) -> TaskActionResult:
        """
        Abandon tracking of a stuck task.

        ``processing`` and ``queued`` tasks move to ``error``; terminal tasks
        are left unchanged. The backend is not cancelled; its late result is
        discarded by the run guard.

        Raises:
            TaskNotFoundError: If the task does not exist
        """
        task = await self._store_call(self.task_manager.get, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        if task.status.is_terminal:
            return TaskActionResult(
                task_id=task_id,
                status=task.status,
                message=f"Task already {task.status.value}, nothing to clean up",
                changed=False,
            )

        updated = await self._store_call(
            self.task_manager.update,
            task_id,
            status=TaskStatus.ERROR,
            error=CLEANUP_MESSAGE,
            run_id=None,
        )
        if updated is None:
            raise TaskNotFoundError(task_id)

        logger.info("Task force-errored", task_id=task_id, previous_status=task.status.value)
        return TaskActionResult(
            task_id=task_id,
            status=TaskStatus.ERROR,
            message="Task marked as error",
            changed=True,
        )

    async def retry(
        self, task_id: str, background_tasks: BackgroundTasks | None = None
    ) -> TaskActionResult:
        """
        Reset a task to ``queued`` and dispatch it again.

        A finished task is left untouched. The new run re-checks the Result
        Cache before invoking the backend.

        Raises:
            TaskNotFoundError: If the task does not exist
            DispatchError: If the task could not be redispatched (it is
                moved to ``error``)
        """
        task = await self._store_call(self.task_manager.get, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        if task.status == TaskStatus.FINISHED:
            return TaskActionResult(
                task_id=task_id,
                status=TaskStatus.FINISHED,
                message="Task already finished, nothing to retry",
                changed=False,
            )

        updated = await self._store_call(
            self.task_manager.update,
            task_id,
            status=TaskStatus.QUEUED,
            progress=0,
            error=None,
            run_id=None,
            attempts=0,
        )
        if updated is None:
            raise TaskNotFoundError(task_id)

        try:
            await self.dispatcher.dispatch(task_id, self.run, background_tasks)
        except (ConverterError, RuntimeError) as e:
            logger.error("Retry dispatch failed", task_id=task_id, error=str(e))
            try:
                await self.task_manager.update(
                    task_id, status=TaskStatus.ERROR, error=f"Retry dispatch failed: {e}"
                )
            except StoreUnavailableError as update_error:
                logger.error(
                    "Failed to record retry dispatch failure",
                    task_id=task_id,
                    error=str(update_error),
                )
            raise DispatchError(f"Failed to restart conversion: {e}") from e

        logger.info("Task reset for retry", task_id=task_id, previous_status=task.status.value)
        return TaskActionResult(
            task_id=task_id,
            status=TaskStatus.QUEUED,
            message="Task reset and redispatched",
            changed=True,
        )

    @property
    def performance_mode(self) -> PerformanceProfile:
        """Profile the first attempt of every new run starts from."""
        return self.retry_policy.base_profile

    def set_performance_mode(
        self, mode: str, reason: str | None = None
    ) -> tuple[PerformanceProfile, PerformanceProfile]:
        """
        Switch the starting profile for subsequent attempts in this process.

        Attempts already running keep their profile; later retries degrade
        from the new one.

        Returns:
            (previous profile, current profile)

        Raises:
            InvalidPerformanceModeError: If ``mode`` is not a known profile
        """
        if mode not in PROFILES:
            raise InvalidPerformanceModeError(mode, list(PROFILE_LADDER))

        previous = self.retry_policy.base_profile
        self.retry_policy.base_profile = PROFILES[mode]
        logger.info(
            "Performance mode switched",
            previous_mode=previous.name,
            current_mode=mode,
            reason=reason,
        )
        return previous, self.retry_policy.base_profile

    async def sweep(self) -> dict[str, int]:
        """Drop stale cache entries, expired store keys and orphaned local payloads."""
        removed = await self.result_cache.sweep()
        store: KeyValueStore = self.task_manager.store
        stats = await store.cleanup()
        released = await self.task_manager.prune_payloads()
        result = {"cache_entries_removed": removed, "payloads_released": released, **stats}
        logger.info("Maintenance sweep completed", **result)
        return result


# Global orchestrator instance (initialized once at startup)
_orchestrator: ConversionOrchestrator | None = None


def get_orchestrator() -> ConversionOrchestrator:
    """
    Get the global orchestrator instance.

    Raises:
        RuntimeError: If the orchestrator is not initialized
    """
    if _orchestrator is None:
        raise RuntimeError("Orchestrator not initialized. Call initialize_orchestrator() first.")
    return _orchestrator


def initialize_orchestrator(
    store: KeyValueStore,
    backend: ConversionBackend,
    dispatcher: Dispatcher,
    *,
    task_ttl_seconds: int = 24 * 3600,
    cache_ttl_seconds: int = 24 * 3600,
    retry_policy: RetryPolicy | None = None,
    conversion_timeout_seconds: float = 300.0,
    store_retry_attempts: int = 3,
    max_local_payloads: int = 32,
) -> ConversionOrchestrator:
    """Build the orchestrator and its collaborators over one store."""
    global _orchestrator

    artifacts = ArtifactStore(store, ttl_seconds=task_ttl_seconds)
    _orchestrator = ConversionOrchestrator(
        task_manager=TaskManager(
            store, ttl_seconds=task_ttl_seconds, max_local_payloads=max_local_payloads
        ),
        result_cache=ResultCache(store, artifacts, validity_seconds=cache_ttl_seconds),
        artifacts=artifacts,
        backend=backend,
        dispatcher=dispatcher,
        retry_policy=retry_policy,
        conversion_timeout_seconds=conversion_timeout_seconds,
        store_retry_attempts=store_retry_attempts,
    )
    logger.info(
        "Orchestrator initialized",
        backend=backend.name,
        dispatch_mode=dispatcher.mode,
        timeout_seconds=conversion_timeout_seconds,
    )
    return _orchestrator


def reset_orchestrator() -> None:
    """Reset the global orchestrator (for testing)."""
    global _orchestrator
    _orchestrator = None
