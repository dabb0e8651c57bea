"""
Out-of-band conversion worker.

Consumes task ids from the durable queue (``dispatch_mode=queue``) and runs
them through the orchestrator with bounded concurrency. Requires a shared
store (REDIS_URL) so the API process can see the results.

Usage:
    converter-worker
    python -m converter_api.worker
"""

import asyncio
import json
import signal

import structlog

from converter_api.config import configure_structlog, settings
from converter_api.conversion.backends import create_backend
from converter_api.conversion.dispatch import QueueDispatcher
from converter_api.conversion.orchestrator import ConversionOrchestrator, initialize_orchestrator
from converter_api.conversion.retry import RetryPolicy
from converter_api.core.errors import StoreUnavailableError
from converter_api.core.kv_store import KeyValueStore, initialize_store

logger = structlog.get_logger(__name__)


class ConversionWorker:
    """BLPOP loop over the work queue."""

    def __init__(
        self,
        store: KeyValueStore,
        orchestrator: ConversionOrchestrator,
        queue_name: str = "youtube_queue",
        max_concurrent: int = 3,
        poll_timeout_seconds: float = 30,
        error_backoff_seconds: float = 5.0,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.queue_name = queue_name
        self.max_concurrent = max_concurrent
        self.poll_timeout_seconds = poll_timeout_seconds
        self.error_backoff_seconds = error_backoff_seconds
        self._slots = asyncio.Semaphore(max_concurrent)
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    @staticmethod
    def parse_message(raw: bytes) -> str | None:
        """Return the task id carried by a queue message, or None if malformed."""
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError):
            return None
        if not isinstance(data, dict):
            return None
        task_id = data.get("task_id")
        return task_id if isinstance(task_id, str) and task_id else None

    async def _process(self, task_id: str) -> None:
        try:
            await self.orchestrator.run(task_id)
        finally:
            self._slots.release()

    async def run_once(self) -> bool:
        """
        Wait for one message and start processing it.

        Returns True when a message was consumed (valid or not).
        """
        # Only pop what we have capacity to run
        await self._slots.acquire()
        try:
            raw = await self.store.pop(self.queue_name, self.poll_timeout_seconds)
        except BaseException:
            self._slots.release()
            raise

        if raw is None:
            self._slots.release()
            logger.debug("Waiting for new tasks", queue=self.queue_name)
            return False

        task_id = self.parse_message(raw)
        if task_id is None:
            self._slots.release()
            logger.warning("Dropping malformed queue message", message=raw[:200])
            return True

        logger.info("Processing queued task", task_id=task_id)
        task = asyncio.create_task(self._process(task_id), name=f"worker-{task_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def run(self) -> None:
        """Consume the queue until ``stop()`` is called."""
        self._running = True
        logger.info(
            "Worker started",
            queue=self.queue_name,
            max_concurrent=self.max_concurrent,
            backend=self.orchestrator.backend.name,
        )
        while self._running:
            try:
                await self.run_once()
            except StoreUnavailableError as e:
                logger.error(
                    "Queue polling failed, backing off",
                    error=str(e),
                    backoff_seconds=self.error_backoff_seconds,
                )
                await asyncio.sleep(self.error_backoff_seconds)

        await self.drain()
        logger.info("Worker stopped")

    def stop(self) -> None:
        self._running = False

    async def drain(self) -> None:
        """Wait for in-flight conversions to finish."""
        if self._tasks:
            logger.info("Waiting for in-flight conversions", count=len(self._tasks))
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)


async def _serve() -> None:
    configure_structlog()

    if not settings.redis_url:
        logger.warning("REDIS_URL not configured - the worker and API will not share tasks")

    store = initialize_store(settings.redis_url, settings.cleanup_interval_minutes)
    backend = create_backend(settings)
    orchestrator = initialize_orchestrator(
        store,
        backend,
        QueueDispatcher(store, settings.queue_name),
        task_ttl_seconds=settings.task_ttl_seconds,
        cache_ttl_seconds=settings.cache_ttl_seconds,
        retry_policy=RetryPolicy(
            max_retries=settings.max_retries,
            backoff_seconds=settings.retry_backoff_seconds,
            backoff_max_seconds=settings.retry_backoff_max_seconds,
            base_profile=settings.performance_mode,
        ),
        conversion_timeout_seconds=settings.conversion_timeout_seconds,
        store_retry_attempts=settings.store_retry_attempts,
        # Finished audio is read back from the artifact store by the API
        max_local_payloads=0,
    )
    worker = ConversionWorker(
        store,
        orchestrator,
        queue_name=settings.queue_name,
        max_concurrent=settings.max_concurrent_conversions,
        poll_timeout_seconds=settings.worker_poll_timeout_seconds,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.run()
    finally:
        await backend.aclose()
        await store.close()


def main() -> None:
    asyncio.run(_serve())


if __name__ == "__main__":
    main()
