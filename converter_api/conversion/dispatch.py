"""
Hand-off of queued tasks to a conversion runner.

- InlineDispatcher: runs conversions inside the API process, through
  FastAPI background tasks when a request is in flight and as tracked
  asyncio tasks otherwise
- QueueDispatcher: pushes task ids onto the durable queue consumed by
  ``converter_api.worker``
"""

from abc import ABC, abstractmethod
import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
import json

from fastapi import BackgroundTasks
import structlog

from converter_api.core.errors import DispatchError
from converter_api.core.kv_store import KeyValueStore

logger = structlog.get_logger(__name__)

Runner = Callable[[str], Awaitable[None]]


class Dispatcher(ABC):
    mode: str = "dispatcher"

    @abstractmethod
    async def dispatch(
        self,
        task_id: str,
        runner: Runner,
        background_tasks: BackgroundTasks | None = None,
    ) -> None:
        """Arrange for ``runner(task_id)`` to be executed eventually."""

    async def aclose(self) -> None:
        pass


class InlineDispatcher(Dispatcher):
    """Run conversions in-process under a shared concurrency ceiling."""

    mode = "inline"

    def __init__(self, max_concurrent: int = 3):
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    async def _run_bounded(self, task_id: str, runner: Runner) -> None:
        async with self._semaphore:
            logger.debug("Conversion slot acquired", task_id=task_id)
            await runner(task_id)

    async def dispatch(
        self,
        task_id: str,
        runner: Runner,
        background_tasks: BackgroundTasks | None = None,
    ) -> None:
        if self._closed:
            raise DispatchError("Dispatcher is shutting down")

        if background_tasks is not None:
            background_tasks.add_task(self._run_bounded, task_id, runner)
            logger.debug("Conversion scheduled as background task", task_id=task_id)
            return

        task = asyncio.create_task(self._run_bounded(task_id, runner), name=f"convert-{task_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("Conversion scheduled as asyncio task", task_id=task_id)

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def aclose(self) -> None:
        """Cancel conversions started outside a request and wait for them to unwind."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Pending conversions cancelled", count=len(tasks))


class QueueDispatcher(Dispatcher):
    """Push task ids onto the durable queue for an out-of-band worker."""

    mode = "queue"

    def __init__(self, store: KeyValueStore, queue_name: str = "youtube_queue"):
        self.store = store
        self.queue_name = queue_name

    async def dispatch(
        self,
        task_id: str,
        runner: Runner,
        background_tasks: BackgroundTasks | None = None,
    ) -> None:
        message = json.dumps({"task_id": task_id, "queued_at": datetime.now().isoformat()})
        await self.store.push(self.queue_name, message.encode("utf-8"))
        logger.info("Task enqueued", task_id=task_id, queue=self.queue_name)


def create_dispatcher(
    mode: str,
    store: KeyValueStore,
    queue_name: str = "youtube_queue",
    max_concurrent: int = 3,
) -> Dispatcher:
    if mode == "queue":
        return QueueDispatcher(store, queue_name)
    return InlineDispatcher(max_concurrent)
