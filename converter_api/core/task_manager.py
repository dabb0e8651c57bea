"""
Task records and the Task Manager façade.

The durable part of a task lives in the key-value store under ``task:{id}``
with a TTL fixed at creation. The produced audio bytes are not serializable
into that record; they live in a process-local extension keyed by task id
and are merged into the view returned by ``get``.
"""

from collections import OrderedDict
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
import json
from typing import Any

import structlog

from converter_api.core.kv_store import KeyValueStore

logger = structlog.get_logger(__name__)

TASK_PREFIX = "task:"


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    QUEUED = "queued"
    PROCESSING = "processing"
    FINISHED = "finished"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.FINISHED, TaskStatus.ERROR)


@dataclass
class Task:
    """
    A single URL-to-audio conversion.

    Attributes:
        task_id: Unique identifier, immutable
        status: Current lifecycle status
        source_url: Normalized source URL, immutable
        video_id: YouTube video id extracted from the source URL
        progress: Completion percentage (0 to 100)
        title: Human-readable label of the produced audio
        file_url: Retrieval path of the audio once finished
        artifact_ref: Reference into the artifact store once finished
        error: Diagnostic message when status is error
        created_at: When the task was created
        updated_at: When the task was last written
        run_id: Token of the orchestrator run allowed to write progress
        attempts: Backend invocations made by the latest run
        artifact_bytes: Process-local audio payload, never persisted here
    """

    task_id: str
    status: TaskStatus
    source_url: str
    video_id: str = ""
    progress: int = 0
    title: str | None = None
    file_url: str | None = None
    artifact_ref: str | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime | None = None
    run_id: str | None = None
    attempts: int = 0
    artifact_bytes: bytes | None = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        """Serializable view of the durable fields."""
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "source_url": self.source_url,
            "video_id": self.video_id,
            "progress": self.progress,
            "title": self.title,
            "file_url": self.file_url,
            "artifact_ref": self.artifact_ref,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "run_id": self.run_id,
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        updated_at = data.get("updated_at")
        return cls(
            task_id=data["task_id"],
            status=TaskStatus(data["status"]),
            source_url=data.get("source_url", ""),
            video_id=data.get("video_id", ""),
            progress=int(data.get("progress") or 0),
            title=data.get("title"),
            file_url=data.get("file_url"),
            artifact_ref=data.get("artifact_ref"),
            error=data.get("error"),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
            run_id=data.get("run_id"),
            attempts=int(data.get("attempts") or 0),
        )


_DURABLE_FIELDS = {f.name for f in fields(Task)} - {"artifact_bytes"}
_IMMUTABLE_FIELDS = {"task_id", "source_url", "video_id", "created_at"}


class TaskManager:
    """
    Single source of truth for task existence and state.

    Store failures are not retried here; ``StoreUnavailableError``
    propagates to the caller, which decides whether to retry.

    At most ``max_local_payloads`` audio payloads are held, least recently
    used first out; 0 disables the local extension (queue workers, whose
    payloads nobody reads back).
    """

    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: int = 24 * 3600,
        max_local_payloads: int = 32,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.max_local_payloads = max_local_payloads
        self._payloads: OrderedDict[str, bytes] = OrderedDict()

    @staticmethod
    def _key(task_id: str) -> str:
        return f"{TASK_PREFIX}{task_id}"

    async def _write(self, task: Task, *, keep_ttl: bool) -> bool:
        payload = json.dumps(task.to_dict()).encode("utf-8")
        return await self.store.set(
            self._key(task.task_id),
            payload,
            ttl_seconds=None if keep_ttl else self.ttl_seconds,
            keep_ttl=keep_ttl,
        )

    async def _read(self, task_id: str) -> Task | None:
        raw = await self.store.get(self._key(task_id))
        if raw is None:
            return None
        return Task.from_dict(json.loads(raw))

    def _remember(self, task_id: str, data: bytes) -> None:
        if self.max_local_payloads <= 0:
            return
        self._payloads[task_id] = data
        self._payloads.move_to_end(task_id)
        while len(self._payloads) > self.max_local_payloads:
            evicted, _ = self._payloads.popitem(last=False)
            logger.debug("Local payload evicted", task_id=evicted)

    async def create(self, task_id: str, initial_state: Task) -> None:
        """
        Write a new durable record with created_at set to now.

        The caller guarantees task_id is unique; collisions are not detected.
        """
        now = datetime.now()
        task = replace(
            initial_state, task_id=task_id, created_at=now, updated_at=now, artifact_bytes=None
        )
        await self._write(task, keep_ttl=False)

        if initial_state.artifact_bytes is not None:
            self._remember(task_id, initial_state.artifact_bytes)

        logger.debug("Task created", task_id=task_id, status=task.status.value)

    async def get(self, task_id: str) -> Task | None:
        """Return the merged view, or None if the record is absent or expired."""
        task = await self._read(task_id)
        if task is None:
            self._payloads.pop(task_id, None)
            return None
        if task_id in self._payloads:
            self._payloads.move_to_end(task_id)
        task.artifact_bytes = self._payloads.get(task_id)
        return task

    async def update(self, task_id: str, **changes: Any) -> Task | None:
        """
        Merge changes onto the existing record (last writer wins).

        ``artifact_bytes`` is held only in the local extension. Returns the
        merged view, or None when the record no longer exists; in that case
        nothing is written and any supplied payload is discarded.
        """
        unknown = set(changes) - _DURABLE_FIELDS - {"artifact_bytes"}
        if unknown:
            raise ValueError(f"Unknown task fields: {sorted(unknown)}")
        frozen = set(changes) & _IMMUTABLE_FIELDS
        if frozen:
            raise ValueError(f"Immutable task fields: {sorted(frozen)}")

        artifact_bytes = changes.pop("artifact_bytes", None)

        task = await self._read(task_id)
        if task is None:
            self._payloads.pop(task_id, None)
            logger.debug("Update skipped, task missing", task_id=task_id)
            return None

        if "status" in changes:
            changes["status"] = TaskStatus(changes["status"])
        changes["updated_at"] = datetime.now()
        task = replace(task, **changes)
        if not await self._write(task, keep_ttl=True):
            # Expired between the read and the write
            self._payloads.pop(task_id, None)
            logger.debug("Update skipped, task expired", task_id=task_id)
            return None

        if artifact_bytes is not None:
            self._remember(task_id, artifact_bytes)

        task.artifact_bytes = self._payloads.get(task_id)

        logger.debug(
            "Task updated",
            task_id=task_id,
            status=task.status.value,
            progress=task.progress,
        )
        return task

    async def delete(self, task_id: str) -> None:
        """Remove the durable record and the local payload. Idempotent."""
        await self.store.delete(self._key(task_id))
        self._payloads.pop(task_id, None)

    async def exists(self, task_id: str) -> bool:
        """Existence check against the durable store only."""
        return await self.store.exists(self._key(task_id))

    async def prune_payloads(self) -> int:
        """Release local payloads whose durable record has expired. Returns the count."""
        released = 0
        for task_id in list(self._payloads):
            if not await self.exists(task_id):
                self._payloads.pop(task_id, None)
                released += 1
        if released:
            logger.info("Released expired local payloads", released=released)
        return released

    def local_payload_count(self) -> int:
        return len(self._payloads)
