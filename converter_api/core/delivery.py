"""Read side: serve the audio of finished tasks, whole or by byte range."""

from dataclasses import dataclass
import re

import structlog

from converter_api.core.artifacts import ArtifactStore
from converter_api.core.errors import ArtifactNotFoundError, RangeNotSatisfiableError
from converter_api.core.task_manager import TaskManager, TaskStatus

logger = structlog.get_logger(__name__)

DEFAULT_FILENAME = "youtube_audio"
_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*$")


@dataclass
class Artifact:
    task_id: str
    data: bytes
    title: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ByteRange:
    """Inclusive byte range within an artifact."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, size: int) -> str:
        return f"bytes {self.start}-{self.end}/{size}"


def parse_range(header: str | None, size: int) -> ByteRange | None:
    """
    Parse a single-range ``Range`` header.

    Supports ``bytes=start-end``, ``bytes=start-`` and ``bytes=-suffix``;
    ``end`` is clamped to the last byte. Returns None when no range was
    requested or the header is not a byte range we understand (the caller
    then serves the full artifact).

    Raises:
        RangeNotSatisfiableError: If the range lies outside the artifact
    """
    if not header:
        return None
    match = _RANGE_RE.match(header)
    if match is None:
        return None

    start_text, end_text = match.groups()
    if not start_text and not end_text:
        return None

    if not start_text:
        suffix = int(end_text)
        if suffix == 0 or size == 0:
            raise RangeNotSatisfiableError(header, size)
        return ByteRange(start=max(size - suffix, 0), end=size - 1)

    start = int(start_text)
    end = int(end_text) if end_text else size - 1
    if start >= size or end < start:
        raise RangeNotSatisfiableError(header, size)
    return ByteRange(start=start, end=min(end, size - 1))


def safe_filename(title: str | None, extension: str = "mp3") -> str:
    """Build a conservative ASCII filename from a title."""
    cleaned = re.sub(r"[^\w\s-]", "", title or "", flags=re.ASCII)
    cleaned = re.sub(r"\s+", "_", cleaned.strip())[:50].strip("_")
    return f"{cleaned or DEFAULT_FILENAME}.{extension}"


class ArtifactDelivery:
    """Resolve the audio of a finished task from local memory or the artifact store."""

    def __init__(self, task_manager: TaskManager, artifacts: ArtifactStore):
        self.task_manager = task_manager
        self.artifacts = artifacts

    async def fetch(self, task_id: str) -> Artifact:
        """
        Return the audio of a finished task.

        Raises:
            ArtifactNotFoundError: If the task is absent, not finished, or its
                audio has been evicted
        """
        task = await self.task_manager.get(task_id)
        if task is None:
            raise ArtifactNotFoundError(f"Task {task_id} not found or expired")
        if task.status != TaskStatus.FINISHED:
            raise ArtifactNotFoundError(
                f"Audio not ready (task status: {task.status.value})"
            )

        data = task.artifact_bytes
        if data is None and task.artifact_ref:
            data = await self.artifacts.load(task.artifact_ref)

        if not data:
            logger.warning(
                "Artifact unavailable for finished task",
                task_id=task_id,
                artifact_ref=task.artifact_ref,
            )
            raise ArtifactNotFoundError("File not found or expired")

        return Artifact(task_id=task_id, data=data, title=task.title or "YouTube Audio")

    @staticmethod
    def slice(artifact: Artifact, byte_range: ByteRange | None) -> bytes:
        if byte_range is None:
            return artifact.data
        return artifact.data[byte_range.start : byte_range.end + 1]
