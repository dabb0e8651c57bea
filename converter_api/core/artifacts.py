"""Content store for produced audio, joined to tasks by ``artifact_ref``."""

import uuid

import structlog

from converter_api.core.kv_store import KeyValueStore

logger = structlog.get_logger(__name__)

ARTIFACT_PREFIX = "audio:"


class ArtifactStore:
    """Audio blobs kept apart from the small task records."""

    def __init__(self, store: KeyValueStore, ttl_seconds: int = 24 * 3600):
        self.store = store
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(artifact_ref: str) -> str:
        return f"{ARTIFACT_PREFIX}{artifact_ref}"

    async def save(self, data: bytes, artifact_ref: str | None = None) -> str:
        """Store audio bytes and return their reference."""
        ref = artifact_ref or uuid.uuid4().hex
        await self.store.set(self._key(ref), data, ttl_seconds=self.ttl_seconds)
        logger.debug("Artifact saved", artifact_ref=ref, size_bytes=len(data))
        return ref

    async def load(self, artifact_ref: str) -> bytes | None:
        return await self.store.get(self._key(artifact_ref))

    async def exists(self, artifact_ref: str) -> bool:
        return await self.store.exists(self._key(artifact_ref))

    async def delete(self, artifact_ref: str) -> bool:
        return await self.store.delete(self._key(artifact_ref))
