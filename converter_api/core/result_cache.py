"""
Best-effort memoization of conversions by normalized-URL hash.

Entries map ``cache:{hash}`` to the most recent artifact produced for that
URL. The cache is strictly an optimization: every store failure is logged
and treated as a miss or a no-op.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import json

import structlog

from converter_api.core.artifacts import ArtifactStore
from converter_api.core.errors import StoreUnavailableError
from converter_api.core.kv_store import KeyValueStore

logger = structlog.get_logger(__name__)

CACHE_PREFIX = "cache:"


@dataclass
class CacheEntry:
    url_hash: str
    artifact_ref: str
    title: str | None
    created_at: datetime

    def to_json(self) -> bytes:
        return json.dumps(
            {
                "url_hash": self.url_hash,
                "artifact_ref": self.artifact_ref,
                "title": self.title,
                "created_at": self.created_at.isoformat(),
            }
        ).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes) -> "CacheEntry":
        data = json.loads(raw)
        return cls(
            url_hash=data["url_hash"],
            artifact_ref=data["artifact_ref"],
            title=data.get("title"),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


class ResultCache:
    """Maps a normalized-URL hash to a previously produced artifact."""

    def __init__(
        self,
        store: KeyValueStore,
        artifacts: ArtifactStore,
        validity_seconds: int = 24 * 3600,
    ):
        self._kv = store
        self.artifacts = artifacts
        self.validity = timedelta(seconds=validity_seconds)

    @staticmethod
    def _key(url_hash: str) -> str:
        return f"{CACHE_PREFIX}{url_hash}"

    def _is_fresh(self, entry: CacheEntry, now: datetime) -> bool:
        return now - entry.created_at < self.validity

    async def lookup(self, url_hash: str) -> CacheEntry | None:
        """Return a fresh entry whose artifact still exists, or None."""
        try:
            raw = await self._kv.get(self._key(url_hash))
            if raw is None:
                return None

            entry = CacheEntry.from_json(raw)
            if not self._is_fresh(entry, datetime.now()):
                logger.debug("Cache entry expired, evicting", url_hash=url_hash)
                await self._kv.delete(self._key(url_hash))
                return None

            if not await self.artifacts.exists(entry.artifact_ref):
                logger.info(
                    "Cached artifact missing, evicting entry",
                    url_hash=url_hash,
                    artifact_ref=entry.artifact_ref,
                )
                await self._kv.delete(self._key(url_hash))
                return None

            return entry
        except (StoreUnavailableError, ValueError, KeyError) as e:
            logger.warning("Cache lookup failed, treating as miss", url_hash=url_hash, error=str(e))
            return None

    async def store(self, url_hash: str, artifact_ref: str, title: str | None) -> None:
        """Record the artifact for a URL, replacing any previous entry."""
        entry = CacheEntry(
            url_hash=url_hash,
            artifact_ref=artifact_ref,
            title=title,
            created_at=datetime.now(),
        )
        try:
            await self._kv.set(
                self._key(url_hash),
                entry.to_json(),
                ttl_seconds=int(self.validity.total_seconds()),
            )
        except StoreUnavailableError as e:
            logger.warning("Cache store failed", url_hash=url_hash, error=str(e))

    async def sweep(self) -> int:
        """Remove entries older than the validity window. Returns the count removed."""
        removed = 0
        now = datetime.now()
        try:
            for key in await self._kv.scan(CACHE_PREFIX):
                raw = await self._kv.get(key)
                if raw is None:
                    continue
                try:
                    entry = CacheEntry.from_json(raw)
                except (ValueError, KeyError):
                    entry = None
                if entry is None or not self._is_fresh(entry, now):
                    await self._kv.delete(key)
                    removed += 1
        except StoreUnavailableError as e:
            logger.warning("Cache sweep failed", error=str(e), removed=removed)
            return removed

        if removed:
            logger.info("Result cache sweep completed", removed=removed)
        return removed
