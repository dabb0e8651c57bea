"""
Key-value store abstraction backing task records, cache entries, artifacts
and the durable work queue.

Two implementations are provided:
- InMemoryKeyValueStore: process-local, TTL-aware, suitable for a single
  instance and for tests
- RedisKeyValueStore: shared across instances and worker processes
"""

from abc import ABC, abstractmethod
import asyncio
from collections import deque
from datetime import datetime, timedelta
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError
import structlog

from converter_api.core.errors import StoreUnavailableError

logger = structlog.get_logger(__name__)


class KeyValueStore(ABC):
    """Contract for the durable store. All values are bytes."""

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the value, or None if absent or expired."""

    @abstractmethod
    async def set(
        self,
        key: str,
        value: bytes,
        ttl_seconds: int | None = None,
        keep_ttl: bool = False,
    ) -> bool:
        """
        Store a value. Returns True if it was written.

        keep_ttl updates an existing live key in place, preserving its
        remaining TTL. A missing or expired key is left absent and False is
        returned, so an expired record is never recreated.
        """

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def scan(self, prefix: str) -> list[str]:
        """List live keys starting with prefix."""

    @abstractmethod
    async def push(self, queue: str, value: bytes) -> None:
        """Append a message to a FIFO queue."""

    @abstractmethod
    async def pop(self, queue: str, timeout_seconds: float) -> bytes | None:
        """Block up to timeout_seconds for the oldest message."""

    @abstractmethod
    async def ping(self) -> bool:
        pass

    async def cleanup(self) -> dict[str, int]:
        """Remove expired entries. Stores with native expiry have nothing to do."""
        return {"expired_keys": 0}

    async def close(self) -> None:
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """
    Process-local store with TTL and opportunistic cleanup.

    Suitable when a single instance serves every request. State does not
    survive a restart and is not visible to other processes.

    Example:
        >>> store = InMemoryKeyValueStore(cleanup_interval_minutes=10)
        >>> await store.set("task:abc", b"{}", ttl_seconds=3600)
        >>> await store.get("task:abc")
        b'{}'
    """

    def __init__(self, cleanup_interval_minutes: int = 10):
        self._data: dict[str, bytes] = {}
        self._expires: dict[str, datetime] = {}
        self._queues: dict[str, deque[bytes]] = {}
        self._lock = asyncio.Lock()
        self._queue_ready: asyncio.Condition | None = None
        self.cleanup_interval = timedelta(minutes=cleanup_interval_minutes)
        self._last_cleanup = datetime.now()

        logger.info(
            "InMemoryKeyValueStore initialized",
            cleanup_interval_minutes=cleanup_interval_minutes,
        )

    def _is_expired(self, key: str, now: datetime) -> bool:
        expires_at = self._expires.get(key)
        return expires_at is not None and expires_at <= now

    def _evict(self, key: str) -> None:
        self._data.pop(key, None)
        self._expires.pop(key, None)

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            if key not in self._data:
                return None
            if self._is_expired(key, datetime.now()):
                logger.debug("Key expired, removing from store", key=key)
                self._evict(key)
                return None
            return self._data[key]

    async def set(
        self,
        key: str,
        value: bytes,
        ttl_seconds: int | None = None,
        keep_ttl: bool = False,
    ) -> bool:
        async with self._lock:
            now = datetime.now()
            if self._is_expired(key, now):
                self._evict(key)

            if keep_ttl:
                if key not in self._data:
                    return False
            elif ttl_seconds is not None:
                self._expires[key] = now + timedelta(seconds=ttl_seconds)
            else:
                self._expires.pop(key, None)

            self._data[key] = value
            await self._cleanup_if_needed()
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            existed = key in self._data and not self._is_expired(key, datetime.now())
            self._evict(key)
            return existed

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def scan(self, prefix: str) -> list[str]:
        async with self._lock:
            now = datetime.now()
            return [
                key
                for key in self._data
                if key.startswith(prefix) and not self._is_expired(key, now)
            ]

    def _condition(self) -> asyncio.Condition:
        # Created lazily so the store can be built outside a running loop
        if self._queue_ready is None:
            self._queue_ready = asyncio.Condition()
        return self._queue_ready

    async def push(self, queue: str, value: bytes) -> None:
        condition = self._condition()
        async with condition:
            self._queues.setdefault(queue, deque()).append(value)
            condition.notify()

    async def pop(self, queue: str, timeout_seconds: float) -> bytes | None:
        condition = self._condition()
        async with condition:
            try:
                await asyncio.wait_for(
                    condition.wait_for(lambda: bool(self._queues.get(queue))),
                    timeout=timeout_seconds,
                )
            except TimeoutError:
                return None
            return self._queues[queue].popleft()

    async def ping(self) -> bool:
        return True

    async def cleanup(self) -> dict[str, int]:
        """Force cleanup of expired entries."""
        async with self._lock:
            return self._cleanup_expired()

    async def health_check(self) -> dict[str, Any]:
        async with self._lock:
            self._cleanup_expired()
            return {
                "store": "healthy",
                "backend": "memory",
                "total_keys": len(self._data),
                "queued_messages": sum(len(q) for q in self._queues.values()),
                "last_cleanup": self._last_cleanup.isoformat(),
            }

    async def _cleanup_if_needed(self) -> None:
        if datetime.now() - self._last_cleanup > self.cleanup_interval:
            self._cleanup_expired()

    def _cleanup_expired(self) -> dict[str, int]:
        now = datetime.now()
        expired = [key for key in self._data if self._is_expired(key, now)]
        for key in expired:
            self._evict(key)

        self._last_cleanup = now

        if expired:
            logger.info(
                "Store cleanup completed",
                expired_keys=len(expired),
                remaining_keys=len(self._data),
            )

        return {"expired_keys": len(expired), "remaining_keys": len(self._data)}


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store shared by every API instance and worker."""

    def __init__(self, url: str, client: redis.Redis | None = None):
        self.url = url
        self._client = client or redis.Redis.from_url(url, decode_responses=False)
        logger.info("Redis store initialized", url=_redact(url))

    async def get(self, key: str) -> bytes | None:
        try:
            return await self._client.get(key)
        except RedisError as e:
            raise StoreUnavailableError(f"Redis GET failed: {e}") from e

    async def set(
        self,
        key: str,
        value: bytes,
        ttl_seconds: int | None = None,
        keep_ttl: bool = False,
    ) -> bool:
        try:
            if keep_ttl:
                written = await self._client.set(key, value, keepttl=True, xx=True)
            else:
                written = await self._client.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            raise StoreUnavailableError(f"Redis SET failed: {e}") from e
        return bool(written)

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._client.delete(key))
        except RedisError as e:
            raise StoreUnavailableError(f"Redis DEL failed: {e}") from e

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._client.exists(key))
        except RedisError as e:
            raise StoreUnavailableError(f"Redis EXISTS failed: {e}") from e

    async def scan(self, prefix: str) -> list[str]:
        try:
            keys = [key async for key in self._client.scan_iter(match=f"{prefix}*")]
        except RedisError as e:
            raise StoreUnavailableError(f"Redis SCAN failed: {e}") from e
        return [key.decode() if isinstance(key, bytes) else key for key in keys]

    async def push(self, queue: str, value: bytes) -> None:
        try:
            await self._client.rpush(queue, value)
        except RedisError as e:
            raise StoreUnavailableError(f"Redis RPUSH failed: {e}") from e

    async def pop(self, queue: str, timeout_seconds: float) -> bytes | None:
        try:
            item = await self._client.blpop([queue], timeout=timeout_seconds)
        except RedisError as e:
            raise StoreUnavailableError(f"Redis BLPOP failed: {e}") from e
        if item is None:
            return None
        _, value = item
        return value

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._client.aclose()


def _redact(url: str) -> str:
    """Hide credentials in a Redis URL for logging."""
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"


def create_store(redis_url: str | None, cleanup_interval_minutes: int = 10) -> KeyValueStore:
    """Create the store selected by configuration."""
    if redis_url:
        return RedisKeyValueStore(redis_url)
    logger.info("REDIS_URL not configured, using process-local store")
    return InMemoryKeyValueStore(cleanup_interval_minutes=cleanup_interval_minutes)


# Global store instance (initialized once at startup)
_store: KeyValueStore | None = None


def get_store() -> KeyValueStore:
    """
    Get the global store instance.

    Raises:
        RuntimeError: If the store is not initialized
    """
    if _store is None:
        raise RuntimeError("Store not initialized. Call initialize_store() first.")
    return _store


def initialize_store(
    redis_url: str | None = None, cleanup_interval_minutes: int = 10
) -> KeyValueStore:
    """Initialize the global store."""
    global _store
    _store = create_store(redis_url, cleanup_interval_minutes)
    logger.info("Global store initialized", backend=type(_store).__name__)
    return _store


def reset_store() -> None:
    """Reset the global store (for testing)."""
    global _store
    _store = None
