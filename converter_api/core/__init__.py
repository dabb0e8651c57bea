"""Core domain: task records, store, cache, artifacts and delivery."""

from converter_api.core.artifacts import ArtifactStore
from converter_api.core.delivery import Artifact, ArtifactDelivery, ByteRange, parse_range, safe_filename
from converter_api.core.kv_store import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    create_store,
    get_store,
    initialize_store,
    reset_store,
)
from converter_api.core.result_cache import CacheEntry, ResultCache
from converter_api.core.task_manager import Task, TaskManager, TaskStatus

__all__ = [
    "Artifact",
    "ArtifactDelivery",
    "ArtifactStore",
    "ByteRange",
    "CacheEntry",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "RedisKeyValueStore",
    "ResultCache",
    "Task",
    "TaskManager",
    "TaskStatus",
    "create_store",
    "get_store",
    "initialize_store",
    "parse_range",
    "reset_store",
    "safe_filename",
]
