"""Unit tests for the Result Cache and the artifact store."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from converter_api.core.errors import StoreUnavailableError
from converter_api.core.result_cache import CACHE_PREFIX, CacheEntry, ResultCache


class TestArtifactStore:
    @pytest.mark.asyncio
    async def test_save_load_delete(self, artifacts):
        ref = await artifacts.save(b"mp3")

        assert await artifacts.exists(ref)
        assert await artifacts.load(ref) == b"mp3"
        assert await artifacts.delete(ref) is True
        assert await artifacts.load(ref) is None

    @pytest.mark.asyncio
    async def test_save_uses_given_ref(self, artifacts, store):
        ref = await artifacts.save(b"mp3", artifact_ref="fixed")

        assert ref == "fixed"
        assert await store.get("audio:fixed") == b"mp3"


class TestResultCache:
    """Test lookup, store and sweep semantics."""

    @pytest.mark.asyncio
    async def test_miss_on_empty_cache(self, result_cache):
        assert await result_cache.lookup("abc") is None

    @pytest.mark.asyncio
    async def test_store_then_lookup(self, result_cache, artifacts):
        ref = await artifacts.save(b"mp3")

        await result_cache.store("abc", ref, "Title")
        entry = await result_cache.lookup("abc")

        assert entry is not None
        assert entry.artifact_ref == ref
        assert entry.title == "Title"

    @pytest.mark.asyncio
    async def test_last_write_wins(self, result_cache, artifacts):
        first = await artifacts.save(b"one")
        second = await artifacts.save(b"two")

        await result_cache.store("abc", first, "One")
        await result_cache.store("abc", second, "Two")

        assert (await result_cache.lookup("abc")).artifact_ref == second

    @pytest.mark.asyncio
    async def test_stale_entry_is_evicted(self, result_cache, artifacts, store):
        ref = await artifacts.save(b"mp3")
        stale = CacheEntry("abc", ref, "Old", datetime.now() - timedelta(hours=2))
        await store.set(f"{CACHE_PREFIX}abc", stale.to_json())

        assert await result_cache.lookup("abc") is None
        assert await store.get(f"{CACHE_PREFIX}abc") is None

    @pytest.mark.asyncio
    async def test_entry_without_artifact_is_evicted(self, result_cache, store):
        await result_cache.store("abc", "gone", "Title")

        assert await result_cache.lookup("abc") is None
        assert await store.get(f"{CACHE_PREFIX}abc") is None

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_a_miss(self, result_cache, store):
        await store.set(f"{CACHE_PREFIX}abc", b"not json")

        assert await result_cache.lookup("abc") is None

    @pytest.mark.asyncio
    async def test_store_failures_are_misses(self, artifacts):
        broken = AsyncMock()
        broken.get.side_effect = StoreUnavailableError("down")
        broken.set.side_effect = StoreUnavailableError("down")
        cache = ResultCache(broken, artifacts)

        assert await cache.lookup("abc") is None
        await cache.store("abc", "ref", "Title")

    @pytest.mark.asyncio
    async def test_sweep_removes_stale_and_corrupt(self, result_cache, artifacts, store):
        ref = await artifacts.save(b"mp3")
        await result_cache.store("fresh", ref, "Fresh")
        stale = CacheEntry("old", ref, "Old", datetime.now() - timedelta(hours=2))
        await store.set(f"{CACHE_PREFIX}old", stale.to_json())
        await store.set(f"{CACHE_PREFIX}bad", b"{")

        removed = await result_cache.sweep()

        assert removed == 2
        assert await store.scan(CACHE_PREFIX) == [f"{CACHE_PREFIX}fresh"]
