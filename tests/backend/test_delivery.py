"""Unit tests for artifact delivery, byte ranges and filenames."""

import pytest

from converter_api.core.delivery import ArtifactDelivery, ByteRange, parse_range, safe_filename
from converter_api.core.errors import ArtifactNotFoundError, RangeNotSatisfiableError
from converter_api.core.task_manager import Task, TaskStatus


class TestParseRange:
    """Test Range header parsing against a 1000-byte artifact."""

    @pytest.mark.parametrize("header", [None, "", "items=0-10", "bytes=", "bytes=-"])
    def test_absent_or_foreign_ranges_serve_everything(self, header):
        assert parse_range(header, 1000) is None

    def test_explicit_range(self):
        assert parse_range("bytes=0-499", 1000) == ByteRange(0, 499)

    def test_open_ended_range(self):
        assert parse_range("bytes=500-", 1000) == ByteRange(500, 999)

    def test_suffix_range(self):
        assert parse_range("bytes=-100", 1000) == ByteRange(900, 999)

    def test_suffix_longer_than_artifact(self):
        assert parse_range("bytes=-5000", 1000) == ByteRange(0, 999)

    def test_end_is_clamped(self):
        byte_range = parse_range("bytes=900-5000", 1000)

        assert byte_range == ByteRange(900, 999)
        assert byte_range.length == 100
        assert byte_range.content_range(1000) == "bytes 900-999/1000"

    @pytest.mark.parametrize("header", ["bytes=1000-", "bytes=2000-3000", "bytes=10-5", "bytes=-0"])
    def test_unsatisfiable(self, header):
        with pytest.raises(RangeNotSatisfiableError) as exc_info:
            parse_range(header, 1000)
        assert exc_info.value.size == 1000


class TestSafeFilename:
    def test_strips_punctuation_and_spaces(self):
        assert safe_filename("Rick Astley - Never Gonna Give You Up!") == (
            "Rick_Astley_-_Never_Gonna_Give_You_Up.mp3"
        )

    def test_truncates_to_fifty_characters(self):
        name = safe_filename("a" * 80)
        assert name == "a" * 50 + ".mp3"

    @pytest.mark.parametrize("title", [None, "", "!!!", "日本語"])
    def test_falls_back_to_default(self, title):
        assert safe_filename(title) == "youtube_audio.mp3"


class TestArtifactDelivery:
    @pytest.fixture
    def delivery(self, task_manager, artifacts):
        return ArtifactDelivery(task_manager, artifacts)

    async def _create(self, task_manager, status, **fields):
        task = Task(
            task_id="t1",
            status=status,
            source_url="https://www.youtube.com/watch?v=dQw4w9WgXcQ",
            **fields,
        )
        await task_manager.create("t1", task)

    @pytest.mark.asyncio
    async def test_unknown_task(self, delivery):
        with pytest.raises(ArtifactNotFoundError, match="not found"):
            await delivery.fetch("missing")

    @pytest.mark.asyncio
    async def test_unfinished_task(self, delivery, task_manager):
        await self._create(task_manager, TaskStatus.PROCESSING)

        with pytest.raises(ArtifactNotFoundError, match="processing"):
            await delivery.fetch("t1")

    @pytest.mark.asyncio
    async def test_prefers_local_payload(self, delivery, task_manager):
        await self._create(task_manager, TaskStatus.FINISHED, title="Song", artifact_ref="nowhere")
        await task_manager.update("t1", artifact_bytes=b"local")

        artifact = await delivery.fetch("t1")

        assert artifact.data == b"local"
        assert artifact.title == "Song"

    @pytest.mark.asyncio
    async def test_falls_back_to_artifact_store(self, delivery, task_manager, artifacts):
        ref = await artifacts.save(b"durable")
        await self._create(task_manager, TaskStatus.FINISHED, artifact_ref=ref)

        artifact = await delivery.fetch("t1")

        assert artifact.data == b"durable"
        assert artifact.title == "YouTube Audio"

    @pytest.mark.asyncio
    async def test_evicted_audio(self, delivery, task_manager):
        await self._create(task_manager, TaskStatus.FINISHED, artifact_ref="evicted")

        with pytest.raises(ArtifactNotFoundError, match="expired"):
            await delivery.fetch("t1")

    @pytest.mark.asyncio
    async def test_slice(self, delivery, task_manager, artifacts):
        ref = await artifacts.save(b"0123456789")
        await self._create(task_manager, TaskStatus.FINISHED, artifact_ref=ref)
        artifact = await delivery.fetch("t1")

        assert ArtifactDelivery.slice(artifact, ByteRange(2, 4)) == b"234"
        assert ArtifactDelivery.slice(artifact, None) == b"0123456789"
