"""Unit tests for the conversion backends and the backend factory."""

import httpx
import pytest

from converter_api.config import Settings
from converter_api.conversion.backends import (
    BackendFactory,
    LocalPipelineBackend,
    RemoteApiBackend,
)
from converter_api.conversion.backends.base import get_profile
from converter_api.conversion.backends.local_pipeline import (
    parse_download_progress,
    scale_progress,
)
from converter_api.core.errors import (
    ConfigurationError,
    PermanentBackendError,
    TransientBackendError,
)

AUDIO_LINK = "https://cdn.example.com/audio/abc.mp3"


def make_remote(handler, api_key: str = "test-key") -> RemoteApiBackend:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteApiBackend(api_key=api_key, api_host="provider.test", client=client)


def provider(payload=None, status_code: int = 200, audio: bytes = b"ID3audio", seen=None):
    """Build a MockTransport handler answering the link request and the audio fetch."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.url.path == "/dl":
            return httpx.Response(status_code, json=payload if payload is not None else {})
        return httpx.Response(200, content=audio)

    return handler


class TestRemoteApiBackend:
    """Test provider status mapping and HTTP error classification."""

    @pytest.mark.asyncio
    async def test_successful_conversion(self):
        seen = []
        backend = make_remote(
            provider({"status": "ok", "link": AUDIO_LINK, "title": "Song"}, seen=seen)
        )
        reported = []

        async def progress(value):
            reported.append(value)

        result = await backend.attempt_conversion(
            "dQw4w9WgXcQ", profile=get_profile("balanced"), progress=progress
        )

        assert result.audio_bytes == b"ID3audio"
        assert result.title == "Song"
        assert reported == [20, 60, 90]

        link_request = seen[0]
        assert link_request.url.params["id"] == "dQw4w9WgXcQ"
        assert link_request.headers["X-RapidAPI-Key"] == "test-key"
        assert link_request.headers["X-RapidAPI-Host"] == "provider.test"
        assert str(seen[1].url) == AUDIO_LINK

    @pytest.mark.asyncio
    async def test_alternative_link_field_and_default_title(self):
        backend = make_remote(provider({"status": "success", "url": AUDIO_LINK}))

        result = await backend.attempt_conversion("abc", profile=get_profile("balanced"))

        assert result.title == "YouTube Audio"

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        backend = make_remote(provider({"status": "ok", "link": AUDIO_LINK}), api_key="")

        with pytest.raises(ConfigurationError):
            await backend.attempt_conversion("abc", profile=get_profile("balanced"))

    @pytest.mark.asyncio
    async def test_processing_is_transient(self):
        backend = make_remote(provider({"status": "processing"}))

        with pytest.raises(TransientBackendError) as exc_info:
            await backend.attempt_conversion("abc", profile=get_profile("balanced"))
        assert exc_info.value.reason_code == "provider_processing"

    @pytest.mark.asyncio
    async def test_fail_status_is_classified(self):
        backend = make_remote(provider({"status": "fail", "msg": "Video unavailable"}))

        with pytest.raises(PermanentBackendError) as exc_info:
            await backend.attempt_conversion("abc", profile=get_profile("balanced"))
        assert exc_info.value.reason_code == "video_unavailable"

    @pytest.mark.asyncio
    async def test_fail_status_with_network_message_is_transient(self):
        backend = make_remote(provider({"status": "fail", "msg": "Connection reset by peer"}))

        with pytest.raises(TransientBackendError):
            await backend.attempt_conversion("abc", profile=get_profile("balanced"))

    @pytest.mark.asyncio
    async def test_ok_without_link(self):
        backend = make_remote(provider({"status": "ok"}))

        with pytest.raises(TransientBackendError, match="download link"):
            await backend.attempt_conversion("abc", profile=get_profile("balanced"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code, expected",
        [
            (401, ConfigurationError),
            (403, ConfigurationError),
            (404, PermanentBackendError),
            (408, TransientBackendError),
            (429, TransientBackendError),
            (502, TransientBackendError),
        ],
    )
    async def test_provider_http_errors(self, status_code, expected):
        backend = make_remote(provider({"message": "nope"}, status_code=status_code))

        with pytest.raises(expected):
            await backend.attempt_conversion("abc", profile=get_profile("balanced"))

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        backend = make_remote(handler)

        with pytest.raises(TransientBackendError) as exc_info:
            await backend.attempt_conversion("abc", profile=get_profile("balanced"))
        assert exc_info.value.reason_code == "network"

    @pytest.mark.asyncio
    async def test_empty_audio_is_transient(self):
        backend = make_remote(provider({"status": "ok", "link": AUDIO_LINK}, audio=b""))

        with pytest.raises(TransientBackendError, match="empty"):
            await backend.attempt_conversion("abc", profile=get_profile("balanced"))

    @pytest.mark.asyncio
    async def test_health(self):
        configured = make_remote(provider())
        missing = make_remote(provider(), api_key="")

        assert (await configured.health())["status"] == "configured"
        assert (await missing.health())["status"] == "missing_api_key"
        await configured.aclose()
        await missing.aclose()


class TestLocalPipelineHelpers:
    @pytest.mark.parametrize(
        "line, expected",
        [
            ("[download]  42.5% of 3.21MiB at 1.00MiB/s ETA 00:02", 42.5),
            ("[download] 100% of 3.21MiB", 100.0),
            ("[download] Destination: -", None),
            ("[youtube] dQw4w9WgXcQ: Downloading webpage", None),
        ],
    )
    def test_parse_download_progress(self, line, expected):
        assert parse_download_progress(line) == expected

    def test_scale_progress_band(self):
        assert scale_progress(0) == 20
        assert scale_progress(50) == 52
        assert scale_progress(100) == 85
        assert scale_progress(250) == 85


class TestLocalPipelineBackend:
    def test_download_command_follows_profile(self):
        backend = LocalPipelineBackend(ytdlp_path="/opt/yt-dlp")

        cmd = backend.build_download_command(
            "https://www.youtube.com/watch?v=abc", get_profile("conservative")
        )

        assert cmd[0] == "/opt/yt-dlp"
        assert cmd[cmd.index("--concurrent-fragments") + 1] == "2"
        assert cmd[cmd.index("--http-chunk-size") + 1] == "1M"
        assert cmd[cmd.index("--output") + 1] == "-"
        assert cmd[-1] == "https://www.youtube.com/watch?v=abc"

    def test_encode_command_streams_mp3(self):
        backend = LocalPipelineBackend(audio_bitrate="192k")

        cmd = backend.build_encode_command(get_profile("aggressive"))

        assert cmd[cmd.index("-i") + 1] == "pipe:0"
        assert cmd[cmd.index("-b:a") + 1] == "192k"
        assert cmd[cmd.index("-compression_level") + 1] == "9"
        assert cmd[-3:] == ["-f", "mp3", "pipe:1"]

    def test_encode_command_follows_profile_preset(self):
        backend = LocalPipelineBackend()

        commands = {
            name: backend.build_encode_command(get_profile(name))
            for name in ("aggressive", "balanced", "conservative", "compatibility")
        }

        assert {
            name: cmd[cmd.index("-compression_level") + 1] for name, cmd in commands.items()
        } == {"aggressive": "9", "balanced": "7", "conservative": "5", "compatibility": "5"}
        assert all(cmd.count("-compression_level") == 1 for cmd in commands.values())

    @pytest.mark.asyncio
    async def test_missing_tool_is_configuration_error(self):
        backend = LocalPipelineBackend(ytdlp_path="/nonexistent/yt-dlp")

        with pytest.raises(ConfigurationError, match="Required tool not found"):
            await backend.attempt_conversion("dQw4w9WgXcQ", profile=get_profile("balanced"))

    @pytest.mark.asyncio
    async def test_health_reports_missing_tools(self):
        backend = LocalPipelineBackend(
            ytdlp_path="/nonexistent/yt-dlp", ffmpeg_path="/nonexistent/ffmpeg"
        )

        health = await backend.health()

        assert health["status"] == "unavailable"
        assert health["tools"] == {"yt-dlp": None, "ffmpeg": None}


class TestBackendFactory:
    def test_auto_prefers_remote_when_key_present(self):
        backend = BackendFactory.create_backend(
            Settings(_env_file=None, conversion_backend="auto", rapidapi_key="k")
        )

        assert isinstance(backend, RemoteApiBackend)

    def test_auto_falls_back_to_local(self):
        backend = BackendFactory.create_backend(
            Settings(_env_file=None, conversion_backend="auto", rapidapi_key="")
        )

        assert isinstance(backend, LocalPipelineBackend)

    def test_explicit_choice(self):
        backend = BackendFactory.create_backend(
            Settings(
                _env_file=None,
                conversion_backend="local_pipeline",
                rapidapi_key="k",
                ffmpeg_path="/usr/local/bin/ffmpeg",
            )
        )

        assert isinstance(backend, LocalPipelineBackend)
        assert backend.ffmpeg_path == "/usr/local/bin/ffmpeg"
