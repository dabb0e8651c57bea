"""Local yt-dlp | ffmpeg subprocess pipeline backend."""

import asyncio
from collections import deque
import os
import re
from typing import Any

import structlog

from converter_api.conversion.backends.base import (
    ConversionBackend,
    ConversionResult,
    PerformanceProfile,
    ProgressCallback,
)
from converter_api.conversion.failure_classifier import error_for
from converter_api.core.errors import ConfigurationError, TransientBackendError
from converter_api.core.validation import normalize_url

logger = structlog.get_logger(__name__)

DEFAULT_TITLE = "YouTube Audio"
DOWNLOAD_PROGRESS_START = 20
DOWNLOAD_PROGRESS_END = 85

# libmp3lame algorithm quality: 0 is slowest and best, 9 is fastest
PRESET_COMPRESSION_LEVELS: dict[str, int] = {"ultrafast": 9, "fast": 7, "medium": 5}

_PROGRESS_RE = re.compile(r"\[download\]\s+(\d+(?:\.\d+)?)%")
_FFMPEG_VERSION_RE = re.compile(r"ffmpeg version (\S+)")


def parse_download_progress(line: str) -> float | None:
    """Extract the percentage from a yt-dlp ``[download]  42.0% of ...`` line."""
    match = _PROGRESS_RE.search(line)
    if match is None:
        return None
    return min(float(match.group(1)), 100.0)


def scale_progress(percent: float) -> int:
    """Map download percentage onto the 20-85 band of task progress."""
    span = DOWNLOAD_PROGRESS_END - DOWNLOAD_PROGRESS_START
    return DOWNLOAD_PROGRESS_START + int(span * max(0.0, min(percent, 100.0)) / 100)


class LocalPipelineBackend(ConversionBackend):
    """
    Stream the best audio track out of yt-dlp straight into ffmpeg.

    The two processes are joined by an OS pipe so the source audio never
    touches disk; ffmpeg writes MP3 to stdout which is collected in memory.
    Both processes are killed if the attempt is cancelled.
    """

    name = "local_pipeline"

    def __init__(
        self,
        ytdlp_path: str = "yt-dlp",
        ffmpeg_path: str = "ffmpeg",
        audio_bitrate: str = "128k",
    ):
        self.ytdlp_path = ytdlp_path
        self.ffmpeg_path = ffmpeg_path
        self.audio_bitrate = audio_bitrate

    def build_download_command(self, url: str, profile: PerformanceProfile) -> list[str]:
        return [
            self.ytdlp_path,
            "--no-playlist",
            "--format",
            "bestaudio/best",
            "--newline",
            "--progress",
            "--concurrent-fragments",
            str(profile.concurrent_fragments),
            "--http-chunk-size",
            profile.chunk_size,
            "--buffer-size",
            profile.buffer_size,
            "--retries",
            str(profile.tool_retries),
            "--output",
            "-",
            url,
        ]

    def build_encode_command(self, profile: PerformanceProfile) -> list[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel",
            "error",
            "-i",
            "pipe:0",
            "-vn",
            "-acodec",
            "libmp3lame",
            "-b:a",
            self.audio_bitrate,
            "-threads",
            "0",
            "-compression_level",
            str(PRESET_COMPRESSION_LEVELS.get(profile.ffmpeg_preset, 5)),
            *profile.ffmpeg_extra_args,
            "-f",
            "mp3",
            "pipe:1",
        ]

    async def attempt_conversion(
        self,
        video_id: str,
        *,
        profile: PerformanceProfile,
        progress: ProgressCallback | None = None,
    ) -> ConversionResult:
        url = normalize_url(video_id)

        title = await self._resolve_title(url)
        if progress:
            await progress(DOWNLOAD_PROGRESS_START)

        audio = await self._run_pipeline(url, profile, progress)
        if progress:
            await progress(90)

        logger.info(
            "Local conversion completed",
            video_id=video_id,
            profile=profile.name,
            preset=profile.ffmpeg_preset,
            size_bytes=len(audio),
        )
        return ConversionResult(audio_bytes=audio, title=title)

    async def _spawn(self, *cmd: str, **kwargs: Any) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(*cmd, **kwargs)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Required tool not found: {cmd[0]}") from e

    async def _resolve_title(self, url: str) -> str:
        proc = await self._spawn(
            self.ytdlp_path,
            "--no-playlist",
            "--skip-download",
            "--print",
            "%(title)s",
            url,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await proc.communicate()
        finally:
            await _terminate(proc)

        if proc.returncode != 0:
            message = stderr.decode(errors="replace").strip() or "yt-dlp metadata lookup failed"
            raise error_for(message)

        return stdout.decode(errors="replace").strip() or DEFAULT_TITLE

    async def _run_pipeline(
        self,
        url: str,
        profile: PerformanceProfile,
        progress: ProgressCallback | None,
    ) -> bytes:
        read_fd, write_fd = os.pipe()
        try:
            downloader = await self._spawn(
                *self.build_download_command(url, profile),
                stdout=write_fd,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                encoder = await self._spawn(
                    *self.build_encode_command(profile),
                    stdin=read_fd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except ConfigurationError:
                await _terminate(downloader)
                raise
        finally:
            # Children hold their own copies of the pipe ends
            os.close(read_fd)
            os.close(write_fd)

        try:
            download_log, (audio, encode_err) = await asyncio.gather(
                self._follow_progress(downloader.stderr, progress),
                encoder.communicate(),
            )
            await downloader.wait()
        finally:
            await _terminate(downloader)
            await _terminate(encoder)

        if downloader.returncode != 0:
            raise error_for(download_log or f"yt-dlp exited with code {downloader.returncode}")
        if encoder.returncode != 0:
            message = encode_err.decode(errors="replace").strip()
            raise error_for(message or f"ffmpeg exited with code {encoder.returncode}")
        if not audio:
            raise TransientBackendError("Pipeline produced no audio", reason_code="empty_audio")
        return audio

    @staticmethod
    async def _follow_progress(
        stream: asyncio.StreamReader | None,
        progress: ProgressCallback | None,
    ) -> str:
        """Relay download progress and keep the tail of the log for diagnostics."""
        tail: deque[str] = deque(maxlen=20)
        if stream is None:
            return ""

        last_reported = DOWNLOAD_PROGRESS_START
        async for raw in stream:
            line = raw.decode(errors="replace").strip()
            if not line:
                continue
            percent = parse_download_progress(line)
            if percent is None:
                tail.append(line)
                continue
            scaled = scale_progress(percent)
            if progress and scaled > last_reported:
                last_reported = scaled
                await progress(scaled)

        return "\n".join(tail)

    async def _tool_version(self, *cmd: str) -> str | None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=10)
        except (OSError, TimeoutError) as e:
            logger.warning("Tool check failed", tool=cmd[0], error=str(e))
            return None
        if proc.returncode != 0:
            return None
        return stdout.decode(errors="replace").strip()

    async def health(self) -> dict[str, Any]:
        ytdlp_output = await self._tool_version(self.ytdlp_path, "--version")
        ffmpeg_output = await self._tool_version(self.ffmpeg_path, "-version")

        ffmpeg_version = None
        if ffmpeg_output:
            match = _FFMPEG_VERSION_RE.search(ffmpeg_output)
            ffmpeg_version = match.group(1) if match else "unknown"

        available = ytdlp_output is not None and ffmpeg_output is not None
        return {
            "status": "healthy" if available else "unavailable",
            "backend": self.name,
            "tools": {
                "yt-dlp": ytdlp_output.splitlines()[0] if ytdlp_output else None,
                "ffmpeg": ffmpeg_version,
            },
        }


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        pass
    await proc.wait()
