"""Conversion backend contract and performance profiles."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

# Progress callback: receives a 0-100 completion percentage for the current attempt
ProgressCallback = Callable[[int], Awaitable[None]]


@dataclass(frozen=True)
class PerformanceProfile:
    """
    Tuning knobs for a conversion attempt.

    Attributes:
        name: Profile name
        concurrent_fragments: Fragments yt-dlp downloads in parallel
        chunk_size: HTTP chunk size passed to yt-dlp
        buffer_size: Download buffer size passed to yt-dlp
        tool_retries: Retries performed inside yt-dlp itself
        ffmpeg_preset: Encoder speed preset, mapped to the LAME compression level
        ffmpeg_extra_args: Additional ffmpeg output arguments
        http_timeout_seconds: Timeout for a single provider HTTP request
    """

    name: str
    concurrent_fragments: int
    chunk_size: str
    buffer_size: str
    tool_retries: int
    ffmpeg_preset: str
    ffmpeg_extra_args: tuple[str, ...] = field(default_factory=tuple)
    http_timeout_seconds: float = 60.0


PROFILES: dict[str, PerformanceProfile] = {
    "aggressive": PerformanceProfile(
        name="aggressive",
        concurrent_fragments=8,
        chunk_size="4M",
        buffer_size="32K",
        tool_retries=5,
        ffmpeg_preset="ultrafast",
        ffmpeg_extra_args=("-map_metadata", "-1"),
        http_timeout_seconds=30.0,
    ),
    "balanced": PerformanceProfile(
        name="balanced",
        concurrent_fragments=4,
        chunk_size="2M",
        buffer_size="16K",
        tool_retries=3,
        ffmpeg_preset="fast",
        ffmpeg_extra_args=("-map_metadata", "-1"),
        http_timeout_seconds=60.0,
    ),
    "conservative": PerformanceProfile(
        name="conservative",
        concurrent_fragments=2,
        chunk_size="1M",
        buffer_size="8K",
        tool_retries=3,
        ffmpeg_preset="medium",
        http_timeout_seconds=90.0,
    ),
    "compatibility": PerformanceProfile(
        name="compatibility",
        concurrent_fragments=1,
        chunk_size="512K",
        buffer_size="8K",
        tool_retries=2,
        ffmpeg_preset="medium",
        http_timeout_seconds=120.0,
    ),
}

# Ordered from fastest to most conservative
PROFILE_LADDER: tuple[str, ...] = ("aggressive", "balanced", "conservative", "compatibility")


def get_profile(name: str) -> PerformanceProfile:
    try:
        return PROFILES[name]
    except KeyError as e:
        raise ValueError(f"Unknown performance profile: {name}") from e


def degrade(profile: PerformanceProfile, steps: int = 1) -> PerformanceProfile:
    """Move ``steps`` rungs down the ladder toward ``compatibility`` (saturating)."""
    index = PROFILE_LADDER.index(profile.name)
    target = min(index + max(steps, 0), len(PROFILE_LADDER) - 1)
    return PROFILES[PROFILE_LADDER[target]]


@dataclass
class ConversionResult:
    audio_bytes: bytes
    title: str | None = None

    @property
    def size_bytes(self) -> int:
        return len(self.audio_bytes)


class ConversionBackend(ABC):
    """
    One way of turning a video id into MP3 bytes.

    Implementations raise ``TransientBackendError`` for failures worth
    another attempt, ``PermanentBackendError`` for failures that will
    never succeed and ``ConfigurationError`` for missing credentials or
    tools.
    """

    name: str = "backend"

    @abstractmethod
    async def attempt_conversion(
        self,
        video_id: str,
        *,
        profile: PerformanceProfile,
        progress: ProgressCallback | None = None,
    ) -> ConversionResult:
        """Run a single conversion attempt."""

    @abstractmethod
    async def health(self) -> dict[str, Any]:
        """Report backend readiness. Must include a ``status`` key."""

    async def aclose(self) -> None:
        pass
