"""
Backend factory.

Exactly one backend is selected per process, once at startup.
"""

import structlog

from converter_api.config import Settings
from converter_api.conversion.backends.base import ConversionBackend
from converter_api.conversion.backends.local_pipeline import LocalPipelineBackend
from converter_api.conversion.backends.remote_api import RemoteApiBackend

logger = structlog.get_logger(__name__)


class BackendFactory:
    """Factory for creating the configured conversion backend."""

    @staticmethod
    def create_backend(settings: Settings) -> ConversionBackend:
        """
        Create the backend named by ``conversion_backend``.

        ``auto`` picks the remote provider when an API key is configured
        and the local pipeline otherwise.
        """
        choice = settings.conversion_backend
        if choice == "auto":
            choice = "remote_api" if settings.rapidapi_key else "local_pipeline"

        if choice == "remote_api":
            return BackendFactory._create_remote_backend(settings)
        return BackendFactory._create_local_backend(settings)

    @staticmethod
    def _create_remote_backend(settings: Settings) -> RemoteApiBackend:
        if not settings.rapidapi_key:
            logger.warning("RAPIDAPI_KEY not configured - remote conversions will fail")
        logger.info(
            "Creating remote API backend",
            provider_host=settings.rapidapi_host,
            rate_limit_per_minute=settings.provider_rate_limit_per_minute,
        )
        return RemoteApiBackend(
            api_key=settings.rapidapi_key,
            api_host=settings.rapidapi_host,
            rate_limit_per_minute=settings.provider_rate_limit_per_minute,
        )

    @staticmethod
    def _create_local_backend(settings: Settings) -> LocalPipelineBackend:
        logger.info(
            "Creating local pipeline backend",
            ytdlp_path=settings.ytdlp_path,
            ffmpeg_path=settings.ffmpeg_path,
            audio_bitrate=settings.audio_bitrate,
        )
        return LocalPipelineBackend(
            ytdlp_path=settings.ytdlp_path,
            ffmpeg_path=settings.ffmpeg_path,
            audio_bitrate=settings.audio_bitrate,
        )


def create_backend(settings: Settings) -> ConversionBackend:
    return BackendFactory.create_backend(settings)
