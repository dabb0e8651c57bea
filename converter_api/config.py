"""
Configuration for the YouTube-to-MP3 conversion API.

Supports multiple environments (development, staging, production) with
appropriate defaults and validation. Environment variables override defaults.
"""

from enum import Enum
from typing import Annotated, Any

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
import structlog

load_dotenv()


class Environment(str, Enum):
    """Application environment types."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


BACKEND_CHOICES = {"auto", "remote_api", "local_pipeline"}
DISPATCH_CHOICES = {"inline", "queue"}
PERFORMANCE_MODES = {"aggressive", "balanced", "conservative"}


class Settings(BaseSettings):
    """
    Application settings with environment-specific defaults.

    Uses Pydantic for validation and type safety.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT, description="Application environment"
    )

    # API Configuration
    api_title: str = Field(default="YouTube to MP3 API", description="API title for OpenAPI docs")
    api_version: str = Field(default="1.0.0", description="API version")
    debug: bool = Field(default=True, description="Enable debug mode")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, ge=1, le=65535, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload (development only)")

    # Store Configuration
    redis_url: str | None = Field(
        default=None,
        description="Redis URL for the shared task store (unset uses process memory)",
    )
    task_ttl_hours: int = Field(
        default=24, ge=1, le=168, description="Task and artifact time-to-live in hours"
    )
    cache_ttl_hours: int = Field(
        default=24, ge=1, le=168, description="Result cache validity window in hours"
    )
    cleanup_interval_minutes: int = Field(
        default=10, ge=1, le=60, description="Cache cleanup interval in minutes"
    )

    # Conversion backend
    conversion_backend: str = Field(
        default="auto",
        description="Backend used for conversions: auto, remote_api or local_pipeline",
    )
    rapidapi_key: str = Field(default="", description="API key for the remote conversion provider")
    rapidapi_host: str = Field(
        default="youtube-mp36.p.rapidapi.com", description="Remote conversion provider host"
    )
    provider_rate_limit_per_minute: int = Field(
        default=50, ge=1, le=600, description="Remote provider request rate limit per minute"
    )
    ytdlp_path: str = Field(default="yt-dlp", description="yt-dlp executable")
    ffmpeg_path: str = Field(default="ffmpeg", description="ffmpeg executable")
    audio_bitrate: str = Field(default="128k", description="MP3 bitrate used by the local pipeline")
    performance_mode: str = Field(
        default="balanced", description="Starting performance profile for conversions"
    )

    # Retry / timeout policy
    max_retries: int = Field(
        default=3, ge=0, le=10, description="Additional attempts for transient backend errors"
    )
    retry_backoff_seconds: float = Field(
        default=2.0, ge=0.0, le=60.0, description="Base delay of the exponential retry backoff"
    )
    retry_backoff_max_seconds: float = Field(
        default=30.0, ge=0.0, le=600.0, description="Upper bound of a single retry delay"
    )
    conversion_timeout_seconds: float = Field(
        default=300.0, gt=0.0, le=3600.0, description="Wall-clock ceiling for one conversion"
    )
    store_retry_attempts: int = Field(
        default=3, ge=1, le=10, description="Attempts for store writes made by the orchestrator"
    )

    # Dispatch
    dispatch_mode: str = Field(
        default="inline", description="inline (background task) or queue (out-of-band worker)"
    )
    queue_name: str = Field(default="youtube_queue", description="Durable work queue name")
    max_concurrent_conversions: int = Field(
        default=3, ge=1, le=50, description="Maximum conversions running at once per process"
    )
    worker_poll_timeout_seconds: int = Field(
        default=30, ge=1, le=300, description="Blocking pop timeout for the queue worker"
    )

    # CORS Configuration
    cors_origins: Annotated[list[str], NoDecode] = Field(
        default=["*"], description="Allowed CORS origins (comma-separated)"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=False, description="Enable JSON logging for production")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("conversion_backend", "dispatch_mode", "performance_mode")
    @classmethod
    def normalize_choice(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("conversion_backend")
    @classmethod
    def check_backend(cls, v: str) -> str:
        if v not in BACKEND_CHOICES:
            raise ValueError(f"conversion_backend must be one of {sorted(BACKEND_CHOICES)}")
        return v

    @field_validator("dispatch_mode")
    @classmethod
    def check_dispatch_mode(cls, v: str) -> str:
        if v not in DISPATCH_CHOICES:
            raise ValueError(f"dispatch_mode must be one of {sorted(DISPATCH_CHOICES)}")
        return v

    @field_validator("performance_mode")
    @classmethod
    def check_performance_mode(cls, v: str) -> str:
        if v not in PERFORMANCE_MODES:
            raise ValueError(f"performance_mode must be one of {sorted(PERFORMANCE_MODES)}")
        return v

    @model_validator(mode="after")
    def apply_environment_rules(self) -> "Settings":
        """Disable debug outside development-like environments and reload outside development."""
        if self.environment == Environment.PRODUCTION:
            self.debug = False
        if self.environment != Environment.DEVELOPMENT:
            self.reload = False
        return self

    @property
    def task_ttl_seconds(self) -> int:
        return self.task_ttl_hours * 3600

    @property
    def cache_ttl_seconds(self) -> int:
        return self.cache_ttl_hours * 3600

    def get_environment_display(self) -> str:
        """Get human-readable environment name."""
        return self.environment.value.title()

    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION

    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == Environment.DEVELOPMENT

    def get_cors_config(self) -> dict[str, Any]:
        """Get CORS configuration."""
        if self.is_production():
            return {
                "allow_origins": [origin for origin in self.cors_origins if origin != "*"],
                "allow_credentials": True,
                "allow_methods": ["GET", "POST"],
                "allow_headers": ["*"],
                "expose_headers": ["Content-Length", "Content-Range", "X-Processing-Time"],
            }
        return {
            "allow_origins": self.cors_origins,
            "allow_credentials": True,
            "allow_methods": ["*"],
            "allow_headers": ["*"],
            "expose_headers": ["Content-Length", "Content-Range", "X-Processing-Time"],
        }


# Global settings instance
settings = Settings()


def configure_structlog() -> None:
    """Initialize structlog with readable console logging or JSON in production."""
    import logging
    import sys

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        stream=sys.stdout,
        force=True,
        format="%(message)s",
    )
    logging.root.setLevel(level)

    if settings.log_json:
        renderer: Any = structlog.processors.JSONRenderer()
        timestamper = structlog.processors.TimeStamper(fmt="iso")
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True, pad_event_to=20)
        timestamper = structlog.processors.TimeStamper(fmt="%H:%M:%S")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            timestamper,
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
