"""Pydantic schemas for the HTTP API - simple DTOs only."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Import from domain layer
from converter_api.core.task_manager import TaskStatus


class ErrorResponse(BaseModel):
    """Error body returned for 4xx/5xx responses."""

    error: str
    details: str | None = None


class ConvertRequest(BaseModel):
    """Conversion request. URL validation happens in the orchestrator."""

    url: str | None = Field(default=None, description="YouTube video URL")


class ConvertResponse(BaseModel):
    """Task creation response."""

    task_id: str
    status: TaskStatus
    message: str
    file_url: str | None = None
    title: str | None = None


class TaskStatusResponse(BaseModel):
    """Task status response."""

    task_id: str
    status: TaskStatus
    progress: int = Field(ge=0, le=100)
    file_url: str | None = None
    error: str | None = None
    title: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class TaskActionRequest(BaseModel):
    """Body of the operator actions (cleanup, retry)."""

    task_id: str = Field(min_length=1)


class TaskActionResponse(BaseModel):
    success: bool = True
    task_id: str
    status: TaskStatus
    message: str
    changed: bool


class SweepResponse(BaseModel):
    success: bool = True
    cache_entries_removed: int
    payloads_released: int = 0
    expired_keys: int
    remaining_keys: int | None = None


class HealthStatus(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str
    timestamp: datetime = Field(default_factory=datetime.now)
    uptime_seconds: float
    dispatch_mode: str
    task_ttl_hours: int
    dependencies: dict[str, str] = {}
    backend: dict[str, Any] = {}


class PerformanceProfileInfo(BaseModel):
    """Tuning knobs of one performance profile."""

    model_config = ConfigDict(from_attributes=True)

    name: str
    concurrent_fragments: int
    chunk_size: str
    buffer_size: str
    tool_retries: int
    ffmpeg_preset: str
    ffmpeg_extra_args: list[str] = []
    http_timeout_seconds: float


class PerformanceModeResponse(BaseModel):
    """Current performance mode and every selectable profile."""

    current_mode: str
    current_config: PerformanceProfileInfo
    available_modes: dict[str, PerformanceProfileInfo]
    timestamp: datetime = Field(default_factory=datetime.now)


class PerformanceModeRequest(BaseModel):
    mode: str = Field(min_length=1, description="Profile name, e.g. balanced")
    reason: str | None = Field(default=None, description="Why the operator switched modes")


class PerformanceModeChangeResponse(BaseModel):
    success: bool = True
    previous_mode: str
    current_mode: str
    current_config: PerformanceProfileInfo
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
