"""Error taxonomy shared by the store, orchestrator, backends and API layers."""


class ConverterError(Exception):
    """Base class for all conversion service errors."""

    error_code = "converter_error"


class InvalidSourceUrlError(ConverterError):
    """The submitted URL is not a YouTube video URL with an extractable id."""

    error_code = "invalid_url"


class ConfigurationError(ConverterError):
    """A backend is missing a credential or a required tool. Never retried."""

    error_code = "configuration_error"


class BackendError(ConverterError):
    """A conversion backend failed to produce an artifact."""

    error_code = "backend_error"

    def __init__(self, message: str, *, reason_code: str | None = None) -> None:
        super().__init__(message)
        self.reason_code = reason_code or self.error_code


class TransientBackendError(BackendError):
    """Recoverable backend failure (network, rate limit, flaky subprocess)."""

    error_code = "transient_backend_error"


class PermanentBackendError(BackendError):
    """Unrecoverable backend failure (unavailable, private, region-restricted)."""

    error_code = "permanent_backend_error"


class StoreUnavailableError(ConverterError):
    """The key-value store could not be reached."""

    error_code = "store_unavailable"


class TaskNotFoundError(ConverterError):
    """No task record exists for the id (never created, or expired)."""

    error_code = "task_not_found"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found or expired")
        self.task_id = task_id


class ArtifactNotFoundError(ConverterError):
    """The task is not finished or its audio is no longer available."""

    error_code = "artifact_not_found"


class RangeNotSatisfiableError(ConverterError):
    """The requested byte range lies outside the artifact."""

    error_code = "range_not_satisfiable"

    def __init__(self, header: str, size: int) -> None:
        super().__init__(f"Range {header!r} not satisfiable for {size} bytes")
        self.size = size


class DispatchError(ConverterError):
    """A task could not be handed to a conversion runner."""

    error_code = "dispatch_failed"


class InvalidPerformanceModeError(ConverterError):
    """The requested performance mode is not a known profile."""

    error_code = "invalid_performance_mode"

    def __init__(self, mode: str, available: list[str]) -> None:
        super().__init__(
            f"Invalid performance mode: {mode!r}. Available modes: {', '.join(available)}"
        )
        self.mode = mode
        self.available = available
