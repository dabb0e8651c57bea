"""Mapping of domain errors to HTTP responses."""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
import structlog

from converter_api.api.schemas import ErrorResponse
from converter_api.core.errors import (
    ArtifactNotFoundError,
    ConverterError,
    DispatchError,
    InvalidPerformanceModeError,
    InvalidSourceUrlError,
    RangeNotSatisfiableError,
    StoreUnavailableError,
    TaskNotFoundError,
)

logger = structlog.get_logger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[ConverterError], int], ...] = (
    (InvalidSourceUrlError, status.HTTP_400_BAD_REQUEST),
    (InvalidPerformanceModeError, status.HTTP_400_BAD_REQUEST),
    (TaskNotFoundError, status.HTTP_404_NOT_FOUND),
    (ArtifactNotFoundError, status.HTTP_404_NOT_FOUND),
    (RangeNotSatisfiableError, status.HTTP_416_RANGE_NOT_SATISFIABLE),
)

_SERVER_MESSAGES: dict[type[ConverterError], str] = {
    DispatchError: "Failed to start conversion",
    StoreUnavailableError: "Task store unavailable",
}


def status_for(error: ConverterError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_error_response(
    status_code: int,
    error: str,
    details: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Create standardized error response."""
    body = ErrorResponse(error=error, details=details)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


async def converter_error_handler(request: Request, exc: ConverterError) -> JSONResponse:
    status_code = status_for(exc)

    if status_code >= 500:
        logger.error(
            "Request failed",
            path=request.url.path,
            error_code=exc.error_code,
            error=str(exc),
        )
        message = _SERVER_MESSAGES.get(type(exc), "Internal server error")
        return create_error_response(status_code, message, details=str(exc))

    headers = None
    if isinstance(exc, RangeNotSatisfiableError):
        headers = {"Content-Range": f"bytes */{exc.size}"}

    logger.info(
        "Request rejected",
        path=request.url.path,
        status_code=status_code,
        error_code=exc.error_code,
    )
    return create_error_response(status_code, str(exc), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ConverterError, converter_error_handler)
