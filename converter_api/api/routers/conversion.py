"""Conversion endpoints: submission and operator actions."""

from fastapi import APIRouter, BackgroundTasks, status
import structlog

from converter_api.api.schemas import (
    ConvertRequest,
    ConvertResponse,
    ErrorResponse,
    SweepResponse,
    TaskActionRequest,
    TaskActionResponse,
)
from converter_api.conversion.orchestrator import TaskActionResult, get_orchestrator

logger = structlog.get_logger(__name__)
router = APIRouter(tags=["conversion"])


def _action_response(result: TaskActionResult) -> TaskActionResponse:
    return TaskActionResponse(
        task_id=result.task_id,
        status=result.status,
        message=result.message,
        changed=result.changed,
    )


@router.post(
    "/convert",
    response_model=ConvertResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def convert(request: ConvertRequest, background_tasks: BackgroundTasks) -> ConvertResponse:
    """Submit a YouTube URL for conversion.

    Logic:
    1. Validate the URL (400 before any task exists)
    2. Answer from the result cache when possible (task is already finished)
    3. Otherwise create a queued task and dispatch it
    4. Return the task id for polling

    Expected behavior:
    - Each submission gets a unique task_id
    - Returns immediately; conversion happens in the background
    """
    orchestrator = get_orchestrator()
    result = await orchestrator.submit(request.url, background_tasks)

    return ConvertResponse(
        task_id=result.task_id,
        status=result.status,
        message=result.message,
        file_url=result.file_url,
        title=result.title,
    )


@router.post(
    "/cleanup",
    response_model=TaskActionResponse,
    responses={404: {"model": ErrorResponse}},
)
async def cleanup_task(request: TaskActionRequest) -> TaskActionResponse:
    """Force a stuck task into the error state.

    Terminal tasks are returned unchanged. The backend is not cancelled;
    its eventual result is discarded.
    """
    result = await get_orchestrator().force_error(request.task_id)
    return _action_response(result)


@router.post(
    "/retry",
    response_model=TaskActionResponse,
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def retry_task(
    request: TaskActionRequest, background_tasks: BackgroundTasks
) -> TaskActionResponse:
    """Reset a task to queued and dispatch it again.

    Retrying a finished task is a no-op.
    """
    result = await get_orchestrator().retry(request.task_id, background_tasks)
    return _action_response(result)


@router.post("/maintenance/sweep", response_model=SweepResponse)
async def sweep() -> SweepResponse:
    """Drop stale result-cache entries and expired store keys now."""
    stats = await get_orchestrator().sweep()
    return SweepResponse(**stats)
