"""Task status endpoint."""

from fastapi import APIRouter

from converter_api.api.schemas import ErrorResponse, TaskStatusResponse
from converter_api.conversion.orchestrator import get_orchestrator
from converter_api.core.errors import TaskNotFoundError

router = APIRouter(tags=["tasks"])


@router.get(
    "/status/{task_id}",
    response_model=TaskStatusResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_task_status(task_id: str) -> TaskStatusResponse:
    """Get current task status.

    Expected behavior:
    - Returns 404 if the task never existed or has expired
    - Returns status, progress and, once finished, the download path
    """
    task = await get_orchestrator().task_manager.get(task_id)
    if task is None:
        raise TaskNotFoundError(task_id)

    return TaskStatusResponse(
        task_id=task.task_id,
        status=task.status,
        progress=task.progress,
        file_url=task.file_url,
        error=task.error,
        title=task.title,
        created_at=task.created_at,
        updated_at=task.updated_at,
    )
