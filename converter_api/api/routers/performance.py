"""Runtime switching of the conversion performance mode."""

from fastapi import APIRouter

from converter_api.api.schemas import (
    ErrorResponse,
    PerformanceModeChangeResponse,
    PerformanceModeRequest,
    PerformanceModeResponse,
    PerformanceProfileInfo,
)
from converter_api.conversion.backends.base import PROFILE_LADDER, PROFILES
from converter_api.conversion.orchestrator import get_orchestrator

router = APIRouter(tags=["operations"])


@router.get("/performance-mode", response_model=PerformanceModeResponse)
async def get_performance_mode() -> PerformanceModeResponse:
    """Current starting profile and all selectable profiles, fastest first."""
    current = get_orchestrator().performance_mode
    return PerformanceModeResponse(
        current_mode=current.name,
        current_config=PerformanceProfileInfo.model_validate(current),
        available_modes={
            name: PerformanceProfileInfo.model_validate(PROFILES[name]) for name in PROFILE_LADDER
        },
    )


@router.post(
    "/performance-mode",
    response_model=PerformanceModeChangeResponse,
    responses={400: {"model": ErrorResponse}},
)
async def set_performance_mode(request: PerformanceModeRequest) -> PerformanceModeChangeResponse:
    """Switch the profile new conversion attempts start from.

    Expected behavior:
    - Returns 400 for an unknown mode, listing the available ones
    - Applies to this process only; queue workers keep their configured mode
    """
    previous, current = get_orchestrator().set_performance_mode(request.mode, request.reason)
    return PerformanceModeChangeResponse(
        previous_mode=previous.name,
        current_mode=current.name,
        current_config=PerformanceProfileInfo.model_validate(current),
        message=f"Performance mode switched from {previous.name} to {current.name}",
    )
