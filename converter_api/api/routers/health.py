"""Health check endpoints."""

import time

from fastapi import APIRouter

from converter_api.api.schemas import HealthStatus
from converter_api.config import settings
from converter_api.conversion.orchestrator import get_orchestrator

router = APIRouter(tags=["health"])

_started_at = time.monotonic()

HEALTHY_STATES = {"healthy", "configured"}


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    """Health check endpoint for load balancers and monitoring."""
    orchestrator = get_orchestrator()

    store = orchestrator.task_manager.store
    store_ok = await store.ping()
    backend_health = await orchestrator.backend.health()

    dependencies = {
        "store": "healthy" if store_ok else "unavailable",
        "backend": str(backend_health.get("status", "unknown")),
    }

    # Determine overall status
    overall_status = (
        "healthy"
        if all(state in HEALTHY_STATES for state in dependencies.values())
        else "degraded"
    )

    return HealthStatus(
        status=overall_status,
        service="youtube-mp3-converter",
        version=settings.api_version,
        uptime_seconds=round(time.monotonic() - _started_at, 1),
        dispatch_mode=orchestrator.dispatcher.mode,
        task_ttl_hours=orchestrator.task_manager.ttl_seconds // 3600,
        dependencies=dependencies,
        backend={**backend_health, "store_type": type(store).__name__},
    )
