"""HTTP routers."""

from fastapi import APIRouter

from converter_api.api.routers import conversion, health, media, performance, tasks

router = APIRouter()
router.include_router(conversion.router)
router.include_router(tasks.router)
router.include_router(media.router)
router.include_router(health.router)
router.include_router(performance.router)

__all__ = ["router"]
