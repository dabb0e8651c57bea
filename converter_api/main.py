"""
FastAPI application for the YouTube-to-MP3 conversion service.

Accepts YouTube URLs, converts them in the background through the
configured backend, and serves the resulting MP3 for download or
in-browser streaming.
"""

import asyncio
from contextlib import asynccontextmanager, suppress
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import structlog

from converter_api.api.errors import register_exception_handlers
from converter_api.api.routers import router as api_router

# Configure structured logging first
from converter_api.config import configure_structlog, settings
from converter_api.conversion.backends import create_backend
from converter_api.conversion.dispatch import create_dispatcher
from converter_api.conversion.orchestrator import (
    ConversionOrchestrator,
    initialize_orchestrator,
    reset_orchestrator,
)
from converter_api.conversion.retry import RetryPolicy
from converter_api.core.errors import StoreUnavailableError
from converter_api.core.kv_store import initialize_store, reset_store

configure_structlog()
logger = structlog.get_logger(__name__)


async def periodic_sweep(orchestrator: ConversionOrchestrator, interval_seconds: float) -> None:
    """Run the cache/store sweep until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await orchestrator.sweep()
        except StoreUnavailableError as e:
            logger.warning("Periodic sweep failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown."""
    # Startup
    logger.info(
        "Conversion API starting up",
        version=settings.api_version,
        environment=settings.get_environment_display(),
        debug=settings.debug,
    )

    store = initialize_store(settings.redis_url, settings.cleanup_interval_minutes)
    if settings.dispatch_mode == "queue" and not settings.redis_url:
        logger.warning("Queue dispatch without REDIS_URL - only an in-process worker can consume")

    backend = create_backend(settings)
    dispatcher = create_dispatcher(
        settings.dispatch_mode,
        store,
        queue_name=settings.queue_name,
        max_concurrent=settings.max_concurrent_conversions,
    )
    orchestrator = initialize_orchestrator(
        store,
        backend,
        dispatcher,
        task_ttl_seconds=settings.task_ttl_seconds,
        cache_ttl_seconds=settings.cache_ttl_seconds,
        retry_policy=RetryPolicy(
            max_retries=settings.max_retries,
            backoff_seconds=settings.retry_backoff_seconds,
            backoff_max_seconds=settings.retry_backoff_max_seconds,
            base_profile=settings.performance_mode,
        ),
        conversion_timeout_seconds=settings.conversion_timeout_seconds,
        store_retry_attempts=settings.store_retry_attempts,
    )

    sweeper = asyncio.create_task(
        periodic_sweep(orchestrator, settings.cleanup_interval_minutes * 60),
        name="periodic-sweep",
    )

    logger.info(
        "Services initialized",
        backend=backend.name,
        dispatch_mode=dispatcher.mode,
        task_ttl_hours=settings.task_ttl_hours,
        routes=len(app.routes),
    )

    yield

    # Shutdown
    logger.info("Conversion API shutting down")
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await dispatcher.aclose()
    await backend.aclose()
    await store.close()
    reset_orchestrator()
    reset_store()


# FastAPI app setup with environment-aware configuration
app = FastAPI(
    title=settings.api_title,
    description=f"""
    **YouTube to MP3 Conversion Service**

    * **Asynchronous conversion**: submit a URL, poll the task, download the result
    * **Result cache**: repeated URLs are served without re-converting
    * **Range requests**: stream and seek through the produced audio

    ## Environment

    Currently running in **{settings.get_environment_display()}** mode.

    ## Limits

    - Concurrent conversions: {settings.max_concurrent_conversions} per instance
    - Conversion timeout: {settings.conversion_timeout_seconds:.0f} seconds
    - Tasks and audio expire after {settings.task_ttl_hours} hours
    """,
    version=settings.api_version,
    debug=settings.debug,
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production() else None,  # Disable docs in production
    redoc_url="/redoc" if not settings.is_production() else None,
    openapi_url="/openapi.json" if not settings.is_production() else None,
)


@app.middleware("http")
async def processing_time_middleware(request: Request, call_next):
    """Report handler time in the X-Processing-Time header (seconds)."""
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - start
    response.headers["X-Processing-Time"] = f"{elapsed:.4f}"
    logger.debug(
        "Request handled",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        elapsed_ms=round(elapsed * 1000, 1),
    )
    return response


# CORS middleware with environment-aware configuration
app.add_middleware(CORSMiddleware, **settings.get_cors_config())

register_exception_handlers(app)
app.include_router(api_router)


# Root endpoint for basic service information
@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint providing basic API information.

    Use `/health` for detailed health checks.
    """
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "environment": settings.get_environment_display(),
        "status": "operational",
        "docs": "/docs" if not settings.is_production() else "disabled",
        "health": "/health",
        "endpoints": {
            "convert": "POST /convert",
            "status": "GET /status/{task_id}",
            "download": "GET /download/{task_id}",
            "stream": "GET /stream/{task_id}",
            "cleanup": "POST /cleanup",
            "retry": "POST /retry",
            "performance_mode": "GET|POST /performance-mode",
            "sweep": "POST /maintenance/sweep",
        },
    }


def main() -> None:
    import uvicorn

    uvicorn.run(
        "converter_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_config=None,  # Use our structured logging
    )


# Application startup
if __name__ == "__main__":
    main()
