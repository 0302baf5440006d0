"""
FastAPI Application Entry Point.

This is the main application file for the Trip Tracking Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from tracking_backend.app.core.config import settings
from tracking_backend.app.api.v1.router import router as api_v1_router
from tracking_backend.app.core.dependencies import get_tracking_service
from tracking_backend.app.core.observability import ObservabilityMiddleware, configure_logging
from tracking_backend.app.core.redis_client import ping_redis
from tracking_backend.app.db.session import engine, Base
from tracking_backend.app.services.tracking_service import TrackingService
from tracking_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from tracking_backend.app.models.trip_tracking import TripTrackingRecord  # noqa: F401

logger = logging.getLogger("tracking.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Re-registers trips still marked active and starts the staleness reaper.
    3. Stops background work and closes the route provider on shutdown.
    """
    configure_logging(settings.debug)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    service = get_tracking_service()
    restored = await service.restore_active_trips()
    service.start_background_tasks()
    logger.info("Trip tracking engine started", extra={"restored_trips": restored})
    yield
    await service.shutdown()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Live trip tracking and geofencing engine",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check(service: TrackingService = Depends(get_tracking_service)):
    """
    Health check endpoint.

    Redis being down degrades tracking to in-memory only, so it is reported
    but does not make the service unhealthy.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "active_trips": len(service.registry),
        "redis": "up" if await ping_redis() else "down",
        "reaper_running": service.reaper.running,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to the Trip Tracking Backend API",
        "docs": "/docs",
        "health": "/health",
    }
