"""
FastAPI dependencies.

The tracking service is a process-wide singleton: the registry it owns is the
live state of every tracked trip. Tests override `get_tracking_service` via
`app.dependency_overrides`.
"""

from typing import Optional

from tracking_backend.app.core.config import settings
from tracking_backend.app.core.redis_client import redis_client
from tracking_backend.app.db.session import AsyncSessionLocal
from tracking_backend.app.services.tracking_service import TrackingService, build_tracking_service

_tracking_service: Optional[TrackingService] = None


def get_tracking_service() -> TrackingService:
    """Return the shared tracking service, building it on first use."""
    global _tracking_service
    if _tracking_service is None:
        _tracking_service = build_tracking_service(
            settings,
            redis_client=redis_client,
            session_factory=AsyncSessionLocal,
        )
    return _tracking_service
