"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from tracking_backend.app.api.v1.endpoints import tracking

router = APIRouter()

# Trip tracking endpoints
router.include_router(tracking.router)
