"""
Trip Tracking API Endpoints.

Start and stop tracking, ingest driver location reports, and read trip
status, history, ETA and analytics.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from tracking_backend.app.core.dependencies import get_tracking_service
from tracking_backend.app.domain.tracking.state import TripState
from tracking_backend.app.schemas.tracking import (
    CleanupRequest, CleanupResponse, LocationHistoryResponse, LocationUpdate,
    StopTrackingRequest, TrackingStatistics, TripAnalyticsReport, TripEtaResponse,
    TripStartRequest
)
from tracking_backend.app.services.tracking_service import (
    DEFAULT_HISTORY_LIMIT, MAX_HISTORY_LIMIT, TrackingService
)

router = APIRouter(prefix="/tracking", tags=["Trip Tracking"])


@router.post("/start", response_model=TripState, status_code=status.HTTP_201_CREATED)
async def start_tracking(
    request: TripStartRequest,
    service: TrackingService = Depends(get_tracking_service)
):
    """
    Start tracking a trip.

    Plans the route (falling back to a direct estimate when the route
    provider is unavailable) and returns the initial trip state.
    """
    trip_id = request.trip_id or request.booking_id
    return await service.start_tracking(trip_id, request)


@router.post("/{trip_id}/location", response_model=TripState)
async def update_location(
    location: LocationUpdate,
    trip_id: str = Path(..., description="Trip ID"),
    service: TrackingService = Depends(get_tracking_service)
):
    """Record a driver location report and return the updated trip state."""
    return await service.update_location(trip_id, location)


@router.get("/active", response_model=List[TripState])
async def list_active_trips(service: TrackingService = Depends(get_tracking_service)):
    return await service.list_active()


@router.get("/statistics", response_model=TrackingStatistics)
async def get_statistics(service: TrackingService = Depends(get_tracking_service)):
    return await service.get_statistics()


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_expired_trips(
    request: Optional[CleanupRequest] = None,
    service: TrackingService = Depends(get_tracking_service)
):
    """
    Stop every trip with no update within `max_age_seconds`
    (defaults to the configured maximum trip age).
    """
    max_age = (request.max_age_seconds if request else None) or service.settings.max_trip_age_seconds
    stopped = await service.cleanup_expired(max_age)
    return CleanupResponse(
        max_age_seconds=max_age,
        stopped_trip_ids=stopped,
        stopped_count=len(stopped),
    )


@router.get("/{trip_id}/status", response_model=TripState)
async def get_trip_status(
    trip_id: str = Path(..., description="Trip ID"),
    service: TrackingService = Depends(get_tracking_service)
):
    return await service.get_status(trip_id)


@router.get("/{trip_id}/history", response_model=LocationHistoryResponse)
async def get_location_history(
    trip_id: str = Path(..., description="Trip ID"),
    limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT, description="Most recent samples to return"),
    start_time: Optional[datetime] = Query(None, description="Only samples at or after this time"),
    end_time: Optional[datetime] = Query(None, description="Only samples at or before this time"),
    service: TrackingService = Depends(get_tracking_service)
):
    """Recent location samples for a trip, oldest first."""
    return await service.get_history(trip_id, limit=limit, start_time=start_time, end_time=end_time)


@router.get("/{trip_id}/eta", response_model=TripEtaResponse)
async def get_trip_eta(
    trip_id: str = Path(..., description="Trip ID"),
    service: TrackingService = Depends(get_tracking_service)
):
    return await service.get_eta(trip_id)


@router.get("/{trip_id}/analytics", response_model=TripAnalyticsReport)
async def get_trip_analytics(
    trip_id: str = Path(..., description="Trip ID"),
    service: TrackingService = Depends(get_tracking_service)
):
    """
    Distance, speed, stops and efficiency for a trip.

    Reports `available: false` until at least two samples were recorded.
    """
    return await service.get_analytics(trip_id)


@router.post("/{trip_id}/recover", response_model=TripState)
async def recover_trip(
    trip_id: str = Path(..., description="Trip ID"),
    service: TrackingService = Depends(get_tracking_service)
):
    """Re-register a trip from the snapshot cache or database after a restart."""
    return await service.recover_trip(trip_id)


@router.post("/{trip_id}/stop", response_model=TripState)
async def stop_tracking(
    trip_id: str = Path(..., description="Trip ID"),
    request: Optional[StopTrackingRequest] = None,
    service: TrackingService = Depends(get_tracking_service)
):
    """Stop tracking and return the final trip state."""
    reason = request.reason if request else StopTrackingRequest().reason
    return await service.stop_tracking(trip_id, reason)
