"""
Trip tracking schemas.

Inbound payloads (trip start, location report), the event envelope sent to
the broadcast layer, and the read models returned by the tracking service.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional

from tracking_backend.app.domain.tracking.state import (
    Coordinates, LocationSample, Route, TripAnalytics
)
from tracking_backend.app.models.tracking_enums import TrackingEventType, TripStage


class StopLocation(BaseModel):
    """Pickup or dropoff point taken from the booking."""
    coordinates: Coordinates
    address: Optional[str] = None


class TripStartRequest(BaseModel):
    """Trip-start payload from the booking collaborator. camelCase or snake_case."""
    trip_id: Optional[str] = Field(None, alias="tripId", min_length=1)
    booking_id: str = Field(..., alias="bookingId", min_length=1)
    driver_id: str = Field(..., alias="driverId", min_length=1)
    customer_id: str = Field(..., alias="customerId", min_length=1)
    pickup: StopLocation
    dropoff: StopLocation
    driver_location: Optional[Coordinates] = Field(None, alias="driverLocation")

    class Config:
        populate_by_name = True


class LocationUpdate(BaseModel):
    """One location report from the driver app."""
    latitude: float = Field(..., ge=-90, le=90, allow_inf_nan=False)
    longitude: float = Field(..., ge=-180, le=180, allow_inf_nan=False)
    accuracy: Optional[float] = Field(None, ge=0, allow_inf_nan=False)  # meters
    speed: Optional[float] = Field(None, ge=0, allow_inf_nan=False)  # km/h
    heading: Optional[float] = Field(None, ge=0, lt=360, allow_inf_nan=False)


class TrackingEvent(BaseModel):
    """Envelope for every event handed to the broadcast layer."""
    type: TrackingEventType
    trip_id: str
    timestamp: datetime
    data: Dict[str, Any] = Field(default_factory=dict)


class StopTrackingRequest(BaseModel):
    reason: str = Field("completed", min_length=1, max_length=64)


class CleanupRequest(BaseModel):
    max_age_seconds: Optional[float] = Field(None, gt=0)


class CleanupResponse(BaseModel):
    max_age_seconds: float
    stopped_trip_ids: List[str]
    stopped_count: int


class LocationHistoryResponse(BaseModel):
    trip_id: str
    locations: List[LocationSample]
    total: int
    start_time: datetime
    last_update: datetime


class TripAnalyticsReport(BaseModel):
    """Analytics, or an explicit "unavailable" with the reason."""
    trip_id: str
    available: bool
    analytics: Optional[TripAnalytics] = None
    reason: Optional[str] = None


class WaypointEta(BaseModel):
    distance_km: Optional[float]
    eta_min: Optional[int]
    is_at_location: bool


class TripEtaResponse(BaseModel):
    trip_id: str
    current_location: Optional[LocationSample]
    pickup: WaypointEta
    dropoff: WaypointEta
    route: Optional[Route]
    current_stage: TripStage
    last_update: datetime


class TrackingStatistics(BaseModel):
    active_trips: int
    events_published: Dict[str, int]
    subscribers: int
    uptime_seconds: float
