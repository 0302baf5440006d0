"""
Per-trip tracking state.

TripState is the aggregate mutated by the progress engine; the value types
around it (samples, zones, progress, route, analytics) are plain Pydantic
models so the whole aggregate serializes to the cache and durable tiers.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

from tracking_backend.app.models.tracking_enums import (
    GeofenceType, RouteSource, TrackingStatus, TripStage
)


class Coordinates(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class LocationSample(BaseModel):
    """One accepted position report. Immutable once recorded."""
    latitude: float
    longitude: float
    accuracy: float = 10.0  # meters
    speed: float = 0.0  # km/h
    heading: float = 0.0  # degrees
    timestamp: datetime
    index: int

    class Config:
        frozen = True


class GeofenceZone(BaseModel):
    """Circular arrival trigger. `triggered` never reverts."""
    type: GeofenceType
    center: Coordinates
    radius_km: float = 0.1
    triggered: bool = False
    triggered_at: Optional[datetime] = None


class Progress(BaseModel):
    """Derived status; distances and ETAs stay None until the driver's position is known."""
    distance_to_pickup_km: Optional[float] = None
    distance_to_dropoff_km: Optional[float] = None
    eta_to_pickup_min: Optional[int] = None
    eta_to_dropoff_min: Optional[int] = None
    is_at_pickup: bool = False
    is_at_dropoff: bool = False
    current_stage: TripStage = TripStage.ENROUTE


class Route(BaseModel):
    polyline: Optional[str] = None
    distance_km: float
    duration_min: int
    waypoints: List[Coordinates] = Field(default_factory=list)
    source: RouteSource


class TripAnalytics(BaseModel):
    total_distance_km: float
    average_speed_kmh: float
    total_time_min: int
    stops_count: int
    efficiency_pct: Optional[int] = None  # None when nothing was traveled
    location_updates: int
    last_update: datetime


class TripState(BaseModel):
    """One actively tracked delivery trip."""
    trip_id: str
    booking_id: str
    driver_id: str
    customer_id: str
    status: TrackingStatus = TrackingStatus.ACTIVE

    start_time: datetime
    last_update: datetime
    end_time: Optional[datetime] = None
    stop_reason: Optional[str] = None

    current_location: Optional[LocationSample] = None
    location_history: List[LocationSample] = Field(default_factory=list)
    samples_received: int = 0

    progress: Progress = Field(default_factory=Progress)
    route: Optional[Route] = None
    pickup_zone: GeofenceZone
    dropoff_zone: GeofenceZone

    # ETA debounce and timeout bookkeeping
    last_eta_emitted: Optional[int] = None
    last_eta_emitted_at: Optional[datetime] = None
    timeout_notified_at: Optional[datetime] = None

    def snapshot(self) -> "TripState":
        """Detached deep copy safe to hand to callers."""
        return self.model_copy(deep=True)

    def to_document(self) -> dict:
        return self.model_dump(mode="json")
