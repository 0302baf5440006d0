"""
Trip tracking enumerations.
"""

import enum


class TrackingStatus(str, enum.Enum):
    """Lifecycle status of a tracked trip."""
    ACTIVE = "active"  # Live in the registry
    COMPLETED = "completed"  # Stopped with reason "completed"
    STOPPED = "stopped"  # Stopped for any other reason


class TripStage(str, enum.Enum):
    """Progress of a trip relative to pickup/dropoff arrival. Forward-only."""
    ENROUTE = "enroute"
    AT_PICKUP = "at_pickup"
    PICKED_UP = "picked_up"
    AT_DROPOFF = "at_dropoff"

    @property
    def rank(self) -> int:
        return _STAGE_ORDER.index(self)


_STAGE_ORDER = [TripStage.ENROUTE, TripStage.AT_PICKUP, TripStage.PICKED_UP, TripStage.AT_DROPOFF]


class GeofenceType(str, enum.Enum):
    PICKUP = "pickup"
    DROPOFF = "dropoff"


class RouteSource(str, enum.Enum):
    EXTERNAL = "external"
    FALLBACK = "fallback"


class StopReason(str, enum.Enum):
    """Common stop reasons. Callers may pass any non-empty string."""
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    MANUAL = "manual"


class TrackingEventType(str, enum.Enum):
    """Events emitted for the broadcast layer."""
    TRACKING_STARTED = "tracking_started"
    LOCATION_UPDATED = "location_updated"
    GEOFENCE_TRIGGERED = "geofence_triggered"
    ETA_UPDATED = "eta_updated"
    TRACKING_STOPPED = "tracking_stopped"
    TIMEOUT = "timeout"
