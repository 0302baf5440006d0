"""
Per-update progress algorithm.

Given a trip and a validated location report, the engine appends the sample
to the bounded history, recomputes distances and ETAs, evaluates the pickup
and dropoff geofences and derives the trip stage. It returns the events the
update produced; publishing them is the caller's job.

Callers must hold the trip's registry lock.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import ValidationError

from tracking_backend.app.core.exceptions import InvalidLocationError
from tracking_backend.app.domain.tracking import geo
from tracking_backend.app.domain.tracking.state import (
    Coordinates, GeofenceZone, LocationSample, Progress, TripState
)
from tracking_backend.app.models.tracking_enums import TrackingEventType, TripStage
from tracking_backend.app.schemas.tracking import LocationUpdate, TrackingEvent


def parse_location(payload) -> LocationUpdate:
    """Validate a raw location report. Raises InvalidLocationError."""
    if isinstance(payload, LocationUpdate):
        return payload
    try:
        return LocationUpdate.model_validate(payload)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc']) or 'location'}: {err['msg']}"
            for err in e.errors()
        ]
        raise InvalidLocationError(errors) from None


def derive_stage(pickup_zone: GeofenceZone, dropoff_zone: GeofenceZone, is_at_pickup: bool) -> TripStage:
    if dropoff_zone.triggered:
        return TripStage.AT_DROPOFF
    if is_at_pickup:
        return TripStage.AT_PICKUP
    if pickup_zone.triggered:
        return TripStage.PICKED_UP
    return TripStage.ENROUTE


class ProgressEngine:

    def __init__(
        self,
        max_history: int = 100,
        default_speed_kmh: float = geo.DEFAULT_SPEED_KMH,
        eta_buffer_pct: float = geo.DEFAULT_ETA_BUFFER_PCT,
        eta_debounce_minutes: int = 1,
        eta_heartbeat_seconds: Optional[int] = 300,
    ):
        self.max_history = max_history
        self.default_speed_kmh = default_speed_kmh
        self.eta_buffer_pct = eta_buffer_pct
        self.eta_debounce_minutes = eta_debounce_minutes
        self.eta_heartbeat_seconds = eta_heartbeat_seconds

    @classmethod
    def from_settings(cls, settings) -> "ProgressEngine":
        return cls(
            max_history=settings.max_location_history,
            default_speed_kmh=settings.default_speed_kmh,
            eta_buffer_pct=settings.eta_buffer_pct,
            eta_debounce_minutes=settings.eta_debounce_minutes,
            eta_heartbeat_seconds=settings.eta_heartbeat_seconds,
        )

    def eta(self, distance_km: float, speed_kmh: Optional[float] = None) -> int:
        return geo.eta_minutes(
            distance_km, speed_kmh,
            default_speed_kmh=self.default_speed_kmh,
            buffer_pct=self.eta_buffer_pct,
        )

    def average_speed(self, history: List[LocationSample]) -> float:
        """Mean of the reported non-zero speeds in the history window."""
        speeds = [s.speed for s in history if s.speed > 0]
        if not speeds:
            return self.default_speed_kmh
        return sum(speeds) / len(speeds)

    def seed_progress(self, state: TripState, origin: Optional[Coordinates]) -> None:
        """Initial progress at start, from the driver's position if the booking supplied one."""
        if origin is None:
            state.progress = Progress()
            return
        state.progress = self._measure(state, origin.latitude, origin.longitude, self.default_speed_kmh)

    def apply(self, state: TripState, update: LocationUpdate, now: datetime) -> List[TrackingEvent]:
        """Record one validated report and recompute progress."""
        events: List[TrackingEvent] = []

        sample = self._record_sample(state, update, now)

        pickup = state.pickup_zone
        dropoff = state.dropoff_zone

        distance_to_pickup = geo.haversine_km(
            sample.latitude, sample.longitude, pickup.center.latitude, pickup.center.longitude
        )
        distance_to_dropoff = geo.haversine_km(
            sample.latitude, sample.longitude, dropoff.center.latitude, dropoff.center.longitude
        )

        if self._check_zone(pickup, distance_to_pickup, now):
            events.append(self._geofence_event(state, pickup, sample, now))

        # Dropoff only counts once the pickup has been reached
        if pickup.triggered and self._check_zone(dropoff, distance_to_dropoff, now):
            events.append(self._geofence_event(state, dropoff, sample, now))

        state.progress = self._measure(
            state, sample.latitude, sample.longitude,
            self.average_speed(state.location_history),
            distances=(distance_to_pickup, distance_to_dropoff),
        )

        events.append(TrackingEvent(
            type=TrackingEventType.LOCATION_UPDATED,
            trip_id=state.trip_id,
            timestamp=now,
            data={
                "location": sample.model_dump(mode="json"),
                "progress": state.progress.model_dump(mode="json"),
            },
        ))

        if self._eta_changed(state, now):
            state.last_eta_emitted = state.progress.eta_to_pickup_min
            state.last_eta_emitted_at = now
            events.append(TrackingEvent(
                type=TrackingEventType.ETA_UPDATED,
                trip_id=state.trip_id,
                timestamp=now,
                data={"progress": state.progress.model_dump(mode="json")},
            ))

        return events

    def _record_sample(self, state: TripState, update: LocationUpdate, now: datetime) -> LocationSample:
        previous = state.current_location
        heading = update.heading
        if heading is None:
            heading = 0.0
            if previous is not None and (previous.latitude, previous.longitude) != (update.latitude, update.longitude):
                heading = geo.bearing_degrees(
                    previous.latitude, previous.longitude, update.latitude, update.longitude
                )

        sample = LocationSample(
            latitude=update.latitude,
            longitude=update.longitude,
            accuracy=update.accuracy if update.accuracy is not None else 10.0,
            speed=update.speed if update.speed is not None else 0.0,
            heading=heading,
            timestamp=now,
            index=state.samples_received,
        )

        state.location_history.append(sample)
        overflow = len(state.location_history) - self.max_history
        if overflow > 0:
            del state.location_history[:overflow]

        state.current_location = sample
        state.samples_received += 1
        state.last_update = max(state.last_update, now)
        state.timeout_notified_at = None
        return sample

    def _measure(self, state: TripState, lat: float, lon: float, speed_kmh: float, distances=None) -> Progress:
        pickup = state.pickup_zone
        dropoff = state.dropoff_zone
        if distances is None:
            distances = (
                geo.haversine_km(lat, lon, pickup.center.latitude, pickup.center.longitude),
                geo.haversine_km(lat, lon, dropoff.center.latitude, dropoff.center.longitude),
            )
        distance_to_pickup, distance_to_dropoff = distances

        is_at_pickup = distance_to_pickup <= pickup.radius_km
        is_at_dropoff = distance_to_dropoff <= dropoff.radius_km

        derived = derive_stage(pickup, dropoff, is_at_pickup)
        previous = state.progress.current_stage
        stage = derived if derived.rank >= previous.rank else previous

        return Progress(
            distance_to_pickup_km=geo.round_half_up(distance_to_pickup, 3),
            distance_to_dropoff_km=geo.round_half_up(distance_to_dropoff, 3),
            eta_to_pickup_min=self.eta(distance_to_pickup, speed_kmh),
            eta_to_dropoff_min=self.eta(distance_to_dropoff, speed_kmh),
            is_at_pickup=is_at_pickup,
            is_at_dropoff=is_at_dropoff,
            current_stage=stage,
        )

    @staticmethod
    def _check_zone(zone: GeofenceZone, distance_km: float, now: datetime) -> bool:
        """Trigger the zone on first entry. True only on the triggering update."""
        if zone.triggered or distance_km > zone.radius_km:
            return False
        zone.triggered = True
        zone.triggered_at = now
        return True

    @staticmethod
    def _geofence_event(state: TripState, zone: GeofenceZone, sample: LocationSample, now: datetime) -> TrackingEvent:
        return TrackingEvent(
            type=TrackingEventType.GEOFENCE_TRIGGERED,
            trip_id=state.trip_id,
            timestamp=now,
            data={"type": zone.type.value, "location": sample.model_dump(mode="json")},
        )

    def _eta_changed(self, state: TripState, now: datetime) -> bool:
        eta = state.progress.eta_to_pickup_min
        if state.last_eta_emitted is None or state.last_eta_emitted_at is None:
            return True
        if abs(eta - state.last_eta_emitted) > self.eta_debounce_minutes:
            return True
        if self.eta_heartbeat_seconds:
            return now - state.last_eta_emitted_at >= timedelta(seconds=self.eta_heartbeat_seconds)
        return False
