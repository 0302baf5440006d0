"""
Trip Tracking Service.

Facade over the registry, progress and analytics engines, route planning,
persistence and the event bus. Every public tracking operation goes through
here, and every mutation of a trip happens inside that trip's registry lock:
the in-memory state commits first, then persistence (best-effort). Events are
published once the lock is released.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from tracking_backend.app.core.exceptions import (
    InvalidCleanupAgeError, InvalidHistoryQueryError, InvalidTripDataError, TripNotFoundError
)
from tracking_backend.app.domain.tracking.analytics import AnalyticsEngine
from tracking_backend.app.domain.tracking.progress import ProgressEngine, parse_location
from tracking_backend.app.domain.tracking.registry import TripRegistry
from tracking_backend.app.domain.tracking.state import GeofenceZone, Route, TripState
from tracking_backend.app.models.tracking_enums import (
    GeofenceType, StopReason, TrackingEventType, TrackingStatus
)
from tracking_backend.app.schemas.tracking import (
    LocationHistoryResponse, LocationUpdate, TrackingEvent, TrackingStatistics,
    TripAnalyticsReport, TripEtaResponse, TripStartRequest, WaypointEta
)
from tracking_backend.app.services.event_bus import EventBus
from tracking_backend.app.services.persistence import PersistenceBridge
from tracking_backend.app.services.route_provider import (
    FallbackRouteProvider, RouteProvider, build_route_provider
)
from tracking_backend.app.services.staleness_reaper import StalenessReaper

logger = logging.getLogger("tracking.service")

# History query bounds
MAX_HISTORY_LIMIT = 100
DEFAULT_HISTORY_LIMIT = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TrackingService:

    def __init__(
        self,
        settings,
        route_provider: Optional[RouteProvider] = None,
        persistence: Optional[PersistenceBridge] = None,
        event_bus: Optional[EventBus] = None,
        registry: Optional[TripRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.clock = clock
        self.registry = registry or TripRegistry()
        self.event_bus = event_bus or EventBus()
        self.persistence = persistence
        self.progress_engine = ProgressEngine.from_settings(settings)
        self.analytics_engine = AnalyticsEngine()

        self._fallback_routes = FallbackRouteProvider(
            default_speed_kmh=settings.default_speed_kmh,
            eta_buffer_pct=settings.eta_buffer_pct,
        )
        self.route_provider = route_provider or self._fallback_routes

        self.reaper = StalenessReaper(
            registry=self.registry,
            event_bus=self.event_bus,
            stop_trip=self._stop,
            clock=clock,
            update_timeout_seconds=settings.update_timeout_seconds,
            max_age_seconds=settings.max_trip_age_seconds,
            interval_seconds=settings.reaper_interval_seconds,
        )
        self._started_monotonic = time.monotonic()

    # Lifecycle

    def start_background_tasks(self) -> None:
        if self.settings.reaper_enabled:
            self.reaper.start()

    async def shutdown(self) -> None:
        await self.reaper.stop()
        await self.route_provider.aclose()

    # Public operations

    async def start_tracking(self, trip_id: str, trip_data: Union[TripStartRequest, Dict[str, Any]]) -> TripState:
        """
        Start tracking a trip.

        Raises:
            InvalidTripDataError: missing ids or pickup/dropoff coordinates
            AlreadyTrackingError: the trip already has a live entry
        """
        request = self._parse_trip_data(trip_id, trip_data)

        now = self.clock()
        radius = self.settings.geofence_radius_km
        state = TripState(
            trip_id=trip_id,
            booking_id=request.booking_id,
            driver_id=request.driver_id,
            customer_id=request.customer_id,
            start_time=now,
            last_update=now,
            pickup_zone=GeofenceZone(type=GeofenceType.PICKUP, center=request.pickup.coordinates, radius_km=radius),
            dropoff_zone=GeofenceZone(type=GeofenceType.DROPOFF, center=request.dropoff.coordinates, radius_km=radius),
        )
        self.progress_engine.seed_progress(state, request.driver_location)

        self.registry.register(trip_id, state)

        async with self.registry.locked(trip_id) as state:
            state.route = await self._plan_route(request)
            await self._persist(state)
            snapshot = state.snapshot()

        await self.event_bus.publish(TrackingEvent(
            type=TrackingEventType.TRACKING_STARTED,
            trip_id=trip_id,
            timestamp=now,
            data={
                "bookingId": snapshot.booking_id,
                "driverId": snapshot.driver_id,
                "customerId": snapshot.customer_id,
                "startTime": snapshot.start_time.isoformat(),
                "route": snapshot.route.model_dump(mode="json"),
                "progress": snapshot.progress.model_dump(mode="json"),
            },
        ))

        logger.info(
            "Trip tracking started",
            extra={"trip_id": trip_id, "booking_id": state.booking_id, "route_source": snapshot.route.source.value}
        )
        return snapshot

    async def update_location(self, trip_id: str, location: Union[LocationUpdate, Dict[str, Any]]) -> TripState:
        """
        Record a driver location report.

        Raises:
            TripNotFoundError: the trip is not tracked
            InvalidLocationError: coordinates out of range; nothing is written
        """
        if not self.registry.contains(trip_id):
            raise TripNotFoundError(trip_id)
        update = parse_location(location)

        async with self.registry.locked(trip_id) as state:
            events = self.progress_engine.apply(state, update, self.clock())
            await self._persist(state)
            snapshot = state.snapshot()

        # Subscribers run outside the lock and may call back into the service
        await self.event_bus.publish_all(events)
        for event in events:
            if event.type == TrackingEventType.GEOFENCE_TRIGGERED:
                logger.info("Geofence triggered", extra={"trip_id": trip_id, "zone": event.data["type"]})
        return snapshot

    async def get_status(self, trip_id: str) -> TripState:
        return self.registry.get(trip_id).snapshot()

    async def get_history(
        self,
        trip_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> LocationHistoryResponse:
        """Most recent `limit` samples inside the optional time window, oldest first."""
        state = self.registry.get(trip_id)

        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_HISTORY_LIMIT:
            raise InvalidHistoryQueryError(f"Limit must be between 1 and {MAX_HISTORY_LIMIT}")
        start_time, end_time = _as_utc(start_time), _as_utc(end_time)
        if start_time and end_time and start_time > end_time:
            raise InvalidHistoryQueryError("start_time must not be after end_time")

        locations = [
            sample for sample in state.location_history
            if (start_time is None or sample.timestamp >= start_time)
            and (end_time is None or sample.timestamp <= end_time)
        ][-limit:]

        return LocationHistoryResponse(
            trip_id=trip_id,
            locations=locations,
            total=len(locations),
            start_time=state.start_time,
            last_update=state.last_update,
        )

    async def get_analytics(self, trip_id: str) -> TripAnalyticsReport:
        state = self.registry.get(trip_id)
        analytics = self.analytics_engine.compute(state)
        if analytics is None:
            return TripAnalyticsReport(
                trip_id=trip_id,
                available=False,
                reason="Insufficient data for analytics",
            )
        return TripAnalyticsReport(trip_id=trip_id, available=True, analytics=analytics)

    async def get_eta(self, trip_id: str) -> TripEtaResponse:
        state = self.registry.get(trip_id)
        progress = state.progress
        return TripEtaResponse(
            trip_id=trip_id,
            current_location=state.current_location,
            pickup=WaypointEta(
                distance_km=progress.distance_to_pickup_km,
                eta_min=progress.eta_to_pickup_min,
                is_at_location=progress.is_at_pickup,
            ),
            dropoff=WaypointEta(
                distance_km=progress.distance_to_dropoff_km,
                eta_min=progress.eta_to_dropoff_min,
                is_at_location=progress.is_at_dropoff,
            ),
            route=state.route,
            current_stage=progress.current_stage,
            last_update=state.last_update,
        )

    async def stop_tracking(self, trip_id: str, reason: Union[StopReason, str] = StopReason.COMPLETED) -> TripState:
        """
        Stop tracking and remove the trip from the registry.

        Raises:
            TripNotFoundError: unknown or already stopped trip
        """
        reason = getattr(reason, "value", reason)
        if not isinstance(reason, str) or not reason.strip():
            raise InvalidTripDataError(["reason must be a non-empty string"])
        return await self._stop(trip_id, reason.strip())

    async def list_active(self) -> List[TripState]:
        return [state.snapshot() for state in self.registry.list()]

    async def cleanup_expired(self, max_age: Union[timedelta, float, None] = None) -> List[str]:
        """Stop every trip whose last update is older than `max_age` (seconds or timedelta)."""
        if max_age is None:
            max_age = timedelta(seconds=self.settings.max_trip_age_seconds)
        elif not isinstance(max_age, timedelta):
            max_age = timedelta(seconds=max_age)

        if max_age.total_seconds() < self.settings.min_cleanup_age_seconds:
            raise InvalidCleanupAgeError(max_age.total_seconds(), self.settings.min_cleanup_age_seconds)
        return await self.reaper.sweep(max_age)

    async def check_update_timeouts(self) -> List[str]:
        return await self.reaper.check_timeouts()

    async def get_statistics(self) -> TrackingStatistics:
        return TrackingStatistics(
            active_trips=len(self.registry),
            events_published=self.event_bus.counts(),
            subscribers=self.event_bus.subscriber_count,
            uptime_seconds=round(time.monotonic() - self._started_monotonic, 3),
        )

    async def recover_trip(self, trip_id: str) -> TripState:
        """Re-register a live trip from the cache or durable tier after a restart."""
        if self.registry.contains(trip_id):
            return await self.get_status(trip_id)
        state = await self.persistence.load(trip_id) if self.persistence else None
        if state is None:
            raise TripNotFoundError(trip_id)
        self.registry.register(trip_id, state)
        logger.info("Trip tracking recovered", extra={"trip_id": trip_id})
        return state.snapshot()

    async def restore_active_trips(self) -> int:
        """Register every trip the durable tier still marks active."""
        if self.persistence is None:
            return 0
        restored = 0
        for state in await self.persistence.load_active():
            if not self.registry.contains(state.trip_id):
                self.registry.register(state.trip_id, state)
                restored += 1
        if restored:
            logger.info("Restored active trips", extra={"count": restored})
        return restored

    # Internals

    def _parse_trip_data(self, trip_id: str, trip_data) -> TripStartRequest:
        errors = []
        if not isinstance(trip_id, str) or not trip_id.strip():
            errors.append("tripId is required")
        if isinstance(trip_data, TripStartRequest):
            request = trip_data
        else:
            try:
                request = TripStartRequest.model_validate(trip_data or {})
            except ValidationError as e:
                errors.extend(
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
                )
                request = None
        if errors:
            raise InvalidTripDataError(errors)
        return request

    async def _plan_route(self, request: TripStartRequest) -> Route:
        """The trip route runs pickup -> dropoff; the driver's position only shapes the directions request."""
        pickup = request.pickup.coordinates
        dropoff = request.dropoff.coordinates
        driver_location = request.driver_location

        try:
            return await self.route_provider.plan_route(pickup, dropoff, [pickup], driver_location)
        except Exception as exc:
            logger.warning("Route planning failed, using fallback route", extra={"error": repr(exc)})
            return await self._fallback_routes.plan_route(pickup, dropoff, [pickup], driver_location)

    async def _persist(self, state: TripState) -> None:
        if self.persistence is not None:
            await self.persistence.save(state)

    async def _stop(
        self,
        trip_id: str,
        reason: str,
        condition: Optional[Callable[[TripState], bool]] = None,
    ) -> Optional[TripState]:
        """
        The single stop path for callers and the reaper. With a `condition`,
        the trip is only stopped if it still holds under the lock.
        """
        async with self.registry.locked(trip_id) as state:
            if condition is not None and not condition(state):
                return None

            now = self.clock()
            state.status = TrackingStatus.COMPLETED if reason == StopReason.COMPLETED.value else TrackingStatus.STOPPED
            state.stop_reason = reason
            state.end_time = now
            state.last_update = max(state.last_update, now)

            summary = self._summary(state)
            # Final write lands before the id can be reused by a new start
            if self.persistence is not None:
                await self.persistence.finalize(state)
            self.registry.remove(trip_id)
            final = state.snapshot()

        await self.event_bus.publish(TrackingEvent(
            type=TrackingEventType.TRACKING_STOPPED,
            trip_id=trip_id,
            timestamp=now,
            data={"reason": reason, "summary": summary},
        ))

        logger.info("Trip tracking stopped", extra={"trip_id": trip_id, "reason": reason})
        return final

    def _summary(self, state: TripState) -> Dict[str, Any]:
        analytics = self.analytics_engine.compute(state)
        return {
            "status": state.status.value,
            "start_time": state.start_time.isoformat(),
            "end_time": state.end_time.isoformat() if state.end_time else None,
            "duration_min": round((state.last_update - state.start_time).total_seconds() / 60, 2),
            "location_updates": state.samples_received,
            "final_stage": state.progress.current_stage.value,
            "pickup_reached": state.pickup_zone.triggered,
            "dropoff_reached": state.dropoff_zone.triggered,
            "analytics": analytics.model_dump(mode="json") if analytics else None,
        }


def build_tracking_service(settings, redis_client=None, session_factory=None) -> TrackingService:
    """Wire the service against the configured Redis, database and route provider."""
    persistence = None
    if redis_client is not None and session_factory is not None:
        persistence = PersistenceBridge(
            redis_client,
            session_factory,
            cache_ttl_seconds=settings.cache_ttl_seconds,
            timeout_seconds=settings.persistence_timeout_seconds,
        )
    return TrackingService(
        settings,
        route_provider=build_route_provider(settings),
        persistence=persistence,
    )
