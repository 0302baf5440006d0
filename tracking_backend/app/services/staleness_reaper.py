"""
Staleness detection for tracked trips.

Two checks run on their own schedule, independent of update traffic:
- update timeout: a trip silent for longer than the threshold gets one
  advisory `timeout` event per silent period; it keeps being tracked.
- max age sweep: trips whose last update is older than the retention
  threshold are stopped with reason "expired" through the regular stop path.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from tracking_backend.app.core.exceptions import TripNotFoundError
from tracking_backend.app.domain.tracking.registry import TripRegistry
from tracking_backend.app.domain.tracking.state import TripState
from tracking_backend.app.models.tracking_enums import StopReason, TrackingEventType
from tracking_backend.app.schemas.tracking import TrackingEvent
from tracking_backend.app.services.event_bus import EventBus

logger = logging.getLogger("tracking.reaper")

# (trip_id, reason, condition) -> stopped snapshot, or None when condition no longer holds
StopTrip = Callable[[str, str, Callable[[TripState], bool]], Awaitable[Optional[TripState]]]


class StalenessReaper:

    def __init__(
        self,
        registry: TripRegistry,
        event_bus: EventBus,
        stop_trip: StopTrip,
        clock: Callable[[], datetime],
        update_timeout_seconds: float = 60,
        max_age_seconds: float = 24 * 60 * 60,
        interval_seconds: float = 30,
    ):
        self.registry = registry
        self.event_bus = event_bus
        self.stop_trip = stop_trip
        self.clock = clock
        self.update_timeout = timedelta(seconds=update_timeout_seconds)
        self.max_age = timedelta(seconds=max_age_seconds)
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    def is_silent(self, state: TripState, now: datetime) -> bool:
        return now - state.last_update > self.update_timeout and state.timeout_notified_at is None

    @staticmethod
    def is_expired(state: TripState, now: datetime, max_age: timedelta) -> bool:
        return now - state.last_update > max_age

    async def check_timeouts(self) -> List[str]:
        """Emit `timeout` for trips that went silent. Returns the flagged ids."""
        flagged = []
        for candidate in self.registry.list():
            if not self.is_silent(candidate, self.clock()):
                continue
            try:
                async with self.registry.locked(candidate.trip_id) as state:
                    now = self.clock()
                    if not self.is_silent(state, now):
                        continue
                    state.timeout_notified_at = now
                    event = TrackingEvent(
                        type=TrackingEventType.TIMEOUT,
                        trip_id=state.trip_id,
                        timestamp=now,
                        data={"lastUpdate": state.last_update.isoformat()},
                    )
            except TripNotFoundError:
                continue
            await self.event_bus.publish(event)
            flagged.append(candidate.trip_id)
            logger.info("Trip location updates timed out", extra={"trip_id": candidate.trip_id})
        return flagged

    async def sweep(self, max_age: Optional[timedelta] = None) -> List[str]:
        """Stop every trip older than `max_age`. Returns the stopped ids."""
        max_age = max_age if max_age is not None else self.max_age
        stopped = []
        for candidate in self.registry.list():
            if not self.is_expired(candidate, self.clock(), max_age):
                continue
            try:
                result = await self.stop_trip(
                    candidate.trip_id,
                    StopReason.EXPIRED.value,
                    lambda state: self.is_expired(state, self.clock(), max_age),
                )
            except TripNotFoundError:
                continue
            if result is not None:
                stopped.append(candidate.trip_id)

        if stopped:
            logger.info("Cleaned up expired trips", extra={"count": len(stopped), "trip_ids": stopped})
        return stopped

    async def run_once(self) -> None:
        await self.check_timeouts()
        await self.sweep()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Staleness sweep failed")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="tracking-staleness-reaper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
