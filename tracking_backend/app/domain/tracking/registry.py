"""
Registry of trips currently being tracked.

Single authority for "is this trip being tracked". Each trip owns its own
asyncio.Lock so updates to different trips never wait on each other.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List

from tracking_backend.app.core.exceptions import AlreadyTrackingError, TripNotFoundError
from tracking_backend.app.domain.tracking.state import TripState


class TripRegistry:

    def __init__(self):
        self._trips: Dict[str, TripState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def register(self, trip_id: str, state: TripState) -> None:
        """Add a live trip. Raises AlreadyTrackingError instead of overwriting."""
        if trip_id in self._trips:
            raise AlreadyTrackingError(trip_id)
        self._trips[trip_id] = state
        self._locks[trip_id] = asyncio.Lock()

    def get(self, trip_id: str) -> TripState:
        try:
            return self._trips[trip_id]
        except KeyError:
            raise TripNotFoundError(trip_id) from None

    def remove(self, trip_id: str) -> TripState:
        try:
            state = self._trips.pop(trip_id)
        except KeyError:
            raise TripNotFoundError(trip_id) from None
        # Waiters on the old lock re-check membership and see the removal
        self._locks.pop(trip_id, None)
        return state

    def contains(self, trip_id: str) -> bool:
        return trip_id in self._trips

    def list(self) -> List[TripState]:
        """Copy of the live entries; later registrations do not affect it."""
        return list(self._trips.values())

    def __len__(self) -> int:
        return len(self._trips)

    @asynccontextmanager
    async def locked(self, trip_id: str) -> AsyncIterator[TripState]:
        """
        Exclusive section for one trip.

        Yields the live state. Raises TripNotFoundError if the trip is not
        tracked, including when it was removed while we waited for the lock.
        """
        lock = self._locks.get(trip_id)
        if lock is None:
            raise TripNotFoundError(trip_id)

        async with lock:
            state = self._trips.get(trip_id)
            if state is None or self._locks.get(trip_id) is not lock:
                raise TripNotFoundError(trip_id)
            yield state
