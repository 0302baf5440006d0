"""
Post-hoc trip analytics over the location history.

Computed on demand, never on the update path.
"""

from datetime import datetime
from typing import List, Optional

from tracking_backend.app.domain.tracking.geo import haversine_km, round_half_up
from tracking_backend.app.domain.tracking.state import LocationSample, TripAnalytics, TripState

# A stop is low displacement sustained over time
STOP_DISTANCE_THRESHOLD_KM = 0.001  # 1 meter
STOP_TIME_THRESHOLD_SECONDS = 30


class AnalyticsEngine:

    def __init__(
        self,
        stop_distance_km: float = STOP_DISTANCE_THRESHOLD_KM,
        stop_time_seconds: float = STOP_TIME_THRESHOLD_SECONDS,
    ):
        self.stop_distance_km = stop_distance_km
        self.stop_time_seconds = stop_time_seconds

    def compute(self, state: TripState) -> Optional[TripAnalytics]:
        """
        Summarize a trip. Returns None with fewer than two samples so an
        absent measurement is never reported as zeros.
        """
        history = state.location_history
        if len(history) < 2:
            return None

        total_distance = self.total_distance(history)
        planned = state.route.distance_km if state.route else None

        return TripAnalytics(
            total_distance_km=round_half_up(total_distance, 3),
            average_speed_kmh=round_half_up(self.average_speed(history, total_distance), 2),
            total_time_min=int(round_half_up(self.elapsed_minutes(state.start_time, state.last_update))),
            stops_count=self.count_stops(history),
            efficiency_pct=self.efficiency(planned, total_distance),
            location_updates=len(history),
            last_update=state.last_update,
        )

    @staticmethod
    def total_distance(history: List[LocationSample]) -> float:
        return sum(
            haversine_km(prev.latitude, prev.longitude, curr.latitude, curr.longitude)
            for prev, curr in zip(history, history[1:])
        )

    @staticmethod
    def average_speed(history: List[LocationSample], total_distance_km: float) -> float:
        hours = (history[-1].timestamp - history[0].timestamp).total_seconds() / 3600
        return total_distance_km / hours if hours > 0 else 0.0

    @staticmethod
    def elapsed_minutes(start: datetime, end: datetime) -> float:
        return max(0.0, (end - start).total_seconds() / 60)

    def count_stops(self, history: List[LocationSample]) -> int:
        stops = 0
        for prev, curr in zip(history, history[1:]):
            moved = haversine_km(prev.latitude, prev.longitude, curr.latitude, curr.longitude)
            waited = (curr.timestamp - prev.timestamp).total_seconds()
            if moved < self.stop_distance_km and waited > self.stop_time_seconds:
                stops += 1
        return stops

    @staticmethod
    def efficiency(planned_distance_km: Optional[float], total_distance_km: float) -> Optional[int]:
        """Planned over traveled distance; 100 is a perfect run, lower means detours."""
        if planned_distance_km is None or total_distance_km <= 0:
            return None
        return int(round_half_up(planned_distance_km / total_distance_km * 100))
