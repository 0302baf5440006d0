"""
Trip analytics tests.
"""

from datetime import timedelta

import pytest

from tracking_backend.app.domain.tracking.analytics import AnalyticsEngine
from tracking_backend.app.domain.tracking.geo import haversine_km
from tracking_backend.app.domain.tracking.state import LocationSample, Route
from tracking_backend.app.models.tracking_enums import RouteSource
from tracking_backend.tests.simulation import DRIVER_START, PICKUP, START_TIME, make_state


def sample(point, seconds, index):
    return LocationSample(
        latitude=point["latitude"],
        longitude=point["longitude"],
        timestamp=START_TIME + timedelta(seconds=seconds),
        index=index,
    )


def state_with(samples, route_km=None):
    state = make_state()
    state.location_history = samples
    state.samples_received = len(samples)
    state.current_location = samples[-1] if samples else None
    state.last_update = samples[-1].timestamp if samples else START_TIME
    if route_km is not None:
        state.route = Route(distance_km=route_km, duration_min=5, source=RouteSource.FALLBACK)
    return state


def test_unavailable_without_enough_samples():
    engine = AnalyticsEngine()
    assert engine.compute(state_with([])) is None
    assert engine.compute(state_with([sample(PICKUP, 0, 0)])) is None


def test_distance_speed_and_time():
    engine = AnalyticsEngine()
    state = state_with([sample(DRIVER_START, 0, 0), sample(PICKUP, 180, 1)], route_km=1.2)

    analytics = engine.compute(state)
    leg = haversine_km(DRIVER_START["latitude"], DRIVER_START["longitude"], PICKUP["latitude"], PICKUP["longitude"])

    assert analytics.total_distance_km == pytest.approx(leg, abs=0.001)
    # 1.2 km in 3 minutes
    assert analytics.average_speed_kmh == pytest.approx(leg / 0.05, abs=0.01)
    assert analytics.total_time_min == 3
    assert analytics.location_updates == 2
    assert analytics.stops_count == 0
    assert analytics.efficiency_pct == 100


def test_zero_time_span_reports_zero_speed():
    engine = AnalyticsEngine()
    analytics = engine.compute(state_with([sample(DRIVER_START, 0, 0), sample(PICKUP, 0, 1)]))
    assert analytics.average_speed_kmh == 0


def test_counts_stops():
    engine = AnalyticsEngine()
    samples = [
        sample(DRIVER_START, 0, 0),
        sample(DRIVER_START, 60, 1),   # stationary for a minute: stop
        sample(DRIVER_START, 70, 2),   # stationary but only 10 s: not a stop
        sample(PICKUP, 200, 3),
        sample(PICKUP, 245, 4),        # stop
    ]
    assert engine.compute(state_with(samples)).stops_count == 2


def test_efficiency_unknown_without_travel_or_route():
    engine = AnalyticsEngine()
    stationary = state_with([sample(PICKUP, 0, 0), sample(PICKUP, 60, 1)], route_km=1.0)
    assert engine.compute(stationary).efficiency_pct is None

    no_route = state_with([sample(DRIVER_START, 0, 0), sample(PICKUP, 60, 1)])
    assert engine.compute(no_route).efficiency_pct is None


def test_efficiency_detour():
    # Planned half of what was driven
    assert AnalyticsEngine.efficiency(1.0, 2.0) == 50
    assert AnalyticsEngine.efficiency(0.0, 2.0) == 0
