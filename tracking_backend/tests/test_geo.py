"""
Geographic helper tests.
"""

import math

import pytest

from tracking_backend.app.domain.tracking import geo
from tracking_backend.tests.simulation import DROPOFF, PICKUP


def test_haversine_same_point_is_zero():
    for lat, lon in [(0, 0), (12.9716, 77.5946), (-33.86, 151.21), (90, 0), (-90, 180)]:
        assert geo.haversine_km(lat, lon, lat, lon) == 0


def test_haversine_is_symmetric():
    a = (PICKUP["latitude"], PICKUP["longitude"])
    b = (DROPOFF["latitude"], DROPOFF["longitude"])
    assert geo.haversine_km(*a, *b) == pytest.approx(geo.haversine_km(*b, *a))


def test_haversine_known_distance():
    distance = geo.haversine_km(PICKUP["latitude"], PICKUP["longitude"], DROPOFF["latitude"], DROPOFF["longitude"])
    assert distance == pytest.approx(0.87, abs=0.01)

    # One degree of latitude along a meridian
    assert geo.haversine_km(0, 0, 1, 0) == pytest.approx(111.19, abs=0.01)


def test_haversine_antipodal_points_stay_finite():
    distance = geo.haversine_km(0, 0, 0, 180)
    assert distance == pytest.approx(math.pi * geo.EARTH_RADIUS_KM)


def test_round_half_up():
    assert geo.round_half_up(2.5) == 3
    assert geo.round_half_up(0.5) == 1
    assert geo.round_half_up(0.4) == 0
    assert geo.round_half_up(1.2345, 3) == pytest.approx(1.235)


@pytest.mark.parametrize("distance,speed,expected", [
    (10, 30, 24),   # 20 min + 4 min buffer
    (2.5, None, 7),  # default 25 km/h: 6 min + 1 min
    (0, 40, 0),
    (1.2, 0, 4),    # zero speed uses the default
])
def test_eta_minutes(distance, speed, expected):
    assert geo.eta_minutes(distance, speed) == expected


def test_eta_minutes_is_finite_for_negative_speed():
    assert geo.eta_minutes(5, -10) == geo.eta_minutes(5, None)


def test_bearing_cardinal_directions():
    assert geo.bearing_degrees(0, 0, 1, 0) == pytest.approx(0)
    assert geo.bearing_degrees(0, 0, 0, 1) == pytest.approx(90)
    assert geo.bearing_degrees(1, 0, 0, 0) == pytest.approx(180)
    assert geo.bearing_degrees(0, 1, 0, 0) == pytest.approx(270)
