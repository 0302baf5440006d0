"""
Geographic helpers for trip tracking.

Pure functions: distances, bearings and ETAs.
"""

import math
from typing import Optional

# Radius of Earth in kilometers
EARTH_RADIUS_KM = 6371.0

DEFAULT_SPEED_KMH = 25.0
DEFAULT_ETA_BUFFER_PCT = 20.0


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like a clock reader would: .5 always goes up."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    # Float error can push antipodal points just past 1
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def bearing_degrees(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial great-circle bearing from point 1 to point 2, in [0, 360)."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlon = math.radians(lon2 - lon1)

    x = math.sin(dlon) * math.cos(lat2_rad)
    y = math.cos(lat1_rad) * math.sin(lat2_rad) - math.sin(lat1_rad) * math.cos(lat2_rad) * math.cos(dlon)

    return (math.degrees(math.atan2(x, y)) + 360.0) % 360.0


def eta_minutes(
    distance_km: float,
    speed_kmh: Optional[float] = None,
    default_speed_kmh: float = DEFAULT_SPEED_KMH,
    buffer_pct: float = DEFAULT_ETA_BUFFER_PCT,
) -> int:
    """
    Minutes to cover `distance_km` at `speed_kmh`, plus a traffic buffer.

    A missing or non-positive speed uses the default cruising speed so the
    ETA is always finite.
    """
    speed = speed_kmh if speed_kmh and speed_kmh > 0 else default_speed_kmh
    travel = round_half_up(distance_km / speed * 60)
    buffer = round_half_up(travel * buffer_pct / 100)
    return int(travel + buffer)
