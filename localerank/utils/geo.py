# Coordinate helpers shared by the resolver, the distance engine and the API.
# Pure functions only: no I/O, no caching.

import math
import re
from math import radians, sin, cos, sqrt, asin
from typing import Optional

# Mean Earth radius in kilometers
EARTH_RADIUS_KM = 6371.0

_COORD_STRING = re.compile(r'^\s*([-+]?\d+(?:\.\d+)?)\s*,\s*([-+]?\d+(?:\.\d+)?)\s*$')


def is_valid_coordinate(lat: Optional[float], lon: Optional[float]) -> bool:
    """
    A coordinate is usable only if both parts are real numbers inside the
    WGS84 range and it is not the (0, 0) placeholder that upstream records
    use for "unknown".
    """
    if lat is None or lon is None:
        return False
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(lon):
        return False
    if lat == 0 and lon == 0:
        return False
    return -90 <= lat <= 90 and -180 <= lon <= 180


def round_coordinate(lat: float, lon: float, precision: int = 4) -> tuple[float, float]:
    return round(lat, precision), round(lon, precision)


def haversine(lat1: float, lon1: float, lat2: float, lon2: float, precision: Optional[int] = None) -> float:
    """
    Great-circle distance in kilometers between two points given in decimal degrees.

    Args:
        lat1: Latitude of point 1.
        lon1: Longitude of point 1.
        lat2: Latitude of point 2.
        lon2: Longitude of point 2.
        precision: When set, both points are rounded to this many decimals
            first, so GPS jitter below the rounding step yields the same value.

    Returns:
        Distance between the two points in kilometers.
    """
    if precision is not None:
        lat1, lon1 = round_coordinate(lat1, lon1, precision)
        lat2, lon2 = round_coordinate(lat2, lon2, precision)

    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlon = lon2 - lon1
    dlat = lat2 - lat1

    a = sin(dlat / 2)**2 + cos(lat1) * cos(lat2) * sin(dlon / 2)**2
    # Clamp: float error can push `a` a hair above 1 for antipodal points
    return 2 * EARTH_RADIUS_KM * asin(sqrt(min(1.0, a)))


def format_distance(distance_km: Optional[float]) -> Optional[str]:
    """Short badge text: metres under 1 km, one decimal under 10 km, whole km beyond."""
    if distance_km is None:
        return None
    if distance_km < 1:
        return f"{round(distance_km * 1000)}m"
    if distance_km < 10:
        return f"{distance_km:.1f}km"
    return f"{round(distance_km)}km"


def parse_coordinate_string(value: str) -> Optional[tuple[float, float]]:
    """Parse "lat,lon" input; returns None when it is not a valid coordinate."""
    if not value:
        return None
    match = _COORD_STRING.match(value)
    if not match:
        return None
    lat, lon = float(match.group(1)), float(match.group(2))
    if not is_valid_coordinate(lat, lon):
        return None
    return lat, lon
