"""Geodesy helpers: distance, bearing, compass direction, formatting.

Pure functions, spherical Earth (no ellipsoidal correction). None of them
raise for finite numeric input; a NaN or infinite bearing or distance is a
ValueError. Callers check coordinates with ``is_valid_coordinate`` first.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal

# Earth radius in meters (for Haversine).
EARTH_RADIUS_M = 6_371_000.0

COMPASS_POINTS = (
    "N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
    "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW",
)
_SECTOR_DEG = 360.0 / len(COMPASS_POINTS)


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like a person would: 0.5 goes up, 12.345 -> 12.35."""
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two points."""
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(a, 1.0)))


def bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> int:
    """Initial bearing in whole degrees [0, 360) from point 1 to point 2."""
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dl = math.radians(lon2 - lon1)
    x = math.sin(dl) * math.cos(p2)
    y = math.cos(p1) * math.sin(p2) - math.sin(p1) * math.cos(p2) * math.cos(dl)
    raw = (math.degrees(math.atan2(x, y)) + 360) % 360
    # 359.6 rounds to 360, which is north again.
    return int(math.floor(raw + 0.5)) % 360


def compass_direction(bearing_deg: float) -> str:
    """16-point compass label for a bearing; accepts values >= 360."""
    if not math.isfinite(bearing_deg):
        raise ValueError(f"bearing must be finite, got {bearing_deg}")
    normalized = bearing_deg % 360
    index = int(math.floor((normalized + _SECTOR_DEG / 2) / _SECTOR_DEG)) % len(COMPASS_POINTS)
    return COMPASS_POINTS[index]


def format_distance(meters: float) -> str:
    """'500 m' below one kilometer, '1.50 km' from there on."""
    if not math.isfinite(meters):
        raise ValueError(f"distance must be finite, got {meters}")
    if meters < 1000:
        return f"{int(round_half_up(meters))} m"
    return f"{round_half_up(meters / 1000, 2):.2f} km"


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_valid_coordinate(lat: object, lon: object) -> bool:
    """True iff lat is in [-90, 90] and lon in [-180, 180], inclusive."""
    if not (_is_number(lat) and _is_number(lon)):
        return False
    return -90 <= lat <= 90 and -180 <= lon <= 180
