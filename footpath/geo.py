"""Great-circle helpers shared by the gates and the exploration index."""

from __future__ import annotations

import math
from datetime import datetime, timezone

from .config import EARTH_RADIUS_M

# Metres spanned by one degree of latitude on the haversine sphere.
METRES_PER_DEGREE = EARTH_RADIUS_M * math.pi / 180.0


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Return the haversine distance in metres between two lat/lng pairs."""

    sin = math.sin
    cos = math.cos
    radians = math.radians
    lat1_rad = radians(lat1)
    lat2_rad = radians(lat2)
    delta_lat = lat2_rad - lat1_rad
    delta_lng = radians(lng2 - lng1)
    sin_half_lat = sin(delta_lat / 2.0)
    sin_half_lng = sin(delta_lng / 2.0)
    a = sin_half_lat**2 + cos(lat1_rad) * cos(lat2_rad) * sin_half_lng**2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def offset_by_metres(
    lat: float, lng: float, north_m: float = 0.0, east_m: float = 0.0
) -> tuple[float, float]:
    """Shift a coordinate by a small metric offset (flat-earth approximation)."""

    d_lat = north_m / METRES_PER_DEGREE
    cos_lat = max(math.cos(math.radians(lat)), 1e-12)
    d_lng = east_m / (METRES_PER_DEGREE * cos_lat)
    return lat + d_lat, lng + d_lng


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so elapsed-time arithmetic never raises."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
