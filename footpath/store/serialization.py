"""Conversion between engine models and JSON-friendly store documents.

Documents use the store's camelCase field names. Timestamps are written as
ISO-8601 strings and read back from ISO strings, epoch milliseconds,
``{"seconds": ..., "nanoseconds": ...}`` objects or datetimes, which covers
what document stores hand back for a timestamp field.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from ..config import MIN_DISTANCE_M
from ..models import GeoPoint, StorageMode, TrackingSession


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Return an aware datetime for any supported timestamp shape, else None."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            return None
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
        try:
            return datetime.fromtimestamp(
                float(seconds) + float(nanos) / 1e9, tz=timezone.utc
            )
        except (TypeError, ValueError, OverflowError, OSError):
            return None
    return None


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def point_to_dict(point: GeoPoint) -> Dict[str, Any]:
    return {
        "lat": point.lat,
        "lng": point.lng,
        "timestamp": format_timestamp(point.timestamp),
    }


def point_from_dict(payload: Mapping[str, Any]) -> Optional[GeoPoint]:
    """Build a point from a document entry; None when it is unusable."""

    try:
        lat = float(payload["lat"])
        lng = float(payload["lng"])
    except (KeyError, TypeError, ValueError):
        return None
    timestamp = parse_timestamp(payload.get("timestamp"))
    if timestamp is None:
        return None
    return GeoPoint(lat=lat, lng=lng, timestamp=timestamp)


def points_from_list(payload: Any) -> List[GeoPoint]:
    if not isinstance(payload, list):
        return []
    points = []
    for entry in payload:
        if not isinstance(entry, Mapping):
            continue
        point = point_from_dict(entry)
        if point is not None:
            points.append(point)
    return points


def session_to_dict(session: TrackingSession) -> Dict[str, Any]:
    """Serialise a session; the id is omitted because it is the document key."""

    document: Dict[str, Any] = {
        "userId": session.user_id,
        "points": [point_to_dict(point) for point in session.points],
        "startTime": format_timestamp(session.start_time),
        "isActive": session.is_active,
        "storageMode": session.storage_mode.value,
        "minDistance": session.min_distance_m,
    }
    if session.end_time is not None:
        document["endTime"] = format_timestamp(session.end_time)
    return document


def session_from_dict(session_id: str, payload: Mapping[str, Any]) -> TrackingSession:
    """Build a session from a stored document.

    Raises:
        ValueError: if the document has no usable ``startTime``.
    """

    start_time = parse_timestamp(payload.get("startTime"))
    if start_time is None:
        raise ValueError(f"Session {session_id} has no valid startTime")
    try:
        storage_mode = StorageMode(payload.get("storageMode") or "incremental")
    except ValueError:
        storage_mode = StorageMode.INCREMENTAL
    try:
        min_distance = float(payload.get("minDistance", MIN_DISTANCE_M))
    except (TypeError, ValueError):
        min_distance = MIN_DISTANCE_M
    return TrackingSession(
        id=str(session_id),
        user_id=str(payload.get("userId", "")),
        start_time=start_time,
        points=points_from_list(payload.get("points")),
        end_time=parse_timestamp(payload.get("endTime")),
        is_active=bool(payload.get("isActive", False)),
        storage_mode=storage_mode,
        min_distance_m=min_distance,
    )


__all__ = [
    "format_timestamp",
    "parse_timestamp",
    "point_from_dict",
    "point_to_dict",
    "points_from_list",
    "session_from_dict",
    "session_to_dict",
]
