"""Tests for store document conversion."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import T0, make_point
from footpath.models import StorageMode, TrackingSession
from footpath.store.serialization import (
    parse_timestamp,
    point_from_dict,
    session_from_dict,
    session_to_dict,
)


@pytest.mark.parametrize(
    "value",
    [
        T0,
        T0.replace(tzinfo=None),
        "2024-05-01T09:00:00Z",
        "2024-05-01T11:00:00+02:00",
        int(T0.timestamp() * 1000),
        {"seconds": int(T0.timestamp()), "nanoseconds": 0},
        {"_seconds": int(T0.timestamp())},
    ],
)
def test_parse_timestamp_shapes(value) -> None:
    assert parse_timestamp(value) == T0


@pytest.mark.parametrize(
    "value",
    [
        None,
        True,
        "yesterday",
        {"nanos": 5},
        [1, 2],
        1e20,
        float("nan"),
        {"seconds": 1e300},
    ],
)
def test_parse_timestamp_rejects_unusable_values(value) -> None:
    assert parse_timestamp(value) is None


def test_point_from_dict_requires_coordinates_and_time() -> None:
    assert point_from_dict({"lat": 1, "lng": 2}) is None
    assert point_from_dict({"lat": None, "lng": 2, "timestamp": T0}) is None

    point = point_from_dict({"lat": "1.5", "lng": 2, "timestamp": "2024-05-01T09:00Z"})

    assert (point.lat, point.lng, point.timestamp) == (1.5, 2.0, T0)


def test_session_document_uses_store_field_names() -> None:
    session = TrackingSession(
        id="s-1",
        user_id="u1",
        start_time=T0,
        points=[make_point()],
        storage_mode=StorageMode.FULL,
        min_distance_m=12.0,
    )

    document = session_to_dict(session)

    assert set(document) == {
        "userId",
        "points",
        "startTime",
        "isActive",
        "storageMode",
        "minDistance",
    }
    assert document["storageMode"] == "full"

    session.is_active = False
    session.end_time = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    restored = session_from_dict("s-1", session_to_dict(session))

    assert restored == session


def test_session_from_dict_defaults() -> None:
    restored = session_from_dict(
        "s-2",
        {"userId": "u1", "startTime": "2024-05-01T09:00:00Z", "storageMode": "odd"},
    )

    assert restored.storage_mode is StorageMode.INCREMENTAL
    assert restored.min_distance_m == 10.0
    assert restored.points == []
    assert restored.is_active is False


def test_session_from_dict_requires_start_time() -> None:
    with pytest.raises(ValueError):
        session_from_dict("s-3", {"userId": "u1"})


def test_session_from_dict_skips_points_with_out_of_range_timestamps() -> None:
    restored = session_from_dict(
        "s-4",
        {
            "userId": "u1",
            "startTime": "2024-05-01T09:00:00Z",
            "points": [
                {"lat": 1.0, "lng": 2.0, "timestamp": 1e20},
                {"lat": 1.5, "lng": 2.0, "timestamp": "2024-05-01T09:00:00Z"},
            ],
        },
    )

    assert [(p.lat, p.timestamp) for p in restored.points] == [(1.5, T0)]
