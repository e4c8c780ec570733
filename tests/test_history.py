"""Tests for loading and caching historic exploration."""

from __future__ import annotations

import logging
from datetime import timedelta

import pytest

from conftest import T0, FakeClock, make_point
from footpath.errors import SessionStoreError
from footpath.exploration.history import ExplorationHistory, combined_areas
from footpath.exploration.index import grid_index_for
from footpath.models import TrackingSession


class FakeTimer:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


def _session(store, *, north_m: float, active: bool, minutes: int = 0) -> str:
    points = [
        make_point(north_m=north_m + 50.0 * i, seconds=10 * i) for i in range(3)
    ]
    return store.put_session(
        TrackingSession(
            id="",
            user_id="user-1",
            start_time=T0 + timedelta(minutes=minutes),
            points=points,
            is_active=active,
        )
    )


def test_history_uses_only_ended_sessions(store) -> None:
    _session(store, north_m=0.0, active=False)
    _session(store, north_m=1000.0, active=False, minutes=30)
    _session(store, north_m=5000.0, active=True, minutes=60)

    snapshot = ExplorationHistory(store).load("user-1")

    assert snapshot.session_count == 2
    assert snapshot.total_points_count == 6
    assert len(snapshot.areas) == 6
    assert snapshot.stats.explored_points == 6
    assert "error" not in snapshot.metadata


def test_history_ignores_other_users(store) -> None:
    store.put_session(
        TrackingSession(
            id="",
            user_id="someone-else",
            start_time=T0,
            points=[make_point()],
            is_active=False,
        )
    )

    snapshot = ExplorationHistory(store).load("user-1")

    assert snapshot.areas == []
    assert snapshot.session_count == 0


def test_history_is_cached_until_ttl_expires(store) -> None:
    _session(store, north_m=0.0, active=False)
    timer = FakeTimer()
    history = ExplorationHistory(store, ttl=300, timer=timer)

    first = history.load("user-1")
    _session(store, north_m=2000.0, active=False, minutes=30)
    second = history.load("user-1")

    assert second is first
    assert history.loads == 1

    timer.value = 301.0
    third = history.load("user-1")

    assert history.loads == 2
    assert third.session_count == 2


def test_force_refresh_and_invalidate_bypass_cache(store) -> None:
    _session(store, north_m=0.0, active=False)
    history = ExplorationHistory(store, timer=FakeTimer())

    history.load("user-1")
    history.load("user-1", force_refresh=True)
    history.invalidate("user-1")
    history.load("user-1")
    history.invalidate()
    history.load("user-1")

    assert history.loads == 4


def test_failed_load_returns_empty_snapshot_and_is_not_cached(
    store, caplog: pytest.LogCaptureFixture
) -> None:
    _session(store, north_m=0.0, active=False)
    store.fail_next(error=SessionStoreError("backend down"))
    history = ExplorationHistory(store, clock=FakeClock(), timer=FakeTimer())

    with caplog.at_level(logging.ERROR, logger="ExplorationHistory"):
        failed = history.load("user-1")

    assert failed.areas == []
    assert failed.metadata["error"] == "backend down"
    assert failed.loaded_at == T0
    assert "failed to load exploration history" in caplog.text.lower()

    recovered = history.load("user-1")

    assert recovered.session_count == 1


def test_grid_backed_history_matches_default(store) -> None:
    for minutes in range(3):
        _session(store, north_m=20.0 * minutes, active=False, minutes=minutes)

    linear = ExplorationHistory(store).load("user-1")
    grid = ExplorationHistory(store, spatial_index_factory=grid_index_for).load(
        "user-1"
    )

    assert grid.areas == linear.areas


def test_combined_areas_keeps_history_first(store) -> None:
    _session(store, north_m=0.0, active=False)
    snapshot = ExplorationHistory(store).load("user-1")
    live = ExplorationHistory(store).load("user-1").areas[:1]

    combined = combined_areas(snapshot.areas, live)

    assert combined[: len(snapshot.areas)] == snapshot.areas
    assert combined[-1] == live[0]
    assert len(combined) == len(snapshot.areas) + 1
