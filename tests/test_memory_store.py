"""Tests for the in-memory session store."""

from __future__ import annotations

import pytest

from conftest import T0, make_point
from footpath.errors import SessionNotFoundError, SessionStoreError
from footpath.models import StorageMode, TrackingSession
from footpath.store.memory import InMemorySessionStore


def _draft(user_id: str = "u1", **kwargs) -> TrackingSession:
    return TrackingSession(id="", user_id=user_id, start_time=T0, **kwargs)


def test_create_assigns_unique_ids() -> None:
    store = InMemorySessionStore()

    first = store.create_session(_draft())
    second = store.create_session(_draft())

    assert first and second and first != second
    assert store.get_session(first).id == first


def test_append_is_a_set_union() -> None:
    store = InMemorySessionStore()
    session_id = store.create_session(_draft())
    a, b, c = (make_point(north_m=15.0 * i, seconds=10 * i) for i in range(3))

    store.append_points(session_id, [a, b])
    store.append_points(session_id, [b, c, a])

    assert store.get_session(session_id).points == [a, b, c]


def test_append_records_storage_mode_and_distance() -> None:
    store = InMemorySessionStore()
    session_id = store.create_session(_draft())

    store.append_points(
        session_id, [make_point()], storage_mode="areas_only", min_distance_m=20.0
    )

    stored = store.get_session(session_id)
    assert stored.storage_mode is StorageMode.AREAS_ONLY
    assert stored.min_distance_m == 20.0


def test_unknown_session_raises_not_found() -> None:
    store = InMemorySessionStore()

    with pytest.raises(SessionNotFoundError):
        store.append_points("missing", [make_point()])
    with pytest.raises(SessionNotFoundError):
        store.end_session("missing", T0)


def test_queries_filter_by_user_and_activity() -> None:
    store = InMemorySessionStore()
    active = store.create_session(_draft())
    ended = store.create_session(_draft())
    store.create_session(_draft("u2"))
    store.end_session(ended, T0)

    assert [s.id for s in store.query_active_sessions("u1")] == [active]
    assert {s.id for s in store.query_all_sessions("u1")} == {active, ended}


def test_returned_sessions_are_copies() -> None:
    store = InMemorySessionStore()
    session_id = store.create_session(_draft())
    store.append_points(session_id, [make_point()])

    store.get_session(session_id).points.clear()
    store.query_all_sessions("u1")[0].points.clear()

    assert len(store.get_session(session_id).points) == 1


def test_fail_next_raises_then_recovers() -> None:
    store = InMemorySessionStore()
    store.fail_next(2)

    with pytest.raises(SessionStoreError):
        store.create_session(_draft())
    with pytest.raises(SessionStoreError):
        store.query_active_sessions("u1")

    assert store.create_session(_draft())


def test_put_session_keeps_given_id() -> None:
    store = InMemorySessionStore()
    session = TrackingSession(id="abc", user_id="u1", start_time=T0)

    assert store.put_session(session) == "abc"
    assert store.get_session("abc").user_id == "u1"


def test_send_beacon_closes_session() -> None:
    store = InMemorySessionStore()
    session_id = store.create_session(_draft())
    point = make_point()

    assert store.send_beacon(session_id, [point], T0)
    assert not store.send_beacon("missing", [], T0)

    stored = store.get_session(session_id)
    assert not stored.is_active
    assert stored.end_time == T0
    assert stored.points == [point]
