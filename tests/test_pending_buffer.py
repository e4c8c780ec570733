"""Tests for the pending-point batch buffer."""

from __future__ import annotations

import logging
import threading
from typing import List, Optional, Sequence

import pytest

from conftest import T0, ManualTimerFactory, make_point
from footpath.errors import SessionStoreError
from footpath.models import GeoPoint, TrackingSession
from footpath.store.memory import InMemorySessionStore
from footpath.tracking.buffer import PendingBatchBuffer


def _open_session(store: InMemorySessionStore) -> str:
    return store.create_session(TrackingSession(id="", user_id="u1", start_time=T0))


def test_flush_appends_batch_and_empties_queue(store, timers) -> None:
    session_id = _open_session(store)
    buffer = PendingBatchBuffer(store, timer_factory=timers)
    for i in range(5):
        assert buffer.enqueue(make_point(north_m=15.0 * i, seconds=10 * i)) == i + 1

    assert buffer.flush(session_id)

    assert buffer.pending_count == 0
    assert len(store.append_calls) == 1
    assert len(store.get_session(session_id).points) == 5


def test_flush_with_nothing_pending_does_not_call_store(store) -> None:
    session_id = _open_session(store)
    buffer = PendingBatchBuffer(store)

    assert buffer.flush(session_id)
    assert store.append_calls == []


def test_failed_flush_keeps_points_for_retry(store, caplog) -> None:
    session_id = _open_session(store)
    buffer = PendingBatchBuffer(store)
    points = [make_point(north_m=15.0 * i, seconds=10 * i) for i in range(3)]
    for point in points:
        buffer.enqueue(point)
    store.fail_next()

    with caplog.at_level(logging.WARNING, logger="PendingBatchBuffer"):
        assert not buffer.flush(session_id)

    assert buffer.pending_count == 3
    assert isinstance(buffer.last_error, SessionStoreError)
    assert "failed to flush 3 pending points" in caplog.text.lower()

    assert buffer.flush(session_id)
    assert buffer.pending_count == 0
    assert buffer.last_error is None
    assert store.get_session(session_id).points == points


def test_resending_a_batch_does_not_duplicate_points(store) -> None:
    session_id = _open_session(store)
    points = [make_point(north_m=15.0 * i, seconds=10 * i) for i in range(4)]

    store.append_points(session_id, points[:3])
    buffer = PendingBatchBuffer(store)
    for point in points:
        buffer.enqueue(point)
    buffer.flush(session_id)

    assert store.get_session(session_id).points == points


def test_flush_forwards_storage_settings(store) -> None:
    session_id = _open_session(store)
    buffer = PendingBatchBuffer(store, storage_mode="full", min_distance_m=5.0)
    buffer.enqueue(make_point())

    buffer.flush(session_id)

    stored = store.get_session(session_id)
    assert stored.storage_mode.value == "full"
    assert stored.min_distance_m == 5.0


class BlockingStore(InMemorySessionStore):
    """Store whose append blocks until released, to model a slow network."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def append_points(
        self,
        session_id: str,
        points: Sequence[GeoPoint],
        *,
        storage_mode: str = "incremental",
        min_distance_m: Optional[float] = None,
    ) -> None:
        self.entered.set()
        assert self.release.wait(2.0)
        super().append_points(
            session_id,
            points,
            storage_mode=storage_mode,
            min_distance_m=min_distance_m,
        )


def test_points_enqueued_during_flush_stay_pending() -> None:
    store = BlockingStore()
    session_id = _open_session(store)
    buffer = PendingBatchBuffer(store)
    first = [make_point(north_m=15.0 * i, seconds=10 * i) for i in range(3)]
    for point in first:
        buffer.enqueue(point)
    results: List[bool] = []

    worker = threading.Thread(target=lambda: results.append(buffer.flush(session_id)))
    worker.start()
    assert store.entered.wait(2.0)

    late = make_point(north_m=100.0, seconds=60)
    buffer.enqueue(late)
    # A second, non-blocking flush is skipped while the first is in flight.
    assert not buffer.flush(session_id, blocking=False)

    store.release.set()
    worker.join(2.0)

    assert results == [True]
    assert buffer.snapshot() == [late]
    assert store.get_session(session_id).points == first


def test_clear_during_flush_discards_everything() -> None:
    store = BlockingStore()
    session_id = _open_session(store)
    buffer = PendingBatchBuffer(store)
    buffer.enqueue(make_point())

    worker = threading.Thread(target=lambda: buffer.flush(session_id))
    worker.start()
    assert store.entered.wait(2.0)
    assert buffer.clear() == 1
    buffer.enqueue(make_point(north_m=30.0, seconds=20))
    store.release.set()
    worker.join(2.0)

    # The new point belongs to a fresh queue and must not be trimmed.
    assert buffer.pending_count == 1


def test_auto_flush_timer_lifecycle(store) -> None:
    timers = ManualTimerFactory()
    session_id = _open_session(store)
    buffer = PendingBatchBuffer(store, flush_interval=30.0, timer_factory=timers)

    buffer.start_auto_flush(session_id)
    buffer.enqueue(make_point())
    timers.fire()

    assert timers.timers[0].interval == 30.0
    assert buffer.auto_flush_running
    assert buffer.pending_count == 0

    buffer.start_auto_flush(session_id)
    assert timers.timers[0].cancelled
    assert len(timers.live) == 1

    buffer.stop_auto_flush()
    assert not buffer.auto_flush_running
    assert timers.live == []


def test_timer_flush_failure_is_absorbed(store, timers) -> None:
    session_id = _open_session(store)
    buffer = PendingBatchBuffer(store, timer_factory=timers)
    buffer.start_auto_flush(session_id)
    buffer.enqueue(make_point())
    store.fail_next()

    timers.fire()

    assert buffer.pending_count == 1


@pytest.mark.parametrize("count", [0, 3])
def test_clear_reports_discarded_count(store, count: int) -> None:
    buffer = PendingBatchBuffer(store)
    for i in range(count):
        buffer.enqueue(make_point(north_m=15.0 * i))

    assert buffer.clear() == count
    assert buffer.pending_count == 0


def test_stale_timer_tick_does_not_flush_into_new_session(store, timers) -> None:
    old_id = _open_session(store)
    new_id = _open_session(store)
    buffer = PendingBatchBuffer(store, timer_factory=timers)
    buffer.start_auto_flush(old_id)
    stale_tick = timers.timers[0].callback

    buffer.stop_auto_flush()
    buffer.start_auto_flush(new_id)
    buffer.enqueue(make_point())
    # The old timer thread was already past its wait when it was cancelled.
    stale_tick()

    assert store.append_calls == []
    assert buffer.pending_count == 1

    timers.fire()
    assert [call[0] for call in store.append_calls] == [new_id]


def test_detached_points_are_resent_before_later_flushes(store) -> None:
    old_id = _open_session(store)
    new_id = _open_session(store)
    buffer = PendingBatchBuffer(store)
    buffer.enqueue(make_point())
    buffer.enqueue(make_point(north_m=15.0, seconds=10))

    assert buffer.detach(old_id) == 2
    assert buffer.pending_count == 0
    assert buffer.unsent_count == 2

    buffer.enqueue(make_point(north_m=30.0, seconds=20))
    store.fail_next()
    # The resend fails; the current batch still goes through.
    assert buffer.flush(new_id)
    assert buffer.unsent_count == 2
    assert len(store.get_session(new_id).points) == 1

    assert buffer.flush(new_id)
    assert buffer.unsent_count == 0
    assert len(store.get_session(old_id).points) == 2


def test_unsent_points_for_missing_session_are_dropped(store, caplog) -> None:
    buffer = PendingBatchBuffer(store)
    buffer.enqueue(make_point())
    buffer.detach("gone")

    with caplog.at_level(logging.ERROR, logger="PendingBatchBuffer"):
        assert buffer.flush("gone")

    assert buffer.unsent_count == 0
    assert "no longer exists" in caplog.text
