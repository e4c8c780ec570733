"""In-memory queue of accepted points awaiting a durable flush."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, Protocol

from ..config import BATCH_INTERVAL_SECONDS, DEFAULT_STORAGE_MODE, MIN_DISTANCE_M
from ..errors import SessionNotFoundError
from ..models import GeoPoint
from ..ports import Cancellable, SessionStore
from .timer import RepeatingTimer


class StartableTimer(Cancellable, Protocol):
    def start(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], StartableTimer]


def _default_timer_factory(
    interval: float, callback: Callable[[], None]
) -> RepeatingTimer:
    return RepeatingTimer(interval, callback, name="footpath-flush")


class PendingBatchBuffer:
    """Queue points in memory and append them to the store in batches.

    Delivery is at-least-once. A flush sends a snapshot of the queue and, only
    after the store confirms, drops exactly the points it sent; anything
    enqueued while the request was in flight stays for the next cycle. A
    failed flush leaves the queue untouched. Flushes never overlap: a
    non-blocking flush that finds one in flight is skipped, a blocking flush
    waits for it.

    Points that could not be delivered before their session ended are kept
    per session id by ``detach`` and re-sent ahead of every later flush.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        flush_interval: float = BATCH_INTERVAL_SECONDS,
        storage_mode: str = DEFAULT_STORAGE_MODE,
        min_distance_m: float = MIN_DISTANCE_M,
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        self._log = logging.getLogger(self.__class__.__name__)
        self._store = store
        self.flush_interval = flush_interval
        self.storage_mode = storage_mode
        self.min_distance_m = min_distance_m
        self._timer_factory = timer_factory or _default_timer_factory
        self._queue: List[GeoPoint] = []
        self._queue_lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._generation = 0
        self._unsent: Dict[str, List[GeoPoint]] = {}
        self._timer: Optional[StartableTimer] = None
        self._timer_generation = 0
        self._timer_lock = threading.Lock()
        self.last_error: Optional[Exception] = None

    @property
    def pending_count(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    def snapshot(self) -> List[GeoPoint]:
        with self._queue_lock:
            return list(self._queue)

    def enqueue(self, point: GeoPoint) -> int:
        """Append a point; return the new pending count."""

        with self._queue_lock:
            self._queue.append(point)
            return len(self._queue)

    @property
    def unsent_count(self) -> int:
        """Points detached from ended sessions that still await delivery."""

        with self._queue_lock:
            return sum(len(points) for points in self._unsent.values())

    def clear(self) -> int:
        """Drop every pending point; return how many were discarded."""

        with self._queue_lock:
            discarded = len(self._queue)
            self._queue = []
            self._generation += 1
            return discarded

    def detach(self, session_id: str) -> int:
        """Set the pending queue aside for ``session_id`` and start empty.

        Detached points are re-sent before every later flush until the store
        accepts them. Returns how many points were detached.
        """

        with self._queue_lock:
            batch, self._queue = self._queue, []
            self._generation += 1
            if batch:
                self._unsent[session_id] = self._unsent.get(session_id, []) + batch
            return len(batch)

    def flush(self, session_id: str, *, blocking: bool = True) -> bool:
        """Append the queued points to ``session_id``.

        Returns True when the store confirmed the batch (or nothing was
        pending) and False when the store failed or, for non-blocking calls,
        another flush was already in flight.
        """

        if not self._flush_lock.acquire(blocking=blocking):
            self._log.debug(
                "Flush already in flight for session=%s; skipping", session_id
            )
            return False
        try:
            return self._flush_locked(session_id)
        finally:
            self._flush_lock.release()

    def start_auto_flush(self, session_id: str) -> None:
        """(Re)start the periodic flush for ``session_id``."""

        with self._timer_lock:
            self._timer_generation += 1
            generation = self._timer_generation
        timer = self._timer_factory(
            self.flush_interval, lambda: self._auto_flush(session_id, generation)
        )
        with self._timer_lock:
            previous, self._timer = self._timer, timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def stop_auto_flush(self) -> None:
        with self._timer_lock:
            self._timer_generation += 1
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    @property
    def auto_flush_running(self) -> bool:
        with self._timer_lock:
            return self._timer is not None

    def _auto_flush(self, session_id: str, generation: int) -> bool:
        if not self._flush_lock.acquire(blocking=False):
            self._log.debug(
                "Flush already in flight for session=%s; skipping", session_id
            )
            return False
        try:
            # A tick already past its wait when the timer was cancelled must
            # not send a newer session's points to the old id.
            with self._timer_lock:
                if generation != self._timer_generation:
                    self._log.debug("Stale flush tick for session=%s", session_id)
                    return False
            return self._flush_locked(session_id)
        finally:
            self._flush_lock.release()

    def _flush_locked(self, session_id: str) -> bool:
        self._resend_unsent()
        with self._queue_lock:
            batch = list(self._queue)
            generation = self._generation
        if not batch:
            return True
        try:
            self._append(session_id, batch)
        except Exception as exc:
            self.last_error = exc
            self._log.warning(
                "Failed to flush %d pending points for session=%s: %s",
                len(batch),
                session_id,
                exc,
                exc_info=True,
            )
            return False
        with self._queue_lock:
            if generation == self._generation:
                del self._queue[: len(batch)]
            remaining = len(self._queue)
        self.last_error = None
        self._log.info(
            "Flushed %d points to session=%s (%d still pending)",
            len(batch),
            session_id,
            remaining,
        )
        return True

    def _resend_unsent(self) -> None:
        with self._queue_lock:
            unsent = list(self._unsent.items())
        for session_id, points in unsent:
            try:
                self._append(session_id, points)
            except SessionNotFoundError:
                self._log.error(
                    "Dropping %d unsent points; session=%s no longer exists",
                    len(points),
                    session_id,
                )
            except Exception as exc:
                self._log.warning(
                    "Failed to resend %d points for ended session=%s: %s",
                    len(points),
                    session_id,
                    exc,
                )
                continue
            else:
                self._log.info(
                    "Resent %d points to ended session=%s", len(points), session_id
                )
            with self._queue_lock:
                if self._unsent.get(session_id) is points:
                    del self._unsent[session_id]

    def _append(self, session_id: str, points: List[GeoPoint]) -> None:
        self._store.append_points(
            session_id,
            points,
            storage_mode=self.storage_mode,
            min_distance_m=self.min_distance_m,
        )


__all__ = ["PendingBatchBuffer"]
