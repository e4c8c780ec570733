"""Thread-safe in-process session store."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..errors import SessionNotFoundError, SessionStoreError
from ..models import GeoPoint, StorageMode, TrackingSession

_LOGGER = logging.getLogger(__name__)


class InMemorySessionStore:
    """Reference implementation of the session store used by tests and tools.

    ``append_points`` has set-union semantics: a point already present in the
    session (equal by value) is not added again, so re-sending a batch is
    harmless. ``fail_next`` makes the next calls raise, to exercise retry
    paths.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: Dict[str, TrackingSession] = {}
        self._point_sets: Dict[str, Set[GeoPoint]] = {}
        self._failures: List[Exception] = []
        self.append_calls: List[Tuple[str, List[GeoPoint]]] = []
        self.beacons: List[Tuple[str, int, datetime]] = []

    # ------------------------------------------------------------------
    # Test / tool helpers
    # ------------------------------------------------------------------
    def fail_next(self, count: int = 1, error: Optional[Exception] = None) -> None:
        """Make the next ``count`` store calls raise ``error``."""

        with self._lock:
            for _ in range(count):
                self._failures.append(error or SessionStoreError("injected failure"))

    def put_session(self, session: TrackingSession) -> str:
        """Insert a session under its own id (or a fresh one when empty)."""

        with self._lock:
            session_id = session.id or uuid.uuid4().hex
            stored = replace(session, id=session_id, points=list(session.points))
            self._sessions[session_id] = stored
            self._point_sets[session_id] = set(stored.points)
            return session_id

    def get_session(self, session_id: str) -> TrackingSession:
        with self._lock:
            return self._copy(self._require(session_id))

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ------------------------------------------------------------------
    # SessionStore protocol
    # ------------------------------------------------------------------
    def create_session(self, session: TrackingSession) -> str:
        with self._lock:
            self._maybe_fail()
            session_id = uuid.uuid4().hex
            stored = replace(session, id=session_id, points=list(session.points))
            self._sessions[session_id] = stored
            self._point_sets[session_id] = set(stored.points)
        _LOGGER.debug("Created session=%s user=%s", session_id, session.user_id)
        return session_id

    def append_points(
        self,
        session_id: str,
        points: Sequence[GeoPoint],
        *,
        storage_mode: str = "incremental",
        min_distance_m: Optional[float] = None,
    ) -> None:
        with self._lock:
            self._maybe_fail()
            session = self._require(session_id)
            self.append_calls.append((session_id, list(points)))
            known = self._point_sets[session_id]
            for point in points:
                if point not in known:
                    known.add(point)
                    session.points.append(point)
            session.storage_mode = StorageMode(storage_mode)
            if min_distance_m is not None:
                session.min_distance_m = min_distance_m

    def end_session(self, session_id: str, end_time: datetime) -> None:
        with self._lock:
            self._maybe_fail()
            session = self._require(session_id)
            session.is_active = False
            session.end_time = end_time

    def query_active_sessions(self, user_id: str) -> List[TrackingSession]:
        with self._lock:
            self._maybe_fail()
            return [
                self._copy(session)
                for session in self._sessions.values()
                if session.user_id == user_id and session.is_active
            ]

    def query_all_sessions(self, user_id: str) -> List[TrackingSession]:
        with self._lock:
            self._maybe_fail()
            return [
                self._copy(session)
                for session in self._sessions.values()
                if session.user_id == user_id
            ]

    def send_beacon(
        self, session_id: str, points: Sequence[GeoPoint], end_time: datetime
    ) -> bool:
        """Apply an unload close immediately; returns False for unknown ids."""

        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            known = self._point_sets[session_id]
            for point in points:
                if point not in known:
                    known.add(point)
                    session.points.append(point)
            session.is_active = False
            session.end_time = end_time
            self.beacons.append((session_id, len(points), end_time))
            return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _maybe_fail(self) -> None:
        if self._failures:
            raise self._failures.pop(0)

    def _require(self, session_id: str) -> TrackingSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Unknown session {session_id}")
        return session

    @staticmethod
    def _copy(session: TrackingSession) -> TrackingSession:
        return replace(session, points=list(session.points))


__all__ = ["InMemorySessionStore"]
