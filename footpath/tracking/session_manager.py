"""Session lifecycle state machine and fix-processing pipeline.

``SessionManager`` is driven entirely by named events: ``start``, ``stop``,
``fix_received``, ``became_visible``, ``became_hidden``, ``timer_tick`` and
``page_unload``, plus ``startup`` once per process. Location callbacks and
timers arrive on worker threads, so the session reference, the last recorded
point and the watch subscription are guarded by a single re-entrant lock.

States::

    IDLE --start--> ACTIVE --became_hidden--> SUSPENDED
                      ^  <--became_visible--      |
                      |                           |
    ENDED <---------stop-----------------------stop

Runtime failures (store errors, location errors, orphan recovery) are logged
and absorbed; only an explicit ``start`` while already tracking raises.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, Hashable, List, Optional

from ..config import (
    BATTERY_SAVING_PROFILE,
    DEFAULT_POSITION,
    DEFAULT_STORAGE_MODE,
    FIRST_VISIT_AUTOSTART_DELAY_SECONDS,
    HIGH_ACCURACY_PROFILE,
    LOG_REJECTED_FIXES,
    MIN_DISTANCE_M,
    RESUME_AUTOSTART_DELAY_SECONDS,
    SESSION_TIMEOUT_MINUTES,
    VISITED_FLAG,
    WAS_TRACKING_FLAG,
)
from ..errors import LocationSourceError, TrackingStateError
from ..exploration.index import ExplorationIndex
from ..geo import ensure_aware, utc_now
from ..models import (
    ExplorationStats,
    ExploredArea,
    GeolocationOptions,
    GeoPoint,
    LatLng,
    PositionFix,
    StorageMode,
    TrackingSession,
    TrackingState,
)
from ..ports import (
    Cancellable,
    Clock,
    FlagStore,
    LocationSource,
    Notifier,
    Scheduler,
    SessionStore,
)
from ..store.flags import MemoryFlagStore
from ..validation import DistanceGate, SampleValidator
from .buffer import PendingBatchBuffer
from .timer import schedule_once

PointListener = Callable[[GeoPoint], None]
SessionListener = Callable[[Optional[TrackingSession]], None]


@dataclass(slots=True)
class TrackingSettings:
    """Lifecycle tunables; defaults come from ``footpath.config``."""

    session_timeout: timedelta = timedelta(minutes=SESSION_TIMEOUT_MINUTES)
    first_visit_autostart_delay: float = FIRST_VISIT_AUTOSTART_DELAY_SECONDS
    resume_autostart_delay: float = RESUME_AUTOSTART_DELAY_SECONDS
    watch_options: GeolocationOptions = field(
        default_factory=lambda: GeolocationOptions.from_profile(BATTERY_SAVING_PROFILE)
    )
    initial_options: GeolocationOptions = field(
        default_factory=lambda: GeolocationOptions.from_profile(HIGH_ACCURACY_PROFILE)
    )
    default_position: LatLng = DEFAULT_POSITION
    storage_mode: StorageMode = StorageMode(DEFAULT_STORAGE_MODE)
    min_distance_m: float = MIN_DISTANCE_M


@dataclass(slots=True)
class RecoveryReport:
    """Outcome of the startup orphan-session sweep."""

    resumed_session_id: Optional[str] = None
    closed_session_ids: List[str] = field(default_factory=list)
    autostart_reason: Optional[str] = None
    error: Optional[str] = None


class SessionManager:
    """Owns the active tracking session and wires every collaborator together."""

    def __init__(
        self,
        user_id: str,
        store: SessionStore,
        location_source: LocationSource,
        *,
        flags: Optional[FlagStore] = None,
        settings: Optional[TrackingSettings] = None,
        validator: Optional[SampleValidator] = None,
        gate: Optional[DistanceGate] = None,
        buffer: Optional[PendingBatchBuffer] = None,
        exploration: Optional[ExplorationIndex] = None,
        notifier: Optional[Notifier] = None,
        clock: Clock = utc_now,
        scheduler: Scheduler = schedule_once,
        on_location_update: Optional[PointListener] = None,
        on_session_change: Optional[SessionListener] = None,
    ) -> None:
        self._log = logging.getLogger(self.__class__.__name__)
        self.user_id = user_id
        self.settings = settings or TrackingSettings()
        self._store = store
        self._source = location_source
        self._flags: FlagStore = flags if flags is not None else MemoryFlagStore()
        self.validator = validator or SampleValidator()
        self.gate = gate or DistanceGate(self.settings.min_distance_m)
        self.buffer = buffer or PendingBatchBuffer(
            store,
            storage_mode=self.settings.storage_mode.value,
            min_distance_m=self.gate.min_distance_m,
        )
        self.exploration = exploration or ExplorationIndex()
        self._notifier = notifier
        self._clock = clock
        self._scheduler = scheduler
        self._on_location_update = on_location_update
        self._on_session_change = on_session_change

        self._lock = threading.RLock()
        self._state = TrackingState.IDLE
        self._session: Optional[TrackingSession] = None
        self._last_point: Optional[GeoPoint] = None
        self._watch_handle: Optional[Hashable] = None
        self._watch_generation = 0
        self._autostart: Optional[Cancellable] = None
        self._autostart_token: Optional[object] = None
        self._first_visit_autostart = False
        self._started_up = False
        self._closed = False
        self.current_position: Optional[LatLng] = None
        self.last_location_update: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def state(self) -> TrackingState:
        with self._lock:
            return self._state

    @property
    def is_tracking(self) -> bool:
        with self._lock:
            return self._state in (TrackingState.ACTIVE, TrackingState.SUSPENDED)

    @property
    def session(self) -> Optional[TrackingSession]:
        with self._lock:
            if self._session is None:
                return None
            return replace(self._session, points=list(self._session.points))

    @property
    def last_point(self) -> Optional[GeoPoint]:
        with self._lock:
            return self._last_point

    @property
    def pending_count(self) -> int:
        return self.buffer.pending_count

    @property
    def explored_areas(self) -> List[ExploredArea]:
        return self.exploration.areas

    @property
    def exploration_stats(self) -> ExplorationStats:
        return self.exploration.stats

    # ------------------------------------------------------------------
    # Lifecycle events
    # ------------------------------------------------------------------
    def start(self) -> Optional[TrackingSession]:
        """Create a new session and begin watching the location source.

        Returns the new session, or None when the store could not allocate
        one (the manager then stays where it was).

        Raises:
            TrackingStateError: if a session is already being tracked.
        """

        with self._lock:
            if self._state in (TrackingState.ACTIVE, TrackingState.SUSPENDED):
                raise TrackingStateError(
                    f"Session {self._session.id if self._session else '?'} "
                    "is already being tracked"
                )
            self._cancel_autostart()
            self._set_flag(WAS_TRACKING_FLAG, True)
            draft = TrackingSession(
                id="",
                user_id=self.user_id,
                start_time=self._clock(),
                storage_mode=self.settings.storage_mode,
                min_distance_m=self.gate.min_distance_m,
            )
            try:
                session_id = self._store.create_session(draft)
            except Exception as exc:
                self._log.error(
                    "Failed to create tracking session user=%s: %s",
                    self.user_id,
                    exc,
                    exc_info=True,
                )
                return None
            draft.id = session_id
            self._session = draft
            self._last_point = None
            self.buffer.clear()
            self.exploration.clear()
            self._activate()
            self._log.info(
                "Tracking started session=%s user=%s", session_id, self.user_id
            )
            session = self.session
        self._emit_session_change(session)
        return session

    def stop(self) -> Optional[TrackingSession]:
        """Flush, mark the session ended in the store and reset local state.

        Returns the ended session, or None when nothing was being tracked.
        """

        with self._lock:
            session = self._session
            if session is None or self._state not in (
                TrackingState.ACTIVE,
                TrackingState.SUSPENDED,
            ):
                self._log.debug("stop() ignored in state %s", self._state.value)
                return None
            self._set_flag(WAS_TRACKING_FLAG, False)
            self._cancel_autostart()
            self._unsubscribe()
            self.buffer.stop_auto_flush()
            # Waits for any in-flight timer flush so "ended" is never written
            # before the last points.
            if not self.buffer.flush(session.id, blocking=True):
                self._log.warning(
                    "Final flush failed for session=%s; %d points kept for retry",
                    session.id,
                    self.buffer.detach(session.id),
                )
            end_time = self._clock()
            try:
                self._store.end_session(session.id, end_time)
            except Exception as exc:
                self._log.error(
                    "Failed to mark session=%s ended: %s",
                    session.id,
                    exc,
                    exc_info=True,
                )
            session.end_time = end_time
            session.is_active = False
            ended = replace(session, points=list(session.points))
            self._session = None
            self._last_point = None
            self.buffer.clear()
            self._state = TrackingState.ENDED
            self._log.info(
                "Tracking stopped session=%s points=%d", ended.id, len(ended.points)
            )
        self._emit_session_change(None)
        return ended

    def became_hidden(self) -> None:
        """Pause polling while backgrounded; the session stays logically active."""

        with self._lock:
            if self._state is not TrackingState.ACTIVE or self._session is None:
                return
            self._unsubscribe()
            self.buffer.stop_auto_flush()
            self._state = TrackingState.SUSPENDED
            session_id = self._session.id
            self._log.info("Tracking suspended session=%s", session_id)
        self.buffer.flush(session_id, blocking=True)

    def became_visible(self) -> None:
        """Resume polling for a suspended, still-active session."""

        with self._lock:
            session = self._session
            if (
                self._closed
                or self._state is not TrackingState.SUSPENDED
                or session is None
                or not session.is_active
            ):
                return
            self._activate()
            self._log.info("Tracking resumed session=%s", session.id)

    def timer_tick(self) -> bool:
        """Flush pending points unless a flush is already running."""

        with self._lock:
            if self._session is None:
                return False
            session_id = self._session.id
        return self.buffer.flush(session_id, blocking=False)

    def fix_received(self, fix: PositionFix) -> bool:
        """Process a fix delivered outside the managed watch subscription.

        Returns True when the fix became a recorded point.
        """

        with self._lock:
            if self._state is not TrackingState.ACTIVE:
                return False
            return self._handle_fix(fix)

    def page_unload(self) -> bool:
        """Fire-and-forget close of the active session from unload context.

        Delivery is not guaranteed; the timeout sweep in ``startup`` is what
        eventually closes sessions that never got a clean stop.
        """

        with self._lock:
            session = self._session
            if session is None:
                return False
            pending = self.buffer.snapshot()
        send_beacon = getattr(self._store, "send_beacon", None)
        if not callable(send_beacon):
            self._log.debug("Store has no beacon transport; unload close skipped")
            return False
        try:
            queued = bool(send_beacon(session.id, pending, self._clock()))
        except Exception as exc:
            self._log.debug("Unload beacon failed for session=%s: %s", session.id, exc)
            return False
        self._log.info(
            "Unload beacon %s for session=%s (%d pending points)",
            "queued" if queued else "rejected",
            session.id,
            len(pending),
        )
        return queued

    def close(self) -> None:
        """Release the subscription and timers without ending the session.

        The session stays logically active in the store so the next process
        can resume it; this manager ignores fixes and visibility events until
        it is stopped.
        """

        with self._lock:
            self._cancel_autostart()
            self._unsubscribe()
            self.buffer.stop_auto_flush()
            self._closed = True
            if self._state is TrackingState.ACTIVE:
                self._state = TrackingState.SUSPENDED
            session_id = self._session.id if self._session else None
        if session_id is not None:
            self.buffer.flush(session_id, blocking=True)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------
    def startup(self) -> RecoveryReport:
        """Run orphan recovery and the initial position query, once per process."""

        with self._lock:
            if self._started_up:
                return RecoveryReport(error="startup already ran")
            self._started_up = True
        report = self.recover_orphans()
        self.locate_initial_position()
        if report.autostart_reason is None and self._first_visit_autostart:
            report.autostart_reason = "first_visit"
        return report

    def recover_orphans(self) -> RecoveryReport:
        """Close timed-out active sessions and resume the first recent one.

        Sessions at or over the timeout are force-closed. The first session
        under it is adopted without creating a new record. Failures are
        logged and leave the manager idle.
        """

        report = RecoveryReport()
        try:
            sessions = self._store.query_active_sessions(self.user_id)
            now = self._clock()
            resumable: List[TrackingSession] = []
            for orphan in sessions:
                age = ensure_aware(now) - ensure_aware(orphan.start_time)
                if age >= self.settings.session_timeout:
                    self._close_orphan(orphan, now, report)
                else:
                    resumable.append(orphan)

            if resumable:
                if self._adopt(resumable[0]):
                    report.resumed_session_id = resumable[0].id
                if len(resumable) > 1:
                    self._log.info(
                        "Left %d further recent sessions open for a later sweep",
                        len(resumable) - 1,
                    )
            elif self._get_flag(VISITED_FLAG) and self._get_flag(WAS_TRACKING_FLAG):
                if self._schedule_autostart(self.settings.resume_autostart_delay):
                    report.autostart_reason = "was_tracking"
        except Exception as exc:
            report.error = str(exc)
            self._log.error(
                "Failed to cleanup orphaned sessions user=%s: %s",
                self.user_id,
                exc,
                exc_info=True,
            )
        return report

    def locate_initial_position(self) -> LatLng:
        """Query one high-accuracy fix to centre the map and seed the last point.

        Falls back to ``settings.default_position`` when the query fails or the
        fix is implausible. A first-ever visit schedules an automatic start.
        """

        now = self._clock()
        try:
            fix = self._source.get_current_position(self.settings.initial_options)
        except Exception as exc:
            self._log.warning("Initial position unavailable: %s", exc)
            return self._use_default_position(now)

        with self._lock:
            result = self.validator.validate(fix, self._last_point, now=now)
            if not result:
                self._log.info("Initial fix rejected (%s)", result.detail)
                return self._use_default_position(now)
            point = fix.to_point(now)
            self.current_position = point.latlng
            self._last_point = point
            self.last_location_update = now
            if not self._get_flag(VISITED_FLAG) and not self._first_visit_autostart:
                self._set_flag(VISITED_FLAG, True)
                self._first_visit_autostart = self._schedule_autostart(
                    self.settings.first_visit_autostart_delay
                )
            return point.latlng

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _activate(self) -> None:
        assert self._session is not None
        self._closed = False
        self._state = TrackingState.ACTIVE
        self._subscribe()
        self.buffer.start_auto_flush(self._session.id)

    def _subscribe(self) -> None:
        self._unsubscribe()
        generation = self._watch_generation

        def on_fix(fix: PositionFix) -> None:
            self._on_watch_fix(generation, fix)

        def on_error(error: Exception) -> None:
            self._on_watch_error(generation, error)

        try:
            self._watch_handle = self._source.watch(
                on_fix, on_error, self.settings.watch_options
            )
        except Exception as exc:
            self._watch_handle = None
            self._log.error("Failed to start location watch: %s", exc, exc_info=True)
            self._notify(self._error_message(exc))

    def _unsubscribe(self) -> None:
        # Bumping the generation makes callbacks from the old watch inert even
        # if the source delivers one more fix after clear_watch.
        self._watch_generation += 1
        handle, self._watch_handle = self._watch_handle, None
        if handle is None:
            return
        try:
            self._source.clear_watch(handle)
        except Exception as exc:
            self._log.warning("Failed to clear location watch %s: %s", handle, exc)

    def _on_watch_fix(self, generation: int, fix: PositionFix) -> None:
        with self._lock:
            if (
                generation != self._watch_generation
                or self._state is not TrackingState.ACTIVE
            ):
                return
            self._handle_fix(fix)

    def _on_watch_error(self, generation: int, error: Exception) -> None:
        with self._lock:
            if generation != self._watch_generation:
                return
        message = self._error_message(error)
        self._log.warning("Location error while tracking: %s", message)
        self._notify(message)

    def _handle_fix(self, fix: PositionFix) -> bool:
        session = self._session
        assert session is not None
        now = self._clock()
        self.last_location_update = now
        result = self.validator.validate(fix, self._last_point, now=now)
        if not result:
            if LOG_REJECTED_FIXES:
                self._log.debug("Dropped fix: %s %s", result.reason, result.detail)
            return False
        point = fix.to_point(now)
        if not self.gate.should_record(point, self._last_point):
            return False
        self.current_position = point.latlng
        self._last_point = point
        session.points.append(point)
        self.buffer.enqueue(point)
        self.exploration.add_point(point, self.user_id)
        if self._on_location_update is not None:
            try:
                self._on_location_update(point)
            except Exception:
                self._log.error("Location listener failed", exc_info=True)
        return True

    def _adopt(self, orphan: TrackingSession) -> bool:
        with self._lock:
            if self._state in (TrackingState.ACTIVE, TrackingState.SUSPENDED):
                self._log.info(
                    "Not resuming session=%s; already tracking session=%s",
                    orphan.id,
                    self._session.id if self._session else "?",
                )
                return False
            self._cancel_autostart()
            orphan.is_active = True
            self._session = replace(orphan, points=list(orphan.points))
            self._last_point = None
            self.buffer.clear()
            self.exploration.rebuild(self._session.points, self.user_id)
            self._set_flag(WAS_TRACKING_FLAG, True)
            self._activate()
            self._log.info(
                "Resumed session=%s started=%s points=%d",
                orphan.id,
                orphan.start_time.isoformat(),
                len(orphan.points),
            )
            session = self.session
        self._emit_session_change(session)
        return True

    def _close_orphan(
        self, orphan: TrackingSession, now: datetime, report: RecoveryReport
    ) -> None:
        try:
            self._store.end_session(orphan.id, now)
        except Exception as exc:
            self._log.warning(
                "Failed to close expired session=%s: %s", orphan.id, exc
            )
            return
        report.closed_session_ids.append(orphan.id)
        self._log.info(
            "Closed expired session=%s started=%s",
            orphan.id,
            orphan.start_time.isoformat(),
        )

    def _schedule_autostart(self, delay: float) -> bool:
        with self._lock:
            if self._autostart_token is not None or self.is_tracking:
                return False
            token = object()
            self._autostart_token = token
            self._log.info("Tracking auto-start scheduled in %.1fs", delay)
            handle = self._scheduler(delay, lambda: self._run_autostart(token))
            # A synchronous scheduler may already have run the callback.
            if self._autostart_token is token:
                self._autostart = handle
            return True

    def _run_autostart(self, token: object) -> None:
        with self._lock:
            if token is not self._autostart_token:
                return
            self._autostart_token = None
            self._autostart = None
            if self._state not in (TrackingState.IDLE, TrackingState.ENDED):
                return
            try:
                self.start()
            except Exception as exc:
                self._log.error("Auto-start failed: %s", exc, exc_info=True)

    def _cancel_autostart(self) -> None:
        self._autostart_token = None
        pending, self._autostart = self._autostart, None
        if pending is not None:
            pending.cancel()

    def _use_default_position(self, now: datetime) -> LatLng:
        with self._lock:
            self.current_position = self.settings.default_position
            self.last_location_update = now
            return self.settings.default_position

    def _get_flag(self, name: str) -> bool:
        try:
            return self._flags.get(name, False)
        except Exception as exc:
            self._log.warning("Failed to read flag %s: %s", name, exc)
            return False

    def _set_flag(self, name: str, value: bool) -> None:
        try:
            self._flags.set(name, value)
        except Exception as exc:
            self._log.warning("Failed to persist flag %s=%s: %s", name, value, exc)

    def _notify(self, message: str) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier(message)
        except Exception:
            self._log.error("Notifier failed", exc_info=True)

    def _emit_session_change(self, session: Optional[TrackingSession]) -> None:
        if self._on_session_change is None:
            return
        try:
            self._on_session_change(session)
        except Exception:
            self._log.error("Session listener failed", exc_info=True)

    @staticmethod
    def _error_message(error: Exception) -> str:
        if isinstance(error, LocationSourceError):
            return error.user_message
        return f"UNKNOWN_ERROR: {error}"


__all__ = ["RecoveryReport", "SessionManager", "TrackingSettings"]
