"""Interfaces of the collaborators the engine is wired to.

The host supplies the location source, the durable store, the local flag
store and a notifier; everything else in the package talks to these
protocols only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Hashable, List, Optional, Protocol, Sequence

from .models import GeoPoint, GeolocationOptions, PositionFix, TrackingSession

FixCallback = Callable[[PositionFix], None]
ErrorCallback = Callable[[Exception], None]
Notifier = Callable[[str], None]
Clock = Callable[[], datetime]


class Cancellable(Protocol):
    def cancel(self) -> None: ...


# (delay_seconds, callback) -> handle; the callback runs once unless cancelled.
Scheduler = Callable[[float, Callable[[], None]], Cancellable]


class LocationSource(Protocol):
    """Push-based position provider (a browser geolocation API or a device)."""

    def get_current_position(self, options: GeolocationOptions) -> PositionFix:
        """Return one fix or raise ``LocationSourceError``."""
        ...

    def watch(
        self,
        on_fix: FixCallback,
        on_error: ErrorCallback,
        options: GeolocationOptions,
    ) -> Hashable:
        """Deliver fixes asynchronously; return a handle for ``clear_watch``."""
        ...

    def clear_watch(self, handle: Hashable) -> None: ...


class SessionStore(Protocol):
    """Document store holding one record per tracking session."""

    def create_session(self, session: TrackingSession) -> str: ...

    def append_points(
        self,
        session_id: str,
        points: Sequence[GeoPoint],
        *,
        storage_mode: str = "incremental",
        min_distance_m: Optional[float] = None,
    ) -> None:
        """Add ``points`` to the session's point list with set-union semantics."""
        ...

    def end_session(self, session_id: str, end_time: datetime) -> None: ...

    def query_active_sessions(self, user_id: str) -> List[TrackingSession]: ...

    def query_all_sessions(self, user_id: str) -> List[TrackingSession]: ...


class BeaconStore(Protocol):
    """Optional store capability used from page-unload context."""

    def send_beacon(
        self,
        session_id: str,
        points: Sequence[GeoPoint],
        end_time: datetime,
    ) -> bool:
        """Queue a fire-and-forget close request; never block, never raise."""
        ...


class FlagStore(Protocol):
    """Tiny persistent key-value store for process-local boolean flags."""

    def get(self, name: str, default: bool = False) -> bool: ...

    def set(self, name: str, value: bool) -> None: ...
