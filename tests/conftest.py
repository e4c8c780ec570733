"""Global pytest fixtures & helpers.

Adds project root to path and provides hand-driven fakes for the clock,
timers and scheduler so lifecycle tests never depend on wall-clock time.
"""
from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from footpath.geo import offset_by_metres
from footpath.models import GeoPoint, PositionFix
from footpath.sources import ReplayLocationSource
from footpath.store.flags import MemoryFlagStore
from footpath.store.memory import InMemorySessionStore
from footpath.tracking.buffer import PendingBatchBuffer
from footpath.tracking.session_manager import SessionManager, TrackingSettings

T0 = datetime(2024, 5, 1, 9, 0, 0, tzinfo=timezone.utc)
ORIGIN = (35.6812, 139.7671)


# --- Fakes -----------------------------------------------------------
class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class ManualTimer:
    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def live(self) -> bool:
        return self.started and not self.cancelled

    def fire(self) -> None:
        if self.live:
            self.callback()


class ManualTimerFactory:
    def __init__(self) -> None:
        self.timers: List[ManualTimer] = []

    def __call__(self, interval: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(interval, callback)
        self.timers.append(timer)
        return timer

    @property
    def live(self) -> List[ManualTimer]:
        return [timer for timer in self.timers if timer.live]

    def fire(self) -> None:
        for timer in self.live:
            timer.fire()


class ScheduledCall:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.ran = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    def __init__(self) -> None:
        self.calls: List[ScheduledCall] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        call = ScheduledCall(delay, callback)
        self.calls.append(call)
        return call

    @property
    def pending(self) -> List[ScheduledCall]:
        return [call for call in self.calls if not call.cancelled and not call.ran]

    def run_pending(self) -> int:
        ran = 0
        for call in self.pending:
            call.ran = True
            call.callback()
            ran += 1
        return ran


def immediate_scheduler(delay: float, callback: Callable[[], None]) -> ScheduledCall:
    call = ScheduledCall(delay, callback)
    call.ran = True
    callback()
    return call


# --- Factory helpers -------------------------------------------------
def make_point(
    north_m: float = 0.0,
    east_m: float = 0.0,
    seconds: float = 0.0,
    origin: Tuple[float, float] = ORIGIN,
) -> GeoPoint:
    lat, lng = offset_by_metres(origin[0], origin[1], north_m, east_m)
    return GeoPoint(lat, lng, T0 + timedelta(seconds=seconds))


def make_fix(
    north_m: float = 0.0,
    east_m: float = 0.0,
    *,
    accuracy: float = 10.0,
    at: Optional[datetime] = None,
    origin: Tuple[float, float] = ORIGIN,
) -> PositionFix:
    lat, lng = offset_by_metres(origin[0], origin[1], north_m, east_m)
    return PositionFix(lat, lng, accuracy, at)


def walk(
    clock: FakeClock,
    source: ReplayLocationSource,
    count: int,
    *,
    step_m: float = 15.0,
    step_s: float = 10.0,
    start_m: float = 0.0,
) -> None:
    """Push ``count`` fixes heading north, advancing the clock between them."""

    for index in range(count):
        if index:
            clock.advance(step_s)
        source.push(make_fix(north_m=start_m + index * step_m, at=clock.now))


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def source() -> ReplayLocationSource:
    return ReplayLocationSource()


@pytest.fixture
def flags() -> MemoryFlagStore:
    return MemoryFlagStore()


@pytest.fixture
def timers() -> ManualTimerFactory:
    return ManualTimerFactory()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def notices() -> List[str]:
    return []


@pytest.fixture
def make_manager(clock, store, source, flags, timers, scheduler, notices):
    """Build a SessionManager wired to the hand-driven fakes."""

    def _build(**overrides) -> SessionManager:
        settings = overrides.pop("settings", None) or TrackingSettings()
        mgr_store = overrides.pop("store", store)
        mgr_source = overrides.pop("source", source)
        buffer = overrides.pop(
            "buffer",
            PendingBatchBuffer(
                mgr_store,
                flush_interval=30.0,
                min_distance_m=settings.min_distance_m,
                timer_factory=timers,
            ),
        )
        kwargs = dict(
            flags=flags,
            settings=settings,
            buffer=buffer,
            notifier=notices.append,
            clock=clock,
            scheduler=scheduler,
        )
        kwargs.update(overrides)
        return SessionManager("user-1", mgr_store, mgr_source, **kwargs)

    return _build
