"""Thread-backed timers used for periodic flushes and delayed auto-starts."""

from __future__ import annotations

import logging
import threading
from typing import Callable

_LOGGER = logging.getLogger(__name__)


class RepeatingTimer:
    """Call ``callback`` every ``interval`` seconds on a daemon thread.

    Exceptions raised by the callback are logged and the timer keeps running.
    ``cancel`` is safe to call from any thread, including the callback itself.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], None],
        *,
        name: str = "footpath-timer",
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be greater than zero")
        self.interval = interval
        self._callback = callback
        self._name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and not self._stop.is_set()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._stop.set()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self._callback()
            except Exception:
                _LOGGER.error("Timer %s callback failed", self._name, exc_info=True)


def schedule_once(delay: float, callback: Callable[[], None]) -> threading.Timer:
    """Run ``callback`` once after ``delay`` seconds on a daemon thread."""

    timer = threading.Timer(max(0.0, delay), callback)
    timer.daemon = True
    timer.start()
    return timer


__all__ = ["RepeatingTimer", "schedule_once"]
