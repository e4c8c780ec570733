"""Location sources that do not need a device: recorded fixes pushed by hand."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .errors import LocationErrorCode, LocationSourceError
from .models import GeolocationOptions, PositionFix
from .ports import ErrorCallback, FixCallback


class ReplayLocationSource:
    """Deliver a recorded list of fixes to whoever is watching.

    Delivery is synchronous: ``push`` and ``replay`` invoke the watch callbacks
    on the calling thread. ``get_current_position`` returns ``current`` or
    raises ``current_error`` so startup paths can be driven both ways.
    """

    def __init__(
        self,
        fixes: Iterable[PositionFix] = (),
        *,
        current: Optional[PositionFix] = None,
        current_error: Optional[Exception] = None,
    ) -> None:
        self._log = logging.getLogger(self.__class__.__name__)
        self.fixes: List[PositionFix] = list(fixes)
        self.current = current
        self.current_error = current_error
        self._watches: Dict[int, Tuple[FixCallback, ErrorCallback]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self.last_options: Optional[GeolocationOptions] = None
        self.cleared: List[int] = []

    @property
    def active_watches(self) -> int:
        with self._lock:
            return len(self._watches)

    def get_current_position(self, options: GeolocationOptions) -> PositionFix:
        self.last_options = options
        if self.current_error is not None:
            raise self.current_error
        if self.current is None:
            raise LocationSourceError(
                LocationErrorCode.POSITION_UNAVAILABLE, "no recorded position"
            )
        return self.current

    def watch(
        self,
        on_fix: FixCallback,
        on_error: ErrorCallback,
        options: GeolocationOptions,
    ) -> int:
        with self._lock:
            handle = next(self._ids)
            self._watches[handle] = (on_fix, on_error)
        self.last_options = options
        return handle

    def clear_watch(self, handle: int) -> None:
        with self._lock:
            if self._watches.pop(handle, None) is not None:
                self.cleared.append(handle)

    def push(self, fix: PositionFix) -> int:
        """Deliver one fix to every watcher; return how many received it."""

        callbacks = self._callbacks()
        for on_fix, _ in callbacks:
            on_fix(fix)
        return len(callbacks)

    def push_error(self, error: Exception) -> int:
        callbacks = self._callbacks()
        for _, on_error in callbacks:
            on_error(error)
        return len(callbacks)

    def replay(
        self,
        fixes: Optional[Iterable[PositionFix]] = None,
        *,
        interval: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> int:
        """Push ``fixes`` (default: the recorded list) in order.

        Returns the number of fixes that reached at least one watcher.
        """

        delivered = 0
        for fix in self.fixes if fixes is None else fixes:
            if self.push(fix):
                delivered += 1
            else:
                self._log.debug("No watcher for fix %s; dropped", fix)
            if interval > 0:
                sleep(interval)
        return delivered

    def _callbacks(self) -> List[Tuple[FixCallback, ErrorCallback]]:
        with self._lock:
            return list(self._watches.values())


__all__ = ["ReplayLocationSource"]
