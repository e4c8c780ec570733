"""Session lifecycle, batching and timers."""

from .buffer import PendingBatchBuffer
from .session_manager import RecoveryReport, SessionManager, TrackingSettings
from .timer import RepeatingTimer, schedule_once

__all__ = [
    "PendingBatchBuffer",
    "RecoveryReport",
    "RepeatingTimer",
    "SessionManager",
    "TrackingSettings",
    "schedule_once",
]
