"""Location sampling and exploration tracking engine."""

from .errors import (
    FootpathError,
    LocationErrorCode,
    LocationSourceError,
    SessionNotFoundError,
    SessionStoreError,
    TrackingStateError,
)
from .exploration import ExplorationHistory, ExplorationIndex
from .models import (
    ExplorationStats,
    ExploredArea,
    GeoPoint,
    PositionFix,
    TrackingSession,
    TrackingState,
)
from .tracking import PendingBatchBuffer, SessionManager, TrackingSettings
from .validation import DistanceGate, SampleValidator

__all__ = [
    "DistanceGate",
    "ExplorationHistory",
    "ExplorationIndex",
    "ExplorationStats",
    "ExploredArea",
    "FootpathError",
    "GeoPoint",
    "LocationErrorCode",
    "LocationSourceError",
    "PendingBatchBuffer",
    "PositionFix",
    "SampleValidator",
    "SessionManager",
    "SessionNotFoundError",
    "SessionStoreError",
    "TrackingSession",
    "TrackingSettings",
    "TrackingState",
]
