"""Data models for fixes, recorded points, sessions and explored areas."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

LatLng = Tuple[float, float]


class StorageMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    AREAS_ONLY = "areas_only"


class TrackingState(str, Enum):
    """Lifecycle states of the session manager."""

    IDLE = "idle"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    ENDED = "ended"


class RejectReason(str, Enum):
    POOR_ACCURACY = "poor_accuracy"
    OUT_OF_RANGE = "out_of_range"
    EXCESSIVE_SPEED = "excessive_speed"


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """A recorded location.

    Equality is by value, which makes store appends idempotent.
    """

    lat: float
    lng: float
    timestamp: datetime

    @property
    def latlng(self) -> LatLng:
        return (self.lat, self.lng)


@dataclass(frozen=True, slots=True)
class PositionFix:
    """A raw reading delivered by the location source.

    Attributes:
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        accuracy_m: Radius (metres) of the 68% confidence circle.
        timestamp: When the fix was taken. ``None`` means "now" and is stamped
            by the receiver.
    """

    latitude: float
    longitude: float
    accuracy_m: float
    timestamp: Optional[datetime] = None

    def to_point(self, fallback: datetime) -> GeoPoint:
        return GeoPoint(
            lat=float(self.latitude),
            lng=float(self.longitude),
            timestamp=self.timestamp or fallback,
        )


@dataclass(frozen=True, slots=True)
class GeolocationOptions:
    """Options passed to the location source for a query or a watch."""

    high_accuracy: bool = False
    max_cached_age_ms: int = 0
    timeout_ms: int = 10_000

    @classmethod
    def from_profile(cls, profile: Mapping[str, Any]) -> "GeolocationOptions":
        return cls(
            high_accuracy=bool(profile.get("high_accuracy", False)),
            max_cached_age_ms=int(profile.get("max_cached_age_ms", 0)),
            timeout_ms=int(profile.get("timeout_ms", 10_000)),
        )


@dataclass(frozen=True, slots=True)
class ValidationResult:
    accepted: bool
    reason: Optional[RejectReason] = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.accepted


@dataclass
class TrackingSession:
    """One continuous tracking interval for a user."""

    id: str
    user_id: str
    start_time: datetime
    points: List[GeoPoint] = field(default_factory=list)
    end_time: Optional[datetime] = None
    is_active: bool = True
    storage_mode: StorageMode = StorageMode.INCREMENTAL
    min_distance_m: float = 10.0


@dataclass(frozen=True, slots=True)
class ExploredArea:
    """A fixed-radius disk centred on a visited point."""

    lat: float
    lng: float
    radius_m: float
    timestamp: datetime
    user_id: str


@dataclass(frozen=True, slots=True)
class ExplorationStats:
    total_explored_area: float = 0.0
    explored_points: int = 0
    exploration_level: int = 1
    exploration_percentage: float = 0.0


@dataclass(slots=True)
class ExplorationSnapshot:
    """Historic exploration state loaded from all finished sessions."""

    user_id: str
    areas: List[ExploredArea]
    stats: ExplorationStats
    total_points_count: int
    session_count: int
    loaded_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
