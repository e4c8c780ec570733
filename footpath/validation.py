"""Plausibility and movement gates applied to every incoming fix.

The two gates answer different questions. ``SampleValidator`` asks whether a
fix is real (accuracy, coordinate bounds, implied speed); ``DistanceGate``
asks whether an already-valid fix carries new information (moved far enough
since the last recorded point). Both are pure: any "previous point" state is
owned and passed in by the caller.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from .config import MAX_ACCURACY_M, MAX_SPEED_KMH, MIN_DISTANCE_M
from .geo import ensure_aware, haversine_m
from .models import GeoPoint, PositionFix, RejectReason, ValidationResult

_ACCEPT = ValidationResult(accepted=True)


class SampleValidator:
    """Reject fixes that are inaccurate, malformed or imply vehicular speed."""

    def __init__(
        self,
        max_accuracy_m: float = MAX_ACCURACY_M,
        max_speed_kmh: float = MAX_SPEED_KMH,
    ) -> None:
        self.max_accuracy_m = max_accuracy_m
        self.max_speed_kmh = max_speed_kmh

    def validate(
        self,
        fix: PositionFix,
        previous: Optional[GeoPoint] = None,
        *,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        """Return accept or the first failing rule.

        Args:
            fix: Raw reading from the location source.
            previous: Last accepted point, if any.
            now: Receive time used when the fix carries no timestamp.
        """

        accuracy = fix.accuracy_m
        if not math.isfinite(accuracy) or accuracy > self.max_accuracy_m:
            return ValidationResult(
                False, RejectReason.POOR_ACCURACY, f"accuracy={accuracy}m"
            )

        lat, lng = fix.latitude, fix.longitude
        if (
            not (math.isfinite(lat) and math.isfinite(lng))
            or abs(lat) > 90
            or abs(lng) > 180
        ):
            return ValidationResult(
                False, RejectReason.OUT_OF_RANGE, f"lat={lat} lng={lng}"
            )

        if previous is None:
            return _ACCEPT

        fix_time = fix.timestamp or now
        if fix_time is None:
            # Without a clock the speed rule cannot be evaluated.
            return _ACCEPT
        distance = haversine_m(previous.lat, previous.lng, lat, lng)
        elapsed_s = (
            ensure_aware(fix_time) - ensure_aware(previous.timestamp)
        ).total_seconds()
        if elapsed_s <= 0:
            if distance > 0:
                return ValidationResult(
                    False,
                    RejectReason.EXCESSIVE_SPEED,
                    f"moved {distance:.1f}m in {elapsed_s:.1f}s",
                )
            return _ACCEPT
        speed_kmh = distance / elapsed_s * 3.6
        if speed_kmh > self.max_speed_kmh:
            return ValidationResult(
                False, RejectReason.EXCESSIVE_SPEED, f"speed={speed_kmh:.1f}km/h"
            )
        return _ACCEPT


class DistanceGate:
    """Record a point only once it is ``min_distance_m`` away from the last one."""

    def __init__(self, min_distance_m: float = MIN_DISTANCE_M) -> None:
        self.min_distance_m = min_distance_m

    def should_record(
        self, candidate: GeoPoint, last_recorded: Optional[GeoPoint] = None
    ) -> bool:
        if last_recorded is None:
            return True
        distance = haversine_m(
            last_recorded.lat, last_recorded.lng, candidate.lat, candidate.lng
        )
        return distance >= self.min_distance_m


__all__ = ["DistanceGate", "SampleValidator"]
