"""Display-side path helpers: decimation, Catmull-Rom smoothing and encoding.

Everything here is a pure function of its input. Points may be ``GeoPoint``
instances or ``(lat, lng)`` pairs; smoothing always returns pairs.
"""

from __future__ import annotations

import math
from threading import RLock
from typing import Hashable, List, Sequence, Tuple, TypeVar, Union

import numpy as np
from cachetools import LRUCache
from numpy.typing import NDArray
from polyline import encode as polyline_encode

from .config import POINT_OPTIMIZATION_THRESHOLD, RENDER_CACHE_SIZE, SMOOTHING_SEGMENTS
from .models import GeoPoint, LatLng

PathPoint = Union[GeoPoint, LatLng]
T = TypeVar("T")


def as_latlng(points: Sequence[PathPoint]) -> List[LatLng]:
    """Normalise a point list into ``(lat, lng)`` float pairs."""

    result: List[LatLng] = []
    for point in points:
        if isinstance(point, GeoPoint):
            result.append((point.lat, point.lng))
        else:
            result.append((float(point[0]), float(point[1])))
    return result


def decimate(
    points: Sequence[T], max_points: int = POINT_OPTIMIZATION_THRESHOLD
) -> List[T]:
    """Thin a path with a fixed stride, always keeping both endpoints.

    Paths with ``max_points`` points or fewer are returned unchanged (as a new
    list). Longer paths keep the first point, every ``ceil(n / max_points)``-th
    point in between and the last point. This bounds render cost but may drop
    sharp turns.
    """

    if max_points < 1:
        raise ValueError("max_points must be >= 1")
    count = len(points)
    if count <= max_points:
        return list(points)
    step = math.ceil(count / max_points)
    thinned = [points[0]]
    thinned.extend(points[index] for index in range(step, count - 1, step))
    thinned.append(points[-1])
    return thinned


def smooth(
    points: Sequence[PathPoint], segments: int = SMOOTHING_SEGMENTS
) -> List[LatLng]:
    """Interpolate a Catmull-Rom spline through the points.

    Each input segment ``p1 -> p2`` is expanded into ``segments`` sub-steps,
    using ``p0``/``p3`` neighbours and repeating the endpoint where a
    neighbour is missing. Latitude and longitude are treated as planar
    coordinates, which holds at walking scale. Input knots are emitted
    verbatim, so the first and last output points equal the input endpoints.
    """

    if segments < 1:
        raise ValueError("segments must be >= 1")
    knots = as_latlng(points)
    if len(knots) <= 2:
        return knots

    coords: NDArray[np.float64] = np.asarray(knots, dtype=float)
    p1 = coords[:-1]
    p2 = coords[1:]
    p0 = np.concatenate((coords[:1], coords[:-2]))
    p3 = np.concatenate((coords[2:], coords[-1:]))
    interpolated = _catmull_rom(p0, p1, p2, p3, segments)

    result: List[LatLng] = []
    for index, knot in enumerate(knots[:-1]):
        result.append(knot)
        result.extend((float(lat), float(lng)) for lat, lng in interpolated[index])
    result.append(knots[-1])
    return result


def render_path(
    points: Sequence[PathPoint],
    *,
    max_points: int = POINT_OPTIMIZATION_THRESHOLD,
    segments: int = SMOOTHING_SEGMENTS,
) -> List[LatLng]:
    """Return the display polyline for a session: ``smooth(decimate(points))``."""

    return smooth(decimate(as_latlng(points), max_points), segments)


def encode_path(points: Sequence[PathPoint], precision: int = 5) -> str:
    """Encode a path as a Google encoded polyline string."""

    return polyline_encode(as_latlng(points), precision)


def _catmull_rom(
    p0: NDArray[np.float64],
    p1: NDArray[np.float64],
    p2: NDArray[np.float64],
    p3: NDArray[np.float64],
    segments: int,
) -> NDArray[np.float64]:
    """Evaluate the cubic basis at ``t = j / segments`` for ``j in 1..segments-1``.

    Returns an array shaped ``(segment_count, segments - 1, 2)``.
    """

    t = (np.arange(1, segments, dtype=float) / segments)[None, :, None]
    t2 = t * t
    t3 = t2 * t
    p0, p1, p2, p3 = (arr[:, None, :] for arr in (p0, p1, p2, p3))
    return 0.5 * (
        2.0 * p1
        + (-p0 + p2) * t
        + (2.0 * p0 - 5.0 * p1 + 4.0 * p2 - p3) * t2
        + (-p0 + 3.0 * p1 - 3.0 * p2 + p3) * t3
    )


class RenderPathCache:
    """Thread-safe memo of rendered paths keyed by ``(session_id, point_count)``.

    Session point lists are append-only, so the count identifies the content.
    """

    def __init__(
        self,
        max_entries: int = RENDER_CACHE_SIZE,
        *,
        max_points: int = POINT_OPTIMIZATION_THRESHOLD,
        segments: int = SMOOTHING_SEGMENTS,
    ) -> None:
        self._lock = RLock()
        self._store: LRUCache[Tuple[Hashable, int], List[LatLng]] = LRUCache(
            maxsize=max(1, max_entries)
        )
        self._max_points = max_points
        self._segments = segments
        self.hits = 0
        self.misses = 0

    def get(self, session_id: Hashable, points: Sequence[PathPoint]) -> List[LatLng]:
        key = (session_id, len(points))
        with self._lock:
            cached = self._store.get(key)
            if cached is not None:
                self.hits += 1
                return list(cached)
            self.misses += 1
        rendered = render_path(
            points, max_points=self._max_points, segments=self._segments
        )
        with self._lock:
            self._store[key] = rendered
        return list(rendered)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


__all__ = [
    "RenderPathCache",
    "as_latlng",
    "decimate",
    "encode_path",
    "render_path",
    "smooth",
]
