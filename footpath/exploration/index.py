"""Incremental explored-area index.

An explored area is a fixed-radius circle around a recorded point. A new
circle is only added when no existing centre lies closer than
``radius * dedup_factor``; this keeps the set far smaller than the raw point
stream. Finding the nearest centres is delegated to a pluggable spatial
index so the linear scan can be swapped for a grid without changing results.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from threading import RLock
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from ..config import EXPLORATION_DEDUP_FACTOR, EXPLORATION_RADIUS_M
from ..geo import METRES_PER_DEGREE, haversine_m
from ..models import ExplorationStats, ExploredArea, GeoPoint
from .stats import compute_stats

_LOGGER = logging.getLogger(__name__)


class SpatialIndex(Protocol):
    """Candidate lookup for explored-area centres."""

    def insert(self, area: ExploredArea) -> None: ...

    def candidates(self, lat: float, lng: float) -> Iterable[ExploredArea]: ...

    def clear(self) -> None: ...


class LinearScanIndex:
    """Every area is a candidate. O(n) per lookup."""

    def __init__(self) -> None:
        self._areas: List[ExploredArea] = []

    def insert(self, area: ExploredArea) -> None:
        self._areas.append(area)

    def candidates(self, lat: float, lng: float) -> Iterable[ExploredArea]:
        return self._areas

    def clear(self) -> None:
        self._areas.clear()


class GridIndex:
    """Hash grid whose cells are at least ``cell_size_m`` wide.

    Rows are latitude bands; each row picks a longitude step wide enough at
    the band's most poleward edge, so any centre within ``cell_size_m`` of a
    query point sits in the query's row/column neighbourhood. Circles
    straddling the antimeridian are not matched across it.
    """

    def __init__(self, cell_size_m: float) -> None:
        if cell_size_m <= 0:
            raise ValueError("cell_size_m must be greater than zero")
        self._cell_size_m = cell_size_m
        self._lat_step = cell_size_m / METRES_PER_DEGREE
        self._cells: Dict[Tuple[int, int], List[ExploredArea]] = defaultdict(list)
        self._lng_steps: Dict[int, float] = {}

    def _row(self, lat: float) -> int:
        return math.floor(lat / self._lat_step)

    def _lng_step(self, row: int) -> float:
        step = self._lng_steps.get(row)
        if step is None:
            edge = max(abs(row * self._lat_step), abs((row + 1) * self._lat_step))
            cos_edge = math.cos(math.radians(min(edge + self._lat_step, 90.0)))
            if cos_edge <= 1e-9:
                step = 360.0
            else:
                step = min(360.0, 1.01 * self._lat_step / cos_edge)
            self._lng_steps[row] = step
        return step

    def _key(self, row: int, lng: float) -> Tuple[int, int]:
        return row, math.floor(lng / self._lng_step(row))

    def insert(self, area: ExploredArea) -> None:
        self._cells[self._key(self._row(area.lat), area.lng)].append(area)

    def candidates(self, lat: float, lng: float) -> Iterable[ExploredArea]:
        base_row = self._row(lat)
        for row in (base_row - 1, base_row, base_row + 1):
            _, column = self._key(row, lng)
            for col in (column - 1, column, column + 1):
                cell = self._cells.get((row, col))
                if cell:
                    yield from cell

    def clear(self) -> None:
        self._cells.clear()


class ExplorationIndex:
    """Owns the explored-area set and keeps its statistics current."""

    def __init__(
        self,
        radius_m: float = EXPLORATION_RADIUS_M,
        dedup_factor: float = EXPLORATION_DEDUP_FACTOR,
        spatial_index: Optional[SpatialIndex] = None,
    ) -> None:
        if radius_m <= 0:
            raise ValueError("radius_m must be greater than zero")
        self.radius_m = radius_m
        self.dedup_distance_m = radius_m * dedup_factor
        if spatial_index is None:
            spatial_index = LinearScanIndex()
        self._spatial = spatial_index
        self._areas: List[ExploredArea] = []
        self._stats = ExplorationStats()
        self._lock = RLock()

    @property
    def areas(self) -> List[ExploredArea]:
        with self._lock:
            return list(self._areas)

    @property
    def stats(self) -> ExplorationStats:
        with self._lock:
            return self._stats

    def __len__(self) -> int:
        with self._lock:
            return len(self._areas)

    def add_point(self, point: GeoPoint, user_id: str) -> List[ExploredArea]:
        """Insert a circle for ``point`` unless already covered; return the set."""

        with self._lock:
            if self._insert(point, user_id):
                self._stats = compute_stats(self._areas)
            return list(self._areas)

    def add_points(self, points: Iterable[GeoPoint], user_id: str) -> int:
        """Insert many points, recomputing stats once. Returns circles added."""

        with self._lock:
            added = sum(1 for point in points if self._insert(point, user_id))
            if added:
                self._stats = compute_stats(self._areas)
            return added

    def rebuild(self, points: Sequence[GeoPoint], user_id: str) -> List[ExploredArea]:
        """Replace the set with one built from ``points`` in order."""

        with self._lock:
            self._clear()
            for point in points:
                self._insert(point, user_id)
            self._stats = compute_stats(self._areas)
            _LOGGER.debug(
                "Rebuilt explored areas user=%s points=%d areas=%d",
                user_id,
                len(points),
                len(self._areas),
            )
            return list(self._areas)

    def clear(self) -> None:
        with self._lock:
            self._clear()
            self._stats = compute_stats(self._areas)

    def is_covered(self, lat: float, lng: float) -> bool:
        with self._lock:
            return self._is_covered(lat, lng)

    def _is_covered(self, lat: float, lng: float) -> bool:
        threshold = self.dedup_distance_m
        for area in self._spatial.candidates(lat, lng):
            if haversine_m(area.lat, area.lng, lat, lng) < threshold:
                return True
        return False

    def _insert(self, point: GeoPoint, user_id: str) -> bool:
        if self._is_covered(point.lat, point.lng):
            return False
        area = ExploredArea(
            lat=point.lat,
            lng=point.lng,
            radius_m=self.radius_m,
            timestamp=point.timestamp,
            user_id=user_id,
        )
        self._areas.append(area)
        self._spatial.insert(area)
        return True

    def _clear(self) -> None:
        self._areas = []
        self._spatial.clear()


def grid_index_for(
    radius_m: float = EXPLORATION_RADIUS_M,
    dedup_factor: float = EXPLORATION_DEDUP_FACTOR,
) -> GridIndex:
    """Return a grid sized to the dedup distance of an exploration index."""

    return GridIndex(radius_m * dedup_factor)


__all__ = [
    "ExplorationIndex",
    "GridIndex",
    "LinearScanIndex",
    "SpatialIndex",
    "grid_index_for",
]
