"""Exploration statistics derived from an explored-area collection."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np
from pyproj import CRS, Transformer
from shapely.geometry import Point
from shapely.ops import unary_union

from ..config import EXPLORATION_LEVEL_AREA_M2
from ..models import ExplorationStats, ExploredArea


def compute_stats(
    areas: Sequence[ExploredArea], level_area_m2: float = EXPLORATION_LEVEL_AREA_M2
) -> ExplorationStats:
    """Summarise explored areas.

    The total is the plain sum of circle areas, so overlapping circles are
    double counted. The level grows by one per ``level_area_m2`` and the
    percentage is two points per circle, capped at 100.
    """

    total = sum(math.pi * area.radius_m * area.radius_m for area in areas)
    count = len(areas)
    return ExplorationStats(
        total_explored_area=total,
        explored_points=count,
        exploration_level=int(math.floor(total / level_area_m2)) + 1,
        exploration_percentage=float(min(count * 2, 100)),
    )


def format_area(area_m2: float) -> str:
    """Format an area for display (``532m²``, ``1.5km²``, ``2.25km²``)."""

    if area_m2 < 1000:
        return f"{math.floor(area_m2 + 0.5)}m²"
    if area_m2 < 1_000_000:
        # Matches the historic display, which scales by 1000 in this band.
        return f"{area_m2 / 1000:.1f}km²"
    return f"{area_m2 / 1_000_000:.2f}km²"


def union_area_m2(areas: Sequence[ExploredArea], resolution: int = 16) -> float:
    """Return the overlap-aware covered area in square metres.

    Circles are projected into a local UTM zone and unioned, so overlapping
    disks are only counted once. Much slower than ``compute_stats``; meant for
    occasional summaries rather than per-fix updates.
    """

    if not areas:
        return 0.0
    transformer = _build_local_transformer(areas)
    lats = np.asarray([area.lat for area in areas], dtype=float)
    lngs = np.asarray([area.lng for area in areas], dtype=float)
    xs, ys = transformer.transform(lngs, lats)
    disks = [
        Point(float(x), float(y)).buffer(area.radius_m, resolution)
        for x, y, area in zip(np.atleast_1d(xs), np.atleast_1d(ys), areas)
    ]
    return float(unary_union(disks).area)


def _build_local_transformer(areas: Sequence[ExploredArea]) -> Transformer:
    """Build a UTM transformer centred on the mean area position."""

    mean_lat = float(np.mean([area.lat for area in areas]))
    mean_lng = float(np.mean([area.lng for area in areas]))
    zone = int((mean_lng + 180.0) // 6.0) + 1
    zone = max(1, min(zone, 60))
    epsg = 32600 + zone if mean_lat >= 0 else 32700 + zone
    try:
        target_crs = CRS.from_epsg(epsg)
    except Exception:
        target_crs = CRS.from_epsg(3857)
    return Transformer.from_crs(CRS.from_epsg(4326), target_crs, always_xy=True)


__all__ = ["compute_stats", "format_area", "union_area_m2"]
