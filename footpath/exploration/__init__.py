"""Explored-area tracking, statistics and history."""

from .history import ExplorationHistory, combined_areas
from .index import ExplorationIndex, GridIndex, LinearScanIndex, grid_index_for
from .stats import compute_stats, format_area, union_area_m2

__all__ = [
    "ExplorationHistory",
    "ExplorationIndex",
    "GridIndex",
    "LinearScanIndex",
    "combined_areas",
    "compute_stats",
    "format_area",
    "grid_index_for",
    "union_area_m2",
]
