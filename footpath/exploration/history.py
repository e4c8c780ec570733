"""Exploration state rebuilt from a user's finished sessions."""

from __future__ import annotations

import logging
import time
from threading import RLock
from typing import Callable, Iterable, List, Optional

from cachetools import TTLCache

from ..config import (
    CACHE_EXPIRY_SECONDS,
    EXPLORATION_DEDUP_FACTOR,
    EXPLORATION_RADIUS_M,
    HISTORY_CACHE_SIZE,
)
from ..geo import utc_now
from ..models import (
    ExplorationSnapshot,
    ExplorationStats,
    ExploredArea,
    GeoPoint,
)
from ..ports import Clock, SessionStore
from .index import ExplorationIndex, SpatialIndex

SpatialIndexFactory = Callable[[], SpatialIndex]


class ExplorationHistory:
    """Load and cache the explored areas of every ended session for a user.

    Only inactive sessions contribute; the live session's areas come from the
    tracker. Snapshots are cached per user for ``ttl`` seconds and a failed
    load is never cached.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        ttl: float = CACHE_EXPIRY_SECONDS,
        cache_size: int = HISTORY_CACHE_SIZE,
        radius_m: float = EXPLORATION_RADIUS_M,
        dedup_factor: float = EXPLORATION_DEDUP_FACTOR,
        spatial_index_factory: Optional[SpatialIndexFactory] = None,
        clock: Clock = utc_now,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._log = logging.getLogger(self.__class__.__name__)
        self._store = store
        self.radius_m = radius_m
        self.dedup_factor = dedup_factor
        self._spatial_index_factory = spatial_index_factory
        self._clock = clock
        self._cache: TTLCache[str, ExplorationSnapshot] = TTLCache(
            maxsize=max(1, cache_size), ttl=ttl, timer=timer
        )
        self._lock = RLock()
        self.loads = 0

    def load(self, user_id: str, force_refresh: bool = False) -> ExplorationSnapshot:
        """Return the user's historic exploration, from cache when fresh."""

        with self._lock:
            if not force_refresh:
                cached = self._cache.get(user_id)
                if cached is not None:
                    return cached
        try:
            snapshot = self._build(user_id)
        except Exception as exc:
            self._log.error(
                "Failed to load exploration history user=%s: %s",
                user_id,
                exc,
                exc_info=True,
            )
            return ExplorationSnapshot(
                user_id=user_id,
                areas=[],
                stats=ExplorationStats(),
                total_points_count=0,
                session_count=0,
                loaded_at=self._clock(),
                metadata={"error": str(exc)},
            )
        with self._lock:
            self._cache[user_id] = snapshot
        return snapshot

    def invalidate(self, user_id: Optional[str] = None) -> None:
        """Forget one user's snapshot, or all of them."""

        with self._lock:
            if user_id is None:
                self._cache.clear()
            else:
                self._cache.pop(user_id, None)

    def _build(self, user_id: str) -> ExplorationSnapshot:
        self.loads += 1
        sessions = [
            session
            for session in self._store.query_all_sessions(user_id)
            if not session.is_active
        ]
        sessions.sort(key=lambda session: session.start_time)
        points: List[GeoPoint] = []
        for session in sessions:
            points.extend(session.points)

        spatial = None
        if self._spatial_index_factory is not None:
            spatial = self._spatial_index_factory()
        index = ExplorationIndex(self.radius_m, self.dedup_factor, spatial)
        areas = index.rebuild(points, user_id)
        self._log.info(
            "Loaded exploration history user=%s sessions=%d points=%d areas=%d",
            user_id,
            len(sessions),
            len(points),
            len(areas),
        )
        return ExplorationSnapshot(
            user_id=user_id,
            areas=areas,
            stats=index.stats,
            total_points_count=len(points),
            session_count=len(sessions),
            loaded_at=self._clock(),
            metadata={"radius_m": self.radius_m},
        )


def combined_areas(
    history: Iterable[ExploredArea], live: Iterable[ExploredArea]
) -> List[ExploredArea]:
    """History areas followed by the live session's areas."""

    return [*history, *live]


__all__ = ["ExplorationHistory", "combined_areas"]
