#!/usr/bin/env python3
"""Replay a recorded list of fixes through a tracking session.

The input is a JSON list of objects with ``lat``, ``lng`` and optional
``accuracy`` (metres) and ``timestamp`` (ISO-8601 or epoch milliseconds).
Fixes without a timestamp are spaced ``--interval`` seconds apart.

The fixes are fed through the full pipeline (validation, distance gate,
batch buffer, explored areas) over an in-memory store, and a JSON summary of
the resulting session is printed.

Usage:

    python -m footpath.tools.replay_fixes walk.json
    python -m footpath.tools.replay_fixes walk.json --min-distance 5 --union-area
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from footpath.config import MAX_ACCURACY_M, MAX_SPEED_KMH, MIN_DISTANCE_M
from footpath.exploration.stats import format_area, union_area_m2
from footpath.geo import utc_now
from footpath.models import PositionFix
from footpath.smoothing import encode_path, render_path
from footpath.sources import ReplayLocationSource
from footpath.store.memory import InMemorySessionStore
from footpath.store.serialization import parse_timestamp
from footpath.tracking.session_manager import SessionManager, TrackingSettings
from footpath.validation import DistanceGate, SampleValidator

LOGGER = logging.getLogger("replay_fixes")

DEFAULT_ACCURACY_M = 10.0


def load_fixes(
    path: Path, *, interval: float = 10.0, start: Optional[datetime] = None
) -> List[PositionFix]:
    """Read fixes from ``path``; entries without coordinates are skipped."""

    with open(path, "r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, list):
        raise ValueError(f"{path} must contain a JSON list of fixes")

    base = start or utc_now()
    fixes: List[PositionFix] = []
    for index, entry in enumerate(payload):
        if not isinstance(entry, dict):
            LOGGER.warning("Skipping entry %d: not an object", index)
            continue
        try:
            lat = float(entry["lat"])
            lng = float(entry["lng"])
            accuracy = float(entry.get("accuracy", DEFAULT_ACCURACY_M))
        except (KeyError, TypeError, ValueError):
            LOGGER.warning("Skipping entry %d: missing or invalid coordinates", index)
            continue
        timestamp = parse_timestamp(entry.get("timestamp"))
        if timestamp is None:
            timestamp = base + timedelta(seconds=interval * index)
        fixes.append(PositionFix(lat, lng, accuracy, timestamp))
    return fixes


def replay(
    fixes: Sequence[PositionFix],
    *,
    user_id: str = "replay",
    min_distance_m: float = MIN_DISTANCE_M,
    max_accuracy_m: float = MAX_ACCURACY_M,
    max_speed_kmh: float = MAX_SPEED_KMH,
    include_union_area: bool = False,
) -> Dict[str, Any]:
    """Run ``fixes`` through a fresh session and return a summary dict."""

    store = InMemorySessionStore()
    source = ReplayLocationSource(fixes)
    manager = SessionManager(
        user_id,
        store,
        source,
        settings=TrackingSettings(min_distance_m=min_distance_m),
        validator=SampleValidator(max_accuracy_m, max_speed_kmh),
        gate=DistanceGate(min_distance_m),
    )
    session = manager.start()
    if session is None:
        raise RuntimeError("Could not start a replay session")
    delivered = source.replay()
    recorded = manager.session.points if manager.session else []
    areas = manager.explored_areas
    stats = manager.exploration_stats
    ended = manager.stop()
    stored = store.get_session(session.id)

    summary: Dict[str, Any] = {
        "session_id": session.id,
        "fixes": len(fixes),
        "delivered": delivered,
        "recorded_points": len(recorded),
        "dropped": len(fixes) - len(recorded),
        "stored_points": len(stored.points),
        "ended": ended is not None and not stored.is_active,
        "explored_areas": len(areas),
        "total_explored_area": stats.total_explored_area,
        "total_explored_area_display": format_area(stats.total_explored_area),
        "exploration_level": stats.exploration_level,
        "exploration_percentage": stats.exploration_percentage,
        "polyline": encode_path(render_path(recorded)) if recorded else "",
    }
    if include_union_area:
        covered = union_area_m2(areas)
        summary["union_area"] = covered
        summary["union_area_display"] = format_area(covered)
    return summary


def _setup_logging(level: str) -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    logging.basicConfig(
        level=getattr(logging, level),
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Replay recorded fixes through a tracking session"
    )
    parser.add_argument("fixes_file", type=Path, help="JSON list of fixes")
    parser.add_argument(
        "--user-id", default="replay", help="User id recorded on the session"
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=10.0,
        help="Seconds between fixes that carry no timestamp (default: 10)",
    )
    parser.add_argument(
        "--min-distance",
        type=float,
        default=MIN_DISTANCE_M,
        help=f"Distance gate in metres (default: {MIN_DISTANCE_M:g})",
    )
    parser.add_argument(
        "--max-accuracy",
        type=float,
        default=MAX_ACCURACY_M,
        help=f"Accuracy gate in metres (default: {MAX_ACCURACY_M:g})",
    )
    parser.add_argument(
        "--max-speed",
        type=float,
        default=MAX_SPEED_KMH,
        help=f"Speed gate in km/h (default: {MAX_SPEED_KMH:g})",
    )
    parser.add_argument(
        "--union-area",
        action="store_true",
        help="Also compute the overlap-aware covered area",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Python logging level",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the replay_fixes tool."""

    args = _build_parser().parse_args(argv)
    _setup_logging(args.log_level)

    try:
        fixes = load_fixes(args.fixes_file, interval=args.interval)
    except (OSError, ValueError) as exc:
        LOGGER.error("Could not read %s: %s", args.fixes_file, exc)
        return 2

    LOGGER.info("Replaying %d fixes from %s", len(fixes), args.fixes_file)
    summary = replay(
        fixes,
        user_id=args.user_id,
        min_distance_m=args.min_distance,
        max_accuracy_m=args.max_accuracy,
        max_speed_kmh=args.max_speed,
        include_union_area=args.union_area,
    )
    json.dump(summary, sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
