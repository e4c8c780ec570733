"""Central configuration for the footpath tracking engine.

All values are constants imported by the rest of the package and used as
constructor defaults, so callers (and tests) can still inject their own.
Every tunable can be overridden through an environment variable, optionally
via a local `.env`.
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Sample validation
# ---------------------------------------------------------------------------
# Fixes reporting a worse accuracy radius (metres) are dropped.
MAX_ACCURACY_M = _env_float("FOOTPATH_MAX_ACCURACY_M", 100.0)

# Implied speed ceiling (km/h) between two accepted fixes. Anything faster is
# treated as a vehicle or a GPS jump.
MAX_SPEED_KMH = _env_float("FOOTPATH_MAX_SPEED_KMH", 20.0)

# Minimum movement (metres) from the last recorded point before a new point
# is recorded.
MIN_DISTANCE_M = _env_float("FOOTPATH_MIN_DISTANCE_M", 10.0)

# Mean Earth radius used by every haversine computation.
EARTH_RADIUS_M = 6_371_000.0


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------
# Pending points are flushed to the durable store this often.
BATCH_INTERVAL_SECONDS = _env_float("FOOTPATH_BATCH_INTERVAL_SECONDS", 30.0)

# Active sessions at least this old on startup are force-closed instead of
# resumed.
SESSION_TIMEOUT_MINUTES = _env_float("FOOTPATH_SESSION_TIMEOUT_MINUTES", 10.0)

# Delay before tracking auto-starts on a first-ever visit.
FIRST_VISIT_AUTOSTART_DELAY_SECONDS = _env_float(
    "FOOTPATH_FIRST_VISIT_AUTOSTART_DELAY_SECONDS", 1.0
)

# Delay before a new session auto-starts when the previous run was tracking
# but left no resumable session behind.
RESUME_AUTOSTART_DELAY_SECONDS = _env_float(
    "FOOTPATH_RESUME_AUTOSTART_DELAY_SECONDS", 2.0
)

# Map centre used when the initial position query fails (Tokyo Station).
DEFAULT_POSITION = (
    _env_float("FOOTPATH_DEFAULT_LAT", 35.6812),
    _env_float("FOOTPATH_DEFAULT_LNG", 139.7671),
)

# Storage mode written alongside every appended batch.
DEFAULT_STORAGE_MODE = os.getenv("FOOTPATH_STORAGE_MODE", "incremental")


# ---------------------------------------------------------------------------
# Location source profiles
# ---------------------------------------------------------------------------
# Continuous watch: low accuracy, 5 minute cache, 10 second timeout.
BATTERY_SAVING_PROFILE = {
    "high_accuracy": False,
    "max_cached_age_ms": 300_000,
    "timeout_ms": 10_000,
}

# One-shot initial fix: high accuracy, 30 second cache, 15 second timeout.
HIGH_ACCURACY_PROFILE = {
    "high_accuracy": True,
    "max_cached_age_ms": 30_000,
    "timeout_ms": 15_000,
}


# ---------------------------------------------------------------------------
# Exploration
# ---------------------------------------------------------------------------
# Radius (metres) of the disk marked as explored around a recorded point.
EXPLORATION_RADIUS_M = _env_float("FOOTPATH_EXPLORATION_RADIUS_M", 25.0)

# New circles are only added when no existing centre lies within
# radius * factor.
EXPLORATION_DEDUP_FACTOR = _env_float("FOOTPATH_EXPLORATION_DEDUP_FACTOR", 0.3)

# Square metres per exploration level.
EXPLORATION_LEVEL_AREA_M2 = 10_000.0

# Historic sessions are re-queried after this many seconds.
CACHE_EXPIRY_SECONDS = _env_int("FOOTPATH_CACHE_EXPIRY_SECONDS", 5 * 60)

# Maximum number of users kept in the history cache.
HISTORY_CACHE_SIZE = _env_int("FOOTPATH_HISTORY_CACHE_SIZE", 16)


# ---------------------------------------------------------------------------
# Path rendering
# ---------------------------------------------------------------------------
# Interpolated sub-points generated per segment by the spline.
SMOOTHING_SEGMENTS = _env_int("FOOTPATH_SMOOTHING_SEGMENTS", 5)

# Paths longer than this are thinned before smoothing.
POINT_OPTIMIZATION_THRESHOLD = _env_int("FOOTPATH_POINT_OPTIMIZATION_THRESHOLD", 100)

# Number of smoothed paths memoised by RenderPathCache.
RENDER_CACHE_SIZE = _env_int("FOOTPATH_RENDER_CACHE_SIZE", 32)


# ---------------------------------------------------------------------------
# Durable store (HTTP adapter)
# ---------------------------------------------------------------------------
STORE_BASE_URL = os.getenv("FOOTPATH_STORE_BASE_URL", "http://localhost:8080/api")

# Optional bearer token sent with every store request. Do not hardcode secrets.
STORE_API_TOKEN = os.getenv("FOOTPATH_STORE_API_TOKEN", "")

# Request timeout in seconds.
REQUEST_TIMEOUT = _env_float("FOOTPATH_REQUEST_TIMEOUT", 15.0)

# Unload beacons must not hold the process; keep this short.
BEACON_TIMEOUT = _env_float("FOOTPATH_BEACON_TIMEOUT", 2.0)

# HTTP session pool sizes.
HTTP_POOL_CONNECTIONS = 4
HTTP_POOL_MAXSIZE = 4

# Retry transient 5xx responses from the store.
STORE_MAX_RETRIES = _env_int("FOOTPATH_STORE_MAX_RETRIES", 3)


# ---------------------------------------------------------------------------
# Local flags
# ---------------------------------------------------------------------------
# JSON file holding the process-local "has visited" / "was tracking" flags.
FLAGS_FILE = os.getenv("FOOTPATH_FLAGS_FILE", "footpath_flags.json")

VISITED_FLAG = "footpath_visited"
WAS_TRACKING_FLAG = "footpath_was_tracking"

# Log every dropped fix at DEBUG level. Noisy on real devices.
LOG_REJECTED_FIXES = _env_bool("FOOTPATH_LOG_REJECTED_FIXES", False)
