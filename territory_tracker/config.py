"""Central configuration for the territory tracker.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Every tunable can be overridden through environment
variables (optionally via a local `.env`).
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
# Route / territory service
# ---------------------------------------------------------------------------
TRACKER_API_BASE_URL = os.getenv(
    "TRACKER_API_BASE_URL", "http://localhost:8000/api/v1"
).rstrip("/")

# User the CLI entry point records routes for.
TRACKER_USER_ID = os.getenv("TRACKER_USER_ID", "")

# HTTP session pool sizes.
HTTP_POOL_CONNECTIONS = _env_int("HTTP_POOL_CONNECTIONS", 10)
HTTP_POOL_MAXSIZE = _env_int("HTTP_POOL_MAXSIZE", 10)

# Request timeout in seconds.
REQUEST_TIMEOUT = _env_int("REQUEST_TIMEOUT", 15)


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------
EARTH_RADIUS_M = 6_371_000.0

# Start/end distance (metres) below which a route counts as a closed loop.
# The comparison is strict: a gap of exactly this many metres is open.
# Surfaces of the mobile client historically used both 50 m and 100 m; this
# single value gates territory eligibility everywhere in the package.
CLOSED_LOOP_THRESHOLD_M = _env_float("CLOSED_LOOP_THRESHOLD_M", 50.0)

# Minimum GPS points before a route can be a loop or territory eligible.
MIN_LOOP_COORDINATES = _env_int("MIN_LOOP_COORDINATES", 4)

# Minimum travelled distance (metres) for territory eligibility.
MIN_TERRITORY_DISTANCE_M = _env_float("MIN_TERRITORY_DISTANCE_M", 100.0)

# Distance and point count that max out the reporting eligibility score.
ELIGIBILITY_SCORE_DISTANCE_M = _env_float("ELIGIBILITY_SCORE_DISTANCE_M", 500.0)
ELIGIBILITY_SCORE_POINTS = _env_int("ELIGIBILITY_SCORE_POINTS", 50)

# Heading change (degrees) counted as a significant turn in quality reports.
HEADING_CHANGE_THRESHOLD_DEG = 30.0


# ---------------------------------------------------------------------------
# Coordinate admission
# ---------------------------------------------------------------------------
# Samples reporting a worse accuracy (metres) are treated as noise.
MAX_ACCURACY_M = _env_float("MAX_ACCURACY_M", 100.0)

# Instantaneous speed ceiling (m/s). 111.12 m/s is 400 km/h.
MAX_SAMPLE_SPEED_MPS = _env_float("MAX_SAMPLE_SPEED_MPS", 111.12)

# Speed implied by two consecutive samples above which the newer one is a jump.
MAX_IMPLIED_SPEED_KMH = _env_float("MAX_IMPLIED_SPEED_KMH", 400.0)

# Samples closer than this (metres) to the last admitted point are dropped.
MIN_POINT_SPACING_M = _env_float("MIN_POINT_SPACING_M", 1.0)


# ---------------------------------------------------------------------------
# Live tracking
# ---------------------------------------------------------------------------
# Upload admitted coordinates once this many are queued ...
COORDINATE_BATCH_SIZE = _env_int("COORDINATE_BATCH_SIZE", 10)
# ... or when this many seconds passed since the previous upload.
COORDINATE_FLUSH_INTERVAL_S = _env_float("COORDINATE_FLUSH_INTERVAL_S", 5.0)

# Longest wait for an in-flight upload before completing a route.
UPLOAD_DRAIN_TIMEOUT_S = _env_float("UPLOAD_DRAIN_TIMEOUT_S", 30.0)

# Period of the elapsed-time ticker while a route is active.
ELAPSED_TICK_INTERVAL_S = _env_float("ELAPSED_TICK_INTERVAL_S", 1.0)

# User-triggered completion attempts before the route is marked failed.
MAX_COMPLETION_ATTEMPTS = _env_int("MAX_COMPLETION_ATTEMPTS", 3)

# Explicit territory-claim retries allowed per completed route.
MAX_CLAIM_RETRY_ATTEMPTS = _env_int("MAX_CLAIM_RETRY_ATTEMPTS", 3)

# Completion results remembered per controller (LRU).
COMPLETION_HISTORY_SIZE = _env_int("COMPLETION_HISTORY_SIZE", 256)

# A server-side active route with no coordinates older than this is stuck.
STUCK_ROUTE_MAX_AGE_MINUTES = _env_int("STUCK_ROUTE_MAX_AGE_MINUTES", 5)


# ---------------------------------------------------------------------------
# Territory preview
# ---------------------------------------------------------------------------
PREVIEW_ENABLED = _env_bool("PREVIEW_ENABLED", True)

# Quiet period after the last shape change before a preview is requested.
PREVIEW_DEBOUNCE_S = _env_float("PREVIEW_DEBOUNCE_S", 2.0)

# Previews need at least a triangle.
PREVIEW_MIN_COORDINATES = _env_int("PREVIEW_MIN_COORDINATES", 3)

# Preview results cached per (route, coordinate count, closed flag).
PREVIEW_CACHE_SIZE = _env_int("PREVIEW_CACHE_SIZE", 32)
PREVIEW_CACHE_TTL_S = _env_int("PREVIEW_CACHE_TTL_S", 300)
