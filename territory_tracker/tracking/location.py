"""Location sources and the scoped watch the session holds on one."""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Protocol, Sequence, Tuple

import numpy as np

from ..config import EARTH_RADIUS_M
from ..errors import LocationUnavailable
from .timers import RepeatingTimer, TimerFactory

LOGGER = logging.getLogger(__name__)

SampleCallback = Callable[[Mapping[str, Any]], None]
ErrorCallback = Callable[[LocationUnavailable], None]


class LocationSource(Protocol):
    """Anything that can stream raw location samples.

    ``watch`` starts delivery and returns a function that stops it.
    """

    def watch(
        self, on_sample: SampleCallback, on_error: ErrorCallback
    ) -> Callable[[], None]: ...


class LocationWatch:
    """Scoped hold on a ``LocationSource`` subscription.

    ``acquire`` and ``release`` are idempotent so every exit path can call
    ``release`` unconditionally.
    """

    def __init__(
        self,
        source: LocationSource,
        on_sample: SampleCallback,
        on_error: ErrorCallback,
    ) -> None:
        self._source = source
        self._on_sample = on_sample
        self._on_error = on_error
        self._stop: Callable[[], None] | None = None
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        with self._lock:
            return self._stop is not None

    def acquire(self) -> None:
        with self._lock:
            if self._stop is not None:
                return
            self._stop = self._source.watch(self._on_sample, self._on_error)
        LOGGER.debug("Location watch acquired")

    def release(self) -> None:
        with self._lock:
            stop, self._stop = self._stop, None
        if stop is None:
            return
        try:
            stop()
        finally:
            LOGGER.debug("Location watch released")

    def __enter__(self) -> "LocationWatch":
        self.acquire()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.release()


class SimulatedLocationSource:
    """Replays prepared samples, one per tick, to every active watcher.

    With ``interval_s`` set to 0 nothing is scheduled and callers step the
    playback through ``emit_next``.
    """

    def __init__(
        self,
        samples: Sequence[Mapping[str, Any]],
        *,
        interval_s: float = 1.0,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        self._samples = list(samples)
        self._interval_s = interval_s
        self._timer_factory = timer_factory
        self._position = 0
        self._watchers: Dict[int, Tuple[SampleCallback, ErrorCallback]] = {}
        self._next_token = 0
        self._lock = threading.Lock()
        self._ticker: RepeatingTimer | None = None

    @property
    def watcher_count(self) -> int:
        with self._lock:
            return len(self._watchers)

    @property
    def exhausted(self) -> bool:
        with self._lock:
            return self._position >= len(self._samples)

    def watch(
        self, on_sample: SampleCallback, on_error: ErrorCallback
    ) -> Callable[[], None]:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._watchers[token] = (on_sample, on_error)
            if self._interval_s > 0 and self._ticker is None:
                self._ticker = RepeatingTimer(
                    self._interval_s,
                    self._tick,
                    timer_factory=self._timer_factory,
                    name="gps-simulator",
                )
                self._ticker.start()

        def _stop() -> None:
            with self._lock:
                self._watchers.pop(token, None)
                ticker = self._ticker if not self._watchers else None
                if ticker is not None:
                    self._ticker = None
            if ticker is not None:
                ticker.cancel()

        return _stop

    def _tick(self) -> None:
        if not self.emit_next():
            with self._lock:
                ticker, self._ticker = self._ticker, None
            if ticker is not None:
                ticker.cancel()

    def emit_next(self) -> bool:
        """Deliver the next sample to the watchers; False once playback is done."""

        with self._lock:
            if self._position >= len(self._samples):
                return False
            sample = self._samples[self._position]
            self._position += 1
            callbacks = [on_sample for on_sample, _ in self._watchers.values()]
        for on_sample in callbacks:
            on_sample(sample)
        return True

    def fail(self, kind: str, message: str | None = None) -> None:
        """Report a location error (permission denied, unavailable, timeout)."""

        error = LocationUnavailable(kind, message)
        with self._lock:
            callbacks = [on_error for _, on_error in self._watchers.values()]
        for on_error in callbacks:
            on_error(error)


def _offsets_to_latlon(
    center: Tuple[float, float], north_m: np.ndarray, east_m: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    lat0, lon0 = center
    lat = lat0 + np.degrees(north_m / EARTH_RADIUS_M)
    lon = lon0 + np.degrees(east_m / EARTH_RADIUS_M) / math.cos(math.radians(lat0))
    return lat, lon


def generate_pattern(
    pattern: str,
    center: Tuple[float, float],
    *,
    size_m: float = 200.0,
    points: int = 20,
    speed_kmh: float = 5.0,
    accuracy_m: float = 5.0,
    start: datetime | None = None,
    seed: int | None = None,
) -> List[Dict[str, Any]]:
    """Synthesise a walk around ``center`` for demos and replay tests.

    ``pattern`` is ``square`` (side ``size_m``) or ``circle`` (radius
    ``size_m``). Samples are spaced in time by the walking speed and carry a
    little positional noise bounded by ``accuracy_m``.
    """

    if points < 2:
        raise ValueError("points must be at least 2")
    if pattern == "circle":
        angles = np.linspace(0.0, 2 * math.pi, points)
        north = size_m * np.cos(angles)
        east = size_m * np.sin(angles)
    elif pattern == "square":
        half = size_m / 2.0
        corners = np.array(
            [[-half, -half], [half, -half], [half, half], [-half, half], [-half, -half]]
        )
        steps = np.linspace(0.0, 4.0, points)
        index = np.minimum(steps.astype(int), 3)
        fraction = (steps - index)[:, None]
        path = corners[index] + (corners[index + 1] - corners[index]) * fraction
        north, east = path[:, 0], path[:, 1]
    else:
        raise ValueError(f"Unknown pattern: {pattern}")

    rng = np.random.default_rng(seed)
    noise = rng.uniform(-0.5, 0.5, size=(2, points)) * accuracy_m
    lat, lon = _offsets_to_latlon(center, north + noise[0], east + noise[1])

    step_m = np.hypot(np.diff(north), np.diff(east))
    speed_mps = speed_kmh / 3.6
    elapsed = np.concatenate([[0.0], np.cumsum(step_m / speed_mps)])
    origin = start or datetime.now(timezone.utc)
    return [
        {
            "latitude": float(lat[i]),
            "longitude": float(lon[i]),
            "timestamp": (origin + timedelta(seconds=float(elapsed[i]))).isoformat(),
            "accuracy": accuracy_m,
            "speed": speed_mps,
        }
        for i in range(points)
    ]


__all__ = [
    "ErrorCallback",
    "LocationSource",
    "LocationWatch",
    "SampleCallback",
    "SimulatedLocationSource",
    "generate_pattern",
]
