"""Route statistics and territory eligibility.

Everything here is a pure function of its inputs so the same coordinate
sequence yields the same ``RouteStats`` no matter who computes it. The
``StatsAccumulator`` produces identical results incrementally for the live
buffer.
"""

from __future__ import annotations

import math
from typing import Any, Mapping, Sequence

from ..config import (
    CLOSED_LOOP_THRESHOLD_M,
    MIN_LOOP_COORDINATES,
    MIN_TERRITORY_DISTANCE_M,
)
from ..geometry import haversine_m, is_closed_loop, path_distance_m
from ..models import (
    Coordinate,
    EligibilityStatus,
    RouteStats,
    TerritoryEligibility,
)

MPS_TO_KMH = 3.6


def gps_quality_score(mean_accuracy_m: float | None) -> float:
    """Bucket mean horizontal accuracy into a 0-100 score (0 without data)."""

    if mean_accuracy_m is None:
        return 0.0
    if mean_accuracy_m <= 5:
        return 100.0
    if mean_accuracy_m <= 10:
        return 80.0
    if mean_accuracy_m <= 20:
        return 60.0
    return 40.0


def average_speed_kmh(distance_m: float, duration_s: float) -> float:
    if duration_s <= 0:
        return 0.0
    return distance_m / duration_s * MPS_TO_KMH


def _elapsed_between(coordinates: Sequence[Coordinate]) -> float:
    if len(coordinates) < 2:
        return 0.0
    return max(
        (coordinates[-1].timestamp - coordinates[0].timestamp).total_seconds(), 0.0
    )


def compute_stats(
    coordinates: Sequence[Coordinate],
    *,
    duration_seconds: float | None = None,
    closure_threshold_m: float = CLOSED_LOOP_THRESHOLD_M,
) -> RouteStats:
    """Derive ``RouteStats`` from an ordered coordinate sequence.

    ``duration_seconds`` overrides the first-to-last sample span, which is how
    the live session excludes paused intervals.
    """

    if not coordinates:
        return RouteStats(duration_seconds=max(duration_seconds or 0.0, 0.0))

    points = [c.latlon for c in coordinates]
    distance = path_distance_m(points)
    duration = (
        _elapsed_between(coordinates)
        if duration_seconds is None
        else max(duration_seconds, 0.0)
    )
    speeds = [c.speed for c in coordinates if c.speed is not None]
    accuracies = [c.accuracy for c in coordinates if c.accuracy is not None]
    latest_speed = coordinates[-1].speed
    return RouteStats(
        distance_meters=distance,
        duration_seconds=duration,
        current_speed_kmh=(latest_speed or 0.0) * MPS_TO_KMH,
        average_speed_kmh=average_speed_kmh(distance, duration),
        max_speed_kmh=max(speeds) * MPS_TO_KMH if speeds else 0.0,
        coordinate_count=len(coordinates),
        is_closed_loop=is_closed_loop(points, closure_threshold_m),
        gps_quality_score=gps_quality_score(
            sum(accuracies) / len(accuracies) if accuracies else None
        ),
    )


class StatsAccumulator:
    """Running totals over an append-only coordinate stream (O(1) per sample)."""

    def __init__(self, closure_threshold_m: float = CLOSED_LOOP_THRESHOLD_M) -> None:
        self._closure_threshold_m = closure_threshold_m
        self.reset()

    def reset(self) -> None:
        self._first: Coordinate | None = None
        self._last: Coordinate | None = None
        self._count = 0
        self._distance = 0.0
        self._max_speed_mps: float | None = None
        self._accuracy_sum = 0.0
        self._accuracy_count = 0

    def add(self, coordinate: Coordinate) -> None:
        if self._last is not None:
            self._distance += haversine_m(self._last.latlon, coordinate.latlon)
        else:
            self._first = coordinate
        self._last = coordinate
        self._count += 1
        if coordinate.speed is not None:
            if self._max_speed_mps is None or coordinate.speed > self._max_speed_mps:
                self._max_speed_mps = coordinate.speed
        if coordinate.accuracy is not None:
            self._accuracy_sum += coordinate.accuracy
            self._accuracy_count += 1

    @property
    def count(self) -> int:
        return self._count

    def stats(self, duration_seconds: float | None = None) -> RouteStats:
        first, last = self._first, self._last
        if first is None or last is None:
            return RouteStats(duration_seconds=max(duration_seconds or 0.0, 0.0))
        if duration_seconds is None:
            duration = max((last.timestamp - first.timestamp).total_seconds(), 0.0)
        else:
            duration = max(duration_seconds, 0.0)
        closed = (
            self._count >= MIN_LOOP_COORDINATES
            and haversine_m(first.latlon, last.latlon) < self._closure_threshold_m
        )
        mean_accuracy = (
            self._accuracy_sum / self._accuracy_count if self._accuracy_count else None
        )
        return RouteStats(
            distance_meters=self._distance,
            duration_seconds=duration,
            current_speed_kmh=(last.speed or 0.0) * MPS_TO_KMH,
            average_speed_kmh=average_speed_kmh(self._distance, duration),
            max_speed_kmh=(self._max_speed_mps or 0.0) * MPS_TO_KMH,
            coordinate_count=self._count,
            is_closed_loop=closed,
            gps_quality_score=gps_quality_score(mean_accuracy),
        )


def classify_eligibility(
    stats: RouteStats,
    *,
    min_coordinates: int = MIN_LOOP_COORDINATES,
    min_distance_m: float = MIN_TERRITORY_DISTANCE_M,
) -> TerritoryEligibility:
    """Ordered priority classification: eligible, partial, insufficient, starting."""

    has_points = stats.coordinate_count >= min_coordinates
    has_distance = stats.distance_meters >= min_distance_m
    if has_points and has_distance and stats.is_closed_loop:
        return TerritoryEligibility(
            True, EligibilityStatus.ELIGIBLE, "Route meets all territory requirements"
        )
    if has_points and has_distance:
        return TerritoryEligibility(
            False,
            EligibilityStatus.PARTIAL,
            "Route needs to form a closed loop for territory claiming",
        )
    if has_points:
        missing_m = max(math.ceil(min_distance_m - stats.distance_meters), 1)
        return TerritoryEligibility(
            False,
            EligibilityStatus.INSUFFICIENT,
            f"Route needs {missing_m}m more distance",
        )
    missing_points = min_coordinates - stats.coordinate_count
    noun = "point" if missing_points == 1 else "points"
    return TerritoryEligibility(
        False,
        EligibilityStatus.STARTING,
        f"Need {missing_points} more GPS {noun}",
    )


def coerce_stats(payload: Mapping[str, Any] | None) -> RouteStats:
    """Build ``RouteStats`` from a server snapshot, tolerating missing or null fields."""

    return RouteStats().merged_with(coerce_partial_stats(payload))


def coerce_partial_stats(payload: Mapping[str, Any] | None) -> dict[str, Any]:
    """Typed copy of the known stats fields present (and parseable) in ``payload``."""

    if not payload:
        return {}
    overrides: dict[str, Any] = {}
    for name, caster in _STAT_CASTERS.items():
        value = payload.get(name)
        if value is None:
            alias = _STAT_ALIASES.get(name)
            value = payload.get(alias) if alias else None
        if value is None:
            continue
        try:
            overrides[name] = caster(value)
        except (TypeError, ValueError):
            continue
    return overrides


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes"}:
            return True
        if normalized in {"0", "false", "no"}:
            return False
    raise ValueError(f"not a boolean: {value!r}")


_STAT_CASTERS = {
    "distance_meters": float,
    "duration_seconds": float,
    "current_speed_kmh": float,
    "average_speed_kmh": float,
    "max_speed_kmh": float,
    "coordinate_count": int,
    "is_closed_loop": _to_bool,
    "gps_quality_score": float,
}

# Field names used by the route service's own stats payloads.
_STAT_ALIASES = {
    "coordinate_count": "total_points",
    "is_closed_loop": "is_closed",
}


__all__ = [
    "StatsAccumulator",
    "average_speed_kmh",
    "classify_eligibility",
    "coerce_partial_stats",
    "coerce_stats",
    "compute_stats",
    "gps_quality_score",
]
