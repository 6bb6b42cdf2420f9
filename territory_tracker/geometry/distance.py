"""Great-circle distance helpers for GPS paths."""

from __future__ import annotations

import math
from typing import Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from ..config import CLOSED_LOOP_THRESHOLD_M, EARTH_RADIUS_M, MIN_LOOP_COORDINATES

LatLon = Tuple[float, float]
MetricArray = NDArray[np.float64]


def haversine_m(first: LatLon, second: LatLon) -> float:
    """Return the great-circle distance in metres between two lat/lon pairs."""

    lat1, lon1 = first
    lat2, lon2 = second
    sin = math.sin
    cos = math.cos
    radians = math.radians
    lat1_rad = radians(lat1)
    lat2_rad = radians(lat2)
    delta_lat = lat2_rad - lat1_rad
    delta_lon = radians(lon2 - lon1)
    sin_half_lat = sin(delta_lat / 2.0)
    sin_half_lon = sin(delta_lon / 2.0)
    a = sin_half_lat**2 + cos(lat1_rad) * cos(lat2_rad) * sin_half_lon**2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def segment_distances_m(points: Sequence[LatLon]) -> MetricArray:
    """Return the haversine length of every consecutive pair of points."""

    if len(points) < 2:
        return np.zeros(0, dtype=float)
    array = np.radians(np.asarray(points, dtype=float))
    lat = array[:, 0]
    lon = array[:, 1]
    delta_lat = np.diff(lat)
    delta_lon = np.diff(lon)
    a = (
        np.sin(delta_lat / 2.0) ** 2
        + np.cos(lat[:-1]) * np.cos(lat[1:]) * np.sin(delta_lon / 2.0) ** 2
    )
    c = 2.0 * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def path_distance_m(points: Sequence[LatLon]) -> float:
    """Sum of consecutive pairwise distances (not the first-to-last chord)."""

    return float(np.sum(segment_distances_m(points)))


def closure_gap_m(points: Sequence[LatLon]) -> float | None:
    """Distance between the first and last point, ``None`` for empty paths."""

    if not points:
        return None
    return haversine_m(points[0], points[-1])


def is_closed_loop(
    points: Sequence[LatLon],
    threshold_m: float = CLOSED_LOOP_THRESHOLD_M,
    min_points: int = MIN_LOOP_COORDINATES,
) -> bool:
    """True when the path has enough points and ends strictly within ``threshold_m`` of its start."""

    if len(points) < min_points:
        return False
    gap = closure_gap_m(points)
    return gap is not None and gap < threshold_m


def bearing_deg(first: LatLon, second: LatLon) -> float:
    """Initial great-circle bearing from ``first`` to ``second`` in [0, 360)."""

    lat1 = math.radians(first[0])
    lat2 = math.radians(second[0])
    delta_lon = math.radians(second[1] - first[1])
    y = math.sin(delta_lon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(
        delta_lon
    )
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


__all__ = [
    "LatLon",
    "bearing_deg",
    "closure_gap_m",
    "haversine_m",
    "is_closed_loop",
    "path_distance_m",
    "segment_distances_m",
]
