"""Route shape metrics for reporting (efficiency, tortuosity, heading spread)."""

from __future__ import annotations

from typing import List, Sequence

import numpy as np

from ..config import HEADING_CHANGE_THRESHOLD_DEG
from ..models import Coordinate, RouteQuality
from .distance import bearing_deg, closure_gap_m, path_distance_m, segment_distances_m


def route_efficiency(straight_line_m: float, path_m: float) -> float | None:
    """Straight-line over travelled distance in (0, 1]; None when either is zero."""

    if path_m <= 0 or straight_line_m <= 0:
        return None
    return float(min(straight_line_m / path_m, 1.0))


def tortuosity(straight_line_m: float, path_m: float) -> float | None:
    """Reciprocal of efficiency; None when the route ends where it started."""

    if path_m <= 0 or straight_line_m <= 0:
        return None
    return max(path_m / straight_line_m, 1.0)


def heading_variance(headings_deg: Sequence[float]) -> float:
    """Circular variance of headings: 0 for a straight line, towards 1 when scattered."""

    if len(headings_deg) < 2:
        return 0.0
    radians = np.radians(np.asarray(headings_deg, dtype=float))
    resultant = np.hypot(np.mean(np.cos(radians)), np.mean(np.sin(radians)))
    return float(min(max(1.0 - resultant, 0.0), 1.0))


def count_heading_changes(
    headings_deg: Sequence[float],
    threshold_deg: float = HEADING_CHANGE_THRESHOLD_DEG,
) -> int:
    changes = 0
    for previous, current in zip(headings_deg, headings_deg[1:]):
        diff = abs(current - previous) % 360.0
        if diff > 180.0:
            diff = 360.0 - diff
        if diff > threshold_deg:
            changes += 1
    return changes


def _headings(coordinates: Sequence[Coordinate]) -> List[float]:
    reported = [c.bearing for c in coordinates if c.bearing is not None]
    if len(reported) == len(coordinates):
        return [float(b) for b in reported]
    # Fall back to segment bearings, skipping pairs that did not move.
    points = [c.latlon for c in coordinates]
    lengths = segment_distances_m(points)
    return [
        bearing_deg(points[i], points[i + 1])
        for i in range(len(points) - 1)
        if lengths[i] > 0
    ]


def compute_route_quality(coordinates: Sequence[Coordinate]) -> RouteQuality:
    if len(coordinates) < 2:
        return RouteQuality()

    points = [c.latlon for c in coordinates]
    total = path_distance_m(points)
    straight = closure_gap_m(points) or 0.0
    headings = _headings(coordinates)

    gain = loss = 0.0
    altitudes = [c.altitude for c in coordinates]
    for previous, current in zip(altitudes, altitudes[1:]):
        if previous is None or current is None:
            continue
        delta = current - previous
        if delta > 0:
            gain += delta
        else:
            loss -= delta

    accuracies = [c.accuracy for c in coordinates if c.accuracy is not None]
    return RouteQuality(
        straight_line_distance_m=straight,
        efficiency=route_efficiency(straight, total),
        tortuosity=tortuosity(straight, total),
        heading_variance=heading_variance(headings),
        heading_changes=count_heading_changes(headings),
        elevation_gain_m=gain,
        elevation_loss_m=loss,
        average_accuracy_m=float(np.mean(accuracies)) if accuracies else 0.0,
    )


__all__ = [
    "compute_route_quality",
    "count_heading_changes",
    "heading_variance",
    "route_efficiency",
    "tortuosity",
]
