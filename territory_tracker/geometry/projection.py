"""Local metric projection and loop area estimation."""

from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np
from numpy.typing import NDArray
from pyproj import CRS, Transformer
from shapely.geometry import Polygon

from .distance import LatLon

MetricArray = NDArray[np.float64]


def reproject_to_local_crs(
    points: Sequence[LatLon],
) -> Tuple[MetricArray, Transformer]:
    """Project lat/lon points into a local metric coordinate system."""

    if not points:
        raise ValueError("Cannot reproject an empty point collection")
    transformer = _build_local_transformer(points)
    lats = np.asarray([pt[0] for pt in points], dtype=float)
    lons = np.asarray([pt[1] for pt in points], dtype=float)
    xs, ys = transformer.transform(lons, lats)
    return np.column_stack((xs, ys)).astype(float, copy=False), transformer


def estimate_loop_area_m2(points: Sequence[LatLon]) -> float:
    """Area enclosed by the path when closed back to its start.

    Self-intersecting paths are repaired with a zero buffer, which keeps the
    union of the enclosed lobes. Used for reporting next to service previews;
    the territory service remains the authority on claimable area.
    """

    if len(points) < 3:
        return 0.0
    metric, _ = reproject_to_local_crs(points)
    polygon = Polygon(metric)
    if not polygon.is_valid:
        polygon = polygon.buffer(0)
    return float(polygon.area)


def _build_local_transformer(points: Sequence[LatLon]) -> Transformer:
    """Build a local UTM transformer centred on the provided coordinates."""

    mean_lat = float(np.mean([pt[0] for pt in points]))
    mean_lon = float(np.mean([pt[1] for pt in points]))
    zone = int((mean_lon + 180.0) // 6.0) + 1
    zone = max(1, min(zone, 60))
    epsg = 32600 + zone if mean_lat >= 0 else 32700 + zone
    return Transformer.from_crs(CRS.from_epsg(4326), CRS.from_epsg(epsg), always_xy=True)


__all__ = ["estimate_loop_area_m2", "reproject_to_local_crs"]
