"""GPS geometry utilities: distances, loop detection and shape metrics."""

from .distance import (
    LatLon,
    bearing_deg,
    closure_gap_m,
    haversine_m,
    is_closed_loop,
    path_distance_m,
    segment_distances_m,
)
from .projection import estimate_loop_area_m2, reproject_to_local_crs
from .quality import compute_route_quality, heading_variance

__all__ = [
    "LatLon",
    "bearing_deg",
    "closure_gap_m",
    "compute_route_quality",
    "estimate_loop_area_m2",
    "haversine_m",
    "heading_variance",
    "is_closed_loop",
    "path_distance_m",
    "reproject_to_local_crs",
    "segment_distances_m",
]
