"""Turn route and territory service payloads into model objects.

The services are not strict about optional fields (``null`` versus absent,
``total_points`` versus ``coordinate_count``), so everything here tolerates
missing data and falls back to neutral defaults.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from ..models import (
    ActiveRoute,
    ClaimResult,
    ClaimStatus,
    CompletionResult,
    RouteStatus,
    TerritoryPreview,
)
from ..tracking.stats import classify_eligibility, coerce_partial_stats, coerce_stats
from ..tracking.validation import coordinates_from_payload, parse_timestamp

LOGGER = logging.getLogger(__name__)

JSONDict = Dict[str, Any]


def _as_dict(value: Any) -> Optional[JSONDict]:
    return dict(value) if isinstance(value, Mapping) else None


def _conflicts(payload: Mapping[str, Any], *keys: str) -> Tuple[JSONDict, ...]:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, list):
            return tuple(dict(item) for item in value if isinstance(item, Mapping))
    return ()


def extract_route_id(payload: Any) -> Optional[str]:
    if not isinstance(payload, Mapping):
        return None
    for key in ("id", "route_id"):
        value = payload.get(key)
        if value:
            return str(value)
    nested = payload.get("route")
    if isinstance(nested, Mapping) and nested.get("id"):
        return str(nested["id"])
    return None


def normalize_active_route(payload: Any) -> Optional[ActiveRoute]:
    """Return the in-progress route described by ``payload`` or None."""

    if isinstance(payload, Mapping) and isinstance(payload.get("route"), Mapping):
        payload = payload["route"]
    route_id = extract_route_id(payload)
    if route_id is None:
        return None
    raw_status = str(payload.get("status") or RouteStatus.ACTIVE.value).lower()
    try:
        status = RouteStatus(raw_status)
    except ValueError:
        LOGGER.debug("Route %s is %s; not an active route", route_id, raw_status)
        return None
    coordinates = coordinates_from_payload(payload.get("coordinates"))
    raw_stats = payload.get("stats") if isinstance(payload.get("stats"), Mapping) else {}
    partial = coerce_partial_stats(raw_stats)
    stats = coerce_stats(raw_stats)
    if "coordinate_count" not in partial and coordinates:
        stats = stats.merged_with({"coordinate_count": len(coordinates)})
    started_at = None
    for key in ("start_time", "started_at", "created_at"):
        started_at = parse_timestamp(payload.get(key))
        if started_at is not None:
            break
    return ActiveRoute(
        id=route_id,
        status=status,
        started_at=started_at,
        coordinates=coordinates,
        stats=stats,
        territory_eligibility=classify_eligibility(stats),
    )


def _claim_status(value: Any, default: ClaimStatus) -> ClaimStatus:
    if value is None:
        return default
    try:
        return ClaimStatus(str(value).lower())
    except ValueError:
        LOGGER.warning("Unknown territory claim status %r; treating as error", value)
        return ClaimStatus.ERROR


def normalize_completion(payload: Any, route_id: str) -> CompletionResult:
    data: JSONDict = dict(payload) if isinstance(payload, Mapping) else {}
    claim = _as_dict(data.get("territory_claim"))
    status = _claim_status(
        data.get("territory_claim_status"),
        ClaimStatus.SUCCESS if claim else ClaimStatus.INELIGIBLE,
    )
    gamification = _as_dict(data.get("gamification")) or _as_dict(
        data.get("gamification_results")
    )
    return CompletionResult(
        route_id=extract_route_id(data) or route_id,
        territory_claim_status=status,
        territory_claim=claim,
        conflicts=_conflicts(data, "territory_conflicts", "conflicts"),
        gamification=gamification,
        claim_reason=data.get("territory_claim_reason") or data.get("territory_claim_error"),
        raw=data,
    )


def normalize_claim(payload: Any) -> ClaimResult:
    data: JSONDict = dict(payload) if isinstance(payload, Mapping) else {}
    territory = _as_dict(data.get("territory")) or _as_dict(data.get("territory_claim"))
    if territory is None and data.get("id"):
        territory = data
    status = _claim_status(
        data.get("territory_claim_status") or data.get("status"),
        ClaimStatus.SUCCESS if territory else ClaimStatus.FAILED,
    )
    return ClaimResult(
        territory_claim_status=status,
        territory_claim=territory,
        conflicts=_conflicts(data, "conflicts", "territory_conflicts"),
        claim_reason=data.get("reason") or data.get("message"),
    )


def normalize_preview(payload: Any, route_id: str) -> TerritoryPreview:
    data: JSONDict = dict(payload) if isinstance(payload, Mapping) else {}
    preview = data.get("preview")
    if isinstance(preview, Mapping):
        data = dict(preview)
    try:
        area = float(data.get("area_square_meters") or 0.0)
    except (TypeError, ValueError):
        area = 0.0
    count = data.get("coordinate_count")
    return TerritoryPreview(
        route_id=route_id,
        area_square_meters=area,
        is_valid=bool(data.get("is_valid", False)),
        eligible_for_claiming=bool(data.get("eligible_for_claiming", False)),
        conflicts=_conflicts(data, "conflicts"),
        coordinate_count=int(count) if isinstance(count, (int, float)) else 0,
    )


__all__ = [
    "extract_route_id",
    "normalize_active_route",
    "normalize_claim",
    "normalize_completion",
    "normalize_preview",
]
