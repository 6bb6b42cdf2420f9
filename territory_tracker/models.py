"""Data records shared by the tracking engine and the service clients."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .config import ELIGIBILITY_SCORE_DISTANCE_M, ELIGIBILITY_SCORE_POINTS


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RouteStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"


class LifecycleState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETING = "completing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"


class EligibilityStatus(str, Enum):
    STARTING = "starting"
    INSUFFICIENT = "insufficient"
    PARTIAL = "partial"
    ELIGIBLE = "eligible"


class ClaimStatus(str, Enum):
    SUCCESS = "success"
    BLOCKED = "blocked"
    INELIGIBLE = "ineligible"
    FAILED = "failed"
    ERROR = "error"

    @property
    def retryable(self) -> bool:
        return self in (ClaimStatus.FAILED, ClaimStatus.ERROR)


@dataclass(frozen=True, slots=True)
class Coordinate:
    """A validated GPS sample. Speed is metres per second, bearing degrees."""

    latitude: float
    longitude: float
    timestamp: datetime
    accuracy: float | None = None
    altitude: float | None = None
    speed: float | None = None
    bearing: float | None = None

    @property
    def key(self) -> Tuple[float, float, datetime]:
        return (self.latitude, self.longitude, self.timestamp)

    @property
    def latlon(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": to_utc(self.timestamp).isoformat(),
            "accuracy": self.accuracy,
            "altitude": self.altitude,
            "speed": self.speed,
            "bearing": self.bearing,
        }


@dataclass(frozen=True, slots=True)
class RouteStats:
    distance_meters: float = 0.0
    duration_seconds: float = 0.0
    current_speed_kmh: float = 0.0
    average_speed_kmh: float = 0.0
    max_speed_kmh: float = 0.0
    coordinate_count: int = 0
    is_closed_loop: bool = False
    gps_quality_score: float = 0.0

    @property
    def territory_eligibility_score(self) -> float:
        """Reporting-only 0-100 score; never gates eligibility.

        Distance up to 20, closed loop 20, GPS quality up to 30 and point
        density up to 30.
        """

        distance = min(self.distance_meters / ELIGIBILITY_SCORE_DISTANCE_M * 20, 20.0)
        loop = 20.0 if self.is_closed_loop else 0.0
        quality = self.gps_quality_score / 100 * 30
        density = min(self.coordinate_count / ELIGIBILITY_SCORE_POINTS * 30, 30.0)
        return min(distance + loop + quality + density, 100.0)

    def merged_with(self, overrides: Mapping[str, Any] | None) -> "RouteStats":
        """Return a copy with every known, non-None field of ``overrides`` applied."""

        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        changes = {
            name: value
            for name, value in overrides.items()
            if name in known and value is not None
        }
        return replace(self, **changes) if changes else self

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["territory_eligibility_score"] = self.territory_eligibility_score
        return data


@dataclass(frozen=True, slots=True)
class RouteQuality:
    """Reporting-only shape metrics; never used to gate eligibility."""

    straight_line_distance_m: float = 0.0
    efficiency: float | None = None
    tortuosity: float | None = None
    heading_variance: float = 0.0
    heading_changes: int = 0
    elevation_gain_m: float = 0.0
    elevation_loss_m: float = 0.0
    average_accuracy_m: float = 0.0


@dataclass(frozen=True, slots=True)
class TerritoryEligibility:
    eligible: bool
    status: EligibilityStatus
    reason: str


@dataclass(frozen=True, slots=True)
class ActiveRoute:
    id: str
    status: RouteStatus
    started_at: datetime | None
    coordinates: Tuple[Coordinate, ...]
    stats: RouteStats
    territory_eligibility: TerritoryEligibility


@dataclass(frozen=True, slots=True)
class PushUpdate:
    """Partial route state delivered by the push channel."""

    route_id: str
    coordinates: Tuple[Coordinate, ...] | None = None
    stats: Mapping[str, Any] | None = None

    @property
    def is_empty(self) -> bool:
        return not self.coordinates and not self.stats


@dataclass(frozen=True, slots=True)
class CompletionResult:
    route_id: str
    territory_claim_status: ClaimStatus
    territory_claim: Optional[Dict[str, Any]] = None
    conflicts: Tuple[Dict[str, Any], ...] = ()
    gamification: Optional[Dict[str, Any]] = None
    claim_reason: str | None = None
    claim_attempts: int = 0
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True, slots=True)
class ClaimResult:
    """Outcome of a standalone territory claim for a completed route."""

    territory_claim_status: ClaimStatus
    territory_claim: Optional[Dict[str, Any]] = None
    conflicts: Tuple[Dict[str, Any], ...] = ()
    claim_reason: str | None = None


@dataclass(frozen=True, slots=True)
class TerritoryPreview:
    route_id: str
    area_square_meters: float
    is_valid: bool
    eligible_for_claiming: bool
    conflicts: Tuple[Dict[str, Any], ...] = ()
    coordinate_count: int = 0
    local_area_square_meters: float | None = None


@dataclass(frozen=True, slots=True)
class RouteMetadata:
    name: str | None = None
    description: str | None = None

    def to_payload(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


__all__ = [
    "ActiveRoute",
    "ClaimResult",
    "ClaimStatus",
    "CompletionResult",
    "Coordinate",
    "EligibilityStatus",
    "LifecycleState",
    "PushUpdate",
    "RouteMetadata",
    "RouteQuality",
    "RouteStats",
    "RouteStatus",
    "TerritoryEligibility",
    "TerritoryPreview",
    "to_utc",
]
