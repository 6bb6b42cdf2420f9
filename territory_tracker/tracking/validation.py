"""Admission checks for raw GPS samples.

``CoordinateValidator.validate`` is a pure classification: it never mutates
the route. The buffer decides what to do with the verdict.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Mapping, Sequence, Tuple

from ..config import MAX_ACCURACY_M, MAX_IMPLIED_SPEED_KMH, MAX_SAMPLE_SPEED_MPS
from ..errors import ValidationRejected
from ..geometry import haversine_m
from ..models import Coordinate, to_utc

LOGGER = logging.getLogger(__name__)

RawSample = Mapping[str, Any] | Coordinate

# Numeric timestamps above this are epoch milliseconds (browser convention).
_EPOCH_MS_CUTOFF = 1e11


class RejectReason(str, Enum):
    MISSING_COORDINATE = "missing_coordinate"
    MISSING_TIMESTAMP = "missing_timestamp"
    OUT_OF_RANGE = "out_of_range"
    ACCURACY_EXCEEDED = "accuracy_exceeded"
    SPEED_IMPLAUSIBLE = "speed_implausible"
    DUPLICATE = "duplicate"
    NOT_MONOTONIC = "not_monotonic"
    TELEPORT = "teleport"


@dataclass(frozen=True, slots=True)
class ValidationOutcome:
    """Verdict for one sample. ``coordinate`` is set whenever parsing succeeded."""

    accepted: bool
    coordinate: Coordinate | None = None
    reason: RejectReason | None = None
    detail: str | None = None

    def to_error(self) -> ValidationRejected | None:
        if self.accepted:
            return None
        reason = self.reason.value if self.reason is not None else "rejected"
        return ValidationRejected(reason, self.detail)


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        seconds = value / 1000.0 if value > _EPOCH_MS_CUTOFF else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _required_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def coordinate_from_mapping(sample: Mapping[str, Any]) -> Coordinate | None:
    """Parse a server-side coordinate without admission checks."""

    latitude = _required_float(sample.get("latitude"))
    longitude = _required_float(sample.get("longitude"))
    timestamp = parse_timestamp(sample.get("timestamp"))
    if latitude is None or longitude is None or timestamp is None:
        return None
    bearing = sample.get("bearing")
    if bearing is None:
        bearing = sample.get("heading")
    return Coordinate(
        latitude=latitude,
        longitude=longitude,
        timestamp=timestamp,
        accuracy=_optional_float(sample.get("accuracy")),
        altitude=_optional_float(sample.get("altitude")),
        speed=_optional_float(sample.get("speed")),
        bearing=_optional_float(bearing),
    )


def coordinates_from_payload(items: Any) -> Tuple[Coordinate, ...]:
    """Parse a list of wire coordinates, dropping unparseable entries, ordered by time."""

    if not isinstance(items, (list, tuple)):
        return ()
    parsed = [
        coordinate
        for coordinate in (
            coordinate_from_mapping(item) for item in items if isinstance(item, Mapping)
        )
        if coordinate is not None
    ]
    parsed.sort(key=lambda c: c.timestamp)
    return tuple(parsed)


class CoordinateValidator:
    """Classify raw samples as admissible or not, relative to the previous accepted one."""

    def __init__(
        self,
        *,
        max_accuracy_m: float = MAX_ACCURACY_M,
        max_sample_speed_mps: float = MAX_SAMPLE_SPEED_MPS,
        max_implied_speed_kmh: float = MAX_IMPLIED_SPEED_KMH,
    ) -> None:
        self.max_accuracy_m = max_accuracy_m
        self.max_sample_speed_mps = max_sample_speed_mps
        self.max_implied_speed_kmh = max_implied_speed_kmh

    def validate(
        self, sample: RawSample, previous: Coordinate | None = None
    ) -> ValidationOutcome:
        if isinstance(sample, Coordinate):
            coordinate: Coordinate | None = sample
            outcome = self._check_fields(sample)
        else:
            coordinate, outcome = self._parse(sample)
        if outcome is not None:
            return outcome
        assert coordinate is not None
        if previous is not None:
            outcome = self._check_against_previous(coordinate, previous)
            if outcome is not None:
                return outcome
        return ValidationOutcome(True, coordinate)

    def _parse(
        self, sample: Mapping[str, Any]
    ) -> Tuple[Coordinate | None, ValidationOutcome | None]:
        latitude = _required_float(sample.get("latitude"))
        longitude = _required_float(sample.get("longitude"))
        if latitude is None or longitude is None:
            return None, ValidationOutcome(
                False, None, RejectReason.MISSING_COORDINATE, "latitude/longitude"
            )
        coordinate = coordinate_from_mapping(sample)
        if coordinate is None:
            return None, ValidationOutcome(
                False, None, RejectReason.MISSING_TIMESTAMP, str(sample.get("timestamp"))
            )
        return coordinate, self._check_fields(coordinate)

    def _check_fields(self, coordinate: Coordinate) -> ValidationOutcome | None:
        lat, lon = coordinate.latitude, coordinate.longitude
        if lat is None or lon is None or math.isnan(lat) or math.isnan(lon):
            return ValidationOutcome(
                False, None, RejectReason.MISSING_COORDINATE, "latitude/longitude"
            )
        if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
            return ValidationOutcome(
                False, coordinate, RejectReason.OUT_OF_RANGE, f"({lat}, {lon})"
            )
        accuracy = coordinate.accuracy
        if accuracy is not None and accuracy > self.max_accuracy_m:
            return ValidationOutcome(
                False,
                coordinate,
                RejectReason.ACCURACY_EXCEEDED,
                f"accuracy {accuracy:.1f}m > {self.max_accuracy_m:.1f}m",
            )
        speed = coordinate.speed
        if speed is not None and (speed < 0 or speed > self.max_sample_speed_mps):
            return ValidationOutcome(
                False,
                coordinate,
                RejectReason.SPEED_IMPLAUSIBLE,
                f"speed {speed:.1f} m/s",
            )
        return None

    def _check_against_previous(
        self, coordinate: Coordinate, previous: Coordinate
    ) -> ValidationOutcome | None:
        if coordinate.key == previous.key:
            return ValidationOutcome(False, coordinate, RejectReason.DUPLICATE)
        elapsed = (coordinate.timestamp - previous.timestamp).total_seconds()
        if elapsed <= 0:
            return ValidationOutcome(
                False,
                coordinate,
                RejectReason.NOT_MONOTONIC,
                f"{coordinate.timestamp.isoformat()} <= {previous.timestamp.isoformat()}",
            )
        implied_kmh = haversine_m(previous.latlon, coordinate.latlon) / elapsed * 3.6
        if implied_kmh > self.max_implied_speed_kmh:
            return ValidationOutcome(
                False,
                coordinate,
                RejectReason.TELEPORT,
                f"implied speed {implied_kmh:.1f} km/h",
            )
        return None

    def validate_sequence(
        self, samples: Sequence[RawSample]
    ) -> Tuple[List[Coordinate], List[Tuple[int, ValidationOutcome]]]:
        """Admit samples in order; return accepted coordinates and indexed rejections."""

        accepted: List[Coordinate] = []
        rejected: List[Tuple[int, ValidationOutcome]] = []
        for index, sample in enumerate(samples):
            outcome = self.validate(sample, accepted[-1] if accepted else None)
            if outcome.accepted and outcome.coordinate is not None:
                accepted.append(outcome.coordinate)
            else:
                LOGGER.debug("Rejected sample %d: %s", index, outcome.to_error())
                rejected.append((index, outcome))
        return accepted, rejected


__all__ = [
    "CoordinateValidator",
    "RejectReason",
    "ValidationOutcome",
    "coordinate_from_mapping",
    "coordinates_from_payload",
    "parse_timestamp",
]
