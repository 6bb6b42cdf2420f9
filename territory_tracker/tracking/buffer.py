"""Append-only store of admitted coordinates for the route being recorded."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple

from ..config import MIN_POINT_SPACING_M
from ..geometry import haversine_m
from ..models import Coordinate
from .validation import CoordinateValidator, RawSample, RejectReason, ValidationOutcome

LOGGER = logging.getLogger(__name__)


class AppendStatus(str, Enum):
    APPENDED = "appended"
    DUPLICATE = "duplicate"
    TOO_CLOSE = "too_close"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class AppendResult:
    status: AppendStatus
    validation: ValidationOutcome
    version: int

    @property
    def appended(self) -> bool:
        return self.status is AppendStatus.APPENDED


class LocalCoordinateBuffer:
    """Ordered, validated coordinates; nothing is removed or reordered until ``clear``."""

    def __init__(
        self,
        validator: CoordinateValidator | None = None,
        *,
        min_spacing_m: float = MIN_POINT_SPACING_M,
    ) -> None:
        self._validator = validator or CoordinateValidator()
        self._min_spacing_m = min_spacing_m
        self._coordinates: List[Coordinate] = []
        self._version = 0
        self._lock = threading.Lock()

    def append(self, sample: RawSample) -> AppendResult:
        with self._lock:
            previous = self._coordinates[-1] if self._coordinates else None
            outcome = self._validator.validate(sample, previous)
            if not outcome.accepted:
                status = (
                    AppendStatus.DUPLICATE
                    if outcome.reason is RejectReason.DUPLICATE
                    else AppendStatus.REJECTED
                )
                LOGGER.debug("Coordinate not admitted: %s", outcome.to_error())
                return AppendResult(status, outcome, self._version)
            coordinate = outcome.coordinate
            assert coordinate is not None
            if (
                previous is not None
                and self._min_spacing_m > 0
                and haversine_m(previous.latlon, coordinate.latlon) < self._min_spacing_m
            ):
                return AppendResult(AppendStatus.TOO_CLOSE, outcome, self._version)
            self._coordinates.append(coordinate)
            self._version += 1
            return AppendResult(AppendStatus.APPENDED, outcome, self._version)

    def extend(self, samples: List[RawSample]) -> int:
        """Append several samples in order; return how many were admitted."""

        return sum(1 for sample in samples if self.append(sample).appended)

    def snapshot(self) -> Tuple[Coordinate, ...]:
        with self._lock:
            return tuple(self._coordinates)

    @property
    def last(self) -> Coordinate | None:
        with self._lock:
            return self._coordinates[-1] if self._coordinates else None

    @property
    def version(self) -> int:
        return self._version

    def __len__(self) -> int:
        return len(self._coordinates)

    def clear(self) -> None:
        with self._lock:
            self._coordinates = []
            self._version += 1


__all__ = ["AppendResult", "AppendStatus", "LocalCoordinateBuffer"]
