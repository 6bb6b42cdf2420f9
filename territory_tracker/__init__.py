"""Live GPS route tracking and territory claiming engine."""

from .errors import (
    BusyRejected,
    ConflictState,
    LocationUnavailable,
    NetworkFailure,
    TrackerError,
    ValidationRejected,
)
from .models import ActiveRoute, CompletionResult, Coordinate, RouteStats
from .tracking import OperationResult, RouteLifecycleController, StateReconciler

__all__ = [
    "ActiveRoute",
    "BusyRejected",
    "CompletionResult",
    "ConflictState",
    "Coordinate",
    "LocationUnavailable",
    "NetworkFailure",
    "OperationResult",
    "RouteLifecycleController",
    "RouteStats",
    "StateReconciler",
    "TrackerError",
    "ValidationRejected",
]
