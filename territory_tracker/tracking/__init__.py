"""Live route tracking: admission, stats, reconciliation and lifecycle."""

from .buffer import AppendResult, AppendStatus, LocalCoordinateBuffer
from .lifecycle import (
    OperationResult,
    RouteLifecycleController,
    RouteService,
    TerritoryService,
)
from .location import LocationSource, LocationWatch, SimulatedLocationSource
from .preview import TerritoryPreviewScheduler
from .push import LocalPushChannel, PushChannel
from .reconciler import LocalView, StateReconciler, reconcile
from .session import TrackingSession
from .stats import StatsAccumulator, classify_eligibility, compute_stats
from .timers import RepeatingTimer, TimerHandle
from .uploader import CoordinateUploader
from .validation import CoordinateValidator, RejectReason, ValidationOutcome

__all__ = [
    "AppendResult",
    "AppendStatus",
    "CoordinateUploader",
    "CoordinateValidator",
    "LocalCoordinateBuffer",
    "LocalPushChannel",
    "LocalView",
    "LocationSource",
    "LocationWatch",
    "OperationResult",
    "PushChannel",
    "RejectReason",
    "RepeatingTimer",
    "RouteLifecycleController",
    "RouteService",
    "SimulatedLocationSource",
    "StateReconciler",
    "StatsAccumulator",
    "TerritoryPreviewScheduler",
    "TerritoryService",
    "TimerHandle",
    "TrackingSession",
    "ValidationOutcome",
    "classify_eligibility",
    "compute_stats",
    "reconcile",
]
