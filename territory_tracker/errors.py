"""Central error types used across the application."""

from __future__ import annotations


class TrackerError(RuntimeError):
    """Base error for route tracking failures."""


class ValidationRejected(TrackerError):
    """Raised when a GPS sample is not admitted to the route buffer."""

    def __init__(self, reason: str, detail: str | None = None) -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class LocationUnavailable(TrackerError):
    """Raised when the location source cannot deliver samples."""

    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"

    def __init__(self, kind: str, message: str | None = None) -> None:
        self.kind = kind
        super().__init__(message or f"GPS error: {kind.replace('_', ' ')}")


class NetworkFailure(TrackerError):
    """Raised when a route or territory service call fails."""

    def __init__(
        self, transition: str, message: str, *, status: int | None = None
    ) -> None:
        self.transition = transition
        self.status = status
        super().__init__(message)


class ConflictState(TrackerError):
    """Raised for transitions that are invalid in the current state."""


class BusyRejected(TrackerError):
    """Raised when an operation for the same route is already in flight."""

    def __init__(self, transition: str, route_id: str) -> None:
        self.transition = transition
        self.route_id = route_id
        super().__init__(f"{transition} already in progress for route {route_id}")


__all__ = [
    "TrackerError",
    "ValidationRejected",
    "LocationUnavailable",
    "NetworkFailure",
    "ConflictState",
    "BusyRejected",
]
