"""Route lifecycle controller.

State machine::

    idle -> active <-> paused
    active|paused -> completing -> completed | failed
    active|paused -> cancelling -> cancelled

Every public operation returns an ``OperationResult`` instead of raising, so
the presentation layer gets success/failure plus a readable message. Network
calls are one-shot; retrying is always a new call by the user. Completion,
cancellation and claim retries for one route id are single-flight: a second
concurrent call is rejected as busy and never reaches the network.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, Protocol, Sequence

from cachetools import LRUCache

from ..config import (
    COMPLETION_HISTORY_SIZE,
    MAX_CLAIM_RETRY_ATTEMPTS,
    MAX_COMPLETION_ATTEMPTS,
    PREVIEW_ENABLED,
    STUCK_ROUTE_MAX_AGE_MINUTES,
)
from ..errors import (
    BusyRejected,
    ConflictState,
    LocationUnavailable,
    NetworkFailure,
    TrackerError,
)
from ..models import (
    ActiveRoute,
    ClaimResult,
    CompletionResult,
    Coordinate,
    EligibilityStatus,
    LifecycleState,
    RouteMetadata,
    RouteStatus,
    TerritoryPreview,
)
from .location import LocationSource
from .preview import TerritoryPreviewScheduler
from .push import PushChannel
from .reconciler import RouteListener, StateReconciler
from .session import TrackingSession
from .timers import TimerFactory
from .uploader import CoordinateUploader


class RouteService(Protocol):
    def create_route(self, user_id: str, metadata: RouteMetadata | None = None) -> str: ...

    def add_coordinates(
        self, route_id: str, user_id: str, coordinates: Sequence[Coordinate]
    ) -> None: ...

    def complete_route(
        self,
        route_id: str,
        user_id: str,
        *,
        name: str | None = None,
        end_coordinate: Coordinate | None = None,
    ) -> CompletionResult: ...

    def delete_route(self, route_id: str, user_id: str) -> None: ...

    def get_active_route(self, user_id: str) -> ActiveRoute | None: ...

    def cleanup_stuck_routes(self, user_id: str, max_age_minutes: int) -> int: ...


class TerritoryService(Protocol):
    def get_preview(
        self, route_id: str, coordinates: Sequence[Coordinate]
    ) -> TerritoryPreview: ...

    def claim_from_route(self, route_id: str, user_id: str) -> ClaimResult: ...


@dataclass(frozen=True, slots=True)
class OperationResult:
    ok: bool
    transition: str
    error: str | None = None
    error_type: str | None = None
    data: Any = None

    @classmethod
    def success(cls, transition: str, data: Any = None) -> "OperationResult":
        return cls(True, transition, data=data)

    @classmethod
    def failure(
        cls, transition: str, exc: Exception, data: Any = None
    ) -> "OperationResult":
        return cls(False, transition, str(exc), exc.__class__.__name__, data)


_TRACKING_STATES = (LifecycleState.ACTIVE, LifecycleState.PAUSED)
_STARTABLE_STATES = (
    LifecycleState.IDLE,
    LifecycleState.COMPLETED,
    LifecycleState.CANCELLED,
    LifecycleState.FAILED,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RouteLifecycleController:
    """Owns at most one ``TrackingSession`` for one user."""

    def __init__(
        self,
        user_id: str,
        routes: RouteService,
        territories: TerritoryService | None = None,
        *,
        location_source: LocationSource,
        push_channel: PushChannel | None = None,
        reconciler: StateReconciler | None = None,
        timer_factory: TimerFactory | None = None,
        preview_executor: Executor | None = None,
        preview_enabled: bool = PREVIEW_ENABLED,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
        max_completion_attempts: int = MAX_COMPLETION_ATTEMPTS,
        max_claim_retries: int = MAX_CLAIM_RETRY_ATTEMPTS,
        history_size: int = COMPLETION_HISTORY_SIZE,
        stuck_route_max_age_minutes: int = STUCK_ROUTE_MAX_AGE_MINUTES,
    ) -> None:
        self.user_id = user_id
        self._routes = routes
        self._territories = territories
        self._location_source = location_source
        self._push_channel = push_channel
        self.reconciler = reconciler or StateReconciler()
        self._timer_factory = timer_factory
        self._preview_executor = preview_executor
        self._preview_enabled = preview_enabled and territories is not None
        self._clock = clock
        self._now = now
        self._max_completion_attempts = max(max_completion_attempts, 1)
        self._max_claim_retries = max_claim_retries
        self._stuck_age = timedelta(minutes=stuck_route_max_age_minutes)

        self._lock = threading.RLock()
        self._state = LifecycleState.IDLE
        self._session: TrackingSession | None = None
        self._completion_attempts = 0
        self._last_completed_id: str | None = None
        self._history: LRUCache[str, CompletionResult] = LRUCache(maxsize=history_size)
        self._history_lock = threading.RLock()
        self._flight_locks: Dict[str, threading.Lock] = {}
        self._flight_locks_lock = threading.Lock()
        self._last_eligibility: EligibilityStatus | None = None
        self.last_error: TrackerError | None = None
        self.location_error: LocationUnavailable | None = None
        self.latest_preview: TerritoryPreview | None = None
        self._log = logging.getLogger(self.__class__.__name__)
        self._unsubscribe_reconciler = self.reconciler.subscribe(self._on_route_changed)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def session(self) -> TrackingSession | None:
        return self._session

    @property
    def route_id(self) -> str | None:
        session = self._session
        return session.route_id if session is not None else None

    @property
    def current_route(self) -> ActiveRoute | None:
        return self.reconciler.current

    @property
    def completion_attempts(self) -> int:
        return self._completion_attempts

    def completion_for(self, route_id: str) -> CompletionResult | None:
        with self._history_lock:
            return self._history.get(route_id)

    def completion_history(self) -> Iterator[CompletionResult]:
        with self._history_lock:
            results = list(self._history.values())
        return iter(results)

    def subscribe(self, listener: RouteListener) -> Callable[[], None]:
        """Receive the reconciled route (or None) after every change."""

        return self.reconciler.subscribe(listener)

    # ------------------------------------------------------------------
    # Single-flight registry
    # ------------------------------------------------------------------
    def _flight_lock(self, key: str) -> threading.Lock:
        with self._flight_locks_lock:
            if key not in self._flight_locks:
                self._flight_locks[key] = threading.Lock()
            return self._flight_locks[key]

    def _set_state(self, state: LifecycleState) -> None:
        if state is not self._state:
            self._log.info("Route %s: %s -> %s", self.route_id or "-", self._state.value, state.value)
        self._state = state

    def _fail(self, transition: str, exc: TrackerError) -> OperationResult:
        self.last_error = exc
        if isinstance(exc, (ConflictState, BusyRejected)):
            self._log.info("%s rejected: %s", transition, exc)
        else:
            self._log.warning("%s failed: %s", transition, exc)
        return OperationResult.failure(transition, exc)

    # ------------------------------------------------------------------
    # Session wiring
    # ------------------------------------------------------------------
    def _new_session(
        self,
        route_id: str,
        *,
        started_at: datetime | None,
        status: RouteStatus = RouteStatus.ACTIVE,
        elapsed_offset_s: float = 0.0,
    ) -> TrackingSession:
        uploader = CoordinateUploader(
            route_id,
            lambda rid, batch: self._routes.add_coordinates(rid, self.user_id, batch),
            clock=self._clock,
        )
        session = TrackingSession(
            route_id,
            self.reconciler,
            self._location_source,
            started_at=started_at,
            status=status,
            uploader=uploader,
            push_channel=self._push_channel,
            timer_factory=self._timer_factory,
            clock=self._clock,
            elapsed_offset_s=elapsed_offset_s,
            on_location_error=self._on_location_error,
        )
        if self._preview_enabled and self._territories is not None:
            session.preview = TerritoryPreviewScheduler(
                route_id,
                self._territories.get_preview,
                session.buffer.snapshot,
                on_preview=self._on_preview,
                timer_factory=self._timer_factory,
                executor=self._preview_executor,
            )
        return session

    def _teardown_session(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            session.close()
        self._last_eligibility = None
        self.location_error = None
        self.reconciler.reset()

    def _on_route_changed(self, route: ActiveRoute | None) -> None:
        # Runs on whichever thread published; must not take the controller lock.
        session = self._session
        if route is None or session is None or route.id != session.route_id:
            return
        status = route.territory_eligibility.status
        if status is not self._last_eligibility:
            if status is EligibilityStatus.ELIGIBLE:
                self._log.info("Route %s is now eligible for territory claiming", route.id)
            self._last_eligibility = status
        session.observe(route)

    def _on_location_error(self, error: LocationUnavailable | None) -> None:
        self.location_error = error

    def _on_preview(self, preview: TerritoryPreview) -> None:
        self.latest_preview = preview

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def start(self, metadata: RouteMetadata | None = None) -> OperationResult:
        transition = "start"
        flight = self._flight_lock(f"start:{self.user_id}")
        if not flight.acquire(blocking=False):
            return self._fail(transition, BusyRejected(transition, self.user_id))
        try:
            with self._lock:
                if self._state not in _STARTABLE_STATES:
                    return self._fail(
                        transition,
                        ConflictState(f"Cannot start a route while {self._state.value}"),
                    )
            try:
                route_id = self._routes.create_route(self.user_id, metadata)
            except TrackerError as exc:
                return self._fail(transition, exc)
            with self._lock:
                self._teardown_session()
                self._completion_attempts = 0
                self.last_error = None
                self.latest_preview = None
                session = self._new_session(route_id, started_at=self._now())
                self._session = session
                self._set_state(LifecycleState.ACTIVE)
                session.open()
            return OperationResult.success(transition, route_id)
        finally:
            flight.release()

    def pause(self) -> OperationResult:
        transition = "pause"
        with self._lock:
            session = self._session
            if self._state is not LifecycleState.ACTIVE or session is None:
                return self._fail(
                    transition, ConflictState(f"Cannot pause while {self._state.value}")
                )
            session.pause()
            self._set_state(LifecycleState.PAUSED)
        return OperationResult.success(transition, session.route_id)

    def resume(self) -> OperationResult:
        transition = "resume"
        with self._lock:
            session = self._session
            if self._state is not LifecycleState.PAUSED or session is None:
                return self._fail(
                    transition, ConflictState(f"Cannot resume while {self._state.value}")
                )
            session.resume()
            self._set_state(LifecycleState.ACTIVE)
        return OperationResult.success(transition, session.route_id)

    def complete(self, name: str | None = None) -> OperationResult:
        transition = "complete"
        with self._lock:
            session = self._session
            allowed = _TRACKING_STATES + (LifecycleState.COMPLETING,)
            if self._state not in allowed or session is None:
                return self._fail(
                    transition,
                    ConflictState(f"Cannot complete route while {self._state.value}"),
                )
            route_id = session.route_id
        flight = self._flight_lock(route_id)
        if not flight.acquire(blocking=False):
            return self._fail(transition, BusyRejected(transition, route_id))
        try:
            with self._lock:
                if self._session is not session or self._state not in allowed:
                    return self._fail(
                        transition,
                        ConflictState(f"Cannot complete route while {self._state.value}"),
                    )
                self._completion_attempts += 1
                attempt = self._completion_attempts
                self._set_state(LifecycleState.COMPLETING)
                session.halt()
            try:
                if not session.flush_uploads():
                    raise NetworkFailure(
                        transition,
                        f"{session.pending_uploads} coordinates could not be uploaded",
                    )
                result = self._routes.complete_route(
                    route_id,
                    self.user_id,
                    name=name,
                    end_coordinate=session.last_coordinate,
                )
            except TrackerError as exc:
                with self._lock:
                    if attempt >= self._max_completion_attempts:
                        self._log.error(
                            "Giving up on route %s after %d completion attempts",
                            route_id,
                            attempt,
                        )
                        self._set_state(LifecycleState.FAILED)
                        self._teardown_session()
                return self._fail(transition, exc)
            with self._lock:
                with self._history_lock:
                    self._history[route_id] = result
                self._last_completed_id = route_id
                self._set_state(LifecycleState.COMPLETED)
                self._teardown_session()
            if result.territory_claim_status.retryable:
                self._log.warning(
                    "Route %s saved but territory claim %s: %s",
                    route_id,
                    result.territory_claim_status.value,
                    result.claim_reason or "no reason given",
                )
            return OperationResult.success(transition, result)
        finally:
            flight.release()

    def cancel(self) -> OperationResult:
        transition = "cancel"
        with self._lock:
            session = self._session
            if self._state not in _TRACKING_STATES or session is None:
                return self._fail(
                    transition,
                    ConflictState(f"Cannot cancel route while {self._state.value}"),
                )
            route_id = session.route_id
        flight = self._flight_lock(route_id)
        if not flight.acquire(blocking=False):
            return self._fail(transition, BusyRejected(transition, route_id))
        try:
            with self._lock:
                if self._session is not session or self._state not in _TRACKING_STATES:
                    return self._fail(
                        transition,
                        ConflictState(f"Cannot cancel route while {self._state.value}"),
                    )
                previous = self._state
                self._set_state(LifecycleState.CANCELLING)
                session.halt()
            self.reconciler.suspend_display()
            try:
                self._routes.delete_route(route_id, self.user_id)
            except TrackerError as exc:
                with self._lock:
                    self._set_state(previous)
                    session.restore()
                self.reconciler.restore_display()
                return self._fail(transition, exc)
            with self._lock:
                self._set_state(LifecycleState.CANCELLED)
                self._teardown_session()
            return OperationResult.success(transition, route_id)
        finally:
            flight.release()

    def retry_territory_claim(self, route_id: str | None = None) -> OperationResult:
        """Re-request only the territory claim for an already completed route."""

        transition = "retry_territory_claim"
        with self._lock:
            if route_id is None and self._state is LifecycleState.COMPLETED:
                route_id = self._last_completed_id
        if route_id is None:
            return self._fail(
                transition, ConflictState("No completed route to claim territory for")
            )
        flight = self._flight_lock(route_id)
        if not flight.acquire(blocking=False):
            return self._fail(transition, BusyRejected(transition, route_id))
        try:
            previous = self.completion_for(route_id)
            if previous is None:
                return self._fail(
                    transition, ConflictState(f"Route {route_id} has not been completed")
                )
            if not previous.territory_claim_status.retryable:
                return self._fail(
                    transition,
                    ConflictState(
                        f"Territory claim is {previous.territory_claim_status.value}; nothing to retry"
                    ),
                )
            if previous.claim_attempts >= self._max_claim_retries:
                return self._fail(
                    transition, ConflictState("Territory claim retry limit reached")
                )
            if self._territories is None:
                return self._fail(
                    transition, ConflictState("Territory service is not configured")
                )
            try:
                claim = self._territories.claim_from_route(route_id, self.user_id)
            except TrackerError as exc:
                self._store_claim_attempt(
                    replace(previous, claim_attempts=previous.claim_attempts + 1)
                )
                return self._fail(transition, exc)
            updated = replace(
                previous,
                territory_claim_status=claim.territory_claim_status,
                territory_claim=claim.territory_claim,
                conflicts=claim.conflicts,
                claim_reason=claim.claim_reason,
                claim_attempts=previous.claim_attempts + 1,
            )
            self._store_claim_attempt(updated)
            if updated.territory_claim_status.retryable:
                return self._fail(
                    transition,
                    NetworkFailure(
                        transition,
                        updated.claim_reason
                        or f"Territory claim {updated.territory_claim_status.value}",
                    ),
                )
            return OperationResult.success(transition, updated)
        finally:
            flight.release()

    def _store_claim_attempt(self, result: CompletionResult) -> None:
        with self._history_lock:
            self._history[result.route_id] = result

    # ------------------------------------------------------------------
    # Server snapshot
    # ------------------------------------------------------------------
    def _is_stuck(self, route: ActiveRoute) -> bool:
        if route.coordinates or route.stats.coordinate_count > 0:
            return False
        if route.started_at is None:
            return False
        return self._now() - route.started_at > self._stuck_age

    def poll_active_route(self) -> OperationResult:
        """Fetch the server's view of the active route into the poll slot."""

        transition = "poll"
        try:
            snapshot = self._routes.get_active_route(self.user_id)
            if snapshot is not None and self._session is None and self._is_stuck(snapshot):
                self._log.info(
                    "Server route %s has no coordinates since %s; cleaning up",
                    snapshot.id,
                    snapshot.started_at,
                )
                self._routes.cleanup_stuck_routes(
                    self.user_id, int(self._stuck_age.total_seconds() // 60)
                )
                snapshot = self._routes.get_active_route(self.user_id)
        except TrackerError as exc:
            return self._fail(transition, exc)
        merged = self.reconciler.update_poll(snapshot)
        return OperationResult.success(transition, merged)

    def adopt_active_route(self) -> OperationResult:
        """Continue tracking a route the server still holds as active (e.g. after restart)."""

        transition = "adopt"
        with self._lock:
            if self._state not in _STARTABLE_STATES:
                return self._fail(
                    transition,
                    ConflictState(f"Cannot adopt a route while {self._state.value}"),
                )
        try:
            snapshot = self._routes.get_active_route(self.user_id)
        except TrackerError as exc:
            return self._fail(transition, exc)
        if snapshot is None:
            return self._fail(transition, ConflictState("No active route to adopt"))
        with self._lock:
            if self._state not in _STARTABLE_STATES:
                return self._fail(
                    transition,
                    ConflictState(f"Cannot adopt a route while {self._state.value}"),
                )
            self._teardown_session()
            self._completion_attempts = 0
            session = self._new_session(
                snapshot.id,
                started_at=snapshot.started_at,
                status=snapshot.status,
                elapsed_offset_s=snapshot.stats.duration_seconds,
            )
            admitted = session.seed(snapshot.coordinates)
            self._log.info(
                "Adopted route %s with %d coordinates", snapshot.id, admitted
            )
            self._session = session
            self._set_state(
                LifecycleState.PAUSED
                if snapshot.status is RouteStatus.PAUSED
                else LifecycleState.ACTIVE
            )
            self.reconciler.update_poll(snapshot)
            session.open()
        return OperationResult.success(transition, self.reconciler.current)

    def close(self) -> None:
        """Release every resource without touching the server."""

        with self._lock:
            session, self._session = self._session, None
        if session is not None:
            session.close()
        self._unsubscribe_reconciler()


__all__ = [
    "OperationResult",
    "RouteLifecycleController",
    "RouteService",
    "TerritoryService",
]
