"""Merge the local, push and poll views of the in-progress route.

``reconcile`` is a pure function of its four inputs: calling it again with
the same arguments (and the previous result as ``floor``) returns an equal
route. ``StateReconciler`` stores the latest view per source and re-runs the
merge on every update.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, List, Tuple

from ..models import (
    ActiveRoute,
    Coordinate,
    PushUpdate,
    RouteStats,
    RouteStatus,
)
from .stats import classify_eligibility, coerce_partial_stats

LOGGER = logging.getLogger(__name__)

# While tracking locally these derive from the local buffer and clock, which
# are always ahead of anything the server has seen.
LOCAL_AUTHORITATIVE_FIELDS = frozenset(
    {"coordinate_count", "distance_meters", "duration_seconds", "average_speed_kmh"}
)

_IN_PROGRESS = (RouteStatus.ACTIVE, RouteStatus.PAUSED)

RouteListener = Callable[[ActiveRoute | None], None]


@dataclass(frozen=True, slots=True)
class LocalView:
    """What this device has recorded for the route it is tracking."""

    route_id: str
    status: RouteStatus
    started_at: datetime | None
    coordinates: Tuple[Coordinate, ...]
    stats: RouteStats


def _with_stats(route: ActiveRoute, stats: RouteStats) -> ActiveRoute:
    return replace(route, stats=stats, territory_eligibility=classify_eligibility(stats))


def _merge_local(local: LocalView, push: PushUpdate | None) -> ActiveRoute:
    stats = local.stats
    if push is not None and push.route_id == local.route_id and push.stats:
        stats = stats.merged_with(
            {
                name: value
                for name, value in push.stats.items()
                if name not in LOCAL_AUTHORITATIVE_FIELDS
            }
        )
    return ActiveRoute(
        id=local.route_id,
        status=local.status,
        started_at=local.started_at,
        coordinates=local.coordinates,
        stats=stats,
        territory_eligibility=classify_eligibility(stats),
    )


def _merge_remote(push: PushUpdate, poll: ActiveRoute | None) -> ActiveRoute:
    base = poll if poll is not None and poll.id == push.route_id else None
    base_stats = base.stats if base is not None else RouteStats()
    push_stats = dict(push.stats or {})
    stats = base_stats.merged_with(push_stats)
    if push.coordinates:
        coordinates = push.coordinates
    else:
        coordinates = base.coordinates if base is not None else ()
    if "coordinate_count" not in push_stats and coordinates:
        stats = replace(
            stats, coordinate_count=max(stats.coordinate_count, len(coordinates))
        )
    return ActiveRoute(
        id=push.route_id,
        status=base.status if base is not None else RouteStatus.ACTIVE,
        started_at=base.started_at if base is not None else None,
        coordinates=coordinates,
        stats=stats,
        territory_eligibility=classify_eligibility(stats),
    )


def _apply_floor(candidate: ActiveRoute, floor: ActiveRoute | None) -> ActiveRoute:
    if (
        floor is None
        or candidate.status not in _IN_PROGRESS
        or floor.id != candidate.id
        or floor.stats.coordinate_count <= candidate.stats.coordinate_count
    ):
        return candidate
    LOGGER.debug(
        "Ignoring stale view for route %s (%d < %d coordinates)",
        candidate.id,
        candidate.stats.coordinate_count,
        floor.stats.coordinate_count,
    )
    coordinates = (
        floor.coordinates
        if len(floor.coordinates) > len(candidate.coordinates)
        else candidate.coordinates
    )
    stats = replace(
        candidate.stats,
        coordinate_count=floor.stats.coordinate_count,
        distance_meters=max(
            floor.stats.distance_meters, candidate.stats.distance_meters
        ),
    )
    return _with_stats(replace(candidate, coordinates=coordinates), stats)


def reconcile(
    local: LocalView | None,
    push: PushUpdate | None,
    poll: ActiveRoute | None,
    floor: ActiveRoute | None = None,
) -> ActiveRoute | None:
    """Return the canonical route view.

    Precedence: local tracking (coordinates from the buffer, push stats on
    top except local-authoritative fields), then push over poll, then the
    poll snapshot verbatim. ``floor`` is the previously merged route; an
    in-progress route never shows fewer coordinates than its floor.
    """

    if local is not None:
        candidate: ActiveRoute | None = _merge_local(local, push)
    elif push is not None and not push.is_empty:
        candidate = _merge_remote(push, poll)
    else:
        candidate = poll
    if candidate is None:
        return None
    return _apply_floor(candidate, floor)


def combine_push(previous: PushUpdate | None, update: PushUpdate) -> PushUpdate:
    """Fold a partial push message into the stored push view for the same route."""

    if previous is None or previous.route_id != update.route_id:
        return update
    stats: Dict[str, object] = dict(previous.stats or {})
    stats.update(coerce_partial_stats(update.stats))
    return PushUpdate(
        route_id=update.route_id,
        coordinates=update.coordinates or previous.coordinates,
        stats=stats or None,
    )


class StateReconciler:
    """Holds the latest view from each source and publishes the merged route."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._local: LocalView | None = None
        self._push: PushUpdate | None = None
        self._poll: ActiveRoute | None = None
        self._current: ActiveRoute | None = None
        self._suspended = False
        self._listeners: List[RouteListener] = []
        self._log = logging.getLogger(self.__class__.__name__)

    @property
    def current(self) -> ActiveRoute | None:
        with self._lock:
            return None if self._suspended else self._current

    @property
    def route_id(self) -> str | None:
        with self._lock:
            if self._local is not None:
                return self._local.route_id
            if self._poll is not None:
                return self._poll.id
            return None

    def subscribe(self, listener: RouteListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def update_local(self, view: LocalView | None) -> ActiveRoute | None:
        with self._lock:
            self._local = view
            visible, changed = self._refresh()
        return self._publish(visible, changed)

    def update_push(self, update: PushUpdate) -> ActiveRoute | None:
        with self._lock:
            known = self.route_id
            if known is not None and update.route_id != known:
                self._log.debug(
                    "Dropping push update for route %s (tracking %s)",
                    update.route_id,
                    known,
                )
                return self.current
            if update.is_empty:
                return self.current
            self._push = combine_push(self._push, update)
            visible, changed = self._refresh()
        return self._publish(visible, changed)

    def update_poll(self, snapshot: ActiveRoute | None) -> ActiveRoute | None:
        with self._lock:
            self._poll = snapshot
            if (
                self._push is not None
                and self._local is None
                and (snapshot is None or snapshot.id != self._push.route_id)
            ):
                self._push = None
            visible, changed = self._refresh()
        return self._publish(visible, changed)

    def suspend_display(self) -> None:
        """Hide the route immediately (optimistic cancellation)."""

        with self._lock:
            if self._suspended:
                return
            self._suspended = True
        self._notify(None)

    def restore_display(self) -> None:
        with self._lock:
            if not self._suspended:
                return
            self._suspended = False
            current = self._current
        self._notify(current)

    def reset(self) -> None:
        """Forget every view; used once a route reaches a terminal state."""

        with self._lock:
            self._local = None
            self._push = None
            self._poll = None
            self._current = None
            self._suspended = False
        self._notify(None)

    def _refresh(self) -> Tuple[ActiveRoute | None, bool]:
        """Re-run the merge; caller holds the lock and notifies after releasing it."""

        merged = reconcile(self._local, self._push, self._poll, self._current)
        changed = merged != self._current
        self._current = merged
        if self._suspended:
            return None, False
        return merged, changed

    def _publish(self, route: ActiveRoute | None, changed: bool) -> ActiveRoute | None:
        if changed:
            self._notify(route)
        return route

    def _notify(self, route: ActiveRoute | None) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(route)
            except Exception:  # pragma: no cover - listener bugs must not stop tracking
                self._log.exception("Route listener failed")


__all__ = [
    "LOCAL_AUTHORITATIVE_FIELDS",
    "LocalView",
    "StateReconciler",
    "combine_push",
    "reconcile",
]
