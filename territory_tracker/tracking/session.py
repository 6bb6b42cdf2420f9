"""Per-route tracking session.

A ``TrackingSession`` is created when a route starts (or is adopted) and
closed when it reaches a terminal state. It owns every resource tied to the
route: the coordinate buffer and running stats, the elapsed-time clock, the
location watch, the elapsed ticker, the coordinate uploader, the preview
scheduler and the push subscription. ``close`` releases all of them and may
be called any number of times.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence

from ..config import ELAPSED_TICK_INTERVAL_S
from ..errors import LocationUnavailable
from ..models import ActiveRoute, Coordinate, RouteStatus
from .buffer import AppendResult, LocalCoordinateBuffer
from .location import LocationSource, LocationWatch
from .preview import TerritoryPreviewScheduler
from .push import PushChannel, is_territory_change, parse_route_message
from .reconciler import LocalView, StateReconciler
from .stats import StatsAccumulator
from .timers import RepeatingTimer, TimerFactory
from .uploader import CoordinateUploader
from .validation import CoordinateValidator


class TrackingSession:
    def __init__(
        self,
        route_id: str,
        reconciler: StateReconciler,
        location_source: LocationSource,
        *,
        started_at: datetime | None = None,
        status: RouteStatus = RouteStatus.ACTIVE,
        validator: CoordinateValidator | None = None,
        uploader: CoordinateUploader | None = None,
        preview: TerritoryPreviewScheduler | None = None,
        push_channel: PushChannel | None = None,
        timer_factory: TimerFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
        elapsed_offset_s: float = 0.0,
        tick_interval_s: float = ELAPSED_TICK_INTERVAL_S,
        on_location_error: Callable[[LocationUnavailable | None], None] | None = None,
    ) -> None:
        self.route_id = route_id
        self.started_at = started_at
        self.status = status
        self.buffer = LocalCoordinateBuffer(validator)
        self.preview = preview
        self.uploader = uploader
        self.location_error: LocationUnavailable | None = None
        self._reconciler = reconciler
        self._accumulator = StatsAccumulator()
        self._push_channel = push_channel
        self._unsubscribe_push: Callable[[], None] | None = None
        self._on_location_error = on_location_error
        self._clock = clock
        self._started = clock()
        self._elapsed_offset_s = elapsed_offset_s
        self._paused_total = 0.0
        self._stopped_since: float | None = (
            self._started if status is RouteStatus.PAUSED else None
        )
        self._ingesting = False
        self._closed = False
        self._lock = threading.RLock()
        self._publish_lock = threading.Lock()
        self._watch = LocationWatch(
            location_source, self.handle_sample, self.handle_location_error
        )
        self._ticker = RepeatingTimer(
            tick_interval_s, self._tick, timer_factory=timer_factory, name="elapsed"
        )
        self._log = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------
    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def watching(self) -> bool:
        return self._watch.active

    @property
    def ticking(self) -> bool:
        return self._ticker.running

    def open(self) -> None:
        """Attach the push subscription, start the ticker and, if active, the GPS watch."""

        with self._lock:
            if self._closed:
                return
            if self._push_channel is not None and self._unsubscribe_push is None:
                self._unsubscribe_push = self._push_channel.subscribe(self.handle_push)
            self._ticker.start()
            if self.status is RouteStatus.ACTIVE:
                self._start_ingestion()
        self.publish()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._ingesting = False
            unsubscribe, self._unsubscribe_push = self._unsubscribe_push, None
        try:
            self._watch.release()
        finally:
            self._ticker.cancel()
            if self.preview is not None:
                self.preview.cancel()
            if unsubscribe is not None:
                unsubscribe()
            self.buffer.clear()
            self._accumulator.reset()
            self._log.debug("Session for route %s closed", self.route_id)

    def _start_ingestion(self) -> None:
        self._ingesting = True
        try:
            self._watch.acquire()
        except LocationUnavailable as exc:
            self.handle_location_error(exc)

    def _stop_ingestion(self) -> None:
        self._ingesting = False
        self._watch.release()

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------
    def elapsed_seconds(self) -> float:
        """Active time: wall-clock since start minus every paused interval."""

        with self._lock:
            now = self._clock()
            stopped = self._paused_total
            if self._stopped_since is not None:
                stopped += now - self._stopped_since
            return max(self._elapsed_offset_s + now - self._started - stopped, 0.0)

    def _stop_clock(self) -> None:
        if self._stopped_since is None:
            self._stopped_since = self._clock()

    def _restart_clock(self) -> None:
        if self._stopped_since is not None:
            self._paused_total += self._clock() - self._stopped_since
            self._stopped_since = None

    # ------------------------------------------------------------------
    # Transitions driven by the controller
    # ------------------------------------------------------------------
    def pause(self) -> None:
        with self._lock:
            self.status = RouteStatus.PAUSED
            self._stop_clock()
            self._stop_ingestion()
        self.publish()

    def resume(self) -> None:
        with self._lock:
            self.status = RouteStatus.ACTIVE
            self._restart_clock()
            self._start_ingestion()
        self.publish()

    def halt(self) -> None:
        """Freeze the route while a completion or cancellation is in flight."""

        with self._lock:
            self._stop_clock()
            self._stop_ingestion()
            self._ticker.cancel()
            if self.preview is not None:
                self._log.debug("Halting previews for route %s", self.route_id)
                self.preview.enabled = False

    def restore(self) -> None:
        """Undo ``halt`` after the in-flight transition failed."""

        with self._lock:
            if self._closed:
                return
            if self.preview is not None:
                self.preview.enabled = True
            self._ticker.start()
            if self.status is RouteStatus.ACTIVE:
                self._restart_clock()
                self._start_ingestion()
        self.publish()

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------
    def seed(self, coordinates: Sequence[Coordinate]) -> int:
        """Load coordinates the server already holds (route adoption)."""

        admitted = 0
        for coordinate in coordinates:
            result = self.buffer.append(coordinate)
            if result.appended:
                self._accumulator.add(coordinate)
                admitted += 1
            elif result.validation.to_error() is not None:
                self._log.warning(
                    "Skipping stored coordinate of route %s: %s",
                    self.route_id,
                    result.validation.to_error(),
                )
        return admitted

    def handle_sample(self, sample: Mapping[str, Any]) -> AppendResult | None:
        with self._lock:
            if self._closed or not self._ingesting:
                self._log.debug("Dropping sample for route %s (not ingesting)", self.route_id)
                return None
            result = self.buffer.append(sample)
            if not result.appended:
                return result
            coordinate = result.validation.coordinate
            assert coordinate is not None
            self._accumulator.add(coordinate)
            cleared_error = self.location_error is not None
            self.location_error = None
        if cleared_error and self._on_location_error is not None:
            self._on_location_error(None)
        if self.uploader is not None:
            self.uploader.enqueue(coordinate)
        self.publish()
        return result

    def handle_location_error(self, error: LocationUnavailable) -> None:
        with self._lock:
            self.location_error = error
        self._log.warning("Location unavailable for route %s: %s", self.route_id, error)
        if self._on_location_error is not None:
            self._on_location_error(error)

    def handle_push(self, message: Mapping[str, Any]) -> None:
        if self._closed:
            return
        if is_territory_change(message):
            if self.preview is not None:
                self.preview.notify_territories_changed()
            return
        update = parse_route_message(message)
        if update is not None:
            self._reconciler.update_push(update)

    def observe(self, route: ActiveRoute) -> None:
        """Route changes from the reconciler drive the preview scheduler."""

        if self.preview is not None and route.id == self.route_id:
            self.preview.observe(route.stats.coordinate_count, route.stats.is_closed_loop)

    def _tick(self) -> None:
        if self._closed:
            return
        self.publish()
        if self.uploader is not None:
            self.uploader.maybe_flush()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    @property
    def last_coordinate(self) -> Coordinate | None:
        return self.buffer.last

    @property
    def pending_uploads(self) -> int:
        return self.uploader.pending if self.uploader is not None else 0

    def flush_uploads(self) -> bool:
        """Upload everything queued; True when nothing is queued or in flight."""

        if self.uploader is None:
            return True
        return self.uploader.drain()

    def local_view(self) -> LocalView:
        with self._lock:
            return LocalView(
                route_id=self.route_id,
                status=self.status,
                started_at=self.started_at,
                coordinates=self.buffer.snapshot(),
                stats=self._accumulator.stats(self.elapsed_seconds()),
            )

    def publish(self) -> ActiveRoute | None:
        with self._publish_lock:
            if self._closed:
                return None
            return self._reconciler.update_local(self.local_view())


__all__ = ["TrackingSession"]
