"""Territory preview scheduling.

Shape changes of the live route (coordinate count or closed-loop flag) are
debounced into preview requests. A route that has just closed its loop is
previewed immediately, and a "territories changed" notification forces a
fresh request. Only one request runs at a time: triggers that arrive while
one is in flight bump a generation counter, the stale response is dropped
and the request is re-issued with the latest coordinates.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import replace
from typing import Callable, Sequence, Tuple

from cachetools import TTLCache

from ..config import (
    PREVIEW_CACHE_SIZE,
    PREVIEW_CACHE_TTL_S,
    PREVIEW_DEBOUNCE_S,
    PREVIEW_ENABLED,
    PREVIEW_MIN_COORDINATES,
)
from ..errors import TrackerError
from ..geometry import estimate_loop_area_m2, is_closed_loop
from ..models import Coordinate, TerritoryPreview
from .timers import TimerFactory, TimerHandle

PreviewFetch = Callable[[str, Sequence[Coordinate]], TerritoryPreview]
PreviewKey = Tuple[str, int, bool]


class TerritoryPreviewScheduler:
    def __init__(
        self,
        route_id: str,
        fetch: PreviewFetch,
        snapshot: Callable[[], Sequence[Coordinate]],
        *,
        on_preview: Callable[[TerritoryPreview], None] | None = None,
        on_error: Callable[[TrackerError], None] | None = None,
        enabled: bool = PREVIEW_ENABLED,
        debounce_s: float = PREVIEW_DEBOUNCE_S,
        min_coordinates: int = PREVIEW_MIN_COORDINATES,
        timer_factory: TimerFactory | None = None,
        executor: Executor | None = None,
        cache: TTLCache | None = None,
    ) -> None:
        self.route_id = route_id
        self.enabled = enabled
        self._fetch = fetch
        self._snapshot = snapshot
        self._on_preview = on_preview
        self._on_error = on_error
        self._min_coordinates = min_coordinates
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="territory-preview"
        )
        self._cache: TTLCache[PreviewKey, TerritoryPreview] = (
            cache
            if cache is not None
            else TTLCache(maxsize=PREVIEW_CACHE_SIZE, ttl=PREVIEW_CACHE_TTL_S)
        )
        self._cache_lock = threading.RLock()
        self._lock = threading.Lock()
        self._timer = TimerHandle(
            debounce_s,
            self.trigger_now,
            timer_factory=timer_factory,
            name="preview-debounce",
        )
        self._last_count = 0
        self._last_closed = False
        self._generation = 0
        self._in_flight = False
        self._cancelled = False
        self.latest: TerritoryPreview | None = None
        self.last_error: TrackerError | None = None
        self.requests_sent = 0
        self._log = logging.getLogger(self.__class__.__name__)

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._in_flight

    @property
    def debounce_pending(self) -> bool:
        return self._timer.pending

    def observe(self, coordinate_count: int, closed: bool) -> None:
        """Feed the latest reconciled shape; schedules a preview when it changed."""

        with self._lock:
            if self._cancelled or not self.enabled:
                return
            if coordinate_count == self._last_count and closed == self._last_closed:
                return
            just_closed = closed and not self._last_closed
            self._last_count = coordinate_count
            self._last_closed = closed
            if coordinate_count < self._min_coordinates:
                return
        if just_closed:
            self._log.debug("Route %s closed its loop; previewing now", self.route_id)
            self._timer.cancel()
            self.trigger_now()
        else:
            self._timer.restart()

    def notify_territories_changed(self) -> None:
        """Surrounding territories changed; cached previews are stale."""

        with self._cache_lock:
            self._cache.clear()
        self._timer.cancel()
        self.trigger_now()

    def trigger_now(self) -> None:
        with self._lock:
            if self._cancelled or not self.enabled:
                return
            self._generation += 1
            if self._in_flight:
                return
            self._in_flight = True
        try:
            self._executor.submit(self._run)
        except RuntimeError:
            # executor shut down by cancel() racing this trigger
            with self._lock:
                self._in_flight = False

    def cancel(self) -> None:
        """Stop scheduling and drop any response still on its way."""

        with self._lock:
            self._cancelled = True
            self._generation += 1
        self._timer.cancel()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def _run(self) -> None:
        try:
            while True:
                with self._lock:
                    if self._cancelled:
                        return
                    generation = self._generation
                preview = self._preview_for(list(self._snapshot()))
                with self._lock:
                    if self._cancelled:
                        return
                    if generation != self._generation:
                        self._log.debug(
                            "Preview for route %s superseded; refreshing", self.route_id
                        )
                        continue
                    if preview is not None:
                        self.latest = preview
                break
        finally:
            with self._lock:
                self._in_flight = False
        if preview is not None and self._on_preview is not None:
            self._on_preview(preview)

    def _preview_for(self, coordinates: Sequence[Coordinate]) -> TerritoryPreview | None:
        if len(coordinates) < self._min_coordinates:
            return None
        points = [c.latlon for c in coordinates]
        key: PreviewKey = (self.route_id, len(points), is_closed_loop(points))
        with self._cache_lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached
        try:
            self.requests_sent += 1
            preview = self._fetch(self.route_id, coordinates)
        except TrackerError as exc:
            self.last_error = exc
            self._log.warning("Territory preview failed for route %s: %s", self.route_id, exc)
            if self._on_error is not None:
                self._on_error(exc)
            return None
        preview = replace(preview, local_area_square_meters=estimate_loop_area_m2(points))
        with self._cache_lock:
            self._cache[key] = preview
        self.last_error = None
        return preview


__all__ = ["PreviewFetch", "TerritoryPreviewScheduler"]
