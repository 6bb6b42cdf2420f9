"""Batched upload of admitted coordinates to the route service."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, List, Sequence

from ..config import (
    COORDINATE_BATCH_SIZE,
    COORDINATE_FLUSH_INTERVAL_S,
    UPLOAD_DRAIN_TIMEOUT_S,
)
from ..errors import TrackerError
from ..models import Coordinate

SendBatch = Callable[[str, Sequence[Coordinate]], Any]


class CoordinateUploader:
    """Queue coordinates and send them in batches.

    A batch goes out when the queue reaches ``batch_size`` or, on a tick, when
    ``flush_interval_s`` passed since the last upload. A failed batch goes
    back to the front of the queue and rides along with the next flush; there
    is no retry loop. At most one upload is in flight at a time; ``drain``
    waits for it before sending the remainder.
    """

    def __init__(
        self,
        route_id: str,
        send: SendBatch,
        *,
        batch_size: int = COORDINATE_BATCH_SIZE,
        flush_interval_s: float = COORDINATE_FLUSH_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.route_id = route_id
        self._send = send
        self._batch_size = max(batch_size, 1)
        self._flush_interval_s = flush_interval_s
        self._clock = clock
        self._queue: List[Coordinate] = []
        self._sending = False
        self._last_flush = clock()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self.sent_count = 0
        self.last_error: TrackerError | None = None
        self._log = logging.getLogger(self.__class__.__name__)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    def enqueue(self, coordinate: Coordinate) -> None:
        with self._lock:
            self._queue.append(coordinate)
            full = len(self._queue) >= self._batch_size
        if full:
            self.flush()

    def maybe_flush(self) -> bool:
        """Flush when the interval elapsed; called from the session ticker."""

        with self._lock:
            due = (
                bool(self._queue)
                and self._clock() - self._last_flush >= self._flush_interval_s
            )
        return self.flush() if due else False

    def flush(self) -> bool:
        """Send everything queued. Returns True when the upload succeeded."""

        with self._lock:
            if self._sending or not self._queue:
                return False
            batch, self._queue = self._queue, []
            self._sending = True
        try:
            self._send(self.route_id, batch)
        except TrackerError as exc:
            with self._lock:
                self._queue[:0] = batch
                self.last_error = exc
            self._log.warning(
                "Coordinate upload failed for route %s (%d queued): %s",
                self.route_id,
                len(batch),
                exc,
            )
            return False
        finally:
            with self._idle:
                self._sending = False
                self._last_flush = self._clock()
                self._idle.notify_all()
        with self._lock:
            self.sent_count += len(batch)
            self.last_error = None
        self._log.debug("Uploaded %d coordinates for route %s", len(batch), self.route_id)
        return True

    def drain(self, timeout: float | None = UPLOAD_DRAIN_TIMEOUT_S) -> bool:
        """Wait out an in-flight upload, then send the rest.

        Returns True only when nothing is queued and nothing is being sent.
        """

        with self._idle:
            if not self._idle.wait_for(lambda: not self._sending, timeout):
                self._log.warning(
                    "Coordinate upload for route %s still in flight after %ss",
                    self.route_id,
                    timeout,
                )
                return False
            if not self._queue:
                return True
        self.flush()
        with self._lock:
            return not self._queue and not self._sending


__all__ = ["CoordinateUploader", "SendBatch"]
