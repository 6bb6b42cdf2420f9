"""Cancellable timer handles owned by a tracking session.

Both handles run callbacks on ``threading.Timer`` threads by default. Tests
pass a ``timer_factory`` that records the scheduled callbacks and fires them
on demand. A generation counter makes ``cancel`` final even when the
underlying timer thread has already woken up.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

LOGGER = logging.getLogger(__name__)


class Cancellable(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Cancellable]


def thread_timer(delay: float, callback: Callable[[], None]) -> Cancellable:
    """Default factory: a started daemon ``threading.Timer``."""

    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class TimerHandle:
    """One-shot timer that can be restarted (debounce) or cancelled."""

    def __init__(
        self,
        delay: float,
        callback: Callable[[], None],
        *,
        timer_factory: TimerFactory | None = None,
        name: str = "timer",
    ) -> None:
        self.delay = delay
        self._callback = callback
        self._factory = timer_factory or thread_timer
        self._name = name
        self._lock = threading.Lock()
        self._timer: Cancellable | None = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def start(self, delay: float | None = None) -> None:
        """Schedule the callback, replacing any pending run."""

        with self._lock:
            self._cancel_locked()
            generation = self._generation
            self._timer = self._factory(
                self.delay if delay is None else delay,
                lambda: self._fire(generation),
            )

    restart = start

    def cancel(self) -> None:
        with self._lock:
            self._cancel_locked()

    def _cancel_locked(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        try:
            self._callback()
        except Exception:
            LOGGER.exception("%s callback failed", self._name)

    def __enter__(self) -> "TimerHandle":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.cancel()


class RepeatingTimer:
    """Fixed-interval ticker; each tick schedules the next until cancelled."""

    def __init__(
        self,
        interval: float,
        callback: Callable[[], None],
        *,
        timer_factory: TimerFactory | None = None,
        name: str = "ticker",
    ) -> None:
        self.interval = interval
        self._callback = callback
        self._factory = timer_factory or thread_timer
        self._name = name
        self._lock = threading.Lock()
        self._timer: Cancellable | None = None
        self._generation = 0

    @property
    def running(self) -> bool:
        with self._lock:
            return self._timer is not None

    def start(self) -> None:
        with self._lock:
            if self._timer is not None:
                return
            self._schedule_locked(self._generation)

    def cancel(self) -> None:
        with self._lock:
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _schedule_locked(self, generation: int) -> None:
        self._timer = self._factory(self.interval, lambda: self._tick(generation))

    def _tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
        try:
            self._callback()
        except Exception:
            LOGGER.exception("%s tick failed", self._name)
        with self._lock:
            if generation == self._generation:
                self._schedule_locked(generation)

    def __enter__(self) -> "RepeatingTimer":
        self.start()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.cancel()


__all__ = ["Cancellable", "RepeatingTimer", "TimerFactory", "TimerHandle", "thread_timer"]
