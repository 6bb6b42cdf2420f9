import logging
import threading

from conftest import FakeTimerFactory
from territory_tracker.tracking.timers import RepeatingTimer, TimerHandle, thread_timer


def test_timer_handle_fires_once():
    timers = FakeTimerFactory()
    calls = []
    handle = TimerHandle(2.0, lambda: calls.append(1), timer_factory=timers)
    handle.start()
    assert handle.pending
    assert timers.timers[0].delay == 2.0
    timers.fire_all()
    assert calls == [1]
    assert not handle.pending


def test_restart_supersedes_pending_run():
    timers = FakeTimerFactory()
    calls = []
    handle = TimerHandle(2.0, lambda: calls.append(1), timer_factory=timers)
    handle.start()
    handle.restart()
    first, second = timers.timers
    assert first.cancelled
    # A timer thread that already woke up must not run a stale callback.
    first.callback()
    assert calls == []
    second.fire()
    assert calls == [1]


def test_cancel_is_final():
    timers = FakeTimerFactory()
    calls = []
    with TimerHandle(1.0, lambda: calls.append(1), timer_factory=timers) as handle:
        handle.start(0.5)
        assert timers.timers[0].delay == 0.5
    assert not handle.pending
    timers.timers[0].callback()
    assert calls == []


def test_timer_callback_errors_are_logged(caplog):
    timers = FakeTimerFactory()

    def boom():
        raise ValueError("boom")

    handle = TimerHandle(1.0, boom, timer_factory=timers, name="debounce")
    handle.start()
    with caplog.at_level(logging.ERROR):
        timers.fire_all()
    assert "debounce callback failed" in caplog.text


def test_repeating_timer_reschedules_until_cancelled():
    timers = FakeTimerFactory()
    ticks = []
    ticker = RepeatingTimer(1.0, lambda: ticks.append(1), timer_factory=timers)
    ticker.start()
    ticker.start()
    assert len(timers.live()) == 1

    timers.fire_all()
    timers.fire_all()
    assert ticks == [1, 1]
    assert ticker.running
    assert len(timers.live()) == 1

    ticker.cancel()
    assert not ticker.running
    assert timers.live() == []
    timers.timers[-1].callback()
    assert ticks == [1, 1]


def test_repeating_timer_survives_failing_tick(caplog):
    timers = FakeTimerFactory()

    def boom():
        raise RuntimeError("tick")

    ticker = RepeatingTimer(1.0, boom, timer_factory=timers, name="elapsed")
    with caplog.at_level(logging.ERROR):
        with ticker:
            timers.fire_all()
            assert ticker.running
    assert "elapsed tick failed" in caplog.text
    assert not ticker.running


def test_thread_timer_runs_on_daemon_thread():
    fired = threading.Event()
    timer = thread_timer(0.01, fired.set)
    assert timer.daemon
    assert fired.wait(1.0)
