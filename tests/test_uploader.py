import logging
import threading

from conftest import FakeClock, LAT0, LON0, coord
from territory_tracker.errors import ConflictState, NetworkFailure
from territory_tracker.tracking.uploader import CoordinateUploader


class RecordingSender:
    def __init__(self):
        self.batches = []
        self.fail = False

    def __call__(self, route_id, batch):
        if self.fail:
            raise NetworkFailure("upload", "offline")
        self.batches.append((route_id, list(batch)))


def _coords(n, offset=0):
    return [coord(LAT0 + (i + offset) * 0.0005, LON0, (i + offset) * 10) for i in range(n)]


def test_full_batch_is_sent_immediately():
    sender = RecordingSender()
    uploader = CoordinateUploader("r1", sender, batch_size=3, flush_interval_s=60)
    for c in _coords(2):
        uploader.enqueue(c)
    assert sender.batches == []
    uploader.enqueue(_coords(1, offset=2)[0])
    assert len(sender.batches) == 1
    route_id, batch = sender.batches[0]
    assert route_id == "r1"
    assert len(batch) == 3
    assert uploader.pending == 0
    assert uploader.sent_count == 3


def test_interval_flush_sends_partial_batch():
    clock = FakeClock()
    sender = RecordingSender()
    uploader = CoordinateUploader("r1", sender, batch_size=10, flush_interval_s=5, clock=clock)
    uploader.enqueue(_coords(1)[0])
    assert not uploader.maybe_flush()
    clock.advance(5)
    assert uploader.maybe_flush()
    assert len(sender.batches[0][1]) == 1


def test_interval_flush_with_empty_queue_is_noop():
    clock = FakeClock()
    sender = RecordingSender()
    uploader = CoordinateUploader("r1", sender, flush_interval_s=1, clock=clock)
    clock.advance(10)
    assert not uploader.maybe_flush()
    assert sender.batches == []


def test_failed_batch_is_requeued_in_order(caplog):
    sender = RecordingSender()
    uploader = CoordinateUploader("r1", sender, batch_size=100)
    first = _coords(2)
    for c in first:
        uploader.enqueue(c)
    sender.fail = True
    with caplog.at_level(logging.WARNING):
        assert not uploader.flush()
    assert "Coordinate upload failed for route r1" in caplog.text
    assert isinstance(uploader.last_error, NetworkFailure)
    assert uploader.pending == 2

    later = _coords(1, offset=2)[0]
    uploader.enqueue(later)
    sender.fail = False
    assert uploader.flush()
    assert sender.batches[0][1] == first + [later]
    assert uploader.last_error is None
    assert uploader.sent_count == 3


def test_rejected_batch_is_requeued_not_dropped():
    sender = RecordingSender()
    calls = []

    def reject_once(route_id, batch):
        calls.append(len(batch))
        if len(calls) <= 2:
            raise ConflictState("Route is not active")
        sender(route_id, batch)

    uploader = CoordinateUploader("r1", reject_once, batch_size=2)
    first = _coords(2)
    for c in first:
        uploader.enqueue(c)
    assert isinstance(uploader.last_error, ConflictState)
    assert uploader.pending == 2
    assert not uploader.drain()

    assert uploader.drain()
    assert sender.batches == [("r1", first)]
    assert uploader.pending == 0


def test_drain_waits_for_in_flight_upload():
    gate = threading.Event()
    entered = threading.Event()
    sent = []

    def slow_send(route_id, batch):
        entered.set()
        gate.wait(2)
        sent.append(list(batch))

    uploader = CoordinateUploader("r1", slow_send, batch_size=2)
    first = _coords(2)
    worker = threading.Thread(target=lambda: [uploader.enqueue(c) for c in first])
    worker.start()
    assert entered.wait(2)
    uploader.enqueue(_coords(1, offset=2)[0])

    assert not uploader.flush()
    assert not uploader.drain(timeout=0.05)
    assert sent == []

    gate.set()
    assert uploader.drain(timeout=2)
    worker.join(2)
    assert [len(batch) for batch in sent] == [2, 1]
    assert uploader.pending == 0
