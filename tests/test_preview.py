import pytest

from conftest import LAT0, LON0, FakeTimerFactory, InlineExecutor, coord
from territory_tracker.errors import NetworkFailure
from territory_tracker.models import TerritoryPreview
from territory_tracker.tracking.preview import TerritoryPreviewScheduler


def _square(n=5):
    corners = [
        (LAT0, LON0),
        (LAT0 + 0.001, LON0),
        (LAT0 + 0.001, LON0 + 0.001),
        (LAT0, LON0 + 0.001),
        (LAT0, LON0),
    ]
    return [coord(lat, lon, i * 30) for i, (lat, lon) in enumerate(corners[:n])]


class FakeFetch:
    def __init__(self):
        self.calls = []
        self.error = None
        self.during_call = None

    def __call__(self, route_id, coordinates):
        self.calls.append(len(coordinates))
        if self.during_call is not None:
            hook, self.during_call = self.during_call, None
            hook()
        if self.error is not None:
            raise self.error
        return TerritoryPreview(
            route_id=route_id,
            area_square_meters=1000.0 * len(coordinates),
            is_valid=True,
            eligible_for_claiming=len(coordinates) >= 4,
            coordinate_count=len(coordinates),
        )


@pytest.fixture
def harness():
    coords = _square(3)
    fetch = FakeFetch()
    timers = FakeTimerFactory()
    previews, errors = [], []
    scheduler = TerritoryPreviewScheduler(
        "r1",
        fetch,
        lambda: list(coords),
        on_preview=previews.append,
        on_error=errors.append,
        debounce_s=2.0,
        timer_factory=timers,
        executor=InlineExecutor(),
    )
    return scheduler, coords, fetch, timers, previews, errors


def test_debounce_restarts_on_every_shape_change(harness):
    scheduler, coords, fetch, timers, previews, _ = harness
    scheduler.observe(3, False)
    assert scheduler.debounce_pending
    coords.append(_square(4)[3])
    scheduler.observe(4, False)
    assert timers.timers[0].cancelled
    assert len(timers.live(2.0)) == 1
    assert fetch.calls == []

    timers.fire_all()
    assert fetch.calls == [4]
    assert previews[-1].coordinate_count == 4
    assert scheduler.latest is previews[-1]
    assert not scheduler.debounce_pending


def test_unchanged_shape_and_small_routes_do_not_schedule(harness):
    scheduler, _, _, timers, _, _ = harness
    scheduler.observe(2, False)
    assert timers.timers == []
    scheduler.observe(3, False)
    scheduler.observe(3, False)
    assert len(timers.timers) == 1


def test_closing_the_loop_previews_immediately(harness):
    scheduler, coords, fetch, timers, previews, _ = harness
    scheduler.observe(3, False)
    coords[:] = _square(5)
    scheduler.observe(5, True)
    assert fetch.calls == [5]
    assert not scheduler.debounce_pending
    assert previews[-1].local_area_square_meters == pytest.approx(9775, rel=0.03)


def test_cached_preview_is_reused_until_territories_change(harness):
    scheduler, _, fetch, _, previews, _ = harness
    scheduler.trigger_now()
    scheduler.trigger_now()
    assert fetch.calls == [3]
    assert scheduler.requests_sent == 1
    assert len(previews) == 2

    scheduler.notify_territories_changed()
    assert fetch.calls == [3, 3]


def test_trigger_during_request_supersedes_response(harness):
    scheduler, coords, fetch, _, previews, _ = harness

    def new_point_arrives():
        coords.append(_square(4)[3])
        scheduler.trigger_now()

    fetch.during_call = new_point_arrives
    scheduler.trigger_now()
    assert fetch.calls == [3, 4]
    # Only the fresh response is delivered.
    assert [p.coordinate_count for p in previews] == [4]
    assert not scheduler.in_flight


def test_fetch_errors_are_reported_not_raised(harness):
    scheduler, _, fetch, _, previews, errors = harness
    fetch.error = NetworkFailure("preview", "service down", status=503)
    scheduler.trigger_now()
    assert previews == []
    assert errors == [fetch.error]
    assert scheduler.last_error is fetch.error
    assert scheduler.latest is None

    fetch.error = None
    scheduler.trigger_now()
    assert scheduler.last_error is None
    assert scheduler.latest is not None


def test_cancel_stops_everything(harness):
    scheduler, _, fetch, timers, _, _ = harness
    scheduler.observe(3, False)
    scheduler.cancel()
    assert not scheduler.debounce_pending
    scheduler.observe(4, False)
    scheduler.trigger_now()
    scheduler.notify_territories_changed()
    assert fetch.calls == []
    assert timers.live() == []


def test_disabled_scheduler_stays_quiet(harness):
    scheduler, _, fetch, timers, _, _ = harness
    scheduler.enabled = False
    scheduler.observe(3, True)
    scheduler.trigger_now()
    assert fetch.calls == []
    assert timers.timers == []
