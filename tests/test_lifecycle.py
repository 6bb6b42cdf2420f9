import threading
from datetime import timedelta

import pytest

from conftest import (
    BASE_TIME,
    LAT0,
    LON0,
    FakeClock,
    FakeTimerFactory,
    InlineExecutor,
    coord,
    square_samples,
)
from territory_tracker.errors import ConflictState
from territory_tracker.models import (
    ActiveRoute,
    ClaimStatus,
    EligibilityStatus,
    LifecycleState,
    RouteMetadata,
    RouteStatus,
)
from territory_tracker.tracking import (
    LocalPushChannel,
    RouteLifecycleController,
    SimulatedLocationSource,
)
from territory_tracker.tracking.stats import classify_eligibility, compute_stats


def make_controller(routes, territories=None, samples=(), clock=None, **kw):
    source = SimulatedLocationSource(list(samples), interval_s=0)
    channel = LocalPushChannel()
    controller = RouteLifecycleController(
        "user-1",
        routes,
        territories,
        location_source=source,
        push_channel=channel,
        timer_factory=FakeTimerFactory(),
        preview_executor=InlineExecutor(),
        clock=clock or FakeClock(),
        **kw,
    )
    return controller, source, channel


def play(source):
    while source.emit_next():
        pass


def server_route(route_id="server-1", n=0, status=RouteStatus.ACTIVE, started_at=BASE_TIME, duration=0.0):
    coords = tuple(coord(LAT0 + i * 0.0005, LON0, i * 20) for i in range(n))
    stats = compute_stats(coords, duration_seconds=duration)
    return ActiveRoute(
        id=route_id,
        status=status,
        started_at=started_at,
        coordinates=coords,
        stats=stats,
        territory_eligibility=classify_eligibility(stats),
    )


# --- start / pause / resume ------------------------------------------
def test_start_opens_a_tracking_session(route_service):
    controller, source, channel = make_controller(route_service)
    result = controller.start(RouteMetadata(name="Morning loop"))
    assert result.ok
    assert result.data == "route-1"
    assert controller.state is LifecycleState.ACTIVE
    assert controller.route_id == "route-1"
    assert route_service.created == [("user-1", RouteMetadata(name="Morning loop"))]
    assert source.watcher_count == 1
    assert channel.subscriber_count == 1
    assert controller.current_route.id == "route-1"


def test_start_conflict_from_server_is_reported(route_service):
    route_service.start_error = ConflictState("Start route conflicts with the current server state")
    controller, _, _ = make_controller(route_service)
    result = controller.start()
    assert not result.ok
    assert result.error_type == "ConflictState"
    assert controller.state is LifecycleState.IDLE
    assert controller.session is None


def test_start_while_tracking_is_rejected(route_service):
    controller, _, _ = make_controller(route_service)
    controller.start()
    again = controller.start()
    assert not again.ok
    assert again.error_type == "ConflictState"
    assert len(route_service.created) == 1


def test_pause_and_resume_only_from_matching_state(route_service):
    controller, source, _ = make_controller(route_service)
    assert controller.pause().error_type == "ConflictState"
    controller.start()
    assert controller.resume().error_type == "ConflictState"
    assert controller.pause().ok
    assert controller.state is LifecycleState.PAUSED
    assert source.watcher_count == 0
    assert controller.current_route.status is RouteStatus.PAUSED
    assert controller.resume().ok
    assert controller.state is LifecycleState.ACTIVE
    assert source.watcher_count == 1


def test_paused_time_is_excluded_from_duration(route_service):
    clock = FakeClock()
    controller, _, _ = make_controller(route_service, clock=clock)
    controller.start()
    controller.pause()
    clock.advance(30)
    controller.resume()
    clock.advance(10)
    route = controller.session.publish()
    assert route.stats.duration_seconds == pytest.approx(10.0)


def test_paused_route_ignores_samples(route_service):
    controller, source, _ = make_controller(route_service, samples=square_samples())
    controller.start()
    source.emit_next()
    controller.pause()
    source.emit_next()
    controller.resume()
    assert controller.current_route.stats.coordinate_count == 1


# --- live tracking ---------------------------------------------------
def test_closed_square_becomes_eligible_and_previews(route_service, territory_service):
    controller, source, _ = make_controller(
        route_service, territory_service, samples=square_samples()
    )
    seen = []
    controller.subscribe(seen.append)
    controller.start()
    play(source)

    route = controller.current_route
    assert route.stats.coordinate_count == 5
    assert route.stats.is_closed_loop
    assert route.territory_eligibility.status is EligibilityStatus.ELIGIBLE
    assert territory_service.previews == [("route-1", 5)]
    assert controller.latest_preview.coordinate_count == 5
    assert controller.latest_preview.local_area_square_meters > 0
    counts = [r.stats.coordinate_count for r in seen if r is not None]
    assert counts == sorted(counts)


def test_push_stats_merge_without_overriding_local_count(route_service):
    controller, source, channel = make_controller(route_service, samples=square_samples())
    controller.start()
    source.emit_next()
    source.emit_next()
    channel.publish(
        {
            "type": "route_stats_updated",
            "data": {"routeId": "route-1", "stats": {"total_points": 40, "gps_quality_score": 20}},
        }
    )
    route = controller.current_route
    assert route.stats.coordinate_count == 2
    assert route.stats.gps_quality_score == 20.0


def test_territories_changed_refreshes_preview(route_service, territory_service):
    controller, source, channel = make_controller(
        route_service, territory_service, samples=square_samples()
    )
    controller.start()
    play(source)
    channel.publish({"type": "territories_changed", "data": {}})
    assert territory_service.previews == [("route-1", 5), ("route-1", 5)]


def test_location_errors_are_exposed(route_service):
    controller, source, _ = make_controller(route_service, samples=square_samples())
    controller.start()
    source.fail("permission_denied")
    assert controller.location_error.kind == "permission_denied"
    source.emit_next()
    assert controller.location_error is None


# --- completion ------------------------------------------------------
def test_complete_uploads_buffer_and_tears_down(route_service):
    controller, source, channel = make_controller(route_service, samples=square_samples())
    controller.start()
    play(source)
    result = controller.complete("Loop")
    assert result.ok
    assert result.data.territory_claim_status is ClaimStatus.SUCCESS
    assert controller.state is LifecycleState.COMPLETED

    assert len(route_service.uploads) == 1
    assert len(route_service.uploads[0][1]) == 5
    route_id, name, end = route_service.completed[0]
    assert (route_id, name) == ("route-1", "Loop")
    assert end.latitude == pytest.approx(LAT0)

    assert controller.session is None
    assert controller.current_route is None
    assert source.watcher_count == 0
    assert channel.subscriber_count == 0
    assert controller.completion_for("route-1") == result.data


def test_failed_completion_can_be_retried_once_recorded(route_service):
    route_service.fail_complete = 1
    controller, source, _ = make_controller(route_service, samples=square_samples())
    controller.start()
    play(source)

    first = controller.complete()
    assert not first.ok
    assert first.error_type == "NetworkFailure"
    assert controller.state is LifecycleState.COMPLETING
    assert controller.completion_attempts == 1

    second = controller.complete()
    assert second.ok
    assert controller.state is LifecycleState.COMPLETED
    assert len(route_service.completed) == 2
    assert len(route_service.uploads) == 1
    assert len(list(controller.completion_history())) == 1


def test_completion_attempts_are_bounded(route_service):
    route_service.fail_complete = 10
    controller, _, _ = make_controller(route_service, max_completion_attempts=2)
    controller.start()
    assert not controller.complete().ok
    assert controller.state is LifecycleState.COMPLETING
    assert not controller.complete().ok
    assert controller.state is LifecycleState.FAILED
    assert controller.session is None
    assert controller.complete().error_type == "ConflictState"
    assert len(route_service.completed) == 2
    # A failed route does not block the next one.
    assert controller.start().ok


def test_upload_failure_blocks_completion(route_service):
    route_service.fail_upload = True
    controller, source, _ = make_controller(route_service, samples=square_samples())
    controller.start()
    source.emit_next()
    result = controller.complete()
    assert not result.ok
    assert result.error_type == "NetworkFailure"
    assert "could not be uploaded" in result.error
    assert route_service.completed == []


def test_rejected_upload_keeps_coordinates_for_next_completion(route_service):
    route_service.upload_error = ConflictState("Route is not active")
    controller, source, _ = make_controller(route_service, samples=square_samples())
    controller.start()
    source.emit_next()
    source.emit_next()
    first = controller.complete()
    assert not first.ok
    assert "2 coordinates could not be uploaded" in first.error
    assert route_service.completed == []
    assert controller.state is LifecycleState.COMPLETING

    route_service.upload_error = None
    assert controller.complete().ok
    assert len(route_service.uploads) == 1
    assert len(route_service.uploads[0][1]) == 2
    assert len(route_service.completed) == 1


def test_concurrent_completion_is_single_flight(route_service):
    route_service.complete_gate = threading.Event()
    controller, _, _ = make_controller(route_service)
    controller.start()

    results = {}
    worker = threading.Thread(target=lambda: results.setdefault("first", controller.complete()))
    worker.start()
    assert route_service.complete_entered.wait(2), "first completion never reached the service"

    second = controller.complete()
    assert not second.ok
    assert second.error_type == "BusyRejected"

    route_service.complete_gate.set()
    worker.join(timeout=2)
    assert results["first"].ok
    assert len(route_service.completed) == 1


def test_cancel_during_completion_is_rejected(route_service):
    route_service.complete_gate = threading.Event()
    controller, _, _ = make_controller(route_service)
    controller.start()
    worker = threading.Thread(target=controller.complete)
    worker.start()
    assert route_service.complete_entered.wait(2)
    result = controller.cancel()
    route_service.complete_gate.set()
    worker.join(timeout=2)
    assert not result.ok
    assert result.error_type == "ConflictState"
    assert route_service.deleted == []


# --- cancellation ----------------------------------------------------
def test_cancel_deletes_and_hides_route(route_service):
    controller, source, _ = make_controller(route_service, samples=square_samples())
    seen = []
    controller.subscribe(seen.append)
    controller.start()
    source.emit_next()
    result = controller.cancel()
    assert result.ok
    assert controller.state is LifecycleState.CANCELLED
    assert route_service.deleted == ["route-1"]
    assert controller.current_route is None
    assert seen[-1] is None

    late = controller.complete()
    assert not late.ok
    assert late.error_type == "ConflictState"
    assert route_service.completed == []


def test_failed_cancel_restores_tracking(route_service):
    route_service.fail_delete = True
    controller, source, _ = make_controller(route_service, samples=square_samples())
    controller.start()
    source.emit_next()
    result = controller.cancel()
    assert not result.ok
    assert controller.state is LifecycleState.ACTIVE
    assert controller.session.watching
    assert source.watcher_count == 1
    assert controller.current_route.stats.coordinate_count == 1
    source.emit_next()
    assert controller.current_route.stats.coordinate_count == 2


def test_failed_cancel_of_paused_route_stays_paused(route_service):
    route_service.fail_delete = True
    controller, source, _ = make_controller(route_service)
    controller.start()
    controller.pause()
    assert not controller.cancel().ok
    assert controller.state is LifecycleState.PAUSED
    assert source.watcher_count == 0


# --- territory claim retry -------------------------------------------
def test_claim_retry_requests_only_the_claim(route_service, territory_service):
    route_service.completion_status = ClaimStatus.FAILED
    controller, source, _ = make_controller(
        route_service, territory_service, samples=square_samples()
    )
    controller.start()
    play(source)
    completed = controller.complete()
    assert completed.ok
    assert completed.data.territory_claim_status is ClaimStatus.FAILED

    retried = controller.retry_territory_claim()
    assert retried.ok
    assert retried.data.territory_claim_status is ClaimStatus.SUCCESS
    assert retried.data.claim_attempts == 1
    assert territory_service.claims == [("route-1", "user-1")]
    assert len(route_service.completed) == 1
    assert len(route_service.uploads) == 1
    assert controller.completion_for("route-1").territory_claim_status is ClaimStatus.SUCCESS

    again = controller.retry_territory_claim("route-1")
    assert again.error_type == "ConflictState"


def test_claim_retries_are_bounded(route_service, territory_service):
    route_service.completion_status = ClaimStatus.ERROR
    territory_service.claim_status = ClaimStatus.FAILED
    controller, _, _ = make_controller(route_service, territory_service, max_claim_retries=2)
    controller.start()
    controller.complete()

    assert controller.retry_territory_claim().error_type == "NetworkFailure"
    territory_service.fail_claim = True
    assert controller.retry_territory_claim().error_type == "NetworkFailure"
    limited = controller.retry_territory_claim()
    assert limited.error_type == "ConflictState"
    assert "limit" in limited.error
    assert len(territory_service.claims) == 2
    assert controller.completion_for("route-1").claim_attempts == 2


def test_claim_retry_needs_a_failed_claim(route_service, territory_service):
    controller, _, _ = make_controller(route_service, territory_service)
    assert controller.retry_territory_claim().error_type == "ConflictState"
    assert controller.retry_territory_claim("unknown").error_type == "ConflictState"

    route_service.completion_status = ClaimStatus.INELIGIBLE
    controller.start()
    controller.complete()
    assert controller.retry_territory_claim().error_type == "ConflictState"
    assert territory_service.claims == []


# --- server snapshot -------------------------------------------------
def test_poll_cleans_up_stuck_server_route(route_service):
    route_service.active_routes = [server_route(), None]
    controller, _, _ = make_controller(
        route_service, now=lambda: BASE_TIME + timedelta(minutes=10)
    )
    result = controller.poll_active_route()
    assert result.ok
    assert route_service.cleanups == [("user-1", 5)]
    assert result.data is None
    assert controller.current_route is None


def test_poll_keeps_recent_empty_route(route_service):
    route_service.active_routes = [server_route()]
    controller, _, _ = make_controller(
        route_service, now=lambda: BASE_TIME + timedelta(minutes=2)
    )
    result = controller.poll_active_route()
    assert route_service.cleanups == []
    assert result.data.id == "server-1"
    assert controller.current_route.id == "server-1"


def test_adopt_resumes_server_route(route_service):
    route_service.active_routes = [
        server_route(n=3, status=RouteStatus.PAUSED, duration=120.0)
    ]
    controller, source, _ = make_controller(route_service)
    result = controller.adopt_active_route()
    assert result.ok
    assert controller.state is LifecycleState.PAUSED
    assert controller.route_id == "server-1"
    route = controller.current_route
    assert route.stats.coordinate_count == 3
    assert route.stats.duration_seconds == pytest.approx(120.0)
    assert source.watcher_count == 0

    assert controller.resume().ok
    assert source.watcher_count == 1


def test_adopt_without_server_route(route_service):
    controller, _, _ = make_controller(route_service)
    result = controller.adopt_active_route()
    assert not result.ok
    assert result.error_type == "ConflictState"
    assert controller.state is LifecycleState.IDLE


def test_close_releases_session(route_service):
    controller, source, channel = make_controller(route_service)
    controller.start()
    controller.close()
    assert source.watcher_count == 0
    assert channel.subscriber_count == 0
