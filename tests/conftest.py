"""Global pytest fixtures & helpers.

Adds project root to path and provides deterministic stand-ins (timers,
clock, executor, services) so tracking tests never sleep or touch the network.
"""
from __future__ import annotations

import os
import sys
import threading
from datetime import datetime, timedelta, timezone
import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from territory_tracker.errors import NetworkFailure
from territory_tracker.models import (
    ClaimResult,
    ClaimStatus,
    CompletionResult,
    Coordinate,
    TerritoryPreview,
)

BASE_TIME = datetime(2025, 6, 1, 8, 0, 0, tzinfo=timezone.utc)

# Roughly 111 m per 0.001 degree of latitude.
LAT0 = 37.7749
LON0 = -122.4194


# --- Factory helpers -------------------------------------------------
def coord(lat, lon, seconds, **kw):
    return Coordinate(
        latitude=lat,
        longitude=lon,
        timestamp=BASE_TIME + timedelta(seconds=seconds),
        **kw,
    )


def sample(lat, lon, seconds, **kw):
    payload = {
        "latitude": lat,
        "longitude": lon,
        "timestamp": (BASE_TIME + timedelta(seconds=seconds)).isoformat(),
    }
    payload.update(kw)
    return payload


def square_samples(side_deg=0.001, step_s=30, accuracy=5.0):
    """Closed square of side ~111 m, five samples, ending on its start."""
    corners = [
        (LAT0, LON0),
        (LAT0 + side_deg, LON0),
        (LAT0 + side_deg, LON0 + side_deg),
        (LAT0, LON0 + side_deg),
        (LAT0, LON0 + 0.00001),
    ]
    return [
        sample(lat, lon, i * step_s, accuracy=accuracy)
        for i, (lat, lon) in enumerate(corners)
    ]


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.fired = True
        self.callback()


class FakeTimerFactory:
    """Records scheduled timers; tests fire them explicitly."""

    def __init__(self):
        self.timers = []

    def __call__(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    def live(self, delay=None):
        return [
            t
            for t in self.timers
            if not t.cancelled and not t.fired and (delay is None or t.delay == delay)
        ]

    def fire_all(self, delay=None):
        fired = 0
        for timer in self.live(delay):
            timer.fire()
            fired += 1
        return fired


class InlineExecutor:
    """Runs submitted work on the calling thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        fn(*args, **kwargs)

    def shutdown(self, wait=True):
        pass


class FakeRouteService:
    def __init__(self):
        self.created = []
        self.uploads = []
        self.completed = []
        self.deleted = []
        self.cleanups = []
        self.active_routes = []
        self.fail_complete = 0
        self.fail_delete = False
        self.fail_upload = False
        self.upload_error = None
        self.start_error = None
        self.completion_status = ClaimStatus.SUCCESS
        self.complete_gate = None
        self.complete_entered = threading.Event()
        self._next_id = 0

    def create_route(self, user_id, metadata=None):
        if self.start_error is not None:
            raise self.start_error
        self._next_id += 1
        route_id = f"route-{self._next_id}"
        self.created.append((user_id, metadata))
        return route_id

    def add_coordinates(self, route_id, user_id, coordinates):
        if self.upload_error is not None:
            raise self.upload_error
        if self.fail_upload:
            raise NetworkFailure("upload", "upload failed", status=503)
        self.uploads.append((route_id, list(coordinates)))

    def complete_route(self, route_id, user_id, *, name=None, end_coordinate=None):
        self.completed.append((route_id, name, end_coordinate))
        self.complete_entered.set()
        if self.complete_gate is not None:
            self.complete_gate.wait(2)
        if self.fail_complete > 0:
            self.fail_complete -= 1
            raise NetworkFailure("complete", "service unavailable", status=503)
        claim = {"id": "territory-1"} if self.completion_status is ClaimStatus.SUCCESS else None
        return CompletionResult(
            route_id=route_id,
            territory_claim_status=self.completion_status,
            territory_claim=claim,
            claim_reason=None if claim else "claim service timed out",
        )

    def delete_route(self, route_id, user_id):
        self.deleted.append(route_id)
        if self.fail_delete:
            raise NetworkFailure("cancel", "delete failed", status=500)

    def get_active_route(self, user_id):
        if not self.active_routes:
            return None
        return self.active_routes.pop(0) if len(self.active_routes) > 1 else self.active_routes[0]

    def cleanup_stuck_routes(self, user_id, max_age_minutes):
        self.cleanups.append((user_id, max_age_minutes))
        return 1


class FakeTerritoryService:
    def __init__(self):
        self.previews = []
        self.claims = []
        self.claim_status = ClaimStatus.SUCCESS
        self.fail_claim = False

    def get_preview(self, route_id, coordinates):
        self.previews.append((route_id, len(coordinates)))
        return TerritoryPreview(
            route_id=route_id,
            area_square_meters=12000.0,
            is_valid=True,
            eligible_for_claiming=True,
            coordinate_count=len(coordinates),
        )

    def claim_from_route(self, route_id, user_id):
        self.claims.append((route_id, user_id))
        if self.fail_claim:
            raise NetworkFailure("retry_territory_claim", "claim failed", status=502)
        claim = {"id": "territory-2"} if self.claim_status is ClaimStatus.SUCCESS else None
        return ClaimResult(territory_claim_status=self.claim_status, territory_claim=claim)


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def timers():
    return FakeTimerFactory()


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def route_service():
    return FakeRouteService()


@pytest.fixture
def territory_service():
    return FakeTerritoryService()
