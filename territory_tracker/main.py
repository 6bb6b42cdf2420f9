"""Drive a full tracking session against the configured services.

A recorded track (or a generated loop) is played back through the simulated
location source, so the whole lifecycle (start, ingestion, uploads, previews,
completion) runs exactly as it would on a device.
"""

from __future__ import annotations

import argparse
import json
import logging
import time
from typing import Any, Callable, Dict, List, Sequence

from .config import TRACKER_USER_ID
from .models import RouteMetadata
from .route_client import RouteServiceClient, TerritoryServiceClient
from .tools.replay_track import load_track
from .tracking import (
    LocalPushChannel,
    OperationResult,
    RouteLifecycleController,
    SimulatedLocationSource,
)
from .tracking.location import generate_pattern
from .tracking.validation import parse_timestamp


def _setup_logging(verbose: bool = False) -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


class PlaybackClock:
    """Session clock that follows sample timestamps during instant playback."""

    def __init__(self) -> None:
        self._now = 0.0

    def __call__(self) -> float:
        return self._now

    def advance_to(self, seconds: float) -> None:
        self._now = max(self._now, seconds)


def _track_offsets(samples: Sequence[Dict[str, Any]]) -> List[float | None]:
    """Seconds since the first timestamped sample (None where unparseable)."""

    offsets: List[float | None] = []
    first = None
    for sample in samples:
        ts = parse_timestamp(sample.get("timestamp"))
        if ts is not None and first is None:
            first = ts
        offsets.append(None if ts is None else (ts - first).total_seconds())
    return offsets


def build_controller(
    user_id: str,
    source: SimulatedLocationSource,
    clock: Callable[[], float] = time.monotonic,
) -> RouteLifecycleController:
    return RouteLifecycleController(
        user_id,
        RouteServiceClient(),
        TerritoryServiceClient(),
        location_source=source,
        push_channel=LocalPushChannel(),
        clock=clock,
    )


def _replay_instantly(
    source: SimulatedLocationSource,
    clock: PlaybackClock,
    offsets: Sequence[float | None],
) -> None:
    for offset in offsets:
        if offset is not None:
            clock.advance_to(offset)
        if not source.emit_next():
            break


def _wait_for_playback(source: SimulatedLocationSource, interval_s: float) -> None:
    while not source.exhausted:
        time.sleep(interval_s)


def _report(result: OperationResult) -> Dict[str, Any]:
    data = result.data
    report: Dict[str, Any] = {
        "ok": result.ok,
        "transition": result.transition,
        "error": result.error,
    }
    if data is not None and hasattr(data, "territory_claim_status"):
        report["route_id"] = data.route_id
        report["territory_claim_status"] = data.territory_claim_status.value
        report["claim_reason"] = data.claim_reason
    return report


def run_session(
    samples: Sequence[Dict[str, Any]],
    *,
    user_id: str,
    name: str | None = None,
    interval_s: float = 0.0,
) -> int:
    source = SimulatedLocationSource(samples, interval_s=interval_s)
    # Instant playback runs the route on track time so duration and speed
    # match the recording.
    clock = PlaybackClock() if interval_s <= 0 else None
    controller = build_controller(user_id, source, clock or time.monotonic)
    try:
        started = controller.start(RouteMetadata(name=name))
        if not started.ok:
            logging.error("Could not start route: %s", started.error)
            return 1
        if clock is not None:
            _replay_instantly(source, clock, _track_offsets(samples))
        else:
            _wait_for_playback(source, interval_s)
        route = controller.current_route
        if route is not None:
            logging.info(
                "Recorded %d coordinates, %.0f m in %.0f s (%.1f km/h), eligibility=%s",
                route.stats.coordinate_count,
                route.stats.distance_meters,
                route.stats.duration_seconds,
                route.stats.average_speed_kmh,
                route.territory_eligibility.status.value,
            )
        completed = controller.complete(name)
        print(json.dumps(_report(completed), indent=2))
        return 0 if completed.ok else 1
    finally:
        controller.close()


def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Record a route from a GPS track")
    parser.add_argument("track", nargs="?", help="CSV or JSON track to replay")
    parser.add_argument(
        "--pattern",
        choices=("square", "circle"),
        default="square",
        help="Generated loop used when no track is given",
    )
    parser.add_argument(
        "--center",
        nargs=2,
        type=float,
        default=(37.7749, -122.4194),
        metavar=("LAT", "LON"),
    )
    parser.add_argument("--user-id", default=TRACKER_USER_ID)
    parser.add_argument("--name", help="Route name sent on completion")
    parser.add_argument(
        "--interval",
        type=float,
        default=0.0,
        help="Seconds between samples (0 plays back immediately)",
    )
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def main(argv: List[str] | None = None) -> int:
    args = parse_args(argv)
    _setup_logging(args.verbose)
    if not args.user_id:
        logging.error("No user id given (use --user-id or TRACKER_USER_ID)")
        return 2
    if args.track:
        samples = load_track(args.track)
    else:
        samples = generate_pattern(args.pattern, tuple(args.center), seed=7)
    logging.info("Replaying %d samples for user %s", len(samples), args.user_id)
    return run_session(
        samples, user_id=args.user_id, name=args.name, interval_s=args.interval
    )


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
