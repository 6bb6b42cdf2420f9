"""Replay a recorded GPS track offline and report what the tracker makes of it.

The track runs through the same validator, buffer and stats engine used for
live tracking, so the output shows which samples would be dropped and whether
the route would qualify for a territory claim.

Usage examples:

    python -m territory_tracker.tools.replay_track walk.csv
    python -m territory_tracker.tools.replay_track walk.json --format json
"""

from __future__ import annotations

import argparse
import json
import logging
import math
from collections import Counter
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List

import numpy as np
import pandas as pd

from ..geometry import closure_gap_m, compute_route_quality, estimate_loop_area_m2
from ..tracking.buffer import AppendStatus, LocalCoordinateBuffer
from ..tracking.stats import classify_eligibility, compute_stats

LOGGER = logging.getLogger(__name__)

_COLUMN_ALIASES = {
    "lat": "latitude",
    "lon": "longitude",
    "lng": "longitude",
    "long": "longitude",
    "time": "timestamp",
    "ele": "altitude",
    "elevation": "altitude",
    "heading": "bearing",
}


def _native(value: Any) -> Any:
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def load_track(path: str | Path, fmt: str | None = None) -> List[Dict[str, Any]]:
    """Read raw samples from a CSV (one row per sample) or JSON file."""

    track_path = Path(path)
    fmt = (fmt or track_path.suffix.lstrip(".") or "csv").lower()
    if fmt == "csv":
        frame = pd.read_csv(track_path)
        frame.columns = [str(c).strip().lower() for c in frame.columns]
        frame = frame.rename(columns=_COLUMN_ALIASES)
        return [
            {key: _native(value) for key, value in row.items()}
            for row in frame.to_dict(orient="records")
        ]
    if fmt == "json":
        with track_path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if isinstance(data, dict):
            data = data.get("coordinates", [])
        if not isinstance(data, list):
            raise ValueError(f"{track_path}: expected a list of samples")
        return [dict(item) for item in data if isinstance(item, dict)]
    raise ValueError(f"Unsupported track format: {fmt}")


def summarise_track(samples: List[Dict[str, Any]]) -> Dict[str, Any]:
    buffer = LocalCoordinateBuffer()
    outcomes: Counter[str] = Counter()
    for sample in samples:
        result = buffer.append(sample)
        if result.status is AppendStatus.REJECTED and result.validation.reason:
            outcomes[f"rejected:{result.validation.reason.value}"] += 1
        else:
            outcomes[result.status.value] += 1
    coordinates = buffer.snapshot()
    stats = compute_stats(coordinates)
    eligibility = classify_eligibility(stats)
    points = [c.latlon for c in coordinates]
    return {
        "samples": len(samples),
        "outcomes": dict(sorted(outcomes.items())),
        "stats": stats.to_dict(),
        "closure_gap_m": closure_gap_m(points),
        "eligibility": {
            "eligible": eligibility.eligible,
            "status": eligibility.status.value,
            "reason": eligibility.reason,
        },
        "quality": asdict(compute_route_quality(coordinates)),
        "estimated_area_m2": estimate_loop_area_m2(points) if stats.is_closed_loop else None,
    }


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run a recorded GPS track through the tracker offline"
    )
    parser.add_argument("track", help="CSV or JSON file with GPS samples")
    parser.add_argument(
        "--format",
        choices=("csv", "json"),
        help="Input format (defaults to the file extension)",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Log every dropped sample"
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )
    try:
        samples = load_track(args.track, args.format)
    except (OSError, ValueError) as exc:
        LOGGER.error("Could not read %s: %s", args.track, exc)
        return 2
    print(json.dumps(summarise_track(samples), indent=2, default=str))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
