"""Supplementary command-line tooling for the territory tracker."""

from .replay_track import load_track, summarise_track

__all__ = ["load_track", "summarise_track"]
