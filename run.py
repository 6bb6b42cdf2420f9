#!/usr/bin/env python3
"""Convenience runner for the territory tracker.

Usage:
    python run.py [track.csv] --user-id USER
"""
import logging
import sys

from territory_tracker.main import main

if __name__ == "__main__":
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    sys.exit(main())
