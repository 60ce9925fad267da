#!/usr/bin/env python3
"""
Periodic trigger for scheduled validation runs.

Usage:
    python scripts/run_validations.py --once
    python scripts/run_validations.py --interval 300
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from datawatch.config import configure_logging, load_settings
from datawatch.scheduler import build_scheduler
from datawatch.store import STORE
from datawatch.validation.engine import build_engine


logger = logging.getLogger("datawatch.scripts.run_validations")


def main() -> None:
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Run scheduled data validations")
    parser.add_argument("--once", action="store_true", help="run a single batch and exit")
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.validation_interval_seconds,
        help="seconds between batch starts",
    )
    parser.add_argument("--trigger", default="schedule")
    args = parser.parse_args()

    configure_logging(settings.log_level)
    engine = build_engine(STORE, settings)
    try:
        if args.once:
            summary = engine.run_scheduled_validations(args.trigger)
            print(json.dumps(summary, indent=2, sort_keys=True))
            return

        logger.info("Scheduling validation runs every %ss", args.interval)
        build_scheduler(engine, args.interval, args.trigger).start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Validation scheduler stopped")
    finally:
        engine.close()


if __name__ == "__main__":
    main()
