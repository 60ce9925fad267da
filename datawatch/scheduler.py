"""Interval trigger for batch runs."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from datawatch.validation.engine import ValidationEngine


logger = logging.getLogger(__name__)

JOB_ID = "scheduled-validations"


def run_batch(engine: ValidationEngine, trigger: str) -> None:
    try:
        summary = engine.run_scheduled_validations(trigger)
    except Exception:
        logger.exception("Scheduled validation run failed")
        return
    logger.info("Validation run %s ended with status %s", summary["id"], summary["status"])


def build_scheduler(
    engine: ValidationEngine, interval_seconds: int, trigger: str = "schedule"
) -> BlockingScheduler:
    """One job, first fire immediately, never two batches from this process.

    Missed fires (a batch running past the interval) are coalesced into one.
    """
    scheduler = BlockingScheduler(timezone=timezone.utc)
    scheduler.add_job(
        run_batch,
        trigger=IntervalTrigger(seconds=interval_seconds, timezone=timezone.utc),
        args=(engine, trigger),
        id=JOB_ID,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=interval_seconds,
        next_run_time=datetime.now(timezone.utc),
        replace_existing=True,
    )
    return scheduler
