"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from forpris.worker.tasks import scan_runner

logger = logging.getLogger(__name__)


def setup_scheduler() -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    A single hourly job scans every enabled shop whose own tracking
    frequency has elapsed since its last scan.

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        scan_runner.scan_due_shops,
        IntervalTrigger(hours=1),
        id="compliance_scan",
        name="Scan shops due for a compliance check",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=600,
        replace_existing=True,
    )

    logger.info("Scheduler configured: due-shop compliance scan every hour")

    return scheduler
