"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from health_engine.config import settings
from health_engine.worker.platform_metrics_job import run_platform_metrics

logger = logging.getLogger(__name__)


def setup_scheduler() -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Platform metrics snapshot for the previous business day, nightly at
      settings.metrics_cron_hour:metrics_cron_minute business time

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler(timezone=settings.business_timezone)

    scheduler.add_job(
        run_platform_metrics,
        CronTrigger(
            hour=settings.metrics_cron_hour,
            minute=settings.metrics_cron_minute,
            timezone=settings.business_timezone,
        ),
        id="platform_metrics",
        name="Compute daily platform metrics snapshot",
        max_instances=1,  # The distributed lock covers other processes
        coalesce=True,
        misfire_grace_time=3600,
        replace_existing=True,
    )

    logger.info(
        "Scheduler configured: platform metrics daily at %02d:%02d %s",
        settings.metrics_cron_hour,
        settings.metrics_cron_minute,
        settings.business_timezone,
    )

    return scheduler
