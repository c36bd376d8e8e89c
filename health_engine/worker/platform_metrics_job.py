"""Nightly platform metrics snapshot job.

Computes one row of daily KPIs for a target day and upserts it into
daily_platform_metrics. Guarded by a distributed lock so overlapping
triggers (scheduler, CLI, admin endpoint) never compute concurrently.
"""

import logging
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Union
from uuid import uuid4
from zoneinfo import ZoneInfo

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from health_engine.config import settings
from health_engine.db.models import DailyPlatformMetrics
from health_engine.db.repository import LogReader
from health_engine.db.session import AsyncSessionLocal, engine
from health_engine.detect.series import day_start
from health_engine.metrics import record_snapshot_run
from health_engine.reports.platform_metrics import (
    MetricWindows,
    compute_community_top_zips,
    compute_core_metrics,
    compute_demand_density,
)
from health_engine.worker.metrics_lock import build_metrics_lock

logger = logging.getLogger(__name__)


class InvalidTargetDayError(ValueError):
    """Target day is malformed or not yet complete."""


def business_today(now: Optional[datetime] = None) -> date:
    """Calendar date in the operator's timezone. ``now`` is naive UTC."""
    now = now or datetime.utcnow()
    aware = now.replace(tzinfo=timezone.utc) if now.tzinfo is None else now
    return aware.astimezone(ZoneInfo(settings.business_timezone)).date()


def yesterday_in_business_tz(now: Optional[datetime] = None) -> date:
    return business_today(now) - timedelta(days=1)


def parse_target_day(value: Union[str, date, None], now: Optional[datetime] = None) -> date:
    """
    Resolve the day to snapshot.

    None means yesterday in the business timezone. Today and later are
    rejected because their logs are still being written.
    """
    if value is None:
        return yesterday_in_business_tz(now)

    if isinstance(value, datetime):
        target = value.date()
    elif isinstance(value, date):
        target = value
    else:
        try:
            target = date.fromisoformat(str(value).strip())
        except ValueError:
            raise InvalidTargetDayError(f"Invalid day {value!r}; expected YYYY-MM-DD") from None

    if target >= business_today(now):
        raise InvalidTargetDayError(f"Day {target.isoformat()} is not complete yet")
    return target


class PlatformMetricsJob:
    """
    Lock-guarded, idempotent daily snapshot.

    Passes run sequentially on one session:
    1. Core KPIs (pipeline, search denominators, utilization, match rate, deliveries)
    2. Demand density top 25
    3. Community delivery top zips (30d)
    followed by a single upsert keyed on day.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        lock_manager,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.lock_manager = lock_manager
        self.clock = clock

    async def compute_daily(self, target_day: Union[str, date, None] = None) -> Dict[str, Any]:
        """
        Compute and store the snapshot for ``target_day``.

        Returns:
            {"success": bool, "day": "YYYY-MM-DD", "durationMs": int}
            plus "reason": "locked" when another run holds the lock
        """
        day = parse_target_day(target_day, self.clock())
        started = time.monotonic()
        run_id = uuid4().hex

        token = await self.lock_manager.acquire(run_id)
        if token is None:
            logger.info(f"Platform metrics for {day} skipped: another run holds the lock")
            record_snapshot_run("locked")
            return {
                "success": False,
                "day": day.isoformat(),
                "durationMs": int((time.monotonic() - started) * 1000),
                "reason": "locked",
            }

        try:
            async with self.session_factory() as db:
                row = await self._compute_row(db, day)
                await self._upsert(db, row)
                await db.commit()
        except Exception:
            duration = time.monotonic() - started
            logger.error(f"Platform metrics for {day} failed after {duration:.1f}s", exc_info=True)
            record_snapshot_run("error", duration)
            raise
        finally:
            await self.lock_manager.release(run_id, token)

        duration = time.monotonic() - started
        record_snapshot_run("success", duration)
        logger.info(
            f"Platform metrics for {day} computed in {duration * 1000:.0f}ms: "
            f"{row['pipeline_suppliers']} pipeline suppliers, "
            f"{row['search_zip_days']} search zip-days, "
            f"{len(row['demand_density_top25'])} demand-density zips"
        )
        return {"success": True, "day": day.isoformat(), "durationMs": int(duration * 1000)}

    async def _compute_row(self, db: AsyncSession, day: date) -> Dict[str, Any]:
        windows = MetricWindows(day)
        until = day_start(day + timedelta(days=1))
        reader = LogReader(db)

        suppliers = await reader.suppliers(active_only=True)
        clicks = await reader.engagement_events(day_start(windows.d30_start), until)
        searches = await reader.search_intents(day_start(windows.d7_start), until)
        deliveries = await reader.deliveries(day_start(windows.d60_start), until)
        latest_prices = await reader.latest_valid_price_times(until=until)

        core = compute_core_metrics(day, suppliers, clicks, searches, deliveries)
        logger.debug(f"Core metrics for {day}: {core.to_dict()}")

        density = compute_demand_density(day, suppliers, clicks, searches, latest_prices)
        community = compute_community_top_zips(day, deliveries)

        return {
            "day": day,
            "computed_at": self.clock(),
            **core.to_dict(),
            "demand_density_top25": density,
            "community_top_zips_30d": community,
        }

    async def _upsert(self, db: AsyncSession, row: Dict[str, Any]) -> None:
        dialect = db.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert

        stmt = insert(DailyPlatformMetrics).values(**row)
        stmt = stmt.on_conflict_do_update(
            index_elements=["day"],
            set_={key: stmt.excluded[key] for key in row if key != "day"},
        )
        await db.execute(stmt)


# Global job instance
platform_metrics_job = PlatformMetricsJob(AsyncSessionLocal, build_metrics_lock(engine))


async def run_platform_metrics(target_day: Union[str, date, None] = None) -> Dict[str, Any]:
    """Entry point for the scheduler, CLI and admin endpoint."""
    return await platform_metrics_job.compute_daily(target_day)
