"""Tests for the nightly platform metrics passes and snapshot job."""

import asyncio
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import func, select

from health_engine.db.models import (
    ApiActivity,
    CommunityDelivery,
    DailyPlatformMetrics,
    Supplier,
    SupplierClick,
    SupplierPrice,
)
from health_engine.db.records import DeliveryReport, EngagementEvent, SearchIntentEvent, SupplierRecord
from health_engine.reports.platform_metrics import (
    compute_community_top_zips,
    compute_core_metrics,
    compute_demand_density,
)
from health_engine.worker.metrics_lock import InProcessMetricsLock
from health_engine.worker.platform_metrics_job import (
    InvalidTargetDayError,
    PlatformMetricsJob,
    parse_target_day,
    yesterday_in_business_tz,
)

DAY = date(2026, 1, 15)
# 07:00 in New York on Jan 16
CLOCK_NOW = datetime(2026, 1, 16, 12, 0)


def at(day_offset, hour=12):
    return datetime.combine(DAY - timedelta(days=day_offset), datetime.min.time()) + timedelta(hours=hour)


class HeldLock:
    """Lock double that is always held by someone else."""

    def __init__(self):
        self.released = 0

    async def acquire(self, run_id):
        return None

    async def release(self, run_id, token):
        self.released += 1
        return True

    async def close(self):
        pass


# Pure passes

def _suppliers():
    return [
        SupplierRecord(id=1, name="A", website="https://a.example", allow_price_display=True,
                       postal_codes_served=["06010", "06011"]),
        SupplierRecord(id=2, name="B", website="https://b.example", allow_price_display=True,
                       postal_codes_served=["06010"]),
        SupplierRecord(id=3, name="C", website=None, allow_price_display=True,
                       postal_codes_served=["06010"]),
        SupplierRecord(id=4, name="D", website="https://d.example", allow_price_display=False),
    ]


def test_core_metrics_windows():
    clicks = [
        EngagementEvent(1, "website", at(0), zip_code="06010"),
        EngagementEvent(1, "website", at(0, 15), zip_code="06010"),
        EngagementEvent(2, "call", at(3), zip_code="06011"),
        EngagementEvent(2, "call", at(20), zip_code="06011"),
        EngagementEvent(4, "website", at(29)),
        EngagementEvent(4, "call", at(30)),
    ]
    searches = [
        SearchIntentEvent(at(0), zip_code="06010"),
        SearchIntentEvent(at(0, 18), zip_code="06010"),
        SearchIntentEvent(at(2), zip_code="06010"),
        SearchIntentEvent(at(6), zip_code="06011"),
        SearchIntentEvent(at(7), zip_code="06012"),
        SearchIntentEvent(at(1), zip_code="06013", status_code=404),
    ]
    deliveries = [
        DeliveryReport(at(1), "heating_oil", "06010"),
        DeliveryReport(at(10), "propane", "06010"),
        DeliveryReport(at(45), "propane", "06011"),
        DeliveryReport(at(61), "propane", "06011"),
        DeliveryReport(at(2), "heating_oil", "06010", validation_status="rejected"),
    ]

    core = compute_core_metrics(DAY, _suppliers(), clicks, searches, deliveries)

    assert core.pipeline_suppliers == 2
    assert core.search_zip_days == 3
    assert core.search_zips == 2
    assert core.suppliers_clicked_7d == 1
    assert core.suppliers_clicked_30d == 2
    assert core.suppliers_called_7d == 1
    assert core.suppliers_called_30d == 1
    assert core.website_clicks_7d == 2
    assert core.calls_7d == 1
    assert core.zip_days_with_click_7d == 1
    assert core.zip_days_with_call_7d == 1
    assert core.zips_with_call_7d == 1
    assert core.deliveries_7d == 1
    assert core.deliveries_30d == 2
    assert core.deliveries_oil_30d == 1
    assert core.deliveries_propane_30d == 1
    assert core.deliveries_propane_prev30d == 1


def test_zip_days_count_clicks_without_zip():
    clicks = [
        EngagementEvent(1, "website", at(0)),
        EngagementEvent(1, "website", at(0, 16)),
        EngagementEvent(1, "website", at(1), zip_code="06010"),
        EngagementEvent(2, "call", at(2)),
        EngagementEvent(2, "call", at(2), zip_code="06011"),
    ]

    core = compute_core_metrics(DAY, _suppliers(), clicks, [], [])

    assert core.zip_days_with_click_7d == 2
    assert core.zip_days_with_call_7d == 2
    assert core.zips_with_call_7d == 1


def test_demand_density_scoring_and_filters():
    searches = [
        SearchIntentEvent(at(0), zip_code="06010"),
        SearchIntentEvent(at(1), zip_code="06010"),
        SearchIntentEvent(at(2), zip_code="06010"),
        SearchIntentEvent(at(0), zip_code="06011"),
        SearchIntentEvent(at(4), zip_code="06011"),
        # One search day only
        SearchIntentEvent(at(0), zip_code="06012"),
        # No engagement
        SearchIntentEvent(at(0), zip_code="06013"),
        SearchIntentEvent(at(1), zip_code="06013"),
    ]
    clicks = [
        EngagementEvent(1, "website", at(0), zip_code="06010"),
        EngagementEvent(2, "call", at(1), zip_code="06010"),
        EngagementEvent(1, "website", at(0), zip_code="06011"),
        EngagementEvent(1, "website", at(3), zip_code="06011"),
        EngagementEvent(1, "call", at(0), zip_code="06012"),
    ]
    latest_prices = {1: at(5), 2: at(1)}

    ranked = compute_demand_density(DAY, _suppliers(), clicks, searches, latest_prices)

    assert [r["zip"] for r in ranked] == ["06010", "06011"]
    top = ranked[0]
    assert top["score"] == 1.33
    assert top["days"] == 3
    assert top["suppliers"] == 2
    assert top["fresh"] is True
    assert ranked[1]["score"] == 1.0
    assert ranked[1]["fresh"] is False


def test_community_top_zips_ties_break_on_zip():
    deliveries = [
        DeliveryReport(at(1), "propane", "06020"),
        DeliveryReport(at(2), "heating_oil", "06011"),
        DeliveryReport(at(3), "heating_oil", "06020"),
        DeliveryReport(at(3), "heating_oil", "06012"),
        DeliveryReport(at(4), "heating_oil", "06012"),
        DeliveryReport(at(40), "heating_oil", "06011"),
        DeliveryReport(at(1), "heating_oil", None),
    ]

    ranked = compute_community_top_zips(DAY, deliveries)

    assert [r["zip"] for r in ranked] == ["06012", "06020", "06011"]
    assert ranked[1] == {"zip": "06020", "total": 2, "oil": 1, "propane": 1}


# Target day

def test_default_target_is_yesterday_in_business_timezone():
    # 03:00 UTC on Jan 16 is still Jan 15 in New York
    assert yesterday_in_business_tz(datetime(2026, 1, 16, 3, 0)) == date(2026, 1, 14)
    assert parse_target_day(None, CLOCK_NOW) == DAY


@pytest.mark.parametrize("value", ["2026-13-01", "yesterday", "2026-01-16", "2026-02-01"])
def test_invalid_target_days(value):
    with pytest.raises(InvalidTargetDayError):
        parse_target_day(value, CLOCK_NOW)


# Snapshot job

async def _seed(db):
    db.add_all([
        Supplier(id=1, name="A", website="https://a.example", allow_price_display=True,
                 postal_codes_served=["06010"]),
        Supplier(id=2, name="B", website="https://b.example", allow_price_display=True,
                 postal_codes_served=["06010", "06011"]),
    ])
    await db.flush()
    db.add_all([
        SupplierPrice(supplier_id=1, price_per_gallon=3.459, scraped_at=at(0, 6)),
        SupplierPrice(supplier_id=2, price_per_gallon=3.299, scraped_at=at(5, 6)),
        SupplierClick(supplier_id=1, action_type="website", zip_code="06010", created_at=at(0)),
        SupplierClick(supplier_id=2, action_type="call", zip_code="06010", created_at=at(1)),
        # After the target day; must not count
        SupplierClick(supplier_id=2, action_type="call", zip_code="06010", created_at=at(-1)),
        ApiActivity(zip_code="06010", status_code=200, method="GET", created_at=at(0)),
        ApiActivity(zip_code="06010", status_code=200, method="GET", created_at=at(2)),
        ApiActivity(zip_code="06011", status_code=500, method="GET", created_at=at(2)),
        CommunityDelivery(zip_code="06010", fuel_type="heating_oil",
                          validation_status="valid", created_at=at(3)),
        CommunityDelivery(zip_code="06011", fuel_type="propane",
                          validation_status="pending", created_at=at(3)),
    ])
    await db.commit()


def _snapshot_dict(row):
    return {attr.key: getattr(row, attr.key) for attr in DailyPlatformMetrics.__mapper__.column_attrs}


@pytest.mark.asyncio
async def test_snapshot_is_idempotent(session_factory):
    async with session_factory() as db:
        await _seed(db)

    job = PlatformMetricsJob(session_factory, InProcessMetricsLock(), clock=lambda: CLOCK_NOW)

    first = await job.compute_daily()
    async with session_factory() as db:
        snapshot_one = _snapshot_dict(await db.get(DailyPlatformMetrics, DAY))

    second = await job.compute_daily("2026-01-15")
    async with session_factory() as db:
        count = (await db.execute(select(func.count()).select_from(DailyPlatformMetrics))).scalar()
        snapshot_two = _snapshot_dict(await db.get(DailyPlatformMetrics, DAY))

    assert first["success"] is True
    assert second["success"] is True
    assert first["day"] == "2026-01-15"
    assert count == 1
    assert snapshot_one == snapshot_two

    assert snapshot_one["pipeline_suppliers"] == 2
    assert snapshot_one["website_clicks_7d"] == 1
    assert snapshot_one["calls_7d"] == 1
    assert snapshot_one["search_zip_days"] == 2
    assert snapshot_one["deliveries_30d"] == 1
    assert snapshot_one["demand_density_top25"] == [{
        "zip": "06010", "clicks": 1, "calls": 1, "score": 2.0,
        "days": 2, "suppliers": 2, "fresh": True,
    }]
    assert snapshot_one["community_top_zips_30d"] == [
        {"zip": "06010", "total": 1, "oil": 1, "propane": 0}
    ]


@pytest.mark.asyncio
async def test_locked_run_writes_nothing(session_factory):
    lock = HeldLock()
    job = PlatformMetricsJob(session_factory, lock, clock=lambda: CLOCK_NOW)

    result = await job.compute_daily()

    assert result["success"] is False
    assert result["reason"] == "locked"
    assert result["day"] == "2026-01-15"
    assert lock.released == 0
    async with session_factory() as db:
        assert await db.get(DailyPlatformMetrics, DAY) is None


@pytest.mark.asyncio
async def test_in_process_lock_excludes_second_holder():
    lock = InProcessMetricsLock()

    token = await lock.acquire("first")
    assert token is not None
    assert await lock.acquire("second") is None
    assert await lock.release("second", "wrong-token") is False
    assert await lock.release("first", token) is True
    assert await lock.acquire("third") is not None


@pytest.mark.asyncio
async def test_failed_pass_propagates_and_releases_lock(session_factory, monkeypatch):
    lock = InProcessMetricsLock()
    job = PlatformMetricsJob(session_factory, lock, clock=lambda: CLOCK_NOW)

    async def broken(db, day):
        raise RuntimeError("query failed")

    monkeypatch.setattr(job, "_compute_row", broken)

    with pytest.raises(RuntimeError):
        await job.compute_daily()

    assert await lock.acquire("next") is not None


@pytest.mark.asyncio
async def test_concurrent_runs_compute_once(session_factory):
    async with session_factory() as db:
        await _seed(db)

    job = PlatformMetricsJob(session_factory, InProcessMetricsLock(), clock=lambda: CLOCK_NOW)

    results = await asyncio.gather(job.compute_daily(), job.compute_daily())

    assert sorted(r["success"] for r in results) == [False, True]
    skipped = next(r for r in results if not r["success"])
    assert skipped["reason"] == "locked"
    async with session_factory() as db:
        count = (await db.execute(select(func.count()).select_from(DailyPlatformMetrics))).scalar()
    assert count == 1
