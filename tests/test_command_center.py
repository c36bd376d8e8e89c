"""Tests for the command center service and HTTP endpoints."""

from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from health_engine.api.deps import (
    get_command_center_service,
    get_database,
    get_platform_metrics_job,
)
from health_engine.config import settings
from health_engine.db.models import (
    Supplier,
    SupplierClick,
    SupplierPrice,
    UserLocation,
)
from health_engine.db.repository import SupplierCache
from health_engine.main import app
from health_engine.services.command_center import CommandCenterService
from health_engine.worker.metrics_lock import InProcessMetricsLock
from health_engine.worker.platform_metrics_job import PlatformMetricsJob

NOW = datetime(2026, 1, 15, 12, 0)


async def _seed(db):
    db.add_all([
        Supplier(id=1, name="Live Oil", city="Bristol", state="CT",
                 website="https://live.example", allow_price_display=True,
                 postal_codes_served=["06010"]),
        Supplier(id=2, name="Blocked Oil", website="https://blocked.example",
                 allow_price_display=True, scrape_status="cooldown",
                 consecutive_scrape_failures=3,
                 scrape_failure_dates=[(NOW - timedelta(hours=5)).isoformat(), "not-a-date"]),
        Supplier(id=3, name="Stale Oil", website="https://stale.example",
                 allow_price_display=True),
        Supplier(id=4, name="Directory Oil", website="https://dir.example"),
        Supplier(id=5, name="Retired Oil", active=False),
    ])
    await db.flush()
    db.add_all([
        SupplierPrice(supplier_id=1, price_per_gallon=3.10, scraped_at=NOW - timedelta(days=2)),
        SupplierPrice(supplier_id=1, price_per_gallon=3.30, scraped_at=NOW - timedelta(hours=2)),
        SupplierPrice(supplier_id=3, price_per_gallon=3.50, scraped_at=NOW - timedelta(days=3)),
        SupplierClick(supplier_id=1, action_type="call", zip_code="06010",
                      created_at=NOW - timedelta(hours=1)),
        SupplierClick(supplier_id=3, action_type="website", zip_code="06010",
                      created_at=NOW - timedelta(minutes=30)),
        UserLocation(zip_code="06010", city="Bristol", state="CT",
                     first_seen_at=NOW - timedelta(hours=3), request_count=2,
                     coverage_quality="none"),
    ])
    await db.commit()


@pytest.mark.asyncio
async def test_command_center_payload(session_factory):
    async with session_factory() as db:
        await _seed(db)

    data = await CommandCenterService(session_factory).get_data(now=NOW)

    assert data["unavailable"] == []
    assert data["northStar"]["today"] == 1
    assert data["northStar"]["trend"][-1] == {
        "date": "2026-01-15", "qualityConnections": 1, "totalClicks": 2,
    }
    assert data["northStar"]["trajectory"]["days"] == 30
    assert data["northStar"]["forecast"] is None

    # Volumes are far below every alert floor
    assert data["anomalies"] == []
    assert data["diagnosis"]["status"] == "normal"

    lifecycle = data["lifecycle"]
    assert lifecycle["total"] == 4
    assert lifecycle["states"]["live"] == 1
    assert lifecycle["states"]["blocked"] == 1
    assert lifecycle["states"]["stale"] == 1
    assert lifecycle["states"]["listed"] == 1
    assert lifecycle["healthPct"] == 33

    assert data["stability"]["components"]["conversionRate"] == 50
    assert 0 <= data["stability"]["score"] <= 100

    assert [m["name"] for m in data["movers"]["up"]] == ["Live Oil"]
    labels = [item["label"] for item in data["actionItems"]]
    assert labels[:2] == ["CRITICAL", "OPPORTUNITY"]

    assert data["marketPulse"]["scraperSuccess"][-1] == {"date": "2026-01-15", "value": 50}
    assert data["generatedAt"] == NOW.isoformat()


@pytest.mark.asyncio
async def test_failing_section_falls_back_to_default(session_factory, monkeypatch):
    async with session_factory() as db:
        await _seed(db)

    service = CommandCenterService(session_factory)

    async def broken(cache, now):
        raise RuntimeError("movers query failed")

    monkeypatch.setattr(service, "_movers", broken)

    data = await service.get_data(now=NOW)

    assert data["unavailable"] == ["movers"]
    assert data["movers"] == {"up": [], "down": []}
    assert data["lifecycle"]["total"] == 4


@pytest.mark.asyncio
async def test_supplier_cache_loads_once_until_invalidated(session_factory):
    async with session_factory() as db:
        await _seed(db)

    cache = SupplierCache(session_factory)
    first = await cache.get()
    assert await cache.get() is first
    assert [s.id for s in first] == [1, 2, 3, 4]
    assert first[1].scrape_failure_dates == [NOW - timedelta(hours=5)]

    async with session_factory() as db:
        supplier = await db.get(Supplier, 4)
        supplier.active = False
        await db.commit()

    assert len(await cache.get()) == 4
    assert len(await cache.reload()) == 3


@pytest.fixture
def client_overrides(session_factory, monkeypatch):
    async def database():
        async with session_factory() as session:
            yield session

    job = PlatformMetricsJob(
        session_factory, InProcessMetricsLock(), clock=lambda: datetime(2026, 1, 16, 12, 0)
    )
    monkeypatch.setattr(settings, "admin_api_key", "test-admin-key")
    app.dependency_overrides[get_database] = database
    app.dependency_overrides[get_command_center_service] = lambda: CommandCenterService(session_factory)
    app.dependency_overrides[get_platform_metrics_job] = lambda: job
    yield
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_http_endpoints(session_factory, client_overrides):
    async with session_factory() as db:
        await _seed(db)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        health = await client.get("/health")
        assert health.json() == {"status": "healthy"}

        dashboard = await client.get("/api/command-center")
        assert dashboard.status_code == 200
        assert "northStar" in dashboard.json()

        denied = await client.post(
            "/api/platform-metrics/compute", headers={"X-Admin-API-Key": "wrong"}
        )
        assert denied.status_code == 403

        bad_day = await client.post(
            "/api/platform-metrics/compute",
            params={"day": "2026-99-01"},
            headers={"X-Admin-API-Key": "test-admin-key"},
        )
        assert bad_day.status_code == 400

        computed = await client.post(
            "/api/platform-metrics/compute",
            headers={"X-Admin-API-Key": "test-admin-key"},
        )
        assert computed.status_code == 200
        assert computed.json()["day"] == "2026-01-15"

        one = await client.get("/api/platform-metrics/2026-01-15")
        assert one.status_code == 200
        assert one.json()["pipeline_suppliers"] == 3

        listing = await client.get("/api/platform-metrics", params={"days": 7})
        assert [row["day"] for row in listing.json()] == ["2026-01-15"]

        missing = await client.get("/api/platform-metrics/2026-01-01")
        assert missing.status_code == 404
