"""Read access to the leaf logs and the supplier registry.

All filters are bound parameters; nothing here interpolates caller input
into SQL text.
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from health_engine.db.models import (
    ApiActivity,
    CommunityDelivery,
    Supplier,
    SupplierClick,
    SupplierPrice,
    UserLocation,
    WeatherHistory,
)
from health_engine.db.records import (
    DeliveryReport,
    EngagementEvent,
    PriceObservation,
    SearchArea,
    SearchIntentEvent,
    SupplierRecord,
    WeatherDay,
)

logger = logging.getLogger(__name__)


class LogReader:
    """Time-windowed queries over the engine's inputs."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def suppliers(self, active_only: bool = True) -> List[SupplierRecord]:
        query = select(Supplier).order_by(Supplier.id)
        if active_only:
            query = query.where(Supplier.active.is_(True))
        result = await self.db.execute(query)
        return [SupplierRecord.from_row(row) for row in result.scalars().all()]

    async def price_observations(
        self,
        since: datetime,
        until: Optional[datetime] = None,
        valid_only: bool = True,
    ) -> List[PriceObservation]:
        query = select(
            SupplierPrice.supplier_id,
            SupplierPrice.price_per_gallon,
            SupplierPrice.scraped_at,
            SupplierPrice.expires_at,
            SupplierPrice.is_valid,
            SupplierPrice.source_type,
        ).where(SupplierPrice.scraped_at >= since)
        if until is not None:
            query = query.where(SupplierPrice.scraped_at < until)
        if valid_only:
            query = query.where(SupplierPrice.is_valid.is_(True))
        query = query.order_by(SupplierPrice.supplier_id, SupplierPrice.scraped_at)

        result = await self.db.execute(query)
        return [
            PriceObservation(
                supplier_id=row.supplier_id,
                price_per_gallon=float(row.price_per_gallon or 0),
                scraped_at=row.scraped_at,
                expires_at=row.expires_at,
                is_valid=bool(row.is_valid),
                source_type=row.source_type or "scraped",
            )
            for row in result.all()
        ]

    async def latest_valid_price_times(
        self, until: Optional[datetime] = None
    ) -> Dict[int, datetime]:
        """Freshest valid observation timestamp per supplier."""
        query = (
            select(SupplierPrice.supplier_id, func.max(SupplierPrice.scraped_at))
            .where(SupplierPrice.is_valid.is_(True))
            .group_by(SupplierPrice.supplier_id)
        )
        if until is not None:
            query = query.where(SupplierPrice.scraped_at < until)
        result = await self.db.execute(query)
        return {supplier_id: scraped_at for supplier_id, scraped_at in result.all() if scraped_at}

    async def engagement_events(
        self, since: datetime, until: Optional[datetime] = None
    ) -> List[EngagementEvent]:
        query = select(
            SupplierClick.supplier_id,
            SupplierClick.action_type,
            SupplierClick.zip_code,
            SupplierClick.created_at,
        ).where(SupplierClick.created_at >= since)
        if until is not None:
            query = query.where(SupplierClick.created_at < until)

        result = await self.db.execute(query.order_by(SupplierClick.created_at))
        return [
            EngagementEvent(
                supplier_id=row.supplier_id,
                action_type=(row.action_type or "").lower(),
                zip_code=row.zip_code,
                created_at=row.created_at,
            )
            for row in result.all()
        ]

    async def search_intents(
        self, since: datetime, until: Optional[datetime] = None
    ) -> List[SearchIntentEvent]:
        """Successful GET lookups that carried an area code."""
        query = select(
            ApiActivity.zip_code,
            ApiActivity.status_code,
            ApiActivity.method,
            ApiActivity.created_at,
        ).where(
            ApiActivity.created_at >= since,
            ApiActivity.zip_code.is_not(None),
            ApiActivity.status_code < 400,
            ApiActivity.method == "GET",
        )
        if until is not None:
            query = query.where(ApiActivity.created_at < until)

        result = await self.db.execute(query)
        return [
            SearchIntentEvent(
                zip_code=row.zip_code,
                status_code=row.status_code,
                method=row.method,
                created_at=row.created_at,
            )
            for row in result.all()
        ]

    async def search_areas(
        self, first_seen_since: datetime, until: Optional[datetime] = None
    ) -> List[SearchArea]:
        query = select(UserLocation).where(UserLocation.first_seen_at >= first_seen_since)
        if until is not None:
            query = query.where(UserLocation.first_seen_at < until)

        result = await self.db.execute(query)
        return [
            SearchArea(
                zip_code=row.zip_code,
                city=row.city,
                state=row.state,
                first_seen_at=row.first_seen_at,
                request_count=row.request_count or 1,
                coverage_quality=row.coverage_quality,
            )
            for row in result.scalars().all()
        ]

    async def deliveries(
        self, since: datetime, until: Optional[datetime] = None
    ) -> List[DeliveryReport]:
        """Validated community deliveries."""
        query = select(
            CommunityDelivery.zip_code,
            CommunityDelivery.fuel_type,
            CommunityDelivery.validation_status,
            CommunityDelivery.created_at,
        ).where(
            CommunityDelivery.created_at >= since,
            CommunityDelivery.validation_status == "valid",
        )
        if until is not None:
            query = query.where(CommunityDelivery.created_at < until)

        result = await self.db.execute(query)
        return [
            DeliveryReport(
                zip_code=row.zip_code,
                fuel_type=row.fuel_type or "heating_oil",
                validation_status=row.validation_status,
                created_at=row.created_at,
            )
            for row in result.all()
        ]

    async def weather(self, start: date, end: date) -> List[WeatherDay]:
        query = select(WeatherHistory.day, WeatherHistory.temp_avg).where(
            WeatherHistory.day >= start,
            WeatherHistory.day <= end,
        )
        result = await self.db.execute(query.order_by(WeatherHistory.day))
        return [
            WeatherDay(
                day=row.day,
                temp_avg=float(row.temp_avg) if row.temp_avg is not None else None,
            )
            for row in result.all()
        ]


class SupplierCache:
    """
    Request- or job-scoped supplier registry cache.

    Create one per dashboard request (or per job run) and pass it to the
    sections that need the registry; the first caller loads it, the rest
    reuse the same list. Call ``invalidate()`` to force a reload.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
        self._suppliers: Optional[List[SupplierRecord]] = None
        self._lock = asyncio.Lock()

    async def get(self) -> List[SupplierRecord]:
        async with self._lock:
            if self._suppliers is None:
                async with self.session_factory() as db:
                    self._suppliers = await LogReader(db).suppliers(active_only=True)
                logger.debug(f"Loaded {len(self._suppliers)} active suppliers")
            return self._suppliers

    def invalidate(self) -> None:
        self._suppliers = None

    async def reload(self) -> List[SupplierRecord]:
        self.invalidate()
        return await self.get()
