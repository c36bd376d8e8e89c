"""Command center: one call that assembles every dashboard section.

Sections run concurrently, each on its own session. A failing section is
logged, counted and replaced by its empty default so the rest of the
dashboard still renders; its name is listed under ``unavailable``.
"""

import asyncio
import logging
import time
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy.ext.asyncio import async_sessionmaker

from health_engine.config import settings
from health_engine.db.repository import LogReader, SupplierCache
from health_engine.detect.anomaly_detector import Anomaly, anomaly_detector
from health_engine.detect.diagnosis import build_diagnosis
from health_engine.detect.forecast import (
    Forecast,
    NorthStar,
    Trajectory,
    build_north_star,
    compute_trajectory,
    forecast_next,
)
from health_engine.detect.series import (
    FreshnessIndex,
    build_daily_rows,
    day_start,
    quality_series,
)
from health_engine.health.action_items import build_action_items
from health_engine.health.lifecycle import LifecycleSummary, summarize_lifecycle, weekly_transitions
from health_engine.health.market_pulse import build_market_pulse
from health_engine.health.movers import key_movers
from health_engine.health.stability import StabilityScore, compute_stability
from health_engine.metrics import record_anomaly, record_command_center, record_section_failure

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRAJECTORY_DAYS = 30
ANOMALY_LOOKBACK_DAYS = 7
PULSE_DAYS = 30

EMPTY_MOVERS = {"up": [], "down": []}
EMPTY_PULSE = {"medianPrice": [], "demandVolume": [], "scraperSuccess": []}


class CommandCenterService:
    """Builds the command center payload from the leaf logs."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get_data(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Assemble the dashboard.

        Args:
            now: Evaluation instant, naive UTC (defaults to utcnow)
        """
        started = time.monotonic()
        now = now or datetime.utcnow()
        cache = SupplierCache(self.session_factory)
        unavailable: List[str] = []

        (
            (north_star, trajectory, forecast),
            anomalies,
            stability,
            lifecycle,
            transitions,
            movers,
            action_items,
            market_pulse,
        ) = await asyncio.gather(
            self._guard("northStar", self._north_star(cache, now),
                        (NorthStar(), Trajectory(days=TRAJECTORY_DAYS), None), unavailable),
            self._guard("anomalies", self._anomalies(cache, now), [], unavailable),
            self._guard("stability", self._stability(cache, now), StabilityScore(), unavailable),
            self._guard("lifecycle", self._lifecycle(cache, now), LifecycleSummary(), unavailable),
            self._guard("transitions", self._transitions(cache, now), [], unavailable),
            self._guard("movers", self._movers(cache, now), EMPTY_MOVERS, unavailable),
            self._guard("actionItems", self._action_items(cache, now), [], unavailable),
            self._guard("marketPulse", self._market_pulse(cache, now), EMPTY_PULSE, unavailable),
        )

        for anomaly in anomalies:
            record_anomaly(anomaly.category, anomaly.severity)

        lifecycle.transitions = transitions
        north_star_data = north_star.to_dict()
        north_star_data["trajectory"] = trajectory.to_dict()
        north_star_data["forecast"] = forecast.to_dict() if forecast else None

        duration = time.monotonic() - started
        record_command_center(duration)
        if unavailable:
            logger.warning(f"Command center served with defaults for: {', '.join(unavailable)}")
        logger.debug(f"Command center assembled in {duration * 1000:.0f}ms")

        return {
            "northStar": north_star_data,
            "anomalies": [a.to_dict() for a in anomalies],
            "diagnosis": build_diagnosis(anomalies).to_dict(),
            "stability": stability.to_dict(),
            "lifecycle": lifecycle.to_dict(),
            "movers": movers,
            "actionItems": [item.to_dict() for item in action_items],
            "marketPulse": market_pulse,
            "unavailable": sorted(unavailable),
            "generatedAt": now.isoformat(),
        }

    async def _guard(
        self, name: str, coro: Awaitable[T], default: T, unavailable: List[str]
    ) -> T:
        try:
            return await coro
        except Exception as e:
            logger.error(f"Command center section '{name}' failed: {e}", exc_info=True)
            record_section_failure(name)
            unavailable.append(name)
            return default

    def _freshness(self, observations, suppliers) -> FreshnessIndex:
        return FreshnessIndex(observations, active_supplier_ids={s.id for s in suppliers})

    def _price_window_start(self, first_day: date) -> datetime:
        # Clicks early in the window still need the prices that made them fresh
        return day_start(first_day) - timedelta(hours=settings.freshness_hours)

    async def _north_star(
        self, cache: SupplierCache, now: datetime
    ) -> Tuple[NorthStar, Trajectory, Optional[Forecast]]:
        today = now.date()
        start = today - timedelta(days=TRAJECTORY_DAYS - 1)
        suppliers = await cache.get()
        async with self.session_factory() as db:
            reader = LogReader(db)
            clicks = await reader.engagement_events(day_start(start), now)
            prices = await reader.price_observations(self._price_window_start(start), now)

        series = quality_series(clicks, self._freshness(prices, suppliers), start, today)
        north_star = build_north_star(series, today)
        trajectory = compute_trajectory(series, today, window_days=TRAJECTORY_DAYS)
        return north_star, trajectory, forecast_next(north_star.trend, today)

    async def _anomalies(self, cache: SupplierCache, now: datetime) -> List[Anomaly]:
        today = now.date()
        start = today - timedelta(days=ANOMALY_LOOKBACK_DAYS)
        suppliers = await cache.get()
        async with self.session_factory() as db:
            reader = LogReader(db)
            clicks = await reader.engagement_events(day_start(start), now)
            prices = await reader.price_observations(self._price_window_start(start), now)
            areas = await reader.search_areas(day_start(start), now)
            weather = await reader.weather(start, today)

        rows = build_daily_rows(
            today,
            clicks,
            prices,
            areas,
            suppliers,
            weather,
            freshness=self._freshness(prices, suppliers),
            lookback_days=ANOMALY_LOOKBACK_DAYS,
        )
        return anomaly_detector.detect(rows, today)

    async def _stability(self, cache: SupplierCache, now: datetime) -> StabilityScore:
        today_start = day_start(now.date())
        suppliers = await cache.get()
        async with self.session_factory() as db:
            reader = LogReader(db)
            latest_prices = await reader.latest_valid_price_times(until=now)
            clicks = await reader.engagement_events(today_start, now)
            prices = await reader.price_observations(self._price_window_start(now.date()), now)
            areas = await reader.search_areas(today_start - timedelta(days=7), now)

        freshness = self._freshness(prices, suppliers)
        return compute_stability(
            suppliers,
            latest_prices,
            now,
            today_clicks=len(clicks),
            today_quality_clicks=sum(1 for c in clicks if freshness.is_quality_click(c)),
            new_areas_today=sum(1 for a in areas if a.first_seen_at >= today_start),
            new_areas_prev_7d=sum(1 for a in areas if a.first_seen_at < today_start),
        )

    async def _lifecycle(self, cache: SupplierCache, now: datetime) -> LifecycleSummary:
        suppliers = await cache.get()
        async with self.session_factory() as db:
            latest_prices = await LogReader(db).latest_valid_price_times(until=now)
        return summarize_lifecycle(suppliers, latest_prices, now)

    async def _transitions(self, cache: SupplierCache, now: datetime) -> List[Dict[str, Any]]:
        suppliers = await cache.get()
        async with self.session_factory() as db:
            reader = LogReader(db)
            prices = await reader.price_observations(now - timedelta(days=14), now)
            latest_prices = await reader.latest_valid_price_times(until=now)
        return weekly_transitions(suppliers, prices, latest_prices, now)

    async def _movers(self, cache: SupplierCache, now: datetime) -> Dict[str, List[Dict[str, Any]]]:
        suppliers = await cache.get()
        async with self.session_factory() as db:
            prices = await LogReader(db).price_observations(now - timedelta(days=7), now)
        return key_movers(prices, {s.id: s for s in suppliers}, now)

    async def _action_items(self, cache: SupplierCache, now: datetime):
        suppliers = await cache.get()
        async with self.session_factory() as db:
            reader = LogReader(db)
            areas = await reader.search_areas(now - timedelta(days=7), now)
            latest_prices = await reader.latest_valid_price_times(until=now)
        return build_action_items(suppliers, areas, latest_prices, now)

    async def _market_pulse(self, cache: SupplierCache, now: datetime) -> Dict[str, List[Dict[str, Any]]]:
        today = now.date()
        since = day_start(today - timedelta(days=PULSE_DAYS))
        suppliers = await cache.get()
        async with self.session_factory() as db:
            reader = LogReader(db)
            prices = await reader.price_observations(since, now)
            areas = await reader.search_areas(since, now)
        return build_market_pulse(prices, areas, suppliers, today)
