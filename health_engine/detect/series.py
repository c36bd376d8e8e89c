"""Daily time series shared by the anomaly detector, North Star and forecast.

A "quality click" is an engagement event whose supplier was active and had a
valid, non-expired price scraped within the freshness window at the moment
of the click.
"""

import bisect
import math
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set

from health_engine.config import settings
from health_engine.db.records import (
    EngagementEvent,
    PriceObservation,
    SearchArea,
    SupplierRecord,
    WeatherDay,
    days_between,
)


@dataclass
class DailyMetricsRow:
    """Per-day aggregates joined across the leaf logs."""

    day: date
    clicks: int = 0
    quality_clicks: int = 0
    prices_scraped: int = 0
    new_locations: int = 0
    scrape_failures: int = 0
    temp_avg: Optional[float] = None

    @property
    def quality_rate(self) -> Optional[float]:
        """Quality-click percentage, or None when there were no clicks."""
        if self.clicks <= 0:
            return None
        return self.quality_clicks / self.clicks * 100


class FreshnessIndex:
    """Answers "did supplier X have a fresh price at instant T?"."""

    def __init__(
        self,
        observations: Iterable[PriceObservation],
        active_supplier_ids: Optional[Set[int]] = None,
        freshness_hours: Optional[int] = None,
    ):
        self.window = timedelta(hours=freshness_hours or settings.freshness_hours)
        self.active_supplier_ids = active_supplier_ids
        self._by_supplier: Dict[int, List[PriceObservation]] = defaultdict(list)
        for obs in observations:
            if obs.is_valid:
                self._by_supplier[obs.supplier_id].append(obs)
        self._times: Dict[int, List[datetime]] = {}
        for supplier_id, items in self._by_supplier.items():
            items.sort(key=lambda o: o.scraped_at)
            self._times[supplier_id] = [o.scraped_at for o in items]

    def is_fresh_at(self, supplier_id: int, at: datetime) -> bool:
        if self.active_supplier_ids is not None and supplier_id not in self.active_supplier_ids:
            return False
        times = self._times.get(supplier_id)
        if not times:
            return False

        # Walk back from the newest observation at or before `at`
        idx = bisect.bisect_right(times, at) - 1
        window_start = at - self.window
        observations = self._by_supplier[supplier_id]
        while idx >= 0 and times[idx] > window_start:
            if observations[idx].is_live_at(at):
                return True
            idx -= 1
        return False

    def is_quality_click(self, event: EngagementEvent) -> bool:
        return self.is_fresh_at(event.supplier_id, event.created_at)


def day_start(day: date) -> datetime:
    return datetime.combine(day, datetime.min.time())


def build_daily_rows(
    today: date,
    clicks: Sequence[EngagementEvent],
    prices: Sequence[PriceObservation],
    search_areas: Sequence[SearchArea],
    suppliers: Sequence[SupplierRecord],
    weather: Sequence[WeatherDay],
    freshness: Optional[FreshnessIndex] = None,
    lookback_days: int = 7,
) -> List[DailyMetricsRow]:
    """Build one zero-filled row per day for [today - lookback_days, today]."""
    start = today - timedelta(days=lookback_days)

    def in_window(d: date) -> bool:
        return start <= d <= today

    click_counts: Counter = Counter()
    quality_counts: Counter = Counter()
    for event in clicks:
        d = event.created_at.date()
        if not in_window(d):
            continue
        click_counts[d] += 1
        if freshness is not None and freshness.is_quality_click(event):
            quality_counts[d] += 1

    scraped_by_day: Dict[date, Set[int]] = defaultdict(set)
    for obs in prices:
        d = obs.scraped_at.date()
        if obs.is_valid and in_window(d):
            scraped_by_day[d].add(obs.supplier_id)

    location_counts: Counter = Counter(
        area.first_seen_at.date() for area in search_areas if in_window(area.first_seen_at.date())
    )

    failure_counts: Counter = Counter()
    for supplier in suppliers:
        if not supplier.active:
            continue
        for failed_at in supplier.scrape_failure_dates:
            if in_window(failed_at.date()):
                failure_counts[failed_at.date()] += 1

    temps = {w.day: w.temp_avg for w in weather if in_window(w.day)}

    return [
        DailyMetricsRow(
            day=d,
            clicks=click_counts.get(d, 0),
            quality_clicks=quality_counts.get(d, 0),
            prices_scraped=len(scraped_by_day.get(d, ())),
            new_locations=location_counts.get(d, 0),
            scrape_failures=failure_counts.get(d, 0),
            temp_avg=temps.get(d),
        )
        for d in days_between(start, today)
    ]


def quality_series(
    clicks: Sequence[EngagementEvent],
    freshness: FreshnessIndex,
    start: date,
    end: date,
) -> Dict[date, Dict[str, int]]:
    """Quality connections and total clicks for days that recorded clicks."""
    series: Dict[date, Dict[str, int]] = {}
    for event in clicks:
        d = event.created_at.date()
        if d < start or d > end:
            continue
        bucket = series.setdefault(d, {"quality": 0, "total": 0})
        bucket["total"] += 1
        if freshness.is_quality_click(event):
            bucket["quality"] += 1
    return dict(sorted(series.items()))


def round_half_up(value: float) -> int:
    """Round halves toward +inf, matching the dashboard's display rounding."""
    return int(math.floor(value + 0.5))


def percent_change(current: float, baseline: float) -> int:
    """Whole-number percent change; 0 when the baseline is empty."""
    if baseline <= 0:
        return 0
    return round_half_up((current - baseline) / baseline * 100)
