"""Aggregation passes for the nightly platform metrics snapshot.

All windows are inclusive calendar-day ranges ending on the target day:
7d = [D-6, D], 30d = [D-29, D], previous 30d = [D-59, D-30].
"""

from collections import Counter, defaultdict
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Mapping, Sequence, Set, Tuple

from health_engine.db.records import (
    ACTION_CALL,
    ACTION_WEBSITE,
    DeliveryReport,
    EngagementEvent,
    SearchIntentEvent,
    SupplierRecord,
)

DEMAND_DENSITY_LIMIT = 25
COMMUNITY_TOP_LIMIT = 15
MIN_ACTIVE_SEARCH_DAYS = 2
CALL_WEIGHT = 3


@dataclass(frozen=True)
class MetricWindows:
    target_day: date

    @property
    def d7_start(self) -> date:
        return self.target_day - timedelta(days=6)

    @property
    def d30_start(self) -> date:
        return self.target_day - timedelta(days=29)

    @property
    def d60_start(self) -> date:
        return self.target_day - timedelta(days=59)

    @property
    def prev30_end(self) -> date:
        return self.target_day - timedelta(days=30)

    @property
    def fresh_cutoff(self) -> datetime:
        return datetime.combine(self.target_day - timedelta(days=2), datetime.min.time())

    def in_7d(self, d: date) -> bool:
        return self.d7_start <= d <= self.target_day

    def in_30d(self, d: date) -> bool:
        return self.d30_start <= d <= self.target_day

    def in_prev30d(self, d: date) -> bool:
        return self.d60_start <= d <= self.prev30_end


@dataclass
class CoreMetrics:
    pipeline_suppliers: int = 0
    search_zip_days: int = 0
    search_zips: int = 0
    suppliers_clicked_7d: int = 0
    suppliers_clicked_30d: int = 0
    suppliers_called_7d: int = 0
    suppliers_called_30d: int = 0
    zip_days_with_click_7d: int = 0
    zip_days_with_call_7d: int = 0
    zips_with_call_7d: int = 0
    calls_7d: int = 0
    website_clicks_7d: int = 0
    deliveries_7d: int = 0
    deliveries_30d: int = 0
    deliveries_oil_30d: int = 0
    deliveries_propane_30d: int = 0
    deliveries_propane_prev30d: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def compute_core_metrics(
    target_day: date,
    suppliers: Sequence[SupplierRecord],
    clicks: Sequence[EngagementEvent],
    searches: Sequence[SearchIntentEvent],
    deliveries: Sequence[DeliveryReport],
) -> CoreMetrics:
    """Pipeline size, search denominators, utilization, match rate, deliveries."""
    w = MetricWindows(target_day)
    metrics = CoreMetrics()

    metrics.pipeline_suppliers = sum(1 for s in suppliers if s.active and s.is_price_eligible)

    search_zip_days: Set[Tuple[str, date]] = {
        (e.zip_code, e.created_at.date())
        for e in searches
        if e.is_successful_lookup and w.in_7d(e.created_at.date())
    }
    metrics.search_zip_days = len(search_zip_days)
    metrics.search_zips = len({zip_code for zip_code, _ in search_zip_days})

    clicked_7d, clicked_30d, called_7d, called_30d = set(), set(), set(), set()
    click_zip_days, call_zip_days, call_zips = set(), set(), set()
    for event in clicks:
        d = event.created_at.date()
        if not w.in_30d(d):
            continue
        recent = w.in_7d(d)
        if event.action_type == ACTION_WEBSITE:
            clicked_30d.add(event.supplier_id)
            if recent:
                clicked_7d.add(event.supplier_id)
                metrics.website_clicks_7d += 1
                click_zip_days.add((event.zip_code, d))
        elif event.action_type == ACTION_CALL:
            called_30d.add(event.supplier_id)
            if recent:
                called_7d.add(event.supplier_id)
                metrics.calls_7d += 1
                call_zip_days.add((event.zip_code, d))
                if event.zip_code:
                    call_zips.add(event.zip_code)

    metrics.suppliers_clicked_7d = len(clicked_7d)
    metrics.suppliers_clicked_30d = len(clicked_30d)
    metrics.suppliers_called_7d = len(called_7d)
    metrics.suppliers_called_30d = len(called_30d)
    metrics.zip_days_with_click_7d = len(click_zip_days)
    metrics.zip_days_with_call_7d = len(call_zip_days)
    metrics.zips_with_call_7d = len(call_zips)

    for report in deliveries:
        if report.validation_status != "valid":
            continue
        d = report.created_at.date()
        if w.in_7d(d):
            metrics.deliveries_7d += 1
        if w.in_30d(d):
            metrics.deliveries_30d += 1
            if report.fuel_type == "heating_oil":
                metrics.deliveries_oil_30d += 1
            elif report.fuel_type == "propane":
                metrics.deliveries_propane_30d += 1
        elif w.in_prev30d(d) and report.fuel_type == "propane":
            metrics.deliveries_propane_prev30d += 1

    return metrics


def compute_demand_density(
    target_day: date,
    suppliers: Sequence[SupplierRecord],
    clicks: Sequence[EngagementEvent],
    searches: Sequence[SearchIntentEvent],
    latest_prices: Mapping[int, datetime],
    limit: int = DEMAND_DENSITY_LIMIT,
) -> List[Dict[str, Any]]:
    """
    Rank search areas by engagement per active search day.

    score = (clicks + calls * 3) / active_days, for areas searched on at
    least two distinct days of the 7-day window and with any engagement.
    """
    w = MetricWindows(target_day)

    search_days: Dict[str, Set[date]] = defaultdict(set)
    for e in searches:
        d = e.created_at.date()
        if e.is_successful_lookup and w.in_7d(d):
            search_days[e.zip_code].add(d)

    engagement: Dict[str, Counter] = defaultdict(Counter)
    for event in clicks:
        if event.zip_code and w.in_7d(event.created_at.date()):
            engagement[event.zip_code][event.action_type] += 1

    supplier_counts: Counter = Counter()
    latest_by_zip: Dict[str, datetime] = {}
    for s in suppliers:
        if not (s.active and s.allow_price_display):
            continue
        last_price_at = latest_prices.get(s.id)
        for zip_code in set(s.postal_codes_served):
            if s.has_website:
                supplier_counts[zip_code] += 1
            if last_price_at is not None and (
                zip_code not in latest_by_zip or last_price_at > latest_by_zip[zip_code]
            ):
                latest_by_zip[zip_code] = last_price_at

    scored = []
    for zip_code, days in search_days.items():
        active_days = len(days)
        if active_days < MIN_ACTIVE_SEARCH_DAYS:
            continue
        clicks_n = engagement[zip_code][ACTION_WEBSITE]
        calls_n = engagement[zip_code][ACTION_CALL]
        if clicks_n + calls_n <= 0:
            continue
        latest = latest_by_zip.get(zip_code)
        scored.append({
            "zip": zip_code,
            "clicks": clicks_n,
            "calls": calls_n,
            "score": round((clicks_n + calls_n * CALL_WEIGHT) / active_days, 2),
            "days": active_days,
            "suppliers": supplier_counts.get(zip_code, 0),
            "fresh": latest is not None and latest >= w.fresh_cutoff,
        })

    scored.sort(key=lambda r: (-r["score"], r["zip"]))
    return scored[:limit]


def compute_community_top_zips(
    target_day: date,
    deliveries: Sequence[DeliveryReport],
    limit: int = COMMUNITY_TOP_LIMIT,
) -> List[Dict[str, Any]]:
    """Delivery counts by area over the trailing 30 days."""
    w = MetricWindows(target_day)
    totals: Dict[str, Counter] = defaultdict(Counter)
    for report in deliveries:
        if report.validation_status != "valid" or not report.zip_code:
            continue
        if w.in_30d(report.created_at.date()):
            totals[report.zip_code]["total"] += 1
            totals[report.zip_code][report.fuel_type] += 1

    ranked = [
        {
            "zip": zip_code,
            "total": counts["total"],
            "oil": counts["heating_oil"],
            "propane": counts["propane"],
        }
        for zip_code, counts in totals.items()
    ]
    ranked.sort(key=lambda r: (-r["total"], r["zip"]))
    return ranked[:limit]
