"""Stability score: composite 0-100 from four weighted components.

    Supply Freshness (30%): scrapable suppliers with a valid price < 48h old
    Scraper Uptime   (25%): scrapable suppliers in active scrape status
    Conversion Rate  (25%): today's quality-click ratio (50 with no clicks)
    Demand Velocity  (20%): today's new search areas vs the trailing daily mean
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional, Sequence

from health_engine.config import settings
from health_engine.db.records import SCRAPE_ACTIVE, SupplierRecord
from health_engine.detect.series import round_half_up

WEIGHTS = {
    "supplyFreshness": 0.30,
    "scraperUptime": 0.25,
    "conversionRate": 0.25,
    "demandVelocity": 0.20,
}

NEUTRAL_CONVERSION = 50
DEMAND_AVG_FLOOR = 0.5


def clamp_pct(value: float) -> int:
    return max(0, min(100, round_half_up(value)))


@dataclass
class StabilityScore:
    score: int = 0
    components: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "components": dict(self.components), "weights": WEIGHTS}


def supply_freshness(
    suppliers: Sequence[SupplierRecord],
    latest_prices: Mapping[int, datetime],
    now: datetime,
    freshness_hours: Optional[int] = None,
) -> int:
    cutoff = now - timedelta(hours=freshness_hours or settings.freshness_hours)
    scrapable = [s for s in suppliers if s.active and s.has_website]
    fresh = sum(
        1 for s in scrapable if s.id in latest_prices and latest_prices[s.id] > cutoff
    )
    return clamp_pct(fresh / max(len(scrapable), 1) * 100)


def scraper_uptime(suppliers: Sequence[SupplierRecord]) -> int:
    scrapable = [s for s in suppliers if s.active and s.has_website]
    active = sum(1 for s in scrapable if s.scrape_status == SCRAPE_ACTIVE)
    return clamp_pct(active / max(len(scrapable), 1) * 100)


def conversion_rate(total_clicks: int, quality_clicks: int) -> int:
    if total_clicks <= 0:
        return NEUTRAL_CONVERSION
    return clamp_pct(quality_clicks / total_clicks * 100)


def demand_velocity(new_areas_today: int, new_areas_prev_7d: int) -> int:
    """Capped at 100 so a demand spike cannot lift the composite past its ceiling."""
    daily_avg = new_areas_prev_7d / 7
    return clamp_pct(new_areas_today / max(daily_avg, DEMAND_AVG_FLOOR) * 100)


def compute_stability(
    suppliers: Sequence[SupplierRecord],
    latest_prices: Mapping[int, datetime],
    now: datetime,
    today_clicks: int,
    today_quality_clicks: int,
    new_areas_today: int,
    new_areas_prev_7d: int,
) -> StabilityScore:
    components = {
        "supplyFreshness": supply_freshness(suppliers, latest_prices, now),
        "scraperUptime": scraper_uptime(suppliers),
        "conversionRate": conversion_rate(today_clicks, today_quality_clicks),
        "demandVelocity": demand_velocity(new_areas_today, new_areas_prev_7d),
    }
    weighted = sum(components[name] * weight for name, weight in WEIGHTS.items())
    return StabilityScore(score=clamp_pct(weighted), components=components)
