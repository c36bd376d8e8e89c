"""Market pulse: three small trend series for the dashboard charts.

1. Median price per day (30d)
2. New search areas per day (30d)
3. Scraper success rate per day (14d)
"""

import statistics
from collections import Counter, defaultdict
from datetime import date, timedelta
from typing import Any, Dict, List, Sequence, Set

from health_engine.db.records import PriceObservation, SearchArea, SupplierRecord
from health_engine.detect.series import round_half_up


def median_price_series(
    observations: Sequence[PriceObservation], today: date, days: int = 30
) -> List[Dict[str, Any]]:
    start = today - timedelta(days=days)
    prices: Dict[date, List[float]] = defaultdict(list)
    for obs in observations:
        d = obs.scraped_at.date()
        if obs.is_valid and start < d <= today:
            prices[d].append(obs.price_per_gallon)
    return [
        {"date": d.isoformat(), "value": round(statistics.median(values), 2)}
        for d, values in sorted(prices.items())
    ]


def demand_volume_series(
    areas: Sequence[SearchArea], today: date, days: int = 30
) -> List[Dict[str, Any]]:
    start = today - timedelta(days=days)
    counts = Counter(
        a.first_seen_at.date() for a in areas if start < a.first_seen_at.date() <= today
    )
    return [{"date": d.isoformat(), "value": n} for d, n in sorted(counts.items())]


def scraper_success_series(
    observations: Sequence[PriceObservation],
    suppliers: Sequence[SupplierRecord],
    today: date,
    days: int = 14,
) -> List[Dict[str, Any]]:
    start = today - timedelta(days=days)

    successes: Dict[date, Set[int]] = defaultdict(set)
    for obs in observations:
        d = obs.scraped_at.date()
        if obs.is_valid and start < d <= today:
            successes[d].add(obs.supplier_id)

    failures: Counter = Counter()
    for supplier in suppliers:
        if not supplier.active:
            continue
        for failed_at in supplier.scrape_failure_dates:
            if start < failed_at.date() <= today:
                failures[failed_at.date()] += 1

    series = []
    for d in sorted(set(successes) | set(failures)):
        ok = len(successes.get(d, ()))
        total = ok + failures.get(d, 0)
        series.append({
            "date": d.isoformat(),
            "value": round_half_up(ok / total * 100) if total > 0 else 100,
        })
    return series


def build_market_pulse(
    observations: Sequence[PriceObservation],
    areas: Sequence[SearchArea],
    suppliers: Sequence[SupplierRecord],
    today: date,
) -> Dict[str, List[Dict[str, Any]]]:
    return {
        "medianPrice": median_price_series(observations, today),
        "demandVolume": demand_volume_series(areas, today),
        "scraperSuccess": scraper_success_series(observations, suppliers, today),
    }
