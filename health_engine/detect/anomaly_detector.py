"""Platform anomaly detection across five categories.

Compares today's daily aggregates against the trailing 7-day baseline:
1. Traffic (weather-normalized with heating degree days)
2. Price supply
3. New demand
4. Supplier infrastructure (scrape failures)
5. Conversion quality (quality-click ratio)

Each check carries an absolute floor so tiny volumes never raise alerts.
"""

import logging
import statistics
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from health_engine.config import settings
from health_engine.detect.series import DailyMetricsRow, percent_change, round_half_up

logger = logging.getLogger(__name__)

SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"

HDD_NOTE = "Weather-normalized (HDD)"


@dataclass
class Anomaly:
    """A single flagged deviation."""

    category: str
    title: str
    today: float
    avg7d: float
    deviation_pct: int
    direction: str
    severity: str
    insight: str
    note: str = ""
    unit: str = ""

    @property
    def is_high(self) -> bool:
        return self.severity == SEVERITY_HIGH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "title": self.title,
            "today": self.today,
            "avg7d": self.avg7d,
            "deviationPct": self.deviation_pct,
            "direction": self.direction,
            "severity": self.severity,
            "insight": self.insight,
            "note": self.note,
            "unit": self.unit,
        }


def heating_degree_days(temp_avg: Optional[float], base: Optional[float] = None) -> Optional[float]:
    """max(0, base - mean temperature); None when the temperature is unknown."""
    if temp_avg is None:
        return None
    base = settings.hdd_base_temp_f if base is None else base
    return max(0.0, base - temp_avg)


@dataclass
class AnomalyThresholds:
    traffic_pct: float = 25.0
    traffic_high_pct: float = 50.0
    traffic_min_today: int = 5
    supply_pct: float = 20.0
    supply_high_pct: float = -30.0
    supply_min_avg: float = 3.0
    demand_pct: float = 30.0
    demand_high_pct: float = 60.0
    demand_min_volume: float = 3.0
    failure_margin: float = 2.0
    failure_min_today: int = 3
    conversion_pct: float = 20.0
    conversion_high_pct: float = -30.0
    conversion_min_clicks: int = 5
    min_history_days: int = 3


class AnomalyDetector:
    """
    Today-vs-baseline detector for the Command Center.

    Needs at least ``min_history_days`` history rows; with less the baseline
    is considered unreliable and nothing is reported.
    """

    def __init__(self, thresholds: Optional[AnomalyThresholds] = None):
        self.thresholds = thresholds or AnomalyThresholds()

    def detect(self, rows: Sequence[DailyMetricsRow], today: date) -> List[Anomaly]:
        """
        Run every category check.

        Args:
            rows: Daily rows for [today - 7, today] (any order)
            today: Evaluation day

        Returns:
            List of anomalies (possibly several categories at once)
        """
        today_row = next((r for r in rows if r.day == today), None)
        history = [r for r in rows if r.day != today and r.day < today]

        if today_row is None or len(history) < self.thresholds.min_history_days:
            logger.debug(
                f"Insufficient baseline for anomaly detection: {len(history)} history days"
            )
            return []

        anomalies = []
        for check in (
            self._check_traffic,
            self._check_supply,
            self._check_demand,
            self._check_supplier_failures,
            self._check_conversion,
        ):
            anomaly = check(today_row, history)
            if anomaly is not None:
                anomalies.append(anomaly)

        return anomalies

    def _check_traffic(
        self, today: DailyMetricsRow, history: List[DailyMetricsRow]
    ) -> Optional[Anomaly]:
        t = self.thresholds
        avg_clicks = statistics.mean(r.clicks for r in history)
        today_hdd = heating_degree_days(today.temp_avg)

        deviation = None
        note = ""
        if today_hdd is not None and today_hdd > 0:
            per_hdd = []
            for r in history:
                hdd = heating_degree_days(r.temp_avg)
                if hdd is not None and hdd > 0:
                    per_hdd.append(r.clicks / hdd)

            if len(per_hdd) >= t.min_history_days:
                deviation = percent_change(today.clicks / today_hdd, statistics.mean(per_hdd))
                note = HDD_NOTE

        if deviation is None:
            deviation = percent_change(today.clicks, avg_clicks)

        if abs(deviation) <= t.traffic_pct or today.clicks < t.traffic_min_today:
            return None

        suffix = " (after weather adjustment)" if note else ""
        if deviation > 0:
            insight = f"Clicks are {deviation}% above normal{suffix}"
        else:
            insight = f"Clicks are {abs(deviation)}% below normal{suffix}"

        return Anomaly(
            category="traffic",
            title="Traffic",
            today=today.clicks,
            avg7d=round_half_up(avg_clicks),
            deviation_pct=deviation,
            direction="up" if deviation > 0 else "down",
            severity=SEVERITY_HIGH if abs(deviation) > t.traffic_high_pct else SEVERITY_MEDIUM,
            insight=insight,
            note=note,
        )

    def _check_supply(
        self, today: DailyMetricsRow, history: List[DailyMetricsRow]
    ) -> Optional[Anomaly]:
        t = self.thresholds
        avg_supply = statistics.mean(r.prices_scraped for r in history)
        deviation = percent_change(today.prices_scraped, avg_supply)

        if abs(deviation) <= t.supply_pct or avg_supply < t.supply_min_avg:
            return None

        avg_display = round_half_up(avg_supply)
        if deviation < 0:
            insight = (
                f"Only {today.prices_scraped} suppliers scraped today vs {avg_display} avg "
                f"- check scraper health"
            )
        else:
            insight = f"{today.prices_scraped} suppliers scraped today, {deviation}% above average"

        return Anomaly(
            category="supply",
            title="Price Supply",
            today=today.prices_scraped,
            avg7d=avg_display,
            deviation_pct=deviation,
            direction="up" if deviation > 0 else "down",
            severity=SEVERITY_HIGH if deviation < t.supply_high_pct else SEVERITY_MEDIUM,
            insight=insight,
        )

    def _check_demand(
        self, today: DailyMetricsRow, history: List[DailyMetricsRow]
    ) -> Optional[Anomaly]:
        t = self.thresholds
        avg_demand = statistics.mean(r.new_locations for r in history)
        deviation = percent_change(today.new_locations, avg_demand)

        if abs(deviation) <= t.demand_pct:
            return None
        if today.new_locations < t.demand_min_volume and avg_demand < t.demand_min_volume:
            return None

        if deviation > 0:
            insight = (
                f"{today.new_locations} new ZIP locations today - demand surge, "
                f"check coverage gaps"
            )
        else:
            insight = f"New user locations down {abs(deviation)}% from average"

        return Anomaly(
            category="demand",
            title="New Demand",
            today=today.new_locations,
            avg7d=round_half_up(avg_demand),
            deviation_pct=deviation,
            direction="up" if deviation > 0 else "down",
            severity=SEVERITY_HIGH if abs(deviation) > t.demand_high_pct else SEVERITY_MEDIUM,
            insight=insight,
        )

    def _check_supplier_failures(
        self, today: DailyMetricsRow, history: List[DailyMetricsRow]
    ) -> Optional[Anomaly]:
        t = self.thresholds
        avg_fails = statistics.mean(r.scrape_failures for r in history)

        if today.scrape_failures <= avg_fails + t.failure_margin:
            return None
        if today.scrape_failures < t.failure_min_today:
            return None

        avg_display = round_half_up(avg_fails)
        return Anomaly(
            category="supplier",
            title="Scrape Failures",
            today=today.scrape_failures,
            avg7d=avg_display,
            deviation_pct=percent_change(today.scrape_failures, avg_fails),
            # More failures is never good news
            direction="up",
            severity=(
                SEVERITY_HIGH if today.scrape_failures > avg_fails * 2 else SEVERITY_MEDIUM
            ),
            insight=(
                f"{today.scrape_failures} scrape failures today vs {avg_display} avg "
                f"- suppliers may be blocking"
            ),
        )

    def _check_conversion(
        self, today: DailyMetricsRow, history: List[DailyMetricsRow]
    ) -> Optional[Anomaly]:
        t = self.thresholds
        hist_rates = [r.quality_rate for r in history if r.quality_rate is not None]
        if today.clicks <= 0 or len(hist_rates) < t.min_history_days:
            return None

        today_rate = round_half_up(today.quality_rate)
        avg_rate = round_half_up(statistics.mean(hist_rates))
        deviation = percent_change(today_rate, avg_rate)

        if abs(deviation) <= t.conversion_pct or today.clicks < t.conversion_min_clicks:
            return None

        if deviation < 0:
            insight = (
                f"Only {today_rate}% of clicks hit suppliers with fresh prices "
                f"(normally {avg_rate}%)"
            )
        else:
            insight = f"{today_rate}% quality connection rate - above the {avg_rate}% average"

        return Anomaly(
            category="conversion",
            title="Connection Quality",
            today=today_rate,
            avg7d=avg_rate,
            deviation_pct=deviation,
            direction="up" if deviation > 0 else "down",
            severity=SEVERITY_HIGH if deviation < t.conversion_high_pct else SEVERITY_MEDIUM,
            insight=insight,
            unit="%",
        )


# Global detector instance
anomaly_detector = AnomalyDetector()
