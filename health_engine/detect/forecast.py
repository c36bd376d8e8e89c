"""North Star series, 30-day trajectory and a one-step linear forecast.

North Star: quality supplier connections per day (clicks that landed on a
supplier with a fresh price).
"""

import statistics
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional

from health_engine.detect.series import percent_change, round_half_up


@dataclass
class TrendPoint:
    day: date
    quality_connections: int
    total_clicks: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "qualityConnections": self.quality_connections,
            "totalClicks": self.total_clicks,
        }


@dataclass
class NorthStar:
    today: int = 0
    yesterday: int = 0
    avg7d: int = 0
    change: int = 0
    trend: List[TrendPoint] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "today": self.today,
            "yesterday": self.yesterday,
            "avg7d": self.avg7d,
            "change": self.change,
            "trend": [p.to_dict() for p in self.trend],
        }


@dataclass
class Trajectory:
    direction: str = "flat"
    pct: int = 0
    recent_avg: int = 0
    prev_avg: int = 0
    month_avg: int = 0
    days: int = 30

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction,
            "pct": self.pct,
            "recentAvg": self.recent_avg,
            "prevAvg": self.prev_avg,
            "monthAvg": self.month_avg,
            "days": self.days,
        }


@dataclass
class Forecast:
    projected: int
    confidence: str
    trend_per_day: float
    points: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projected": self.projected,
            "confidence": self.confidence,
            "trendPerDay": self.trend_per_day,
            "points": self.points,
        }


def build_north_star(series: Mapping[date, Mapping[str, int]], today: date) -> NorthStar:
    """
    Summarize the quality-connection series.

    Args:
        series: day -> {"quality": n, "total": n} for days that recorded clicks
        today: Evaluation day (partial)
    """
    trend = [
        TrendPoint(day=d, quality_connections=v.get("quality", 0), total_clicks=v.get("total", 0))
        for d, v in sorted(series.items())
        if today - timedelta(days=7) <= d <= today
    ]
    by_day = {p.day: p.quality_connections for p in trend}

    past = [p.quality_connections for p in trend if p.day != today]
    avg7d = round_half_up(statistics.mean(past)) if past else 0
    today_value = by_day.get(today, 0)

    return NorthStar(
        today=today_value,
        yesterday=by_day.get(today - timedelta(days=1), 0),
        avg7d=avg7d,
        change=percent_change(today_value, avg7d),
        trend=trend,
    )


def compute_trajectory(
    series: Mapping[date, Mapping[str, int]],
    today: date,
    window_days: int = 30,
    threshold_pct: float = 10.0,
) -> Trajectory:
    """Last-7-day mean vs the 7 days before it, over days that recorded clicks."""
    recent, previous, month = [], [], []
    for d, values in series.items():
        age = (today - d).days
        if age < 0 or age >= window_days:
            continue
        qc = values.get("quality", 0)
        month.append(qc)
        if age < 7:
            recent.append(qc)
        elif age < 14:
            previous.append(qc)

    recent_avg = statistics.mean(recent) if recent else 0.0
    prev_avg = statistics.mean(previous) if previous else 0.0
    pct = percent_change(recent_avg, prev_avg)

    direction = "flat"
    if pct > threshold_pct:
        direction = "up"
    elif pct < -threshold_pct:
        direction = "down"

    return Trajectory(
        direction=direction,
        pct=pct,
        recent_avg=round_half_up(recent_avg),
        prev_avg=round_half_up(prev_avg),
        month_avg=round_half_up(statistics.mean(month)) if month else 0,
        days=window_days,
    )


def forecast_next(trend: List[TrendPoint], today: Optional[date] = None) -> Optional[Forecast]:
    """
    Project tomorrow's value from the last three complete days.

    Returns None when the trend is too short; no forecast beats a made-up one.
    """
    if len(trend) < 3:
        return None

    complete = [p for p in trend if today is None or p.day != today]
    recent = complete[-3:]
    if len(recent) < 2:
        return None

    values = [p.quality_connections for p in recent]
    first, last = values[0], values[-1]
    slope = (last - first) / (len(values) - 1)
    projected = max(0, round_half_up(last + slope))

    mean = statistics.mean(values)
    cv = statistics.pstdev(values) / mean if mean > 0 else 1.0
    if cv < 0.2:
        confidence = "high"
    elif cv < 0.5:
        confidence = "medium"
    else:
        confidence = "low"

    return Forecast(
        projected=projected,
        confidence=confidence,
        trend_per_day=round(slope, 2),
        points=len(values),
    )
