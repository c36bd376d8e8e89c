"""Operator action items generated from current registry and log state."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

from health_engine.config import settings
from health_engine.db.records import SCRAPE_ACTIVE, SCRAPE_COOLDOWN, SearchArea, SupplierRecord

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}

UNDERSERVED_QUALITY = ("none", "low")
MAX_UNCOVERED = 10
MAX_STALE = 15
MIN_STALE_TO_REPORT = 4


@dataclass
class ActionDetail:
    name: str
    location: str = ""
    website: Optional[str] = None
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"name": self.name, "location": self.location}
        if self.website is not None:
            data["website"] = self.website
        if self.note is not None:
            data["note"] = self.note
        return data


@dataclass
class ActionItem:
    priority: str
    label: str
    type: str
    text: str
    impact: str
    metric: int
    details: List[ActionDetail] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority": self.priority,
            "label": self.label,
            "type": self.type,
            "text": self.text,
            "impact": self.impact,
            "metric": self.metric,
            "details": [d.to_dict() for d in self.details],
        }


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def cooldown_action(suppliers: Sequence[SupplierRecord]) -> Optional[ActionItem]:
    cooldowns = sorted(
        (s for s in suppliers if s.active and s.scrape_status == SCRAPE_COOLDOWN),
        key=lambda s: (-s.consecutive_scrape_failures, s.id),
    )
    if not cooldowns:
        return None

    count = len(cooldowns)
    return ActionItem(
        priority="high",
        label="CRITICAL",
        type="supplier",
        text=f"Restore {_plural(count, 'cooldown supplier')}",
        impact=f"+{count * 2}-{count * 4} quality clicks/day if restored",
        metric=count,
        details=[
            ActionDetail(
                name=s.name,
                location=s.location,
                website=s.website,
                note=f"{s.consecutive_scrape_failures} consecutive failures",
            )
            for s in cooldowns
        ],
    )


def coverage_action(areas: Sequence[SearchArea], now: datetime) -> Optional[ActionItem]:
    since = now - timedelta(days=7)
    uncovered = sorted(
        (
            a for a in areas
            if (a.coverage_quality or "").lower() in UNDERSERVED_QUALITY and a.first_seen_at > since
        ),
        key=lambda a: (-a.request_count, a.zip_code),
    )[:MAX_UNCOVERED]
    if not uncovered:
        return None

    count = len(uncovered)
    return ActionItem(
        priority="medium",
        label="OPPORTUNITY",
        type="coverage",
        text=f"Add suppliers for {count} underserved ZIP{'s' if count != 1 else ''}",
        impact=f"{count} searches with no supply",
        metric=count,
        details=[
            ActionDetail(
                name=a.zip_code,
                location=", ".join(part for part in (a.city, a.state) if part),
                note=f"{a.request_count or 1} searches",
            )
            for a in uncovered
        ],
    )


def stale_price_action(
    suppliers: Sequence[SupplierRecord],
    latest_prices: Mapping[int, datetime],
    now: datetime,
) -> Optional[ActionItem]:
    cutoff = now - timedelta(hours=settings.freshness_hours)
    stale = sorted(
        (
            s for s in suppliers
            if s.active and s.is_price_eligible
            and s.id in latest_prices and latest_prices[s.id] < cutoff
        ),
        key=lambda s: (latest_prices[s.id], s.id),
    )[:MAX_STALE]
    # A handful of stale suppliers is normal churn
    if len(stale) < MIN_STALE_TO_REPORT:
        return None

    return ActionItem(
        priority="medium",
        label="MAINTENANCE",
        type="data",
        text=f"{len(stale)} stale prices > {settings.freshness_hours}h",
        impact="Suppressing conversion rate",
        metric=len(stale),
        details=[
            ActionDetail(
                name=s.name,
                location=s.location,
                website=s.website,
                note=f"{round((now - latest_prices[s.id]).total_seconds() / 86400)}d stale",
            )
            for s in stale
        ],
    )


def at_risk_action(suppliers: Sequence[SupplierRecord]) -> Optional[ActionItem]:
    one_short = settings.cooldown_failure_threshold - 1
    at_risk = sorted(
        (
            s for s in suppliers
            if s.active and s.scrape_status == SCRAPE_ACTIVE
            and s.consecutive_scrape_failures == one_short
        ),
        key=lambda s: (s.last_scrape_failure_at or datetime.min, s.id),
        reverse=True,
    )
    if not at_risk:
        return None

    count = len(at_risk)
    return ActionItem(
        priority="low",
        label="WARNING",
        type="supplier",
        text=f"{_plural(count, 'supplier')} at risk (1 failure from cooldown)",
        impact=f"Could lose {_plural(count, 'price source')}",
        metric=count,
        details=[ActionDetail(name=s.name, location=s.location, website=s.website) for s in at_risk],
    )


def build_action_items(
    suppliers: Sequence[SupplierRecord],
    areas: Sequence[SearchArea],
    latest_prices: Mapping[int, datetime],
    now: datetime,
) -> List[ActionItem]:
    """All generated items, high priority first (stable within a priority)."""
    candidates = [
        cooldown_action(suppliers),
        coverage_action(areas, now),
        stale_price_action(suppliers, latest_prices, now),
        at_risk_action(suppliers),
    ]
    items = [item for item in candidates if item is not None]
    return sorted(items, key=lambda item: PRIORITY_ORDER.get(item.priority, 2))
