"""Supplier lifecycle classification.

Every active supplier lands in exactly one state. The rules are an ordered
list of (state, predicate) pairs; the first predicate that holds wins:

    blocked  - pipeline supplier parked by the scraper (cooldown / phone_only)
    failing  - pipeline supplier with recent scrape failures, still active
    stale    - pipeline supplier whose newest valid price is past the window
    live     - pipeline supplier with a fresh valid price
    listed   - has a website, price display disabled (directory tier)
    minimal  - no website at all

Pipeline = allow_price_display and a non-empty website.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from health_engine.config import settings
from health_engine.db.records import (
    PriceObservation,
    SCRAPE_ACTIVE,
    SCRAPE_COOLDOWN,
    SCRAPE_PHONE_ONLY,
    SupplierRecord,
)
from health_engine.detect.series import round_half_up


class LifecycleState(str, Enum):
    BLOCKED = "blocked"
    FAILING = "failing"
    STALE = "stale"
    LIVE = "live"
    LISTED = "listed"
    MINIMAL = "minimal"


PIPELINE_STATES = (
    LifecycleState.LIVE,
    LifecycleState.STALE,
    LifecycleState.FAILING,
    LifecycleState.BLOCKED,
)


@dataclass
class ClassificationContext:
    supplier: SupplierRecord
    last_price_at: Optional[datetime]
    now: datetime
    freshness: timedelta

    @property
    def price_is_fresh(self) -> bool:
        return self.last_price_at is not None and self.last_price_at >= self.now - self.freshness


Predicate = Callable[[ClassificationContext], bool]

LIFECYCLE_RULES: List[Tuple[LifecycleState, Predicate]] = [
    (
        LifecycleState.BLOCKED,
        lambda c: c.supplier.is_price_eligible
        and c.supplier.scrape_status in (SCRAPE_COOLDOWN, SCRAPE_PHONE_ONLY),
    ),
    (
        LifecycleState.FAILING,
        lambda c: c.supplier.is_price_eligible
        and c.supplier.consecutive_scrape_failures >= 1
        and c.supplier.scrape_status == SCRAPE_ACTIVE,
    ),
    # A pipeline supplier that never produced a valid price is stale too
    (LifecycleState.STALE, lambda c: c.supplier.is_price_eligible and not c.price_is_fresh),
    (LifecycleState.LIVE, lambda c: c.supplier.is_price_eligible and c.price_is_fresh),
    (LifecycleState.LISTED, lambda c: c.supplier.has_website),
    (LifecycleState.MINIMAL, lambda c: True),
]


def classify_supplier(
    supplier: SupplierRecord,
    last_price_at: Optional[datetime],
    now: datetime,
    freshness_hours: Optional[int] = None,
) -> LifecycleState:
    context = ClassificationContext(
        supplier=supplier,
        last_price_at=last_price_at,
        now=now,
        freshness=timedelta(hours=freshness_hours or settings.freshness_hours),
    )
    for state, predicate in LIFECYCLE_RULES:
        if predicate(context):
            return state
    # Unreachable: the last rule always matches
    return LifecycleState.MINIMAL


@dataclass
class LifecycleSummary:
    states: Dict[str, int] = field(
        default_factory=lambda: {state.value: 0 for state in LifecycleState}
    )
    total: int = 0
    examples: Dict[str, List[Dict[str, Any]]] = field(
        default_factory=lambda: {state.value: [] for state in LifecycleState}
    )
    transitions: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def pipeline_total(self) -> int:
        return sum(self.states[s.value] for s in PIPELINE_STATES)

    @property
    def directory_total(self) -> int:
        return self.states[LifecycleState.LISTED.value]

    @property
    def minimal_total(self) -> int:
        return self.states[LifecycleState.MINIMAL.value]

    @property
    def health_pct(self) -> int:
        pipeline = self.pipeline_total
        if pipeline <= 0:
            return 0
        return round_half_up(self.states[LifecycleState.LIVE.value] / pipeline * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "states": dict(self.states),
            "total": self.total,
            "pipelineTotal": self.pipeline_total,
            "directoryTotal": self.directory_total,
            "minimalTotal": self.minimal_total,
            "healthPct": self.health_pct,
            "examples": self.examples,
            "transitions": self.transitions,
        }


def summarize_lifecycle(
    suppliers: Sequence[SupplierRecord],
    latest_prices: Mapping[int, datetime],
    now: datetime,
    examples_per_state: Optional[int] = None,
) -> LifecycleSummary:
    """Classify every active supplier and count by state."""
    limit = examples_per_state or settings.lifecycle_examples_per_state
    summary = LifecycleSummary()

    for supplier in suppliers:
        if not supplier.active:
            continue
        last_price_at = latest_prices.get(supplier.id)
        state = classify_supplier(supplier, last_price_at, now).value
        summary.states[state] += 1
        summary.total += 1
        if len(summary.examples[state]) < limit:
            summary.examples[state].append({
                "name": supplier.name,
                "city": supplier.city,
                "state": supplier.state,
                "website": supplier.website or None,
                "failures": supplier.consecutive_scrape_failures,
                "lastPrice": last_price_at.isoformat() if last_price_at else None,
            })

    return summary


def weekly_transitions(
    suppliers: Sequence[SupplierRecord],
    prices: Sequence[PriceObservation],
    latest_prices: Mapping[int, datetime],
    now: datetime,
) -> List[Dict[str, Any]]:
    """
    Pipeline movements over the past week.

    Args:
        prices: Valid observations covering at least the last 14 days
        latest_prices: Freshest valid observation per supplier (all time)
    """
    week_ago = now - timedelta(days=7)
    two_weeks_ago = now - timedelta(days=14)
    stale_cutoff = now - timedelta(hours=settings.freshness_hours)
    stale_floor = now - timedelta(days=9)

    pipeline = [s for s in suppliers if s.active and s.is_price_eligible]

    newly_blocked = sum(
        1
        for s in pipeline
        if s.scrape_status in (SCRAPE_COOLDOWN, SCRAPE_PHONE_ONLY)
        and s.last_scrape_failure_at is not None
        and s.last_scrape_failure_at >= week_ago
    )

    priced_this_week = set()
    priced_last_week = set()
    for obs in prices:
        if not obs.is_valid:
            continue
        if obs.scraped_at > week_ago:
            priced_this_week.add(obs.supplier_id)
        elif two_weeks_ago < obs.scraped_at <= week_ago:
            priced_last_week.add(obs.supplier_id)

    went_live = sum(
        1
        for s in pipeline
        if s.scrape_status == SCRAPE_ACTIVE
        and s.id in priced_this_week
        and s.id not in priced_last_week
    )

    went_stale = sum(
        1
        for s in pipeline
        if s.id in latest_prices and stale_floor < latest_prices[s.id] < stale_cutoff
    )

    transitions = []
    if newly_blocked:
        transitions.append(
            {"label": f"{newly_blocked} became blocked", "direction": "down", "count": newly_blocked}
        )
    if went_live:
        transitions.append({"label": f"{went_live} went live", "direction": "up", "count": went_live})
    if went_stale:
        transitions.append(
            {"label": f"{went_stale} went stale", "direction": "down", "count": went_stale}
        )
    return transitions
