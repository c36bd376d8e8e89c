"""Typed, read-only records for the leaf logs and supplier registry.

The engine never works on ORM instances directly: rows are converted into
these dataclasses by the repository so the aggregation code can stay pure.
Nullable columns are coalesced here, once, per field.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Optional

logger = logging.getLogger(__name__)

ACTION_CALL = "call"
ACTION_WEBSITE = "website"

SCRAPE_ACTIVE = "active"
SCRAPE_COOLDOWN = "cooldown"
SCRAPE_PHONE_ONLY = "phone_only"


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC (the storage convention)."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_failure_dates(raw: Any) -> List[datetime]:
    """Parse the JSON failure-date history, skipping malformed entries."""
    if not isinstance(raw, list):
        return []

    parsed = []
    for entry in raw:
        if isinstance(entry, datetime):
            parsed.append(to_naive_utc(entry))
            continue
        if not isinstance(entry, str):
            continue
        try:
            parsed.append(to_naive_utc(datetime.fromisoformat(entry.replace("Z", "+00:00"))))
        except ValueError:
            logger.debug(f"Skipping malformed scrape failure date: {entry!r}")
    return parsed


def _string_list(raw: Any) -> List[str]:
    if not isinstance(raw, list):
        return []
    return [str(v) for v in raw if v is not None and str(v) != ""]


@dataclass
class SupplierRecord:
    """Current registry state for one supplier."""

    id: int
    name: str
    city: Optional[str] = None
    state: Optional[str] = None
    website: Optional[str] = None
    active: bool = True
    allow_price_display: bool = False
    scrape_status: str = SCRAPE_ACTIVE
    consecutive_scrape_failures: int = 0
    last_scrape_failure_at: Optional[datetime] = None
    scrape_failure_dates: List[datetime] = field(default_factory=list)
    postal_codes_served: List[str] = field(default_factory=list)

    @property
    def has_website(self) -> bool:
        return bool(self.website and self.website.strip())

    @property
    def is_price_eligible(self) -> bool:
        """Pipeline member: price display enabled and a website to scrape."""
        return self.allow_price_display and self.has_website

    @property
    def location(self) -> str:
        return ", ".join(part for part in (self.city, self.state) if part)

    @classmethod
    def from_row(cls, row: Any) -> "SupplierRecord":
        return cls(
            id=row.id,
            name=row.name or f"Supplier {row.id}",
            city=row.city,
            state=row.state,
            website=row.website,
            active=bool(row.active),
            allow_price_display=bool(row.allow_price_display),
            scrape_status=row.scrape_status or SCRAPE_ACTIVE,
            consecutive_scrape_failures=row.consecutive_scrape_failures or 0,
            last_scrape_failure_at=row.last_scrape_failure_at,
            scrape_failure_dates=parse_failure_dates(row.scrape_failure_dates),
            postal_codes_served=_string_list(row.postal_codes_served),
        )


@dataclass
class PriceObservation:
    supplier_id: int
    price_per_gallon: float
    scraped_at: datetime
    expires_at: Optional[datetime] = None
    is_valid: bool = True
    source_type: str = "scraped"

    def is_live_at(self, at: datetime) -> bool:
        """Valid and not expired at the given instant."""
        return self.is_valid and (self.expires_at is None or self.expires_at > at)


@dataclass
class EngagementEvent:
    supplier_id: int
    action_type: str
    created_at: datetime
    zip_code: Optional[str] = None


@dataclass
class SearchIntentEvent:
    created_at: datetime
    zip_code: Optional[str] = None
    status_code: int = 200
    method: str = "GET"

    @property
    def is_successful_lookup(self) -> bool:
        return self.status_code < 400 and self.method.upper() == "GET" and bool(self.zip_code)


@dataclass
class SearchArea:
    zip_code: str
    first_seen_at: datetime
    city: Optional[str] = None
    state: Optional[str] = None
    request_count: int = 1
    coverage_quality: Optional[str] = None


@dataclass
class DeliveryReport:
    created_at: datetime
    fuel_type: str
    zip_code: Optional[str] = None
    validation_status: str = "valid"


@dataclass
class WeatherDay:
    day: date
    temp_avg: Optional[float] = None


def days_between(start: date, end: date) -> Iterable[date]:
    """Inclusive calendar-day range."""
    current = start
    while current <= end:
        yield current
        current = date.fromordinal(current.toordinal() + 1)
