"""Key movers: suppliers with the biggest recent price changes."""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Sequence

from health_engine.db.records import PriceObservation, SupplierRecord

MIN_DELTA = 0.01


@dataclass
class PriceMove:
    supplier_id: int
    name: str
    city: str
    state: str
    current_price: float
    prev_price: float
    scraped_at: datetime

    @property
    def change(self) -> float:
        return self.current_price - self.prev_price

    @property
    def pct_change(self) -> float:
        if self.prev_price <= 0:
            return 0.0
        return round(self.change / self.prev_price * 100, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "city": self.city,
            "state": self.state,
            "currentPrice": self.current_price,
            "prevPrice": self.prev_price,
            "change": round(self.change, 2),
            "pctChange": self.pct_change,
        }


def key_movers(
    observations: Sequence[PriceObservation],
    suppliers: Mapping[int, SupplierRecord],
    now: datetime,
    window_days: int = 7,
    limit: int = 10,
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Compare each supplier's two most recent valid prices within the window.

    Returns:
        {"up": [...], "down": [...]} drawn from the top ``limit`` by |delta|
    """
    since = now - timedelta(days=window_days)
    by_supplier: Dict[int, List[PriceObservation]] = defaultdict(list)
    for obs in observations:
        if obs.is_valid and since < obs.scraped_at <= now:
            by_supplier[obs.supplier_id].append(obs)

    moves = []
    for supplier_id, items in by_supplier.items():
        supplier = suppliers.get(supplier_id)
        if supplier is None or len(items) < 2:
            continue
        items.sort(key=lambda o: o.scraped_at, reverse=True)
        current, previous = items[0], items[1]
        move = PriceMove(
            supplier_id=supplier_id,
            name=supplier.name,
            city=supplier.city or "",
            state=supplier.state or "",
            current_price=current.price_per_gallon,
            prev_price=previous.price_per_gallon,
            scraped_at=current.scraped_at,
        )
        if abs(move.change) > MIN_DELTA:
            moves.append(move)

    moves.sort(key=lambda m: (-abs(m.change), m.supplier_id))
    top = moves[:limit]
    return {
        "up": [m.to_dict() for m in top if m.change > 0],
        "down": [m.to_dict() for m in top if m.change < 0],
    }
