"""Pick the most likely primary cause among simultaneously flagged anomalies."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from health_engine.detect.anomaly_detector import Anomaly, SEVERITY_HIGH

CAUSES = {
    "supply": "Supply collapse (scraper failure or site changes)",
    "demand": "Demand shift (user traffic change)",
    "traffic": "Traffic anomaly",
    "supplier": "Supplier infrastructure issues (scrape failures)",
    "conversion": "Conversion degradation (stale or missing prices)",
}

CASCADE_NOTE = " Supply failure is cascading to conversion quality."

BASE_CONFIDENCE = 70
SINGLE_CAUSE_BONUS = 15
STRONG_SIGNAL_BONUS = 10
HIGH_SEVERITY_BONUS = 5
CASCADE_BONUS = 5
MAX_CONFIDENCE = 98


@dataclass
class Diagnosis:
    status: str
    primary_cause: Optional[str] = None
    confidence: Optional[int] = None
    summary: str = "All systems operating normally"
    category: Optional[str] = None
    cascade: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "primaryCause": self.primary_cause,
            "confidence": self.confidence,
            "summary": self.summary,
            "category": self.category,
            "cascade": self.cascade,
        }


def rank_anomalies(anomalies: Sequence[Anomaly]) -> List[Anomaly]:
    """High severity first, then by deviation magnitude."""
    return sorted(
        anomalies,
        key=lambda a: (0 if a.severity == SEVERITY_HIGH else 1, -abs(a.deviation_pct)),
    )


def build_diagnosis(anomalies: Sequence[Anomaly]) -> Diagnosis:
    if not anomalies:
        return Diagnosis(status="normal")

    primary = rank_anomalies(anomalies)[0]

    confidence = BASE_CONFIDENCE
    if len(anomalies) == 1:
        confidence += SINGLE_CAUSE_BONUS
    if abs(primary.deviation_pct) > 50:
        confidence += STRONG_SIGNAL_BONUS
    if primary.is_high:
        confidence += HIGH_SEVERITY_BONUS
    confidence = min(confidence, MAX_CONFIDENCE)

    # Scraper breakage -> stale prices -> lower quality-click ratio
    has_supply_collapse = any(a.category == "supply" and a.deviation_pct < -30 for a in anomalies)
    has_conversion_issue = any(a.category == "conversion" for a in anomalies)
    cascade = has_supply_collapse and has_conversion_issue

    summary = primary.insight
    if cascade:
        summary += CASCADE_NOTE
        confidence = min(confidence + CASCADE_BONUS, MAX_CONFIDENCE)

    return Diagnosis(
        status="critical" if primary.is_high else "warning",
        primary_cause=CAUSES.get(primary.category, primary.title),
        confidence=confidence,
        summary=summary,
        category=primary.category,
        cascade=cascade,
    )
