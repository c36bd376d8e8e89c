"""Tests for stability, diagnosis, forecast, movers and action items."""

from datetime import datetime, timedelta

from health_engine.db.records import PriceObservation, SearchArea, SupplierRecord
from health_engine.detect.anomaly_detector import Anomaly
from health_engine.detect.diagnosis import BASE_CONFIDENCE, CASCADE_NOTE, build_diagnosis
from health_engine.detect.forecast import (
    TrendPoint,
    build_north_star,
    compute_trajectory,
    forecast_next,
)
from health_engine.health.action_items import build_action_items
from health_engine.health.movers import key_movers
from health_engine.health.stability import compute_stability, demand_velocity

NOW = datetime(2026, 1, 15, 12, 0)
TODAY = NOW.date()


def _supplier(supplier_id, **overrides):
    values = dict(
        id=supplier_id,
        name=f"Supplier {supplier_id}",
        city="Bristol",
        state="CT",
        website="https://example.com",
        allow_price_display=True,
    )
    values.update(overrides)
    return SupplierRecord(**values)


def _anomaly(category, deviation, severity):
    return Anomaly(
        category=category,
        title=category.title(),
        today=0,
        avg7d=0,
        deviation_pct=deviation,
        direction="down" if deviation < 0 else "up",
        severity=severity,
        insight=f"{category} moved {deviation}%",
    )


# Stability

def test_stability_stays_within_bounds():
    suppliers = [_supplier(1), _supplier(2, scrape_status="cooldown")]
    latest = {1: NOW - timedelta(hours=1), 2: NOW - timedelta(hours=1)}

    high = compute_stability(suppliers, latest, NOW, 10, 10, 500, 0)
    low = compute_stability([], {}, NOW, 10, 0, 0, 70)

    for score in (high, low):
        assert 0 <= score.score <= 100
        assert all(0 <= v <= 100 for v in score.components.values())
    assert high.components["demandVelocity"] == 100
    assert high.components["scraperUptime"] == 50
    assert low.components["conversionRate"] == 0


def test_conversion_is_neutral_without_clicks():
    score = compute_stability([], {}, NOW, 0, 0, 0, 0)

    assert score.components["conversionRate"] == 50


def test_demand_velocity_floors_the_trailing_average():
    assert demand_velocity(0, 0) == 0
    assert demand_velocity(1, 7) == 100
    assert demand_velocity(1, 14) == 50


# Diagnosis

def test_supply_collapse_cascading_to_conversion():
    anomalies = [
        _anomaly("supply", -35, "high"),
        _anomaly("conversion", -22, "medium"),
    ]

    diagnosis = build_diagnosis(anomalies)

    assert diagnosis.category == "supply"
    assert diagnosis.status == "critical"
    assert diagnosis.cascade is True
    assert diagnosis.summary.endswith(CASCADE_NOTE)
    assert diagnosis.confidence >= BASE_CONFIDENCE + 5


def test_no_anomalies_is_normal():
    assert build_diagnosis([]).to_dict()["status"] == "normal"


def test_single_strong_medium_signal():
    diagnosis = build_diagnosis([_anomaly("demand", 55, "medium")])

    assert diagnosis.status == "warning"
    assert diagnosis.confidence == 95


# Forecast and trajectory

def _trend(values, last_day):
    n = len(values)
    return [
        TrendPoint(day=last_day - timedelta(days=n - 1 - i), quality_connections=v, total_clicks=v)
        for i, v in enumerate(values)
    ]


def test_linear_forecast_with_steady_trend():
    forecast = forecast_next(_trend([40, 42, 44], TODAY - timedelta(days=1)), TODAY)

    assert forecast.projected == 46
    assert forecast.confidence == "high"
    assert forecast.trend_per_day == 2.0


def test_forecast_needs_three_points():
    assert forecast_next(_trend([40, 42], TODAY - timedelta(days=1)), TODAY) is None


def test_forecast_never_negative():
    forecast = forecast_next(_trend([30, 10, 1], TODAY - timedelta(days=1)), TODAY)

    assert forecast.projected == 0
    assert forecast.confidence == "low"


def test_trajectory_compares_last_two_weeks():
    series = {}
    for age in range(14):
        value = 12 if age < 7 else 10
        series[TODAY - timedelta(days=age)] = {"quality": value, "total": value}

    trajectory = compute_trajectory(series, TODAY)

    assert trajectory.direction == "up"
    assert trajectory.pct == 20
    assert trajectory.to_dict()["days"] == 30


def test_north_star_excludes_today_from_average():
    series = {
        TODAY - timedelta(days=2): {"quality": 10, "total": 12},
        TODAY - timedelta(days=1): {"quality": 20, "total": 25},
        TODAY: {"quality": 3, "total": 4},
    }

    north_star = build_north_star(series, TODAY)

    assert north_star.today == 3
    assert north_star.yesterday == 20
    assert north_star.avg7d == 15
    assert north_star.change == -80


# Movers

def test_key_movers_split_up_and_down():
    suppliers = {i: _supplier(i) for i in (1, 2, 3)}
    observations = [
        PriceObservation(1, 3.00, NOW - timedelta(days=3)),
        PriceObservation(1, 3.25, NOW - timedelta(days=1)),
        PriceObservation(2, 3.50, NOW - timedelta(days=2)),
        PriceObservation(2, 3.10, NOW - timedelta(hours=5)),
        PriceObservation(3, 3.00, NOW - timedelta(days=2)),
        PriceObservation(3, 3.005, NOW - timedelta(days=1)),
    ]

    movers = key_movers(observations, suppliers, NOW)

    assert [m["name"] for m in movers["up"]] == ["Supplier 1"]
    assert [m["name"] for m in movers["down"]] == ["Supplier 2"]
    assert movers["down"][0]["change"] == -0.4


# Action items

def test_action_items_sorted_by_priority():
    suppliers = [
        _supplier(1, scrape_status="cooldown", consecutive_scrape_failures=3),
        _supplier(2, consecutive_scrape_failures=1, last_scrape_failure_at=NOW - timedelta(hours=3)),
    ] + [_supplier(10 + i) for i in range(4)]
    latest = {10 + i: NOW - timedelta(days=3 + i) for i in range(4)}
    areas = [
        SearchArea("06010", NOW - timedelta(days=1), city="Bristol", state="CT",
                   request_count=4, coverage_quality="none"),
        SearchArea("06011", NOW - timedelta(days=20), coverage_quality="none"),
    ]

    items = build_action_items(suppliers, areas, latest, NOW)

    assert [i.label for i in items] == ["CRITICAL", "OPPORTUNITY", "MAINTENANCE", "WARNING"]
    coverage = items[1].to_dict()
    assert coverage["metric"] == 1
    assert coverage["details"][0]["name"] == "06010"
    assert items[2].metric == 4
    # Oldest stale price first
    assert items[2].details[0].name == "Supplier 13"


def test_few_stale_suppliers_are_not_reported():
    suppliers = [_supplier(1), _supplier(2)]
    latest = {1: NOW - timedelta(days=3), 2: NOW - timedelta(days=4)}

    assert build_action_items(suppliers, [], latest, NOW) == []
