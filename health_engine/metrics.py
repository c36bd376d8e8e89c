"""Prometheus metrics for the platform health engine."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("platform_health_engine", "Platform health engine application info")
app_info.info({"version": "0.1.0", "name": "platform-health-engine"})

# Command Center metrics
command_center_requests_total = Counter(
    "command_center_requests_total",
    "Total number of Command Center computations",
)

command_center_duration_seconds = Histogram(
    "command_center_duration_seconds",
    "Time spent computing the Command Center payload",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)

command_center_section_failures_total = Counter(
    "command_center_section_failures_total",
    "Dashboard sections that fell back to their safe default",
    ["section"],
)

anomalies_detected_total = Counter(
    "anomalies_detected_total",
    "Total number of anomalies emitted by the detector",
    ["category", "severity"],
)

# Nightly snapshot metrics
platform_metrics_runs_total = Counter(
    "platform_metrics_runs_total",
    "Total number of nightly snapshot runs",
    ["status"],
)

platform_metrics_duration_seconds = Histogram(
    "platform_metrics_duration_seconds",
    "Time spent computing a daily platform metrics snapshot",
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

platform_metrics_last_success_timestamp = Gauge(
    "platform_metrics_last_success_timestamp",
    "Timestamp of the last successful snapshot run",
)


def record_section_failure(section: str):
    """Record a dashboard section replaced by its default."""
    command_center_section_failures_total.labels(section=section).inc()


def record_command_center(duration: float):
    """Record a completed Command Center computation."""
    command_center_requests_total.inc()
    command_center_duration_seconds.observe(duration)


def record_anomaly(category: str, severity: str):
    """Record an emitted anomaly."""
    anomalies_detected_total.labels(category=category, severity=severity).inc()


def record_snapshot_run(status: str, duration: float | None = None):
    """Record a nightly snapshot run (success, locked, error)."""
    platform_metrics_runs_total.labels(status=status).inc()
    if duration is not None:
        platform_metrics_duration_seconds.observe(duration)
    if status == "success":
        platform_metrics_last_success_timestamp.set(time.time())
