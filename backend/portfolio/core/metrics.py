"""Prometheus metrics exposed on /metrics."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

url_refresh_total = Counter(
    "portfolio_url_refresh_total",
    "Presigned URL refresh attempts",
    ["window", "status"],
)

counter_increment_failures_total = Counter(
    "portfolio_counter_increment_failures_total",
    "View/download counter increments that failed",
    ["counter"],
)

counter_increments_dropped_total = Counter(
    "portfolio_counter_increments_dropped_total",
    "View/download counter increments dropped because too many were pending",
    ["counter"],
)

scheduler_runs_total = Counter(
    "portfolio_scheduler_runs_total",
    "URL refresh scheduler runs",
    ["trigger", "status"],
)

scheduler_run_duration = Histogram(
    "portfolio_scheduler_run_duration_seconds",
    "Duration of a full URL refresh scheduler run",
    buckets=[0.5, 1, 5, 15, 60, 300, 900, 1800],
)
