"""Prometheus metrics for monitoring collection, storage and analytics cache operations."""

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, generate_latest

# Platform API Metrics
platform_request_total = Counter(
    "insights_platform_request_total",
    "Total insights API requests",
    ["dimension", "status"],
)

platform_request_duration = Histogram(
    "insights_platform_request_duration_seconds",
    "Insights API request latency in seconds",
    ["dimension"],
    buckets=[0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

dimension_collection_total = Counter(
    "insights_dimension_collection_total",
    "Dimension collection outcomes",
    ["dimension", "outcome"],
)

# Storage Metrics
stored_rows_total = Counter(
    "insights_stored_rows_total",
    "Rows upserted into dimension tables",
    ["dimension"],
)

storage_failures_total = Counter(
    "insights_storage_failures_total",
    "Dimension upserts that failed",
    ["dimension"],
)

# Analytics Cache Metrics
analytics_cache_lookups_total = Counter(
    "analytics_cache_lookups_total",
    "Analytics cache lookups by response source",
    ["source"],
)

analytics_refresh_duration = Histogram(
    "analytics_refresh_duration_seconds",
    "Time spent recomputing an analytics snapshot",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# Batch Metrics
batch_client_total = Counter(
    "insights_batch_client_total",
    "Clients processed by batch runs",
    ["outcome"],
)

active_batch_runs = Gauge(
    "insights_active_batch_runs",
    "Currently running batch collections",
)


def get_metrics_text() -> str:
    """Return current metrics in Prometheus text format."""
    return generate_latest(REGISTRY).decode("utf-8")
