"""Observability helpers (in-process metrics)."""

from sprout.observability.metrics import (
    Counter,
    Gauge,
    Histogram,
    MetricsRegistry,
    SchedulerMetrics,
    WeatherMetrics,
    get_metrics_registry,
)

__all__ = [
    "Counter",
    "Gauge",
    "Histogram",
    "MetricsRegistry",
    "SchedulerMetrics",
    "WeatherMetrics",
    "get_metrics_registry",
]
