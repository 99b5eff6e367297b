"""
In-process metrics with Prometheus text export.

Manifesto:
    The scheduler runs for months without a restart. Operators need to see
    how many timers each resource holds and how often fires fail without
    attaching a debugger, so the engine keeps a small set of labelled
    counters and gauges that any HTTP layer can expose as Prometheus text.

Architecture:
    ::

        MetricsRegistry
          ├── Counter   sprout_scheduler_errors{type,id}
          ├── Gauge     sprout_scheduled_jobs{type,id}
          ├── Counter   sprout_weather_requests{method,cached}
          └── Histogram sprout_weather_request_seconds{method}

Examples:
    >>> registry = MetricsRegistry()
    >>> errors = registry.counter("sprout_scheduler_errors", labels=["type", "id"])
    >>> errors.labels(type="water", id="abc").inc()
    >>> print(registry.export_prometheus())
    sprout_scheduler_errors{id="abc",type="water"} 1.0

Tags:
    metrics, prometheus, counter, gauge, observability
"""

from __future__ import annotations

import threading
from typing import Any

LabelKey = tuple[tuple[str, str], ...]


def _label_key(labels: dict[str, str]) -> LabelKey:
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


class Metric:
    """Base class for labelled metrics."""

    type_name = "untyped"

    def __init__(self, name: str, description: str = "", labels: list[str] | None = None):
        self.name = name
        self.description = description
        self.label_names = labels or []
        self._lock = threading.Lock()

    def collect(self) -> list[dict[str, Any]]:
        raise NotImplementedError


class Counter(Metric):
    """A monotonically increasing counter."""

    type_name = "counter"

    def __init__(self, name: str, description: str = "", labels: list[str] | None = None):
        super().__init__(name, description, labels)
        self._values: dict[LabelKey, float] = {}

    def labels(self, **kwargs: str) -> _CounterChild:
        return _CounterChild(self, _label_key(kwargs))

    def inc(self, value: float = 1.0) -> None:
        self.labels().inc(value)

    def value(self, **kwargs: str) -> float:
        with self._lock:
            return self._values.get(_label_key(kwargs), 0.0)

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {"name": self.name, "type": self.type_name, "labels": dict(key), "value": value}
                for key, value in self._values.items()
            ]


class _CounterChild:
    def __init__(self, counter: Counter, key: LabelKey):
        self._counter = counter
        self._key = key

    def inc(self, value: float = 1.0) -> None:
        if value < 0:
            raise ValueError("Counter can only increase")
        with self._counter._lock:
            values = self._counter._values
            values[self._key] = values.get(self._key, 0.0) + value

    @property
    def value(self) -> float:
        with self._counter._lock:
            return self._counter._values.get(self._key, 0.0)


class Gauge(Metric):
    """A value that can go up or down."""

    type_name = "gauge"

    def __init__(self, name: str, description: str = "", labels: list[str] | None = None):
        super().__init__(name, description, labels)
        self._values: dict[LabelKey, float] = {}

    def labels(self, **kwargs: str) -> _GaugeChild:
        return _GaugeChild(self, _label_key(kwargs))

    def set(self, value: float) -> None:
        self.labels().set(value)

    def value(self, **kwargs: str) -> float:
        with self._lock:
            return self._values.get(_label_key(kwargs), 0.0)

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {"name": self.name, "type": self.type_name, "labels": dict(key), "value": value}
                for key, value in self._values.items()
            ]


class _GaugeChild:
    def __init__(self, gauge: Gauge, key: LabelKey):
        self._gauge = gauge
        self._key = key

    def set(self, value: float) -> None:
        with self._gauge._lock:
            self._gauge._values[self._key] = value

    def inc(self, value: float = 1.0) -> None:
        with self._gauge._lock:
            values = self._gauge._values
            values[self._key] = values.get(self._key, 0.0) + value

    def dec(self, value: float = 1.0) -> None:
        self.inc(-value)

    @property
    def value(self) -> float:
        with self._gauge._lock:
            return self._gauge._values.get(self._key, 0.0)


class Histogram(Metric):
    """A distribution of observed values (latencies)."""

    type_name = "histogram"
    DEFAULT_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float("inf"))

    def __init__(
        self,
        name: str,
        description: str = "",
        labels: list[str] | None = None,
        buckets: tuple[float, ...] | None = None,
    ):
        super().__init__(name, description, labels)
        self._buckets = buckets or self.DEFAULT_BUCKETS
        self._data: dict[LabelKey, dict[str, Any]] = {}

    def observe(self, value: float, **kwargs: str) -> None:
        key = _label_key(kwargs)
        with self._lock:
            data = self._data.setdefault(
                key, {"buckets": dict.fromkeys(self._buckets, 0), "sum": 0.0, "count": 0}
            )
            data["sum"] += value
            data["count"] += 1
            for bucket in self._buckets:
                if value <= bucket:
                    data["buckets"][bucket] += 1

    def count(self, **kwargs: str) -> int:
        with self._lock:
            data = self._data.get(_label_key(kwargs))
            return data["count"] if data else 0

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {
                    "name": self.name,
                    "type": self.type_name,
                    "labels": dict(key),
                    "buckets": dict(data["buckets"]),
                    "sum": data["sum"],
                    "count": data["count"],
                }
                for key, data in self._data.items()
            ]


class MetricsRegistry:
    """Registry of all metrics for collection and export."""

    def __init__(self) -> None:
        self._metrics: dict[str, Metric] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, cls: type[Metric], name: str, *args: Any) -> Any:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = cls(name, *args)
                self._metrics[name] = metric
            elif not isinstance(metric, cls):
                raise ValueError(f"metric {name!r} already registered as {metric.type_name}")
            return metric

    def counter(self, name: str, description: str = "", labels: list[str] | None = None) -> Counter:
        """Get or create a counter."""
        return self._get_or_create(Counter, name, description, labels)

    def gauge(self, name: str, description: str = "", labels: list[str] | None = None) -> Gauge:
        """Get or create a gauge."""
        return self._get_or_create(Gauge, name, description, labels)

    def histogram(
        self,
        name: str,
        description: str = "",
        labels: list[str] | None = None,
        buckets: tuple[float, ...] | None = None,
    ) -> Histogram:
        """Get or create a histogram."""
        return self._get_or_create(Histogram, name, description, labels, buckets)

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            metrics = list(self._metrics.values())
        results: list[dict[str, Any]] = []
        for metric in metrics:
            results.extend(metric.collect())
        return results

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []
        for data in self.collect():
            name = data["name"]
            labels = data["labels"]
            label_str = ",".join(f'{k}="{v}"' for k, v in labels.items())
            if data["type"] in ("counter", "gauge"):
                lines.append(f"{name}{{{label_str}}} {data['value']}" if label_str else f"{name} {data['value']}")
                continue
            for bucket, count in data["buckets"].items():
                le = "+Inf" if bucket == float("inf") else str(bucket)
                bucket_labels = f'{label_str},le="{le}"' if label_str else f'le="{le}"'
                lines.append(f"{name}_bucket{{{bucket_labels}}} {count}")
            suffix = f"{{{label_str}}}" if label_str else ""
            lines.append(f"{name}_sum{suffix} {data['sum']}")
            lines.append(f"{name}_count{suffix} {data['count']}")
        return "\n".join(lines)


_default_registry = MetricsRegistry()


def get_metrics_registry() -> MetricsRegistry:
    """Get the process-wide default registry."""
    return _default_registry


class SchedulerMetrics:
    """Metrics maintained by the job scheduler."""

    def __init__(self, registry: MetricsRegistry | None = None):
        reg = registry or _default_registry
        self.scheduled_jobs = reg.gauge(
            "sprout_scheduled_jobs",
            "Number of jobs registered for a resource",
            ["type", "id"],
        )
        self.errors = reg.counter(
            "sprout_scheduler_errors",
            "Number of failed job fires",
            ["type", "id"],
        )

    def job_added(self, job_type: str, resource_id: str) -> None:
        self.scheduled_jobs.labels(type=job_type, id=resource_id).inc()

    def job_removed(self, job_type: str, resource_id: str) -> None:
        self.scheduled_jobs.labels(type=job_type, id=resource_id).dec()

    def job_failed(self, job_type: str, resource_id: str) -> None:
        self.errors.labels(type=job_type, id=resource_id).inc()


class WeatherMetrics:
    """Metrics maintained by caching weather clients."""

    def __init__(self, registry: MetricsRegistry | None = None):
        reg = registry or _default_registry
        self.requests = reg.counter(
            "sprout_weather_requests",
            "Weather lookups by method and cache outcome",
            ["method", "cached"],
        )
        self.latency = reg.histogram(
            "sprout_weather_request_seconds",
            "Weather lookup latency in seconds",
            ["method"],
        )

    def record(self, method: str, cached: bool, seconds: float) -> None:
        self.requests.labels(method=method, cached=str(cached).lower()).inc()
        self.latency.observe(seconds, method=method)


__all__ = [
    "Metric",
    "Counter",
    "Gauge",
    "Histogram",
    "MetricsRegistry",
    "get_metrics_registry",
    "SchedulerMetrics",
    "WeatherMetrics",
]
