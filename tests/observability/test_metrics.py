"""
Tests for sprout.observability.metrics.

Covers counters, gauges, histograms, registry bookkeeping and the
Prometheus text export.
"""

import pytest

from sprout.observability.metrics import (
    MetricsRegistry,
    SchedulerMetrics,
    WeatherMetrics,
)


class TestCounter:
    def test_inc_per_label_set(self):
        registry = MetricsRegistry()
        errors = registry.counter("errors", labels=["type", "id"])
        errors.labels(type="water", id="a").inc()
        errors.labels(type="water", id="a").inc(2)
        errors.labels(type="light", id="b").inc()

        assert errors.value(type="water", id="a") == 3.0
        assert errors.value(id="b", type="light") == 1.0
        assert errors.value(type="light", id="zzz") == 0.0

    def test_negative_increment_rejected(self):
        counter = MetricsRegistry().counter("c")
        with pytest.raises(ValueError):
            counter.labels().inc(-1)


class TestGauge:
    def test_set_inc_dec(self):
        gauge = MetricsRegistry().gauge("jobs", labels=["id"])
        child = gauge.labels(id="g1")
        child.set(5)
        child.inc()
        child.dec(2)
        assert gauge.value(id="g1") == 4
        assert child.value == 4


class TestHistogram:
    def test_observe_buckets(self):
        histogram = MetricsRegistry().histogram("latency", buckets=(0.1, 1.0, float("inf")))
        histogram.observe(0.05)
        histogram.observe(0.5)
        histogram.observe(3.0)

        data = histogram.collect()[0]
        assert data["count"] == 3
        assert data["buckets"] == {0.1: 1, 1.0: 2, float("inf"): 3}
        assert histogram.count() == 3


class TestRegistry:
    def test_get_or_create_returns_same_metric(self):
        registry = MetricsRegistry()
        assert registry.counter("c") is registry.counter("c")

    def test_type_clash_rejected(self):
        registry = MetricsRegistry()
        registry.counter("c")
        with pytest.raises(ValueError, match="already registered"):
            registry.gauge("c")

    def test_export_prometheus(self):
        registry = MetricsRegistry()
        registry.counter("sprout_scheduler_errors").labels(type="water", id="abc").inc()
        registry.gauge("plain").set(2)

        text = registry.export_prometheus()
        assert 'sprout_scheduler_errors{id="abc",type="water"} 1.0' in text
        assert "plain 2" in text

    def test_export_histogram_lines(self):
        registry = MetricsRegistry()
        registry.histogram("h", buckets=(1.0, float("inf"))).observe(0.5, method="rain")
        text = registry.export_prometheus()
        assert 'h_bucket{method="rain",le="+Inf"} 1' in text
        assert 'h_count{method="rain"} 1' in text


class TestDomainMetrics:
    def test_scheduler_metrics(self, metrics_registry):
        metrics = SchedulerMetrics(metrics_registry)
        metrics.job_added("light", "g1")
        metrics.job_added("light", "g1")
        metrics.job_removed("light", "g1")
        metrics.job_failed("water", "ws1")

        assert metrics.scheduled_jobs.value(type="light", id="g1") == 1
        assert metrics.errors.value(type="water", id="ws1") == 1

    def test_weather_metrics(self, metrics_registry):
        metrics = WeatherMetrics(metrics_registry)
        metrics.record("total_rain", cached=True, seconds=0.0)
        metrics.record("total_rain", cached=False, seconds=0.2)

        assert metrics.requests.value(method="total_rain", cached="true") == 1
        assert metrics.requests.value(method="total_rain", cached="false") == 1
        assert metrics.latency.count(method="total_rain") == 2
