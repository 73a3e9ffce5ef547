"""Tests for the metrics collector and its Prometheus exposition."""

import math

import pytest

from waydroid_api.services.metrics import LatencyRing, MetricsCollector, quantile


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def test_counters_are_exact_past_sample_capacity():
    metrics = MetricsCollector(capacity=1000)
    for _ in range(1500):
        metrics.record("/status", 0.01, False)

    snap = metrics.snapshot("/status")
    assert snap["requests"] == 1500
    assert snap["errors"] == 0
    assert len(snap["samples"]) <= 1000


def test_errors_counted_separately():
    metrics = MetricsCollector()
    metrics.record("/apps", 0.01, False)
    metrics.record("/apps", 0.02, True)
    metrics.record("/apps", 0.03, True)

    snap = metrics.snapshot("/apps")
    assert snap == {"requests": 3, "errors": 2, "samples": [0.01, 0.02, 0.03]}


def test_unknown_endpoint_snapshot_is_empty():
    assert MetricsCollector().snapshot("/nope") == {"requests": 0, "errors": 0, "samples": []}


def test_ring_keeps_most_recent_oldest_first():
    ring = LatencyRing(3)
    for value in (1.0, 2.0, 3.0, 4.0, 5.0):
        ring.append(value)
    assert len(ring) == 3
    assert ring.capacity == 3
    assert ring.values() == [3.0, 4.0, 5.0]


def test_ring_rejects_zero_capacity():
    with pytest.raises(ValueError):
        LatencyRing(0)


def test_quantile_nearest_rank():
    samples = [float(i) for i in range(1, 101)]
    assert quantile(samples, 0.5) == 50.0
    assert quantile(samples, 0.9) == 90.0
    assert quantile(samples, 0.99) == 99.0
    assert quantile([7.0], 0.99) == 7.0
    assert math.isnan(quantile([], 0.5))


def test_webhook_delivery_counts():
    metrics = MetricsCollector()
    metrics.record_webhook_delivery(True)
    metrics.record_webhook_delivery(False)
    metrics.record_webhook_delivery(False)
    assert metrics.webhook_deliveries() == {"success": 1, "failure": 2}


def test_uptime_never_negative():
    clock = FakeClock()
    metrics = MetricsCollector(clock=clock)
    clock.now += 42
    assert metrics.uptime() == pytest.approx(42)
    clock.now -= 100
    assert metrics.uptime() == 0.0


# ---------- exposition ----------


def test_export_contains_counters_and_summary():
    metrics = MetricsCollector()
    for duration in (0.1, 0.2, 0.3):
        metrics.record("/status", duration, False)
    metrics.record("/apps", 0.5, True)

    text = metrics.export_prometheus()

    assert "# TYPE waydroid_api_requests_total counter" in text
    assert 'waydroid_api_requests_total{endpoint="/status"} 3.0' in text
    assert 'waydroid_api_errors_total{endpoint="/status"} 0.0' in text
    assert 'waydroid_api_errors_total{endpoint="/apps"} 1.0' in text
    assert "# TYPE waydroid_api_request_duration_seconds summary" in text
    assert 'waydroid_api_request_duration_seconds{endpoint="/status",quantile="0.5"} 0.2' in text
    assert 'waydroid_api_request_duration_seconds_count{endpoint="/status"} 3.0' in text
    assert "waydroid_api_uptime_seconds" in text


def test_export_webhook_outcomes():
    metrics = MetricsCollector()
    metrics.record_webhook_delivery(False)
    text = metrics.export_prometheus()
    assert 'waydroid_api_webhook_deliveries_total{outcome="failure"} 1.0' in text
    assert 'waydroid_api_webhook_deliveries_total{outcome="success"} 0.0' in text


def test_export_with_no_traffic():
    text = MetricsCollector().export_prometheus()
    assert "# TYPE waydroid_api_requests_total counter" in text
    assert "endpoint=" not in text
