"""In-process request metrics with a Prometheus text exporter.

Counters are exact for the life of the process.  Latency is kept as a
fixed-size ring of the most recent samples per endpoint and is only used
to estimate quantiles at export time.
"""

from __future__ import annotations

import math
import threading
import time
from typing import Callable, Iterator

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

LATENCY_SAMPLE_CAPACITY = 1000
QUANTILES: tuple[float, ...] = (0.5, 0.9, 0.99)

_PREFIX = "waydroid_api"


class LatencyRing:
    """Fixed-capacity sample buffer that overwrites the oldest entry."""

    __slots__ = ("_buf", "_next", "_size")

    def __init__(self, capacity: int = LATENCY_SAMPLE_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._buf: list[float] = [0.0] * capacity
        self._next = 0
        self._size = 0

    @property
    def capacity(self) -> int:
        return len(self._buf)

    def __len__(self) -> int:
        return self._size

    def append(self, value: float) -> None:
        self._buf[self._next] = value
        self._next = (self._next + 1) % len(self._buf)
        if self._size < len(self._buf):
            self._size += 1

    def values(self) -> list[float]:
        """Samples oldest-first."""
        if self._size < len(self._buf):
            return self._buf[: self._size]
        return self._buf[self._next:] + self._buf[: self._next]


def quantile(sorted_samples: list[float], q: float) -> float:
    """Nearest-rank quantile of an already sorted list (NaN when empty)."""
    if not sorted_samples:
        return math.nan
    rank = max(1, math.ceil(q * len(sorted_samples)))
    return sorted_samples[min(rank, len(sorted_samples)) - 1]


class MetricsCollector:
    """Per-endpoint request counters, error counters and latency samples."""

    def __init__(
        self,
        capacity: int = LATENCY_SAMPLE_CAPACITY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._capacity = capacity
        self._clock = clock
        self.start_time = clock()
        self._lock = threading.Lock()
        self._requests: dict[str, int] = {}
        self._errors: dict[str, int] = {}
        self._latency: dict[str, LatencyRing] = {}
        self._latency_sum: dict[str, float] = {}
        self._deliveries: dict[str, int] = {"success": 0, "failure": 0}

        self._registry = CollectorRegistry(auto_describe=False)
        self._registry.register(_Exporter(self))

    def record(self, endpoint: str, duration: float, is_error: bool) -> None:
        with self._lock:
            self._requests[endpoint] = self._requests.get(endpoint, 0) + 1
            if is_error:
                self._errors[endpoint] = self._errors.get(endpoint, 0) + 1
            ring = self._latency.get(endpoint)
            if ring is None:
                ring = self._latency[endpoint] = LatencyRing(self._capacity)
            ring.append(duration)
            self._latency_sum[endpoint] = self._latency_sum.get(endpoint, 0.0) + duration

    def record_webhook_delivery(self, ok: bool) -> None:
        with self._lock:
            self._deliveries["success" if ok else "failure"] += 1

    def snapshot(self, endpoint: str) -> dict:
        """Counters and retained samples for one endpoint."""
        with self._lock:
            ring = self._latency.get(endpoint)
            return {
                "requests": self._requests.get(endpoint, 0),
                "errors": self._errors.get(endpoint, 0),
                "samples": ring.values() if ring else [],
            }

    def webhook_deliveries(self) -> dict[str, int]:
        with self._lock:
            return dict(self._deliveries)

    def uptime(self) -> float:
        return max(0.0, self._clock() - self.start_time)

    def export_prometheus(self) -> str:
        return generate_latest(self._registry).decode("utf-8")

    def _state(self) -> tuple[dict, dict, dict, dict, dict]:
        """Consistent copy of everything the exporter needs."""
        with self._lock:
            return (
                dict(self._requests),
                dict(self._errors),
                {k: sorted(r.values()) for k, r in self._latency.items()},
                dict(self._latency_sum),
                dict(self._deliveries),
            )


class _Exporter:
    """prometheus_client collector reading a :class:`MetricsCollector`."""

    def __init__(self, metrics: MetricsCollector) -> None:
        self._metrics = metrics

    def collect(self) -> Iterator[Metric]:
        requests, errors, samples, sums, deliveries = self._metrics._state()
        endpoints = sorted(requests)

        total = CounterMetricFamily(
            f"{_PREFIX}_requests_total", "Requests handled, by endpoint.",
            labels=["endpoint"],
        )
        errs = CounterMetricFamily(
            f"{_PREFIX}_errors_total", "Requests that ended in an error status, by endpoint.",
            labels=["endpoint"],
        )
        latency = Metric(
            f"{_PREFIX}_request_duration_seconds",
            "Request latency over the most recent samples, by endpoint.",
            "summary",
        )
        for endpoint in endpoints:
            total.add_metric([endpoint], requests[endpoint])
            errs.add_metric([endpoint], errors.get(endpoint, 0))
            ordered = samples.get(endpoint, [])
            for q in QUANTILES:
                latency.add_sample(
                    f"{_PREFIX}_request_duration_seconds",
                    {"endpoint": endpoint, "quantile": str(q)},
                    quantile(ordered, q),
                )
            latency.add_sample(
                f"{_PREFIX}_request_duration_seconds_count",
                {"endpoint": endpoint}, requests[endpoint],
            )
            latency.add_sample(
                f"{_PREFIX}_request_duration_seconds_sum",
                {"endpoint": endpoint}, sums.get(endpoint, 0.0),
            )
        yield total
        yield errs
        yield latency

        webhook = CounterMetricFamily(
            f"{_PREFIX}_webhook_deliveries_total", "Webhook delivery attempts, by outcome.",
            labels=["outcome"],
        )
        for outcome in sorted(deliveries):
            webhook.add_metric([outcome], deliveries[outcome])
        yield webhook

        yield GaugeMetricFamily(
            f"{_PREFIX}_uptime_seconds", "Seconds since the API process started.",
            value=self._metrics.uptime(),
        )
