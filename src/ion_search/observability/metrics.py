"""Prometheus metrics for indexing and query evaluation, mirrored to OpenTelemetry."""

from __future__ import annotations

from contextlib import contextmanager
import time
from typing import TYPE_CHECKING, Any

from opentelemetry import metrics as otel_metrics
from prometheus_client import Counter, Gauge, Histogram, generate_latest


if TYPE_CHECKING:
    from collections.abc import Generator


_meter_holder: dict[str, Any] = {"meter": None}


def _get_meter():
    meter = _meter_holder.get("meter")
    if meter is None:
        meter = otel_metrics.get_meter(__name__)
        _meter_holder["meter"] = meter
    return meter


def _label_key(labels: dict[str, str]) -> tuple[tuple[str, str], ...]:
    return tuple(sorted(labels.items()))


class _BoundMetric:
    def __init__(self, wrapper: MetricBridge, labels: dict[str, str]) -> None:
        self._wrapper = wrapper
        self._labels = labels

    def inc(self, amount: float = 1.0) -> None:
        self._wrapper.inc(self._labels, amount)

    def observe(self, value: float) -> None:
        self._wrapper.observe(self._labels, value)

    def set(self, value: float) -> None:
        self._wrapper.set(self._labels, value)


class MetricBridge:
    """Record a Prometheus metric and its OpenTelemetry counterpart together."""

    def __init__(
        self,
        prom_metric: Counter | Histogram | Gauge,
        *,
        otel_name: str,
        otel_description: str,
        otel_kind: str,
    ) -> None:
        self._prom_metric = prom_metric
        self._otel_name = otel_name
        self._otel_description = otel_description
        self._otel_kind = otel_kind
        self._otel_instrument = None
        self._last_values: dict[tuple[tuple[str, str], ...], float] = {}

    def labels(self, **labels: str) -> _BoundMetric:
        return _BoundMetric(self, labels)

    def _ensure_otel_instrument(self):
        if self._otel_instrument is not None:
            return self._otel_instrument
        meter = _get_meter()
        if self._otel_kind == "counter":
            self._otel_instrument = meter.create_counter(self._otel_name, description=self._otel_description)
        elif self._otel_kind == "histogram":
            self._otel_instrument = meter.create_histogram(self._otel_name, description=self._otel_description)
        elif self._otel_kind == "gauge":
            self._otel_instrument = meter.create_up_down_counter(self._otel_name, description=self._otel_description)
        else:
            raise ValueError(f"Unknown metric kind: {self._otel_kind}")
        return self._otel_instrument

    def inc(self, labels: dict[str, str], amount: float) -> None:
        self._prom_metric.labels(**labels).inc(amount)
        self._ensure_otel_instrument().add(amount, labels)

    def observe(self, labels: dict[str, str], value: float) -> None:
        self._prom_metric.labels(**labels).observe(value)
        self._ensure_otel_instrument().record(value, labels)

    def set(self, labels: dict[str, str], value: float) -> None:
        self._prom_metric.labels(**labels).set(value)
        otel = self._ensure_otel_instrument()
        key = _label_key(labels)
        delta = value - self._last_values.get(key, 0.0)
        if delta:
            otel.add(delta, labels)
        self._last_values[key] = value


_SEARCH_LATENCY_PROM = Histogram(
    "ion_search_latency_seconds",
    "Query evaluation latency",
    ["index"],
    buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25),
)

_INDEX_UPDATES_PROM = Counter(
    "ion_index_updates_total",
    "Record index updates and removals",
    ["index", "operation"],
)

_EPHEMERAL_KEYS_PROM = Counter(
    "ion_ephemeral_keys_total",
    "Temporary result keys materialized during evaluation",
    ["operation"],
)

_LAST_RESULT_SIZE_PROM = Gauge(
    "ion_last_result_size",
    "Candidate count of the most recent query",
    ["index"],
)

SEARCH_LATENCY = MetricBridge(
    _SEARCH_LATENCY_PROM,
    otel_name="ion_search_latency_seconds",
    otel_description="Query evaluation latency",
    otel_kind="histogram",
)

INDEX_UPDATES = MetricBridge(
    _INDEX_UPDATES_PROM,
    otel_name="ion_index_updates_total",
    otel_description="Record index updates and removals",
    otel_kind="counter",
)

EPHEMERAL_KEYS = MetricBridge(
    _EPHEMERAL_KEYS_PROM,
    otel_name="ion_ephemeral_keys_total",
    otel_description="Temporary result keys materialized during evaluation",
    otel_kind="counter",
)

LAST_RESULT_SIZE = MetricBridge(
    _LAST_RESULT_SIZE_PROM,
    otel_name="ion_last_result_size",
    otel_description="Candidate count of the most recent query",
    otel_kind="gauge",
)


@contextmanager
def track_latency(histogram: MetricBridge, **labels: str) -> Generator[None, None, None]:
    """Context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()
