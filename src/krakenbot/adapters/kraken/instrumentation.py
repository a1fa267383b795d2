from __future__ import annotations

import re
from typing import Any, Protocol

from opentelemetry import metrics

METER_NAME = "krakenbot"
_METRIC_NAME_RE = re.compile(r"[^a-zA-Z0-9_.-]+")


def metric_name(name: str) -> str:
    """Instrument names must start with a letter and avoid punctuation."""
    cleaned = _METRIC_NAME_RE.sub("_", name).strip("_")
    if not cleaned or not cleaned[0].isalpha():
        cleaned = f"m_{cleaned}"
    return cleaned


class MetricsSink(Protocol):
    def inc(self, name: str, value: int = 1, *, attrs: dict[str, Any] | None = None) -> None: ...

    def observe_ms(
        self, name: str, value_ms: float, *, attrs: dict[str, Any] | None = None
    ) -> None: ...


class OTelMetricsSink:
    """REST metrics emitted as OpenTelemetry counters and histograms.

    Without a configured SDK ``MeterProvider`` the global meter is a no-op, so
    the sink costs nothing until an exporter is installed.
    """

    def __init__(self, meter: metrics.Meter | None = None) -> None:
        self._meter = meter or metrics.get_meter(METER_NAME)
        self._counters: dict[str, metrics.Counter] = {}
        self._histograms: dict[str, metrics.Histogram] = {}

    def inc(self, name: str, value: int = 1, *, attrs: dict[str, Any] | None = None) -> None:
        key = metric_name(name)
        counter = self._counters.get(key)
        if counter is None:
            counter = self._meter.create_counter(key)
            self._counters[key] = counter
        counter.add(value, attrs or {})

    def observe_ms(
        self, name: str, value_ms: float, *, attrs: dict[str, Any] | None = None
    ) -> None:
        key = metric_name(name)
        histogram = self._histograms.get(key)
        if histogram is None:
            histogram = self._meter.create_histogram(key, unit="ms")
            self._histograms[key] = histogram
        histogram.record(value_ms, attrs or {})
