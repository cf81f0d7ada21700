# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
Metrics — In-memory labelled series for isolation-layer observability.

Each series is a metric name plus a label set, e.g.

    platform_metrics.inc("tenant_resolve", outcome="denied")
    platform_metrics.inc("policy_violations", check="statement")
    platform_metrics.observe("accessor_latency_ms", 3.2, operation="get")

Counts are read per label set with `get_counter` or summed over every
label set with `total`. `snapshot()` renders series keys in exposition
style (`tenant_resolve{outcome="denied"}`) and is served at /api/metrics.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Any, Dict, List, Tuple

HISTOGRAM_WINDOW = 1000

Labels = Tuple[Tuple[str, str], ...]


def _labels(labels: Dict[str, Any]) -> Labels:
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


def series_key(name: str, labels: Labels = ()) -> str:
    """Render a series as `name{k="v",...}` (bare name when unlabelled)."""
    if not labels:
        return name
    body = ",".join(f'{k}="{v}"' for k, v in labels)
    return f"{name}{{{body}}}"


def _percentile(values: List[float], pct: float) -> float:
    ordered = sorted(values)
    index = min(len(ordered) - 1, int(round(pct / 100 * (len(ordered) - 1))))
    return ordered[index]


class Metrics:
    """In-memory collector of labelled counters, gauges and latency windows."""

    def __init__(self):
        self._counters: Dict[str, Dict[Labels, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: Dict[str, Dict[Labels, float]] = defaultdict(dict)
        self._histograms: Dict[str, Dict[Labels, List[float]]] = defaultdict(lambda: defaultdict(list))
        self._start_time = time.time()

    # ── Counters ────────────────────────────────────────────────

    def inc(self, name: str, amount: int = 1, **labels: Any) -> None:
        self._counters[name][_labels(labels)] += amount

    def get_counter(self, name: str, **labels: Any) -> int:
        """Count for exactly this label set."""
        series = self._counters.get(name)
        if not series:
            return 0
        return series.get(_labels(labels), 0)

    def total(self, name: str) -> int:
        """Count summed over every label set of `name`."""
        return sum(self._counters.get(name, {}).values())

    def breakdown(self, name: str, label: str) -> Dict[str, int]:
        """Counts of `name` grouped by the value of one label."""
        out: Dict[str, int] = defaultdict(int)
        for labels, count in self._counters.get(name, {}).items():
            value = dict(labels).get(label)
            if value is not None:
                out[value] += count
        return dict(out)

    # ── Gauges ──────────────────────────────────────────────────

    def set_gauge(self, name: str, value: float, **labels: Any) -> None:
        self._gauges[name][_labels(labels)] = value

    def get_gauge(self, name: str, **labels: Any) -> float:
        return self._gauges.get(name, {}).get(_labels(labels), 0.0)

    # ── Histograms (for latency) ────────────────────────────────

    def observe(self, name: str, value: float, **labels: Any) -> None:
        """Record an observation; only the last HISTOGRAM_WINDOW are kept per series."""
        window = self._histograms[name][_labels(labels)]
        window.append(value)
        if len(window) > HISTOGRAM_WINDOW:
            del window[:-HISTOGRAM_WINDOW]

    # ── Export ──────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        """Export all series as a JSON-ready dict."""
        result: Dict[str, Any] = {
            "uptime_seconds": round(time.time() - self._start_time, 1),
            "counters": {
                series_key(name, labels): count
                for name, series in self._counters.items()
                for labels, count in series.items()
            },
            "gauges": {
                series_key(name, labels): value
                for name, series in self._gauges.items()
                for labels, value in series.items()
            },
            "histograms": {},
        }
        for name, series in self._histograms.items():
            for labels, values in series.items():
                if not values:
                    continue
                result["histograms"][series_key(name, labels)] = {
                    "count": len(values),
                    "avg": round(sum(values) / len(values), 2),
                    "p95": round(_percentile(values, 95), 2),
                    "max": round(max(values), 2),
                    "min": round(min(values), 2),
                }
        return result

    def reset(self) -> None:
        """Clear all series (test support)."""
        self._counters.clear()
        self._gauges.clear()
        self._histograms.clear()


# Global singleton
platform_metrics = Metrics()
