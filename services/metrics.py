"""In-process counters and latency histograms for the assistant."""
from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

HISTOGRAM_WINDOW = 100


class MetricsCollector:
    """Thread-safe counters and rolling histograms keyed by name and labels."""

    def __init__(self, window: int = HISTOGRAM_WINDOW):
        self._lock = threading.RLock()
        self._counters: dict[str, float] = defaultdict(float)
        self._histograms: dict[str, list[float]] = defaultdict(list)
        self._window = max(1, int(window))

    @staticmethod
    def _key(name: str, labels: dict[str, str] | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def increment(self, name: str, value: float = 1.0, labels: dict[str, str] | None = None) -> None:
        key = self._key(name, labels)
        with self._lock:
            self._counters[key] += value

    def observe(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        key = self._key(name, labels)
        with self._lock:
            samples = self._histograms[key]
            samples.append(float(value))
            if len(samples) > self._window:
                del samples[: len(samples) - self._window]

    @contextmanager
    def timer(self, name: str, labels: dict[str, str] | None = None) -> Generator[None, None, None]:
        """Time the block and record it as ``<name>_duration_ms``."""
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            self.observe(f"{name}_duration_ms", elapsed_ms, labels)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._counters.get(self._key(name, labels), 0.0)

    def get_histogram_stats(self, name: str, labels: dict[str, str] | None = None) -> dict[str, float]:
        with self._lock:
            values = sorted(self._histograms.get(self._key(name, labels), []))
        if not values:
            return {}
        count = len(values)
        return {
            "count": count,
            "min": values[0],
            "max": values[-1],
            "avg": sum(values) / count,
            "p50": values[int(count * 0.5)],
            "p95": values[int(count * 0.95)] if count > 1 else values[-1],
        }

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            counters = dict(self._counters)
            histogram_keys = list(self._histograms.keys())
        histograms: dict[str, dict[str, float]] = {}
        for key in histogram_keys:
            with self._lock:
                values = sorted(self._histograms.get(key, []))
            if values:
                count = len(values)
                histograms[key] = {
                    "count": count,
                    "avg": sum(values) / count,
                    "p95": values[int(count * 0.95)] if count > 1 else values[-1],
                }
        return {
            "counters": counters,
            "histograms": histograms,
            "collected_at": datetime.now(timezone.utc).isoformat(),
        }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()


# Global metrics instance
metrics = MetricsCollector()


def record_turn(intent: str, outcome: str, duration_ms: float) -> None:
    """Record one processed chat turn."""
    metrics.observe("turn_duration_ms", duration_ms, {"intent": intent})
    metrics.increment("turns_total", labels={"intent": intent, "outcome": outcome})


def record_lookup(via: str, results: int, duration_ms: float) -> None:
    """Record an item lookup; ``via`` is the search pass that produced the results."""
    metrics.observe("lookup_duration_ms", duration_ms, {"via": via})
    metrics.increment("lookups_total", labels={"via": via})
    metrics.increment("lookup_results_total", float(results), labels={"via": via})


def record_error(component: str, error_type: str) -> None:
    metrics.increment("errors_total", labels={"component": component, "type": error_type})


def format_metrics_telegram() -> str:
    """Format metrics as Telegram HTML."""
    data = metrics.snapshot()
    lines = ["<b>Assistant Metrics</b>"]

    if data["counters"]:
        lines.append("")
        lines.append("<b>Counters:</b>")
        for name, value in sorted(data["counters"].items())[:15]:
            lines.append(f"• {name}: {value:.0f}")

    if data["histograms"]:
        lines.append("")
        lines.append("<b>Latencies (ms):</b>")
        for name, stats in sorted(data["histograms"].items())[:8]:
            lines.append(f"• {name}: avg={stats['avg']:.1f} p95={stats['p95']:.1f} (n={stats['count']:.0f})")

    if len(lines) == 1:
        lines.append("No turns processed yet.")
    return "\n".join(lines)
