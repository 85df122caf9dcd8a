# courier/infra/metrics.py
"""
In-process dispatch metrics, served as JSON by ``GET /metrics``.

Counters are plain running totals. Histograms keep running count/sum/min/max
over every observation plus a bounded window of recent samples, which is
all p95/p99 are computed from.
"""
from __future__ import annotations
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Iterator

from courier.infra.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_SAMPLES = 1024


@dataclass
class Histogram:
    """Running totals plus the most recent ``max_samples`` observations"""
    max_samples: int = DEFAULT_MAX_SAMPLES
    count: int = 0
    total: float = 0.0
    min: float | None = None
    max: float | None = None
    samples: deque[float] = field(init=False, repr=False)

    def __post_init__(self):
        if self.max_samples < 1:
            raise ValueError(f"max_samples must be >= 1, got {self.max_samples}")
        self.samples = deque(maxlen=self.max_samples)

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)
        self.samples.append(value)

    def get_stats(self) -> dict:
        if not self.count:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0, "p99": 0, "window": 0}

        window = sorted(self.samples)

        def percentile(p: float) -> float:
            return window[min(int(len(window) * p), len(window) - 1)]

        return {
            "count": self.count,
            "min": self.min,
            "max": self.max,
            "avg": self.total / self.count,
            "p95": percentile(0.95),
            "p99": percentile(0.99),
            "window": len(window),
        }


class MetricsCollector:
    """Thread-safe registry of labelled counters and histograms."""

    def __init__(self, max_samples: int = DEFAULT_MAX_SAMPLES):
        self.max_samples = max_samples
        self._counters: dict[str, int] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = Lock()

    def inc(self, name: str, amount: int = 1, **labels) -> None:
        key = metric_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def observe(self, name: str, value: float, **labels) -> None:
        key = metric_key(name, labels)
        with self._lock:
            histogram = self._histograms.get(key)
            if histogram is None:
                histogram = self._histograms[key] = Histogram(self.max_samples)
            histogram.observe(value)

    def get_counter(self, name: str, **labels) -> int:
        """Current value of one counter (0 if never incremented)"""
        with self._lock:
            return self._counters.get(metric_key(name, labels), 0)

    def get_metrics(self) -> dict:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "histograms": {k: h.get_stats() for k, h in self._histograms.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.info("Metrics reset")


def metric_key(name: str, labels: dict | None = None) -> str:
    """``name{k1=v1,k2=v2}`` with labels sorted; bare ``name`` without labels"""
    if not labels:
        return name
    label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
    return f"{name}{{{label_str}}}"


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _metrics


@contextmanager
def timed(name: str, **labels) -> Iterator[None]:
    """Observe the block's wall time (seconds) into histogram ``name``."""
    start = time.monotonic()
    try:
        yield
    finally:
        _metrics.observe(name, time.monotonic() - start, **labels)


class DispatchMetrics:
    """Dispatch-level metrics tracking"""

    @staticmethod
    def attempt(provider: str, ok: bool) -> None:
        _metrics.inc(
            "dispatch_attempts_total",
            provider=provider, status="sent" if ok else "failed",
        )

    @staticmethod
    def outcome(ok: bool) -> None:
        _metrics.inc("dispatch_outcomes_total", status="success" if ok else "failure")

    @staticmethod
    def fallback(from_provider: str) -> None:
        _metrics.inc("dispatch_fallbacks_total", provider=from_provider)

    @staticmethod
    def breaker_rejected() -> None:
        _metrics.inc("circuit_breaker_rejections_total")

    @staticmethod
    def breaker_opened() -> None:
        _metrics.inc("circuit_breaker_opened_total")

    @staticmethod
    def rate_limit_wait(wait_seconds: float) -> None:
        _metrics.inc("rate_limit_waits_total")
        _metrics.observe("rate_limit_wait_seconds", wait_seconds)

    @staticmethod
    def queued() -> None:
        _metrics.inc("dispatch_queued_total")

    @staticmethod
    def track_dispatch_time():
        return timed("dispatch_duration_seconds")


class HttpMetrics:
    """Request-level metrics recorded by the HTTP middleware"""

    @staticmethod
    def request(method: str, path: str, status_code: int, duration_seconds: float) -> None:
        _metrics.inc("http_requests_total", method=method, path=path, status=status_code)
        _metrics.observe("http_request_duration_seconds", duration_seconds, path=path)

    @staticmethod
    def unhandled_error(path: str) -> None:
        _metrics.inc("http_unhandled_errors_total", path=path)
