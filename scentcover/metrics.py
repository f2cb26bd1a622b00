"""
Engine metrics.

Thread-safe counters, gauges and timings for the coverage engine. Every
unifier thread, the ingestion thread and API readers write here
concurrently, so all mutation happens under one lock.

Usage:
    from scentcover.metrics import metrics, timed

    @timed("aggregator_union")
    def recompute():
        ...

    with metrics.timer("polygon_compute"):
        polygon = compute_polygon(...)

    metrics.increment("polygons_enqueued")
    summary = metrics.get_summary()
"""

import logging
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from threading import Lock
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class TimingStats:
    """Running statistics for one timed operation."""
    name: str
    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float('inf')
    max_ms: float = 0.0
    recent_ms: deque = field(default_factory=lambda: deque(maxlen=50))

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0

    @property
    def recent_avg_ms(self) -> float:
        return sum(self.recent_ms) / len(self.recent_ms) if self.recent_ms else 0.0

    def record(self, duration_ms: float):
        self.count += 1
        self.total_ms += duration_ms
        if duration_ms < self.min_ms:
            self.min_ms = duration_ms
        if duration_ms > self.max_ms:
            self.max_ms = duration_ms
        self.recent_ms.append(duration_ms)

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "avg_ms": round(self.avg_ms, 3),
            "min_ms": 0.0 if self.count == 0 else round(self.min_ms, 3),
            "max_ms": round(self.max_ms, 3),
            "recent_avg_ms": round(self.recent_avg_ms, 3),
        }


class EngineMetrics:
    """
    Metrics collector shared by all engine threads.

    Counters only ever grow (polygons computed, items dropped, union
    failures). Gauges hold the latest value (queue depth, global version).
    Timings keep running min/avg/max plus a short recent window.
    """

    # Unions that take longer than this are logged
    SLOW_THRESHOLD_MS = 250.0

    def __init__(self, slow_threshold_ms: Optional[float] = None):
        self._timings: Dict[str, TimingStats] = {}
        self._counters: Dict[str, int] = {}
        self._gauges: Dict[str, float] = {}
        self._lock = Lock()
        self._started_at = datetime.now(timezone.utc)
        if slow_threshold_ms is not None:
            self.SLOW_THRESHOLD_MS = slow_threshold_ms

    @contextmanager
    def timer(self, name: str):
        """Time the enclosed block under `name`."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_timing(name, (time.perf_counter() - start) * 1000)

    def record_timing(self, name: str, elapsed_ms: float):
        with self._lock:
            stats = self._timings.get(name)
            if stats is None:
                stats = self._timings[name] = TimingStats(name=name)
            stats.record(elapsed_ms)

        if elapsed_ms > self.SLOW_THRESHOLD_MS:
            logger.warning(f"Slow operation: {name} took {elapsed_ms:.1f}ms")

    def increment(self, name: str, amount: int = 1):
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + amount

    def set_gauge(self, name: str, value: float):
        with self._lock:
            self._gauges[name] = value

    def get_counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def get_gauge(self, name: str) -> float:
        with self._lock:
            return self._gauges.get(name, 0.0)

    def get_timing(self, name: str) -> Optional[TimingStats]:
        with self._lock:
            return self._timings.get(name)

    def get_summary(self) -> dict:
        """Snapshot of every metric, safe to serialize."""
        with self._lock:
            uptime = (datetime.now(timezone.utc) - self._started_at).total_seconds()
            return {
                "uptime_seconds": round(uptime, 1),
                "timings": {name: s.to_dict() for name, s in self._timings.items()},
                "counters": dict(self._counters),
                "gauges": {k: round(v, 4) for k, v in self._gauges.items()},
            }

    def log_summary(self):
        """Write a one-line digest of the current metrics at INFO."""
        summary = self.get_summary()
        timings = ", ".join(
            f"{name}: {s['avg_ms']:.1f}ms avg ({s['count']} calls)"
            for name, s in summary["timings"].items()
        )
        counters = ", ".join(f"{k}={v}" for k, v in summary["counters"].items())
        logger.info(
            f"Engine metrics - uptime {summary['uptime_seconds']:.0f}s | "
            f"timings [{timings or 'none'}] | counters [{counters or 'none'}]"
        )

    def reset(self):
        with self._lock:
            self._timings.clear()
            self._counters.clear()
            self._gauges.clear()
            self._started_at = datetime.now(timezone.utc)


# Process-wide collector
metrics = EngineMetrics()


def timed(name: str):
    """Decorator form of metrics.timer(name)."""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            with metrics.timer(name):
                return func(*args, **kwargs)
        return wrapper
    return decorator


def get_metrics() -> EngineMetrics:
    return metrics
