"""In-process performance metrics for repository operations and the HTTP service.

Three domains are tracked behind one re-entrant lock:

* Operations: named engine steps (``parse``, ``resolve``, ``package_load``,
    ``search``, ...) with count, failures and latency aggregates.
* Package cache: hits, misses, evictions and the number of cached packages.
* Endpoints: per-route request count, latency and error rate.

Example::

        from xsd_repository.monitoring import get_monitor

        monitor = get_monitor()
        with monitor.track("resolve"):
                repository.resolve()
        monitor.record_endpoint_request("GET /types/{name}", 0.004, 200)
        monitor.get_performance_summary()["operations"]["resolve"]["count"]  # 1

Summaries are primitive-only dictionaries so they can be returned as JSON.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, Optional


@dataclass
class OperationMetrics:
    """Aggregates for one named repository operation."""

    count: int = 0
    failures: int = 0
    total_time: float = 0.0
    min_time: Optional[float] = None
    max_time: float = 0.0
    last_run: Optional[datetime] = None

    @property
    def average_time(self) -> float:
        return self.total_time / self.count if self.count else 0.0


@dataclass
class CacheMetrics:
    """Package cache counters; ``hit_rate`` is 0..1."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    cache_size: int = 0

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        total = self.total_requests
        return self.hits / total if total else 0.0


@dataclass
class EndpointMetrics:
    """Aggregated metrics for a single logical endpoint.

    Attributes:
        total_requests: Count of invocations.
        total_response_time: Cumulative latency (seconds).
        error_count: Requests answered with HTTP status >= 400.
        response_times: Rolling window of recent latencies.
    """

    total_requests: int = 0
    total_response_time: float = 0.0
    error_count: int = 0
    last_accessed: Optional[datetime] = None
    response_times: deque = field(default_factory=lambda: deque(maxlen=100))

    @property
    def average_response_time(self) -> float:
        return self.total_response_time / self.total_requests if self.total_requests else 0.0

    @property
    def error_rate(self) -> float:
        return self.error_count / self.total_requests if self.total_requests else 0.0


class PerformanceMonitor:
    """Thread-safe collector shared by the engine and the HTTP service."""

    def __init__(self, enable_detailed_tracking: bool = True):
        self.enable_detailed_tracking = enable_detailed_tracking
        self.start_time = datetime.now()
        self._lock = threading.RLock()
        self.operations: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self.cache_metrics = CacheMetrics()
        self.endpoint_metrics: Dict[str, EndpointMetrics] = defaultdict(EndpointMetrics)
        self.recent_errors: deque = deque(maxlen=100)

    def record_operation(self, name: str, duration: float, success: bool = True) -> None:
        with self._lock:
            metrics = self.operations[name]
            metrics.count += 1
            metrics.total_time += duration
            metrics.max_time = max(metrics.max_time, duration)
            metrics.min_time = duration if metrics.min_time is None else min(metrics.min_time, duration)
            metrics.last_run = datetime.now()
            if not success:
                metrics.failures += 1

    @contextmanager
    def track(self, name: str) -> Iterator[None]:
        """Time the enclosed block as operation ``name``; exceptions count as failures."""
        start = time.perf_counter()
        success = False
        try:
            yield
            success = True
        finally:
            self.record_operation(name, time.perf_counter() - start, success)

    def record_cache_hit(self) -> None:
        with self._lock:
            self.cache_metrics.hits += 1

    def record_cache_miss(self) -> None:
        with self._lock:
            self.cache_metrics.misses += 1

    def record_cache_eviction(self) -> None:
        with self._lock:
            self.cache_metrics.evictions += 1

    def update_cache_size(self, cache_size: int) -> None:
        with self._lock:
            self.cache_metrics.cache_size = cache_size

    def record_endpoint_request(
        self, endpoint: str, response_time: float, status_code: int = 200
    ) -> None:
        """Record an API endpoint invocation.

        Args:
            endpoint: Route template such as ``GET /types/{name}``.
            response_time: Seconds spent handling the request.
            status_code: HTTP status; >= 400 counts as an error.
        """
        with self._lock:
            metrics = self.endpoint_metrics[endpoint]
            metrics.total_requests += 1
            metrics.total_response_time += response_time
            metrics.last_accessed = datetime.now()
            if self.enable_detailed_tracking:
                metrics.response_times.append(response_time)
            if status_code >= 400:
                metrics.error_count += 1
                self.recent_errors.append(
                    {
                        "endpoint": endpoint,
                        "status_code": status_code,
                        "timestamp": datetime.now().isoformat(),
                    }
                )

    def get_performance_summary(self) -> Dict[str, Any]:
        with self._lock:
            slowest = sorted(
                self.endpoint_metrics.items(),
                key=lambda x: x[1].average_response_time,
                reverse=True,
            )[:5]
            return {
                "timestamp": datetime.now().isoformat(),
                "uptime_seconds": round((datetime.now() - self.start_time).total_seconds(), 2),
                "operations": {
                    name: {
                        "count": m.count,
                        "failures": m.failures,
                        "average_time_ms": round(m.average_time * 1000, 3),
                        "min_time_ms": round((m.min_time or 0.0) * 1000, 3),
                        "max_time_ms": round(m.max_time * 1000, 3),
                        "last_run": m.last_run.isoformat() if m.last_run else None,
                    }
                    for name, m in sorted(self.operations.items())
                },
                "cache": {
                    "hits": self.cache_metrics.hits,
                    "misses": self.cache_metrics.misses,
                    "evictions": self.cache_metrics.evictions,
                    "total_requests": self.cache_metrics.total_requests,
                    "hit_rate": round(self.cache_metrics.hit_rate * 100, 2),
                    "cache_size": self.cache_metrics.cache_size,
                },
                "api": {
                    "total_requests": sum(
                        m.total_requests for m in self.endpoint_metrics.values()
                    ),
                    "endpoints": {
                        endpoint: {
                            "requests": m.total_requests,
                            "avg_response_time_ms": round(m.average_response_time * 1000, 2),
                            "error_rate": round(m.error_rate * 100, 2),
                        }
                        for endpoint, m in sorted(self.endpoint_metrics.items())
                    },
                    "slowest_endpoints": [endpoint for endpoint, _ in slowest],
                    "recent_errors": list(self.recent_errors)[-20:],
                },
            }

    def reset_metrics(self) -> None:
        """Reset all counters (primarily for tests)."""
        with self._lock:
            self.operations.clear()
            self.cache_metrics = CacheMetrics()
            self.endpoint_metrics.clear()
            self.recent_errors.clear()
            self.start_time = datetime.now()


_monitor: Optional[PerformanceMonitor] = None


def get_monitor() -> PerformanceMonitor:
    """Return (and lazily initialize) the process-wide monitor."""
    global _monitor
    if _monitor is None:
        _monitor = PerformanceMonitor()
    return _monitor


def initialize_monitor(enable_detailed_tracking: bool = True) -> PerformanceMonitor:
    global _monitor
    _monitor = PerformanceMonitor(enable_detailed_tracking)
    return _monitor
