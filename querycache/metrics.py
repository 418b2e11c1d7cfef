"""
Prometheus metrics for cache reads, writes and invalidations.
"""

import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram


class CacheMetrics:
    """Collector for cache-aside and invalidation metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Register the cache metrics on the registry."""
        with self._lock:
            self._metrics["hits_total"] = Counter(
                "querycache_hits_total",
                "Total cache hits",
                ["resource"],
                registry=self.registry
            )

            self._metrics["misses_total"] = Counter(
                "querycache_misses_total",
                "Total cache misses",
                ["resource"],
                registry=self.registry
            )

            self._metrics["writes_total"] = Counter(
                "querycache_writes_total",
                "Total cache entries written",
                ["resource"],
                registry=self.registry
            )

            self._metrics["store_errors_total"] = Counter(
                "querycache_store_errors_total",
                "Total key-value store failures",
                ["operation"],
                registry=self.registry
            )

            self._metrics["invalidations_total"] = Counter(
                "querycache_invalidations_total",
                "Total namespace version bumps",
                ["resource"],
                registry=self.registry
            )

            self._metrics["engine_duration_seconds"] = Histogram(
                "querycache_engine_duration_seconds",
                "Query engine execution time in seconds",
                ["resource", "operation"],
                registry=self.registry
            )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_hit(self, resource: str):
        self._metrics["hits_total"].labels(resource=resource).inc()

    def record_miss(self, resource: str):
        self._metrics["misses_total"].labels(resource=resource).inc()

    def record_write(self, resource: str):
        self._metrics["writes_total"].labels(resource=resource).inc()

    def record_store_error(self, operation: str):
        self._metrics["store_errors_total"].labels(operation=operation).inc()

    def record_invalidation(self, resource: str):
        self._metrics["invalidations_total"].labels(resource=resource).inc()

    @contextmanager
    def measure_engine(self, resource: str, operation: str) -> Iterator[None]:
        """Time a query engine call."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self._metrics["engine_duration_seconds"].labels(
                resource=resource,
                operation=operation
            ).observe(time.perf_counter() - start)
