"""Metrics collection for the search core.

Provides a thin convenience wrapper around ``prometheus_client`` so the
embedding bridge and the search orchestrator record embedding, search, cache
and worker lifecycle metrics with consistent label sets.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (can be injected for tests)
"""

from typing import Optional
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest
import structlog

logger = structlog.get_logger("metrics")

WORKER_STATUS_CODES = {"idle": 0, "loading": 1, "ready": 2, "error": 3}


class MetricsCollector:
    """Centralized metrics collection for search core components.

    Parameters
    - component_name: Logical name used for scoping
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, component_name: str, registry: Optional[CollectorRegistry] = None):
        self.component_name = component_name
        self.registry = registry or CollectorRegistry()

        self.embedding_requests = Counter(
            'tm_embedding_requests_total',
            'Total embedding requests by outcome',
            ['model_name', 'status'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'tm_embedding_duration_seconds',
            'Embedding round-trip duration',
            ['model_name'],
            registry=self.registry
        )

        self.worker_status = Gauge(
            'tm_embedding_worker_status',
            'Embedding worker lifecycle (0 idle, 1 loading, 2 ready, 3 error)',
            registry=self.registry
        )

        self.worker_starts = Counter(
            'tm_embedding_worker_starts_total',
            'Number of embedding worker processes started',
            registry=self.registry
        )

        self.search_requests = Counter(
            'tm_search_requests_total',
            'Total search source dispatches by outcome',
            ['source', 'status'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'tm_search_duration_seconds',
            'Search source duration',
            ['source'],
            registry=self.registry
        )

        self.stale_responses = Counter(
            'tm_search_stale_responses_total',
            'Responses discarded because a newer query superseded them',
            ['source'],
            registry=self.registry
        )

        self.cache_hits = Counter(
            'tm_cache_hits_total',
            'Total cache hits',
            ['cache_type'],
            registry=self.registry
        )

        self.cache_misses = Counter(
            'tm_cache_misses_total',
            'Total cache misses',
            ['cache_type'],
            registry=self.registry
        )

    def record_embedding(self, model_name: str, status: str, duration: float) -> None:
        """Record an embedding round trip; duration is in seconds."""
        self.embedding_requests.labels(model_name=model_name, status=status).inc()
        self.embedding_duration.labels(model_name=model_name).observe(duration)

    def set_worker_status(self, status: str) -> None:
        """Mirror the worker lifecycle status into a gauge."""
        self.worker_status.set(WORKER_STATUS_CODES.get(status, -1))

    def record_worker_start(self) -> None:
        self.worker_starts.inc()

    def record_search(self, source: str, status: str, duration: float) -> None:
        """Record search metrics for one source."""
        self.search_requests.labels(source=source, status=status).inc()
        self.search_duration.labels(source=source).observe(duration)

    def record_stale_response(self, source: str) -> None:
        self.stale_responses.labels(source=source).inc()

    def record_cache_hit(self, cache_type: str) -> None:
        """Record cache hit."""
        self.cache_hits.labels(cache_type=cache_type).inc()

    def record_cache_miss(self, cache_type: str) -> None:
        """Record cache miss."""
        self.cache_misses.labels(cache_type=cache_type).inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(component_name: str = "search-core") -> MetricsCollector:
    """Get or create the process-wide metrics collector.

    Returns a singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(component_name)
    return _metrics_collector
