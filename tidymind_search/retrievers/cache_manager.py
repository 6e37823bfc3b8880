"""Query-keyed result cache for search sources.

Successful results are cached per ``(source, query, filters)`` for a short
time so retyping a recent query is served without another collaborator call
or embedding round trip. Failed and unavailable outcomes are never cached.
"""

import hashlib
import json
import time
from typing import Any, Callable, Dict, Optional, Tuple
import structlog

from libs.common.metrics import MetricsCollector, get_metrics_collector
from ..models import SearchFilters, SearchSource

logger = structlog.get_logger("search_cache")


class SearchCacheManager:
    """In-memory TTL cache for search results."""

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        max_entries: int = 256,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.metrics = metrics or get_metrics_collector()
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}

    def _generate_cache_key(self, source: SearchSource, query: str, filters: SearchFilters) -> str:
        """Generate cache key from the query and its filters."""
        payload = json.dumps(
            {
                "source": source.value,
                "query": query,
                "folder_id": filters.folder_id,
                "tags": sorted(filters.tags),
            },
            sort_keys=True,
        )
        return f"search:{source.value}:{hashlib.md5(payload.encode()).hexdigest()}"

    def get(self, source: SearchSource, query: str, filters: SearchFilters) -> Optional[Any]:
        if self.ttl_seconds <= 0:
            return None

        key = self._generate_cache_key(source, query, filters)
        entry = self._entries.get(key)
        if entry is None:
            self.metrics.record_cache_miss(source.value)
            return None

        stored_at, results = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            self.metrics.record_cache_miss(source.value)
            return None

        self.metrics.record_cache_hit(source.value)
        logger.debug("Search cache hit", source=source.value, query=query[:50])
        return results

    def put(self, source: SearchSource, query: str, filters: SearchFilters, results: Any) -> None:
        if self.ttl_seconds <= 0:
            return

        if len(self._entries) >= self.max_entries:
            oldest_key = min(self._entries, key=lambda k: self._entries[k][0])
            del self._entries[oldest_key]

        key = self._generate_cache_key(source, query, filters)
        self._entries[key] = (self._clock(), results)

    def invalidate(self) -> None:
        """Drop every cached result, e.g. after notes were edited."""
        count = len(self._entries)
        self._entries.clear()
        logger.info("Search cache invalidated", entries=count)

    def __len__(self) -> int:
        return len(self._entries)
