"""Client-side search coordination for Tidy Mind notes.

Layout:
- ``encoders``: embedding bridge and the background worker it drives.
- ``hybrid``: debounced lexical + semantic search orchestration.
- ``ranking``: source-grouped result presentation.
- ``retrievers``: query-keyed result cache.
- ``pipelines``: retry policy for collaborator calls.
- ``runtime``: observable embedding worker lifecycle state.

Programmatic surface: ``EmbeddingBridge.embed``,
``SearchOrchestrator.dispatch_query`` and
``SearchOrchestrator.on_results_changed``.
"""

from .encoders.embedding_bridge import EmbeddingBridge, get_embedding_bridge, shutdown_embedding_bridge
from .errors import (
    EmbeddingError,
    EmbeddingTimeout,
    SearchCoreError,
    SearchSourceError,
    WorkerInitError,
)
from .hybrid.search_orchestrator import SearchOrchestrator, create_search_orchestrator
from .models import SearchFilters, SearchResultSet, SearchSource, SourceState, SourceStatus
from .ranking.merge import MergedResults, ResultGroup, merge_results

__all__ = [
    "EmbeddingBridge",
    "EmbeddingError",
    "EmbeddingTimeout",
    "MergedResults",
    "ResultGroup",
    "SearchCoreError",
    "SearchFilters",
    "SearchOrchestrator",
    "SearchResultSet",
    "SearchSource",
    "SearchSourceError",
    "SourceState",
    "SourceStatus",
    "WorkerInitError",
    "create_search_orchestrator",
    "get_embedding_bridge",
    "merge_results",
    "shutdown_embedding_bridge",
]
