"""Search orchestrator for debounced lexical and semantic search.

Turns a stream of raw query edits into up-to-date lexical and semantic result
states without redundant or out-of-order work.

Execution model
- ``dispatch_query`` restarts a debounce timer; only the last edit within
  the quiet period is committed
- A commit bumps each source's generation and starts one task per source;
  the tasks never wait on each other
- A finished task writes its outcome only if its generation is still the
  latest for that source, so a slow stale response can never overwrite a
  newer one (the embedding call itself is not interruptible)
- Collaborator failures become a per-source ``failed`` status; a broken
  embedding worker makes semantic search ``unavailable`` while lexical
  search keeps working
"""

import asyncio
import time
from typing import Callable, Dict, List, Optional, Set, Tuple
import structlog

from libs.common.config import SearchConfig
from libs.common.logging import log_performance
from libs.common.metrics import MetricsCollector, get_metrics_collector
from libs.note_store.base import LexicalSearchBackend, SemanticSearchBackend
from libs.note_store.factory import create_note_store
from ..encoders.embedding_bridge import EmbeddingBridge, get_embedding_bridge
from ..errors import EmbeddingError, EmbeddingTimeout, SearchSourceError, WorkerInitError
from ..models import SearchFilters, SearchResultSet, SearchSource, SourceState, SourceStatus
from ..pipelines.retry_handler import RetryHandler, create_collaborator_retry_handler
from ..ranking.merge import order_lexical, order_semantic
from ..retrievers.cache_manager import SearchCacheManager
from ..runtime.lifecycle import WorkerStatus

logger = structlog.get_logger("search.orchestrator")

ResultsListener = Callable[[SearchResultSet], None]

NO_FILTERS = SearchFilters()


class SearchOrchestrator:
    """Coordinates debounced queries across the two result sources.

    Parameters
    - lexical: Keyword search collaborator
    - semantic: Vector similarity collaborator
    - embedder: Embedding bridge used to embed semantic queries
    - config: ``SearchConfig`` with debounce, gate, threshold and cache knobs
    - cache: Optional result cache (built from config by default)
    - retry_handler: Retry policy for the semantic collaborator call
    """

    def __init__(
        self,
        lexical: LexicalSearchBackend,
        semantic: SemanticSearchBackend,
        embedder: EmbeddingBridge,
        config: Optional[SearchConfig] = None,
        cache: Optional[SearchCacheManager] = None,
        metrics: Optional[MetricsCollector] = None,
        retry_handler: Optional[RetryHandler] = None,
    ):
        self.config = config or SearchConfig()
        self.lexical = lexical
        self.semantic = semantic
        self.embedder = embedder
        self.metrics = metrics or get_metrics_collector()
        self.cache = cache or SearchCacheManager(
            ttl_seconds=self.config.tm_search_cache_ttl_seconds,
            metrics=self.metrics,
        )
        self.retry_handler = retry_handler or create_collaborator_retry_handler(
            max_attempts=self.config.tm_search_semantic_retry_attempts,
        )

        self.debounce_seconds = self.config.tm_search_debounce_seconds
        self.min_semantic_length = self.config.tm_search_min_semantic_length
        self.similarity_threshold = self.config.tm_search_similarity_threshold
        self.max_semantic_results = self.config.tm_search_max_semantic_results

        self._state = SearchResultSet()
        self._generations: Dict[SearchSource, int] = {
            SearchSource.LEXICAL: 0,
            SearchSource.SEMANTIC: 0,
        }
        self._listeners: List[ResultsListener] = []
        self._debounce_task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def state(self) -> SearchResultSet:
        return self._state

    def generation(self, source: SearchSource) -> int:
        return self._generations[source]

    def on_results_changed(self, listener: ResultsListener) -> Callable[[], None]:
        """Register ``listener`` for every state change; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch_query(self, query: str, filters: Optional[SearchFilters] = None) -> None:
        """Accept a raw query edit.

        Restarts the debounce timer; the query is committed once no further
        edit arrives within the debounce window. Blank input is a no-op that
        clears results immediately. Must be called from the event loop.
        """
        self._cancel_debounce()

        if not query or not query.strip():
            self._clear()
            return

        self._debounce_task = asyncio.get_running_loop().create_task(
            self._debounced_commit(query, filters or NO_FILTERS)
        )

    async def _debounced_commit(self, query: str, filters: SearchFilters) -> None:
        await asyncio.sleep(self.debounce_seconds)
        self._debounce_task = None
        self._start(query, filters)

    async def commit(self, query: str, filters: Optional[SearchFilters] = None) -> SearchResultSet:
        """Dispatch ``query`` immediately and wait for both sources to settle.

        Returns the state at that point, which a newer commit may already
        have replaced.
        """
        self._cancel_debounce()
        tasks = self._start(query, filters or NO_FILTERS)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return self._state

    async def wait_idle(self) -> SearchResultSet:
        """Wait until no debounce timer or source task is outstanding."""
        while True:
            pending = [task for task in self._in_flight if not task.done()]
            if self._debounce_task is not None and not self._debounce_task.done():
                pending.append(self._debounce_task)
            if not pending:
                return self._state
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        """Cancel the debounce timer and every in-flight source task."""
        self._cancel_debounce()
        tasks = list(self._in_flight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._listeners.clear()

    def invalidate_cache(self) -> None:
        """Forget cached results, e.g. after notes were created or edited."""
        self.cache.invalidate()

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    def _next_generation(self, source: SearchSource) -> int:
        self._generations[source] += 1
        return self._generations[source]

    def _clear(self) -> None:
        lexical_gen = self._next_generation(SearchSource.LEXICAL)
        semantic_gen = self._next_generation(SearchSource.SEMANTIC)
        self._state = SearchResultSet(
            lexical=SourceState(SearchSource.LEXICAL, generation=lexical_gen),
            semantic=SourceState(SearchSource.SEMANTIC, generation=semantic_gen),
        )
        self._publish()

    def _start(self, raw_query: str, filters: SearchFilters) -> Tuple[asyncio.Task, ...]:
        query = (raw_query or "").strip()
        if not query:
            self._clear()
            return ()

        loop = asyncio.get_running_loop()
        tasks: List[asyncio.Task] = []

        lexical_gen = self._next_generation(SearchSource.LEXICAL)
        cached = self.cache.get(SearchSource.LEXICAL, query, filters)
        if cached is not None:
            lexical = SourceState(SearchSource.LEXICAL, SourceStatus.SUCCESS, query, cached, generation=lexical_gen)
        else:
            lexical = SourceState(SearchSource.LEXICAL, SourceStatus.PENDING, query, generation=lexical_gen)
            tasks.append(loop.create_task(self._run_lexical(query, filters, lexical_gen)))

        semantic_gen = self._next_generation(SearchSource.SEMANTIC)
        if len(query) < self.min_semantic_length:
            semantic = SourceState(SearchSource.SEMANTIC, SourceStatus.IDLE, query, generation=semantic_gen)
        elif self.embedder.state.status == WorkerStatus.ERROR:
            semantic = SourceState(
                SearchSource.SEMANTIC,
                SourceStatus.UNAVAILABLE,
                query,
                error=self.embedder.state.error,
                generation=semantic_gen,
            )
        else:
            cached = self.cache.get(SearchSource.SEMANTIC, query, NO_FILTERS)
            if cached is not None:
                semantic = SourceState(SearchSource.SEMANTIC, SourceStatus.SUCCESS, query, cached, generation=semantic_gen)
            else:
                semantic = SourceState(SearchSource.SEMANTIC, SourceStatus.PENDING, query, generation=semantic_gen)
                tasks.append(loop.create_task(self._run_semantic(query, semantic_gen)))

        for task in tasks:
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

        self._state = SearchResultSet(query=query, filters=filters, lexical=lexical, semantic=semantic)
        logger.info(
            "Search query committed",
            query=query[:50],
            folder_id=filters.folder_id,
            tags=list(filters.tags),
            semantic_dispatched=semantic.status == SourceStatus.PENDING,
        )
        self._publish()
        return tuple(tasks)

    async def _run_lexical(self, query: str, filters: SearchFilters, generation: int) -> None:
        start_time = time.perf_counter()
        try:
            hits = await self.lexical.search_notes(query, filters.folder_id, filters.tag_list)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = SearchSourceError(SearchSource.LEXICAL.value, str(e), e)
            logger.error("Lexical search failed", query=query[:50], error=str(e))
            self._finish(SearchSource.LEXICAL, generation, start_time, SourceStatus.FAILED, error=str(error))
            return

        results = tuple(order_lexical(hits))
        self.cache.put(SearchSource.LEXICAL, query, filters, results)
        self._finish(SearchSource.LEXICAL, generation, start_time, SourceStatus.SUCCESS, results=results)

    async def _run_semantic(self, query: str, generation: int) -> None:
        start_time = time.perf_counter()
        try:
            embedding = await self.embedder.embed(query)
        except WorkerInitError as e:
            logger.warning("Semantic search unavailable", error=str(e))
            self._finish(SearchSource.SEMANTIC, generation, start_time, SourceStatus.UNAVAILABLE, error=str(e))
            return
        except EmbeddingTimeout as e:
            self._finish(SearchSource.SEMANTIC, generation, start_time, SourceStatus.FAILED, error=str(e))
            return
        except EmbeddingError as e:
            logger.warning("Embedding generation failed, skipping vector search", error=str(e))
            self._finish(SearchSource.SEMANTIC, generation, start_time, SourceStatus.SUCCESS)
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = SearchSourceError(SearchSource.SEMANTIC.value, str(e), e)
            logger.error("Query embedding failed unexpectedly", query=query[:50], error=str(e))
            self._finish(SearchSource.SEMANTIC, generation, start_time, SourceStatus.FAILED, error=str(error))
            return

        if generation != self._generations[SearchSource.SEMANTIC]:
            self._discard_stale(SearchSource.SEMANTIC, generation)
            return

        try:
            hits = await self.retry_handler.execute_with_retry(
                self.semantic.match_notes,
                embedding,
                self.similarity_threshold,
                self.max_semantic_results,
                operation_name="match_notes",
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = SearchSourceError(SearchSource.SEMANTIC.value, str(e), e)
            logger.error("Vector search failed", query=query[:50], error=str(e))
            self._finish(SearchSource.SEMANTIC, generation, start_time, SourceStatus.FAILED, error=str(error))
            return

        results = tuple(order_semantic(hits))
        self.cache.put(SearchSource.SEMANTIC, query, NO_FILTERS, results)
        self._finish(SearchSource.SEMANTIC, generation, start_time, SourceStatus.SUCCESS, results=results)

    def _finish(
        self,
        source: SearchSource,
        generation: int,
        start_time: float,
        status: SourceStatus,
        results: tuple = (),
        error: Optional[str] = None,
    ) -> None:
        duration = time.perf_counter() - start_time
        self.metrics.record_search(source.value, status.value, duration)

        if generation != self._generations[source]:
            self._discard_stale(source, generation)
            return

        current = self._state.for_source(source)
        updated = current.evolve(status=status, results=results, error=error)
        if source == SearchSource.LEXICAL:
            self._state = SearchResultSet(self._state.query, self._state.filters, updated, self._state.semantic)
        else:
            self._state = SearchResultSet(self._state.query, self._state.filters, self._state.lexical, updated)

        log_performance(
            f"{source.value}_search",
            duration * 1000,
            status=status.value,
            results_count=len(results),
        )
        self._publish()

    def _discard_stale(self, source: SearchSource, generation: int) -> None:
        self.metrics.record_stale_response(source.value)
        logger.debug(
            "Discarding stale search response",
            source=source.value,
            generation=generation,
            latest_generation=self._generations[source],
        )

    def _publish(self) -> None:
        snapshot = self._state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error("Results listener failed", error=str(e))


def create_search_orchestrator(
    config: Optional[SearchConfig] = None,
    embedder: Optional[EmbeddingBridge] = None,
    **store_kwargs
) -> SearchOrchestrator:
    """Wire an orchestrator from configuration.

    Uses the configured note store for both sources and the process-wide
    embedding bridge unless one is given.
    """
    config = config or SearchConfig()
    store = create_note_store(config, **store_kwargs)
    return SearchOrchestrator(
        lexical=store,
        semantic=store,
        embedder=embedder or get_embedding_bridge(config),
        config=config,
    )
