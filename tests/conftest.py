"""Shared fakes and fixtures for search core tests."""

import asyncio
from typing import Callable, Dict, List, Optional, Sequence

import pytest
from prometheus_client import CollectorRegistry

from libs.common.config import EmbeddingConfig, SearchConfig
from libs.common.metrics import MetricsCollector
from libs.note_store.base import LexicalHit, NoteStore, NoteStoreQueryError, SemanticHit
from tidymind_search.encoders.embedding_bridge import EmbeddingBridge
from tidymind_search.encoders.embedding_worker import EmbeddingWorker
from tidymind_search.hybrid.search_orchestrator import SearchOrchestrator
from tidymind_search.pipelines.retry_handler import create_collaborator_retry_handler


def vector_for(text: str) -> List[float]:
    """Deterministic fake embedding; distinct texts give distinct first components."""
    return [float(sum(ord(c) for c in text)), float(len(text)), 1.0]


class FakeEmbeddingWorker(EmbeddingWorker):
    """In-process worker that answers on the event loop."""

    def __init__(
        self,
        delays: Optional[Dict[str, float]] = None,
        fail_texts: Sequence[str] = (),
        load_error: Optional[str] = None,
        start_error: Optional[Exception] = None,
        hang: bool = False,
        embed_fn: Callable[[str], List[float]] = vector_for,
    ):
        self.delays = delays or {}
        self.fail_texts = set(fail_texts)
        self.load_error = load_error
        self.start_error = start_error
        self.hang = hang
        self.embed_fn = embed_fn
        self.posted: List[dict] = []
        self.started = False
        self.terminated = False
        self._on_message = None

    def start(self, on_message) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True
        self._on_message = on_message
        loop = asyncio.get_running_loop()
        if self.load_error:
            loop.call_soon(on_message, {"status": "init_error", "error": self.load_error})
        else:
            loop.call_soon(on_message, {"status": "progress", "progress": 50.0})
            loop.call_soon(on_message, {"status": "ready", "dimension": 3})

    def post(self, message: dict) -> None:
        self.posted.append(message)
        if self.hang or self.load_error:
            return
        delay = self.delays.get(message["text"], 0.0)
        asyncio.get_running_loop().call_later(delay, self._respond, message)

    def _respond(self, message: dict) -> None:
        if self.terminated:
            return
        if message["text"] in self.fail_texts:
            self._on_message({"status": "error", "id": message["id"], "error": "extraction failed"})
        else:
            self._on_message({
                "status": "complete",
                "id": message["id"],
                "output": self.embed_fn(message["text"]),
            })

    def terminate(self) -> None:
        self.terminated = True

    @property
    def posted_texts(self) -> List[str]:
        return [message["text"] for message in self.posted]


class FakeWorkerFactory:
    """Builds fake workers and remembers every one it built."""

    def __init__(self, **worker_kwargs):
        self.worker_kwargs = worker_kwargs
        self.created: List[FakeEmbeddingWorker] = []

    def __call__(self) -> FakeEmbeddingWorker:
        worker = FakeEmbeddingWorker(**self.worker_kwargs)
        self.created.append(worker)
        return worker

    @property
    def last(self) -> FakeEmbeddingWorker:
        return self.created[-1]


class FakeNoteStore(NoteStore):
    """Scriptable lexical and semantic collaborator."""

    def __init__(
        self,
        lexical_delays: Optional[Dict[str, float]] = None,
        fail_lexical: bool = False,
        fail_semantic: bool = False,
        lexical_hits: Optional[Dict[str, List[LexicalHit]]] = None,
        semantic_hits: Optional[List[SemanticHit]] = None,
    ):
        self.lexical_delays = lexical_delays or {}
        self.fail_lexical = fail_lexical
        self.fail_semantic = fail_semantic
        self.lexical_hits = lexical_hits or {}
        self.semantic_hits = semantic_hits
        self.lexical_calls: List[tuple] = []
        self.semantic_calls: List[tuple] = []

    async def search_notes(self, query, folder_id=None, tags=None):
        self.lexical_calls.append((query, folder_id, tags))
        await asyncio.sleep(self.lexical_delays.get(query, 0.0))
        if self.fail_lexical:
            raise NoteStoreQueryError("lexical backend down")
        if query in self.lexical_hits:
            return self.lexical_hits[query]
        return [lexical_hit(f"lex-{query}", rank=0.5)]

    async def match_notes(self, embedding, similarity_threshold, max_results):
        self.semantic_calls.append((list(embedding), similarity_threshold, max_results))
        if self.fail_semantic:
            raise NoteStoreQueryError("match_notes RPC failed")
        if self.semantic_hits is not None:
            return self.semantic_hits
        return [semantic_hit(f"sem-{int(embedding[0])}", similarity=0.8)]


def lexical_hit(note_id: str, rank: float = 0.0, folder_id: str = "folder-1") -> LexicalHit:
    return LexicalHit(note_id=note_id, folder_id=folder_id, title=f"Title {note_id}", content="body", rank=rank)


def semantic_hit(note_id: str, similarity: float, folder_id: str = "folder-1") -> SemanticHit:
    return SemanticHit(note_id=note_id, folder_id=folder_id, title=f"Title {note_id}", content="body", similarity=similarity)


@pytest.fixture
def metrics():
    return MetricsCollector("test", registry=CollectorRegistry())


@pytest.fixture
def worker_factory():
    return FakeWorkerFactory()


@pytest.fixture
def make_bridge(metrics):
    def _make(factory=None, timeout: float = 1.0) -> EmbeddingBridge:
        return EmbeddingBridge(
            config=EmbeddingConfig(tm_embedding_timeout_seconds=timeout),
            worker_factory=factory or FakeWorkerFactory(),
            metrics=metrics,
        )
    return _make


@pytest.fixture
def make_orchestrator(metrics):
    def _make(store: FakeNoteStore, bridge: EmbeddingBridge, debounce: float = 0.05, cache_ttl: float = 0.0) -> SearchOrchestrator:
        config = SearchConfig(
            tm_search_debounce_seconds=debounce,
            tm_search_cache_ttl_seconds=cache_ttl,
        )
        return SearchOrchestrator(
            lexical=store,
            semantic=store,
            embedder=bridge,
            config=config,
            metrics=metrics,
            retry_handler=create_collaborator_retry_handler(base_delay=0.0, max_delay=0.0),
        )
    return _make
