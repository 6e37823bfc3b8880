"""Exception hierarchy for the search core."""

from typing import Optional


class SearchCoreError(Exception):
    """Base exception for search core operations."""
    pass


class EmbeddingError(SearchCoreError):
    """A single embedding computation failed.

    Does not change the worker lifecycle; callers treat semantic results for
    the affected query as empty.
    """
    pass


class WorkerInitError(EmbeddingError):
    """The embedding worker failed to start or to load its model.

    Semantic search stays disabled until the worker is shut down and
    recreated.
    """
    pass


class EmbeddingTimeout(EmbeddingError):
    """The worker did not answer an embedding request in time."""
    pass


class SearchSourceError(SearchCoreError):
    """A lexical or semantic collaborator call failed."""

    def __init__(self, source: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{source} search failed: {message}")
        self.source = source
        self.cause = cause
