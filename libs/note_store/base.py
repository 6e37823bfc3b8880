"""Base note store interfaces.

Defines the two search contracts the search core depends on, independent of
the backing implementation (hosted REST RPC endpoints or direct PostgreSQL).
Both are asynchronous and return typed hits.

Ordering contract
- ``search_notes`` returns hits in the server's relevance order
- ``match_notes`` returns hits by descending similarity, all within the
  requested threshold
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LexicalHit(BaseModel):
    """Keyword match returned by the lexical collaborator."""
    model_config = ConfigDict(frozen=True)

    note_id: str = Field(..., description="Note identifier")
    folder_id: str = Field(..., description="Owning folder")
    title: str = Field(..., description="Note title")
    content: Optional[str] = Field(None, description="Note content")
    rank: float = Field(0.0, description="Server-provided relevance rank")
    highlighted_title: Optional[str] = Field(None, description="Title with match markup")
    highlighted_snippet: Optional[str] = Field(None, description="Content snippet with match markup")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SemanticHit(BaseModel):
    """Vector similarity match returned by the semantic collaborator."""
    model_config = ConfigDict(frozen=True)

    note_id: str = Field(..., description="Note identifier")
    folder_id: str = Field(..., description="Owning folder")
    title: str = Field(..., description="Note title")
    content: str = Field("", description="Note content")
    similarity: float = Field(..., ge=0.0, le=1.0, description="Cosine similarity")

    @field_validator("content", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value

    @field_validator("similarity", mode="before")
    @classmethod
    def _clamp_rounding_noise(cls, value):
        # cosine similarity of normalized vectors can overshoot by float error
        if isinstance(value, (int, float)) and 1.0 < value <= 1.0 + 1e-6:
            return 1.0
        return value


class LexicalSearchBackend(ABC):
    """Keyword / full-text search over note titles and content."""

    @abstractmethod
    async def search_notes(
        self,
        query: str,
        folder_id: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> List[LexicalHit]:
        """Search notes by keyword.

        ``folder_id`` and ``tags`` may be absent, in which case no filtering
        is applied.
        """
        pass


class SemanticSearchBackend(ABC):
    """Vector similarity search over note embeddings."""

    @abstractmethod
    async def match_notes(
        self,
        embedding: Sequence[float],
        similarity_threshold: float,
        max_results: int,
    ) -> List[SemanticHit]:
        """Return up to ``max_results`` notes at or above the threshold."""
        pass


class NoteStore(LexicalSearchBackend, SemanticSearchBackend):
    """A backend that serves both search contracts."""

    async def close(self) -> None:
        """Release network or database resources."""
        pass


class NoteStoreError(Exception):
    """Base exception for note store operations."""
    pass


class NoteStoreConnectionError(NoteStoreError):
    """Connection error to the note store."""
    pass


class NoteStoreQueryError(NoteStoreError):
    """Query error in the note store."""
    pass
