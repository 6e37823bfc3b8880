"""Data models shared by the search core.

Hit types come from the note store interfaces. Orchestrator state is kept in
frozen dataclasses: observers receive immutable snapshots and can never
mutate state behind the orchestrator's back.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple, Union

from libs.note_store.base import LexicalHit, SemanticHit


class SearchSource(str, Enum):
    """The two independent result sources."""
    LEXICAL = "lexical"
    SEMANTIC = "semantic"


class SourceStatus(str, Enum):
    """Per-source state machine: idle -> pending -> success | failed."""
    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"  # semantic only: embedding worker is in error


Hit = Union[LexicalHit, SemanticHit]


@dataclass(frozen=True)
class SearchFilters:
    """Optional folder scope and tag set; absent means no filtering."""
    folder_id: Optional[str] = None
    tags: Tuple[str, ...] = ()

    @classmethod
    def create(cls, folder_id: Optional[str] = None, tags: Optional[List[str]] = None) -> "SearchFilters":
        cleaned = tuple(tag.strip() for tag in (tags or []) if tag and tag.strip())
        return cls(folder_id=folder_id or None, tags=cleaned)

    @classmethod
    def from_input(cls, folder_id: Optional[str], tag_text: Optional[str]) -> "SearchFilters":
        """Build filters from a folder picker value and a comma separated tag field."""
        return cls.create(folder_id, (tag_text or "").split(","))

    @property
    def tag_list(self) -> Optional[List[str]]:
        return list(self.tags) if self.tags else None


@dataclass(frozen=True)
class SourceState:
    """Snapshot of one result source."""
    source: SearchSource
    status: SourceStatus = SourceStatus.IDLE
    query: str = ""
    results: Tuple[Hit, ...] = ()
    error: Optional[str] = None
    generation: int = 0

    @property
    def is_loading(self) -> bool:
        return self.status == SourceStatus.PENDING

    @property
    def is_settled(self) -> bool:
        return self.status != SourceStatus.PENDING

    def evolve(self, **changes) -> "SourceState":
        return replace(self, **changes)


@dataclass(frozen=True)
class SearchResultSet:
    """Lexical and semantic states for the latest committed query.

    The two collections are never merged into one list.
    """
    query: str = ""
    filters: SearchFilters = field(default_factory=SearchFilters)
    lexical: SourceState = field(default_factory=lambda: SourceState(SearchSource.LEXICAL))
    semantic: SourceState = field(default_factory=lambda: SourceState(SearchSource.SEMANTIC))

    @property
    def is_settled(self) -> bool:
        return self.lexical.is_settled and self.semantic.is_settled

    @property
    def semantic_unavailable(self) -> bool:
        return self.semantic.status == SourceStatus.UNAVAILABLE

    def for_source(self, source: SearchSource) -> SourceState:
        return self.lexical if source == SearchSource.LEXICAL else self.semantic
