"""Result merge and presentation grouping.

Lexical and semantic hits are presented as two labeled groups, each ordered
by its own source's relevance signal. The groups are never interleaved and
their scores are never normalized against each other: a full-text rank and a
cosine similarity are not comparable, so no cross-source ranking is implied.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from libs.note_store.base import LexicalHit, SemanticHit
from ..models import Hit, SearchResultSet, SearchSource, SourceState, SourceStatus
from ..runtime.lifecycle import WorkerLifecycleState, WorkerStatus

LEXICAL_GROUP = "lexical-matches"
SEMANTIC_GROUP = "semantic-matches"

GROUP_LABELS = {
    LEXICAL_GROUP: "Keyword Matches",
    SEMANTIC_GROUP: "AI Semantic Matches",
}

SEMANTIC_UNAVAILABLE_NOTICE = "AI search unavailable. Using keyword search only."
SEMANTIC_FAILED_NOTICE = "AI search failed for this query. Showing keyword matches only."
LEXICAL_FAILED_NOTICE = "Keyword search failed."


def order_lexical(hits: Iterable[LexicalHit]) -> List[LexicalHit]:
    """Order by server rank, highest first; ties keep server order."""
    return sorted(hits, key=lambda hit: -hit.rank)


def order_semantic(hits: Iterable[SemanticHit]) -> List[SemanticHit]:
    """Order by similarity, highest first."""
    return sorted(hits, key=lambda hit: -hit.similarity)


@dataclass(frozen=True)
class ResultGroup:
    key: str
    label: str
    status: SourceStatus
    items: Tuple[Hit, ...] = ()
    error: Optional[str] = None

    @property
    def is_loading(self) -> bool:
        return self.status == SourceStatus.PENDING

    @property
    def is_unavailable(self) -> bool:
        """True when the group could not produce results, as opposed to finding none."""
        return self.status in (SourceStatus.FAILED, SourceStatus.UNAVAILABLE)

    @property
    def top_match_percent(self) -> Optional[int]:
        if self.key != SEMANTIC_GROUP or not self.items:
            return None
        return round(self.items[0].similarity * 100)

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class MergedResults:
    """Renderable view over a ``SearchResultSet``."""
    query: str
    groups: Tuple[ResultGroup, ...]
    notices: Tuple[str, ...] = ()
    model_loading_progress: Optional[float] = None

    def group(self, key: str) -> ResultGroup:
        for group in self.groups:
            if group.key == key:
                return group
        raise KeyError(key)

    @property
    def lexical(self) -> ResultGroup:
        return self.group(LEXICAL_GROUP)

    @property
    def semantic(self) -> ResultGroup:
        return self.group(SEMANTIC_GROUP)

    @property
    def is_settled(self) -> bool:
        return not any(group.is_loading for group in self.groups)

    @property
    def semantic_unavailable(self) -> bool:
        return self.semantic.is_unavailable

    @property
    def total(self) -> int:
        return sum(len(group) for group in self.groups)

    @property
    def is_empty(self) -> bool:
        """No matches from either source for a non-empty, fully settled query.

        A semantic source that was never dispatched (query below the length
        gate) counts as settled with zero items; a failed or unavailable
        source does not, since its matches are unknown.
        """
        if not self.query or not self.is_settled or self.total:
            return False
        return (
            self.lexical.status == SourceStatus.SUCCESS
            and self.semantic.status in (SourceStatus.SUCCESS, SourceStatus.IDLE)
        )


def _group(key: str, state: SourceState) -> ResultGroup:
    if key == LEXICAL_GROUP:
        items = tuple(order_lexical(state.results))
    else:
        items = tuple(order_semantic(state.results))
    return ResultGroup(
        key=key,
        label=GROUP_LABELS[key],
        status=state.status,
        items=items,
        error=state.error,
    )


def merge_results(
    result_set: SearchResultSet,
    lifecycle: Optional[WorkerLifecycleState] = None,
) -> MergedResults:
    """Group a result set by source for presentation.

    Parameters
    - result_set: Snapshot published by the search orchestrator
    - lifecycle: Optional embedding worker state; while the model is still
      loading and semantic results are pending, its progress is surfaced
    """
    lexical = _group(LEXICAL_GROUP, result_set.lexical)
    semantic = _group(SEMANTIC_GROUP, result_set.semantic)

    notices: List[str] = []
    if result_set.semantic.status == SourceStatus.UNAVAILABLE:
        notices.append(SEMANTIC_UNAVAILABLE_NOTICE)
    elif result_set.semantic.status == SourceStatus.FAILED:
        notices.append(SEMANTIC_FAILED_NOTICE)
    if result_set.lexical.status == SourceStatus.FAILED:
        notices.append(LEXICAL_FAILED_NOTICE)

    progress = None
    if (
        lifecycle is not None
        and lifecycle.status == WorkerStatus.LOADING
        and result_set.for_source(SearchSource.SEMANTIC).is_loading
    ):
        progress = lifecycle.progress

    return MergedResults(
        query=result_set.query,
        groups=(lexical, semantic),
        notices=tuple(notices),
        model_loading_progress=progress,
    )
