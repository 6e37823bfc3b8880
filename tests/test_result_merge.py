"""Tests for source-grouped result merging."""

import pytest

from tidymind_search.models import SearchResultSet, SearchSource, SourceState, SourceStatus
from tidymind_search.ranking.merge import (
    GROUP_LABELS,
    LEXICAL_FAILED_NOTICE,
    LEXICAL_GROUP,
    SEMANTIC_FAILED_NOTICE,
    SEMANTIC_GROUP,
    SEMANTIC_UNAVAILABLE_NOTICE,
    merge_results,
    order_lexical,
    order_semantic,
)
from tidymind_search.runtime.lifecycle import WorkerLifecycleState, WorkerStatus
from tests.conftest import lexical_hit, semantic_hit


def _result_set(query="cats", lexical_status=SourceStatus.SUCCESS, lexical=(),
                semantic_status=SourceStatus.SUCCESS, semantic=(), semantic_error=None):
    return SearchResultSet(
        query=query,
        lexical=SourceState(SearchSource.LEXICAL, lexical_status, query, tuple(lexical)),
        semantic=SourceState(SearchSource.SEMANTIC, semantic_status, query, tuple(semantic), error=semantic_error),
    )


def test_order_lexical_by_rank_keeps_ties_stable():
    """Test lexical hits sort by rank descending with stable ties."""
    hits = [lexical_hit("a", 0.2), lexical_hit("b", 0.7), lexical_hit("c", 0.2)]

    assert [h.note_id for h in order_lexical(hits)] == ["b", "a", "c"]


def test_order_semantic_by_similarity():
    """Test semantic hits sort by similarity descending."""
    hits = [semantic_hit("a", 0.31), semantic_hit("b", 0.99), semantic_hit("c", 0.5)]

    assert [h.note_id for h in order_semantic(hits)] == ["b", "c", "a"]


def test_groups_are_never_interleaved():
    """Test lexical group precedes semantic group and each keeps its own order."""
    result_set = _result_set(
        lexical=[lexical_hit("l1", 0.1), lexical_hit("l2", 0.8)],
        semantic=[semantic_hit("s1", 0.4), semantic_hit("s2", 0.9)],
    )

    merged = merge_results(result_set)

    assert [g.key for g in merged.groups] == [LEXICAL_GROUP, SEMANTIC_GROUP]
    assert [g.label for g in merged.groups] == [GROUP_LABELS[LEXICAL_GROUP], GROUP_LABELS[SEMANTIC_GROUP]]
    assert [h.note_id for h in merged.lexical.items] == ["l2", "l1"]
    assert [h.note_id for h in merged.semantic.items] == ["s2", "s1"]
    assert merged.total == 4
    assert merged.notices == ()
    assert not merged.is_empty


def test_top_match_percent_for_semantic_group_only():
    """Test the best semantic similarity is exposed as a percentage."""
    merged = merge_results(_result_set(
        lexical=[lexical_hit("l1", 0.5)],
        semantic=[semantic_hit("s1", 0.42), semantic_hit("s2", 0.876)],
    ))

    assert merged.semantic.top_match_percent == 88
    assert merged.lexical.top_match_percent is None


@pytest.mark.parametrize("semantic_status", [SourceStatus.SUCCESS, SourceStatus.IDLE])
def test_empty_when_settled_with_no_matches(semantic_status):
    """Test the no-results state for a settled query."""
    merged = merge_results(_result_set(semantic_status=semantic_status))

    assert merged.is_settled
    assert merged.is_empty


def test_not_empty_while_pending():
    """Test an in-flight source suppresses the no-results state."""
    merged = merge_results(_result_set(semantic_status=SourceStatus.PENDING))

    assert not merged.is_settled
    assert merged.semantic.is_loading
    assert not merged.is_empty


def test_not_empty_when_semantic_unavailable():
    """Test unknown semantic matches do not count as no results."""
    merged = merge_results(_result_set(semantic_status=SourceStatus.UNAVAILABLE, semantic_error="boom"))

    assert not merged.is_empty
    assert merged.semantic_unavailable
    assert merged.semantic.error == "boom"
    assert merged.notices == (SEMANTIC_UNAVAILABLE_NOTICE,)


def test_failure_notices():
    """Test each failed source contributes a notice."""
    merged = merge_results(_result_set(
        lexical_status=SourceStatus.FAILED,
        semantic_status=SourceStatus.FAILED,
    ))

    assert merged.notices == (SEMANTIC_FAILED_NOTICE, LEXICAL_FAILED_NOTICE)
    assert merged.lexical.is_unavailable
    assert merged.semantic.is_unavailable


def test_model_loading_progress_shown_while_semantic_pending():
    """Test worker load progress surfaces only while semantic results are awaited."""
    loading = WorkerLifecycleState(WorkerStatus.LOADING, 42.0)

    pending = merge_results(_result_set(semantic_status=SourceStatus.PENDING), loading)
    settled = merge_results(_result_set(), loading)
    ready = merge_results(
        _result_set(semantic_status=SourceStatus.PENDING),
        WorkerLifecycleState(WorkerStatus.READY, 100.0),
    )

    assert pending.model_loading_progress == 42.0
    assert settled.model_loading_progress is None
    assert ready.model_loading_progress is None


def test_group_lookup_unknown_key():
    merged = merge_results(SearchResultSet())

    with pytest.raises(KeyError):
        merged.group("other")
