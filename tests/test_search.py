import uuid

import pytest

from core.errors import PivotNotFoundError, ValidationIssue
from core.services import memory_search, memory_store
from tests.conftest import OWNER_ID, axis_embedding

NS = "legacy/DEF"


def _save(db, content, embedding, namespace=NS, **kwargs):
    return memory_store.upsert_memo(db, OWNER_ID, namespace, content=content, embedding=embedding, **kwargs)


@pytest.fixture
def corpus(db_session):
    return {
        "x": _save(db_session, "along x", axis_embedding(1.0, 0.0), metadata_patch={"kind": "axis", "tags": ["x"]}),
        "xy": _save(db_session, "mostly x", axis_embedding(1.0, 0.5), metadata_patch={"kind": "mix"}),
        "y": _save(db_session, "along y", axis_embedding(0.0, 1.0), metadata_patch={"kind": "axis", "tags": ["y"]}),
        "other": _save(db_session, "elsewhere", axis_embedding(1.0, 0.0), namespace="legacy/ABC"),
    }


def _ids(results):
    return [memo.id for memo, _ in results]


def test_cosine_ranks_by_similarity(db_session, corpus):
    results = memory_search.search_memos(db_session, OWNER_ID, NS, embedding=axis_embedding(1.0, 0.0))
    assert _ids(results) == [corpus["x"].id, corpus["xy"].id, corpus["y"].id]
    scores = [score for _, score in results]
    assert scores[0] == pytest.approx(1.0)
    assert scores[2] == pytest.approx(0.0)
    assert scores == sorted(scores, reverse=True)


def test_search_never_crosses_namespaces(db_session, corpus):
    results = memory_search.search_memos(db_session, OWNER_ID, "legacy/ABC", embedding=axis_embedding(0.0, 1.0))
    assert _ids(results) == [corpus["other"].id]


def test_l2_scores_are_negative_distances(db_session, corpus):
    results = memory_search.search_memos(
        db_session, OWNER_ID, NS, embedding=axis_embedding(1.0, 0.0), distance_metric="l2"
    )
    assert _ids(results) == [corpus["x"].id, corpus["xy"].id, corpus["y"].id]
    assert results[0][1] == pytest.approx(0.0)
    assert results[1][1] == pytest.approx(-0.5)


def test_minimum_similarity_filters(db_session, corpus):
    results = memory_search.search_memos(
        db_session, OWNER_ID, NS, embedding=axis_embedding(1.0, 0.0), minimum_similarity=0.8
    )
    assert _ids(results) == [corpus["x"].id, corpus["xy"].id]
    assert all(score >= 0.8 for _, score in results)


def test_k_limits_results(db_session, corpus):
    results = memory_search.search_memos(db_session, OWNER_ID, NS, embedding=axis_embedding(1.0, 0.0), k=1)
    assert _ids(results) == [corpus["x"].id]


def test_pivot_is_excluded_by_default(db_session, corpus):
    results = memory_search.search_memos(db_session, OWNER_ID, NS, pivot_memo_id=corpus["x"].id)
    assert _ids(results) == [corpus["xy"].id, corpus["y"].id]

    results = memory_search.search_memos(
        db_session, OWNER_ID, NS, pivot_memo_id=corpus["x"].id, exclude_pivot=False
    )
    assert _ids(results)[0] == corpus["x"].id
    assert results[0][1] == pytest.approx(1.0)


def test_missing_pivot(db_session, corpus):
    with pytest.raises(PivotNotFoundError) as exc_info:
        memory_search.search_memos(db_session, OWNER_ID, NS, pivot_memo_id=str(uuid.uuid4()))
    assert exc_info.value.error_code == "pivot_not_found"

    # The pivot must live in the searched namespace.
    with pytest.raises(PivotNotFoundError):
        memory_search.search_memos(db_session, OWNER_ID, NS, pivot_memo_id=corpus["other"].id)


def test_metadata_filter_uses_containment(db_session, corpus):
    results = memory_search.search_memos(
        db_session, OWNER_ID, NS, embedding=axis_embedding(1.0, 0.0), metadata_filter={"kind": "axis"}
    )
    assert _ids(results) == [corpus["x"].id, corpus["y"].id]

    results = memory_search.search_memos(
        db_session, OWNER_ID, NS, embedding=axis_embedding(1.0, 0.0), metadata_filter={"tags": ["y"]}
    )
    assert _ids(results) == [corpus["y"].id]


def test_without_reference_returns_recent(db_session, corpus):
    results = memory_search.search_memos(db_session, OWNER_ID, NS, k=2)
    assert _ids(results) == [corpus["y"].id, corpus["xy"].id]
    assert all(score is None for _, score in results)


def test_zero_vectors_are_skipped(db_session, corpus):
    zero = _save(db_session, "empty vector", axis_embedding())
    results = memory_search.search_memos(db_session, OWNER_ID, NS, embedding=axis_embedding(1.0, 0.0))
    assert zero.id not in _ids(results)


@pytest.mark.parametrize(
    "options, field",
    [
        ({"k": 10, "distance_metric": "l2", "minimum_similarity": 0.5}, "minimumSimilarity"),
        ({"k": 10, "distance_metric": "dot", "minimum_similarity": None}, "distanceMetric"),
        ({"k": 0, "distance_metric": "cosine", "minimum_similarity": None}, "k"),
        ({"k": 101, "distance_metric": "cosine", "minimum_similarity": None}, "k"),
        ({"k": 10, "distance_metric": "cosine", "minimum_similarity": 1.5}, "minimumSimilarity"),
    ],
)
def test_invalid_options_fail_before_querying(options, field):
    with pytest.raises(ValidationIssue) as exc_info:
        memory_search.search_memos(None, OWNER_ID, NS, embedding=axis_embedding(1.0), **options)
    assert exc_info.value.field == field


def test_query_and_pivot_are_exclusive(db_session, corpus):
    with pytest.raises(ValidationIssue):
        memory_search.search_memos(
            db_session, OWNER_ID, NS, embedding=axis_embedding(1.0), pivot_memo_id=corpus["x"].id
        )


@pytest.mark.parametrize(
    "embedding, error_type",
    [
        ([1.0, 2.0, 3.0], "invalid_dimension"),
        (axis_embedding(float("nan")), "invalid_value"),
    ],
)
def test_bad_query_vectors_fail_before_querying(embedding, error_type):
    with pytest.raises(ValidationIssue) as exc_info:
        memory_search.search_memos(None, OWNER_ID, NS, embedding=embedding)
    assert exc_info.value.field == "embedding"
    assert exc_info.value.error_type == error_type


def test_save_rejects_wrong_dimension(db_session):
    with pytest.raises(ValidationIssue) as exc_info:
        _save(db_session, "short", [1.0, 2.0, 3.0])
    assert exc_info.value.error_type == "invalid_dimension"
    assert memory_store.list_memos(db_session, OWNER_ID, NS)[0] == []
