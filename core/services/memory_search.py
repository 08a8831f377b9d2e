"""
Similarity search over memos in one namespace.

PostgreSQL with pgvector ranks inside the database. Other backends load the
namespace's candidates and rank them with numpy.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
from sqlalchemy import select

import core.config as config
from core.errors import PivotNotFoundError, ValidationIssue
from core.metadata import metadata_contains
from core.models import MemoryEntry
from core.services.memory_shared import dialect_name, logger, vector_search_enabled
from core.validators import validate_embedding_vector, validate_limit, validate_unit_interval

COSINE = "cosine"
L2 = "l2"
DISTANCE_METRICS = (COSINE, L2)


def validate_search_options(
    *,
    k: int,
    distance_metric: str,
    minimum_similarity: Optional[float],
) -> None:
    """Reject metric and threshold combinations before anything is queried."""
    if distance_metric not in DISTANCE_METRICS:
        raise ValidationIssue(
            f"distanceMetric must be one of: {', '.join(DISTANCE_METRICS)}",
            field="distanceMetric",
            error_type="invalid_value",
        )
    if minimum_similarity is not None and distance_metric != COSINE:
        raise ValidationIssue(
            "minimumSimilarity is only supported with the cosine distance metric",
            field="minimumSimilarity",
            error_type="incompatible",
        )
    validate_limit(k, "k", config.SEARCH_K_MAX)
    if minimum_similarity is not None:
        validate_unit_interval(minimum_similarity, "minimumSimilarity")


def _base_query(db, owner_id: str, namespace: str):
    return (
        db.query(MemoryEntry)
        .filter(MemoryEntry.owner_id == owner_id)
        .filter(MemoryEntry.namespace == namespace)
    )


def _require_pivot(db, owner_id: str, namespace: str, pivot_memo_id: str) -> MemoryEntry:
    pivot = _base_query(db, owner_id, namespace).filter(MemoryEntry.id == pivot_memo_id).first()
    if pivot is None:
        raise PivotNotFoundError(pivot_memo_id)
    if pivot.embedding is None:
        raise ValidationIssue(
            "pivot memo has no stored embedding",
            field="pivotMemoId",
            error_type="invalid_value",
        )
    return pivot


def _cosine_distances(matrix: np.ndarray, reference: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(reference)
    with np.errstate(divide="ignore", invalid="ignore"):
        similarity = matrix @ reference / norms
    return 1.0 - similarity


def _l2_distances(matrix: np.ndarray, reference: np.ndarray) -> np.ndarray:
    return np.linalg.norm(matrix - reference, axis=1)


def _search_in_database(
    db,
    owner_id: str,
    namespace: str,
    *,
    embedding: Optional[Sequence[float]],
    pivot_memo_id: Optional[str],
    metadata_filter: Optional[dict],
    k: int,
    minimum_similarity: Optional[float],
    distance_metric: str,
    exclude_pivot: bool,
) -> list[tuple[MemoryEntry, Optional[float]]]:
    query = _base_query(db, owner_id, namespace)
    if metadata_filter:
        query = query.filter(MemoryEntry.metadata_.contains(metadata_filter))

    if pivot_memo_id is not None:
        reference = (
            select(MemoryEntry.embedding)
            .where(MemoryEntry.owner_id == owner_id)
            .where(MemoryEntry.namespace == namespace)
            .where(MemoryEntry.id == pivot_memo_id)
            .scalar_subquery()
        )
        if exclude_pivot:
            query = query.filter(MemoryEntry.id != pivot_memo_id)
    elif embedding is not None:
        reference = list(embedding)
    else:
        rows = query.order_by(MemoryEntry.updated_at.desc()).limit(k).all()
        return [(row, None) for row in rows]

    query = query.filter(MemoryEntry.embedding.isnot(None))
    if distance_metric == COSINE:
        distance = MemoryEntry.embedding.cosine_distance(reference)
        score = 1 - distance
    else:
        distance = MemoryEntry.embedding.l2_distance(reference)
        score = -distance

    query = query.add_columns(score.label("score"))
    if minimum_similarity is not None:
        query = query.filter(score >= minimum_similarity)
    rows = query.order_by(distance.asc()).limit(k).all()
    return [(row[0], float(row[1]) if row[1] is not None else None) for row in rows]


def _search_in_memory(
    db,
    owner_id: str,
    namespace: str,
    *,
    embedding: Optional[Sequence[float]],
    pivot: Optional[MemoryEntry],
    metadata_filter: Optional[dict],
    k: int,
    minimum_similarity: Optional[float],
    distance_metric: str,
    exclude_pivot: bool,
) -> list[tuple[MemoryEntry, Optional[float]]]:
    query = _base_query(db, owner_id, namespace)
    if pivot is not None and exclude_pivot:
        query = query.filter(MemoryEntry.id != pivot.id)
    if metadata_filter and dialect_name(db) == "postgresql":
        query = query.filter(MemoryEntry.metadata_.contains(metadata_filter))
        metadata_filter = None

    rows = query.order_by(MemoryEntry.updated_at.desc()).all()
    if metadata_filter:
        rows = [row for row in rows if metadata_contains(row.metadata_ or {}, metadata_filter)]

    if pivot is None and embedding is None:
        return [(row, None) for row in rows[:k]]

    reference = np.asarray(pivot.embedding if pivot is not None else embedding, dtype=float)
    candidates = [row for row in rows if row.embedding is not None]
    if not candidates:
        return []
    matrix = np.asarray([row.embedding for row in candidates], dtype=float)
    if distance_metric == COSINE:
        distances = _cosine_distances(matrix, reference)
        scores = 1.0 - distances
    else:
        distances = _l2_distances(matrix, reference)
        scores = -distances

    ranked = []
    for index in np.argsort(distances, kind="stable"):
        if not np.isfinite(distances[index]):
            continue
        score = float(scores[index])
        if minimum_similarity is not None and score < minimum_similarity:
            continue
        ranked.append((candidates[index], score))
        if len(ranked) >= k:
            break
    return ranked


def search_memos(
    db,
    owner_id: str,
    namespace: str,
    *,
    embedding: Optional[Sequence[float]] = None,
    pivot_memo_id: Optional[str] = None,
    metadata_filter: Optional[dict] = None,
    k: int = config.SEARCH_K_DEFAULT,
    minimum_similarity: Optional[float] = None,
    distance_metric: str = COSINE,
    exclude_pivot: bool = True,
) -> list[tuple[MemoryEntry, Optional[float]]]:
    """Rank memos in ``namespace`` against an embedding or a pivot memo.

    With neither, memos come back newest first with a ``None`` score. Cosine
    scores are ``1 - distance``; L2 scores are ``-distance``.
    """
    validate_search_options(
        k=k,
        distance_metric=distance_metric,
        minimum_similarity=minimum_similarity,
    )
    if embedding is not None:
        embedding = validate_embedding_vector(embedding)
    if embedding is not None and pivot_memo_id is not None:
        raise ValidationIssue(
            "Provide either a query embedding or pivotMemoId, not both",
            field="pivotMemoId",
            error_type="incompatible",
        )

    pivot = None
    if pivot_memo_id is not None:
        pivot = _require_pivot(db, owner_id, namespace, pivot_memo_id)

    if vector_search_enabled(db):
        results = _search_in_database(
            db,
            owner_id,
            namespace,
            embedding=embedding,
            pivot_memo_id=pivot_memo_id,
            metadata_filter=metadata_filter,
            k=k,
            minimum_similarity=minimum_similarity,
            distance_metric=distance_metric,
            exclude_pivot=exclude_pivot,
        )
    else:
        results = _search_in_memory(
            db,
            owner_id,
            namespace,
            embedding=embedding,
            pivot=pivot,
            metadata_filter=metadata_filter,
            k=k,
            minimum_similarity=minimum_similarity,
            distance_metric=distance_metric,
            exclude_pivot=exclude_pivot,
        )

    logger.info(
        "memo_search",
        extra={
            "namespace": namespace,
            "mode": "pivot" if pivot_memo_id else ("embedding" if embedding is not None else "recent"),
            "distance_metric": distance_metric,
            "result_count": len(results),
        },
    )
    return results
