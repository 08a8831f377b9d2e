"""
Relation services: typed, weighted edges between memos of one namespace.

Supports:
- Upserting and deleting edges keyed by (source, target, tag)
- Filtered edge listing with endpoint node lookup
- Bounded-depth graph traversal in either or both directions
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence

from core.errors import NotFoundError
from core.graph import GraphEdge, collect_node_ids, traverse
from core.models import MemoryEntry, MemoryRelation
import core.config as config
from core.services.memory_shared import dialect_insert, logger


def _relation_query(db, owner_id: str, namespace: str):
    return (
        db.query(MemoryRelation)
        .filter(MemoryRelation.owner_id == owner_id)
        .filter(MemoryRelation.namespace == namespace)
    )


def _edge_filter(query, source_memo_id: str, target_memo_id: str, tag: str):
    return (
        query.filter(MemoryRelation.source_memo_id == source_memo_id)
        .filter(MemoryRelation.target_memo_id == target_memo_id)
        .filter(MemoryRelation.tag == tag)
    )


def _require_memos(db, owner_id: str, namespace: str, memo_ids: Sequence[str]) -> None:
    wanted = set(memo_ids)
    found = {
        row[0]
        for row in db.query(MemoryEntry.id)
        .filter(MemoryEntry.owner_id == owner_id)
        .filter(MemoryEntry.namespace == namespace)
        .filter(MemoryEntry.id.in_(wanted))
        .all()
    }
    missing = [memo_id for memo_id in memo_ids if memo_id not in found]
    if missing:
        raise NotFoundError("memo", f"Memo not found: {missing[0]}")


def upsert_relation(
    db,
    owner_id: str,
    namespace: str,
    *,
    source_memo_id: str,
    target_memo_id: str,
    tag: str,
    weight: float,
    reason: Optional[str] = None,
) -> MemoryRelation:
    """Create an edge or overwrite its weight and reason."""
    _require_memos(db, owner_id, namespace, [source_memo_id, target_memo_id])

    now = datetime.utcnow()
    table = MemoryRelation.__table__
    stmt = dialect_insert(db, table).values(
        owner_id=owner_id,
        namespace=namespace,
        source_memo_id=source_memo_id,
        target_memo_id=target_memo_id,
        tag=tag,
        weight=weight,
        reason=reason,
        created_at=now,
        updated_at=now,
        version=1,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["owner_id", "namespace", "source_memo_id", "target_memo_id", "tag"],
        set_={
            "weight": stmt.excluded.weight,
            "reason": stmt.excluded.reason,
            "updated_at": now,
            "version": table.c.version + 1,
        },
    )
    db.execute(stmt)
    db.commit()

    relation = _edge_filter(_relation_query(db, owner_id, namespace), source_memo_id, target_memo_id, tag).one()
    logger.info(
        "relation_saved",
        extra={"namespace": namespace, "tag": tag, "version": relation.version},
    )
    return relation


def delete_relation(
    db,
    owner_id: str,
    namespace: str,
    *,
    source_memo_id: str,
    target_memo_id: str,
    tag: str,
) -> Optional[MemoryRelation]:
    query = _edge_filter(_relation_query(db, owner_id, namespace), source_memo_id, target_memo_id, tag)
    relation = query.with_for_update().first()
    if relation is None:
        return None
    db.expunge(relation)
    query.delete(synchronize_session=False)
    db.commit()
    logger.info("relation_deleted", extra={"namespace": namespace, "tag": tag})
    return relation


def fetch_nodes(db, owner_id: str, namespace: str, memo_ids: Sequence[str]) -> list:
    """Look up ``(id, namespace, title)`` for ``memo_ids``; missing memos are skipped."""
    if not memo_ids:
        return []
    rows = (
        db.query(MemoryEntry.id, MemoryEntry.namespace, MemoryEntry.title)
        .filter(MemoryEntry.owner_id == owner_id)
        .filter(MemoryEntry.namespace == namespace)
        .filter(MemoryEntry.id.in_(set(memo_ids)))
        .all()
    )
    by_id = {row.id: row for row in rows}
    return [by_id[memo_id] for memo_id in memo_ids if memo_id in by_id]


def list_relations(
    db,
    owner_id: str,
    namespace: str,
    *,
    source_memo_id: Optional[str] = None,
    target_memo_id: Optional[str] = None,
    tag: Optional[str] = None,
    limit: int = config.RELATION_LIST_LIMIT_DEFAULT,
) -> tuple[list[MemoryRelation], list]:
    query = _relation_query(db, owner_id, namespace)
    if source_memo_id:
        query = query.filter(MemoryRelation.source_memo_id == source_memo_id)
    if target_memo_id:
        query = query.filter(MemoryRelation.target_memo_id == target_memo_id)
    if tag:
        query = query.filter(MemoryRelation.tag == tag)
    relations = query.order_by(MemoryRelation.updated_at.desc()).limit(limit).all()

    node_ids: dict[str, None] = {}
    for relation in relations:
        node_ids.setdefault(relation.source_memo_id, None)
        node_ids.setdefault(relation.target_memo_id, None)
    return relations, fetch_nodes(db, owner_id, namespace, list(node_ids))


class RelationEdgeSource:
    """Edge source backed by ``memory_relations``; one query per frontier."""

    def __init__(self, db, owner_id: str, namespace: str):
        self.db = db
        self.owner_id = owner_id
        self.namespace = namespace

    def _edges(self, column, memo_ids: Sequence[str], tag: Optional[str]) -> Iterable[MemoryRelation]:
        if not memo_ids:
            return []
        query = _relation_query(self.db, self.owner_id, self.namespace).filter(column.in_(list(memo_ids)))
        if tag:
            query = query.filter(MemoryRelation.tag == tag)
        return query.all()

    def outgoing(self, memo_ids: Sequence[str], tag: Optional[str]) -> Iterable[MemoryRelation]:
        return self._edges(MemoryRelation.source_memo_id, memo_ids, tag)

    def incoming(self, memo_ids: Sequence[str], tag: Optional[str]) -> Iterable[MemoryRelation]:
        return self._edges(MemoryRelation.target_memo_id, memo_ids, tag)


def relation_graph(
    db,
    owner_id: str,
    namespace: str,
    *,
    start_memo_id: str,
    max_depth: int = config.GRAPH_MAX_DEPTH_DEFAULT,
    direction: str = "forward",
    tag: Optional[str] = None,
    limit: int = config.GRAPH_LIMIT_DEFAULT,
) -> tuple[list[GraphEdge], list]:
    edges = traverse(
        RelationEdgeSource(db, owner_id, namespace),
        start_memo_id,
        max_depth=max_depth,
        direction=direction,
        tag=tag,
        limit=limit,
    )
    if not edges:
        return [], []
    nodes = fetch_nodes(db, owner_id, namespace, collect_node_ids(start_memo_id, edges))
    return edges, nodes
