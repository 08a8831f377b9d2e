"""
Memo persistence: save, lookup, delete, listing and metadata properties.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import func, or_

from core.errors import NotFoundError
from core.metadata import merge_metadata, set_metadata_property, version_sort_key
from core.models import MemoryEntry, MemoryRelation
from core.namespace import split_namespace, truncate_namespace
import core.config as config
from core.services.memory_shared import dialect_insert, logger
from core.validators import validate_embedding_vector

_METADATA_COLUMN = MemoryEntry.__mapper__.columns["metadata_"]


def _memo_query(db, owner_id: str, namespace: str):
    return (
        db.query(MemoryEntry)
        .filter(MemoryEntry.owner_id == owner_id)
        .filter(MemoryEntry.namespace == namespace)
    )


def get_memo(db, owner_id: str, namespace: str, memo_id: str, *, for_update: bool = False) -> Optional[MemoryEntry]:
    query = _memo_query(db, owner_id, namespace).filter(MemoryEntry.id == memo_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def upsert_memo(
    db,
    owner_id: str,
    namespace: str,
    *,
    content: str,
    embedding: Sequence[float],
    memo_id: Optional[str] = None,
    title: Optional[str] = None,
    metadata_patch: Optional[dict] = None,
) -> MemoryEntry:
    """Create a memo or update it in place.

    The version bump and title fallback happen inside one
    ``INSERT ... ON CONFLICT DO UPDATE``; metadata is merged against the
    locked current row.
    """
    embedding = validate_embedding_vector(embedding)
    memo_id = memo_id or str(uuid.uuid4())
    title_value = title.strip() if isinstance(title, str) and title.strip() else None
    now = datetime.utcnow()

    existing = get_memo(db, owner_id, namespace, memo_id, for_update=True)
    merged = merge_metadata(existing.metadata_ if existing else None, metadata_patch)

    table = MemoryEntry.__table__
    stmt = dialect_insert(db, MemoryEntry.__table__).values(
        {
            table.c.owner_id: owner_id,
            table.c.namespace: namespace,
            table.c.id: memo_id,
            table.c.title: title_value,
            table.c.content: content,
            _METADATA_COLUMN: merged,
            table.c.embedding: embedding,
            table.c.created_at: now,
            table.c.updated_at: now,
            table.c.version: 1,
        }
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.owner_id, table.c.namespace, table.c.id],
        set_={
            table.c.content: stmt.excluded.content,
            table.c.embedding: stmt.excluded.embedding,
            table.c.title: func.coalesce(stmt.excluded.title, table.c.title),
            _METADATA_COLUMN: merged,
            table.c.updated_at: now,
            table.c.version: table.c.version + 1,
        },
    )
    db.execute(stmt)
    db.commit()

    memo = get_memo(db, owner_id, namespace, memo_id)
    logger.info(
        "memo_saved",
        extra={"namespace": namespace, "memo_id": memo_id, "version": memo.version},
    )
    return memo


def delete_memo(db, owner_id: str, namespace: str, memo_id: str) -> Optional[MemoryEntry]:
    """Delete a memo and every relation in its namespace that references it."""
    memo = get_memo(db, owner_id, namespace, memo_id, for_update=True)
    if memo is None:
        return None
    db.expunge(memo)

    relation_count = (
        db.query(MemoryRelation)
        .filter(MemoryRelation.owner_id == owner_id)
        .filter(MemoryRelation.namespace == namespace)
        .filter(
            or_(
                MemoryRelation.source_memo_id == memo_id,
                MemoryRelation.target_memo_id == memo_id,
            )
        )
        .delete(synchronize_session=False)
    )
    _memo_query(db, owner_id, namespace).filter(MemoryEntry.id == memo_id).delete(
        synchronize_session=False
    )
    db.commit()
    logger.info(
        "memo_deleted",
        extra={"namespace": namespace, "memo_id": memo_id, "relation_count": relation_count},
    )
    return memo


def list_memos(
    db,
    owner_id: str,
    namespace: str,
    *,
    limit: int = config.LIST_LIMIT_DEFAULT,
    offset: int = 0,
    order_by: Optional[str] = None,
    order_direction: str = "desc",
) -> tuple[list[MemoryEntry], Optional[int]]:
    """Page through a namespace; returns ``(items, next_offset)``.

    ``order_by`` names a metadata key compared as a dotted version string.
    """
    limit = max(1, min(limit, config.LIST_LIMIT_MAX))
    offset = max(0, offset)
    descending = order_direction != "asc"
    query = _memo_query(db, owner_id, namespace)

    if order_by:
        rows = query.all()
        rows.sort(
            key=lambda row: (version_sort_key((row.metadata_ or {}).get(order_by)), row.version),
            reverse=descending,
        )
        page = rows[offset: offset + limit]
        has_more = offset + len(page) < len(rows)
    else:
        if descending:
            query = query.order_by(MemoryEntry.updated_at.desc(), MemoryEntry.version.desc())
        else:
            query = query.order_by(MemoryEntry.updated_at.asc(), MemoryEntry.version.asc())
        rows = query.offset(offset).limit(limit + 1).all()
        page = rows[:limit]
        has_more = len(rows) > limit

    next_offset = offset + len(page) if has_more else None
    return page, next_offset


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def list_namespaces(
    db,
    owner_id: str,
    base_namespace: str,
    *,
    depth: int = config.NAMESPACE_DEPTH_DEFAULT,
    limit: int = config.NAMESPACE_LIMIT_DEFAULT,
) -> list[str]:
    """Distinct namespaces at or below ``base_namespace``, cut to ``depth`` levels."""
    depth = max(1, min(depth, config.NAMESPACE_DEPTH_MAX))
    limit = max(1, min(limit, config.NAMESPACE_LIMIT_MAX))
    rows = (
        db.query(MemoryEntry.namespace)
        .filter(MemoryEntry.owner_id == owner_id)
        .filter(
            or_(
                MemoryEntry.namespace == base_namespace,
                MemoryEntry.namespace.like(f"{_escape_like(base_namespace)}/%", escape="\\"),
            )
        )
        .distinct()
        .order_by(MemoryEntry.namespace.asc())
        .limit(limit)
        .all()
    )

    base_segments = split_namespace(base_namespace)
    namespaces = {base_namespace}
    for (namespace,) in rows:
        namespaces.add(truncate_namespace(namespace, base_segments, depth))
    return sorted(namespaces)


def update_memo_property(
    db,
    owner_id: str,
    namespace: str,
    memo_id: str,
    name: str,
    value: Any,
) -> tuple[MemoryEntry, Any, str, bool]:
    """Set (or with ``value=None`` delete) one metadata key.

    Returns ``(memo, previous_value, action, changed)``. Unchanged writes do
    not bump the version.
    """
    memo = get_memo(db, owner_id, namespace, memo_id, for_update=True)
    if memo is None:
        raise NotFoundError("memo", f"Memo not found: {memo_id}")

    metadata, previous, action, changed = set_metadata_property(memo.metadata_, name, value)
    if changed:
        memo.metadata_ = metadata
        memo.version = MemoryEntry.version + 1
        memo.updated_at = datetime.utcnow()
        db.commit()
        memo = get_memo(db, owner_id, namespace, memo_id)
        logger.info(
            "memo_property_changed",
            extra={"namespace": namespace, "memo_id": memo_id, "property": name, "action": action},
        )
    else:
        db.rollback()
        memo = get_memo(db, owner_id, namespace, memo_id)
    return memo, previous, action, changed
