"""
Shared helpers for memory services: serialization and dialect plumbing.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.dialects import postgresql, sqlite

import core.config as config
from core.models import MemoryEntry, MemoryRelation

logger = config.logger


def dialect_name(db) -> str:
    return db.get_bind().dialect.name


def dialect_insert(db, model):
    """Dialect-specific INSERT supporting ``on_conflict_do_update``."""
    name = dialect_name(db)
    if name == "postgresql":
        return postgresql.insert(model)
    if name == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Unsupported database dialect: {name}")


def vector_search_enabled(db) -> bool:
    return (
        dialect_name(db) == "postgresql"
        and config.VECTOR_BACKEND_EFFECTIVE == "pgvector"
    )


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_memo(row: MemoryEntry) -> dict:
    payload = {
        "memoId": row.id,
        "namespace": row.namespace,
        "content": row.content,
        "metadata": dict(row.metadata_ or {}),
        "createdAt": _isoformat(row.created_at),
        "updatedAt": _isoformat(row.updated_at),
        "version": row.version,
    }
    if row.title:
        payload["title"] = row.title
    return payload


def serialize_relation(row: MemoryRelation) -> dict:
    payload = {
        "namespace": row.namespace,
        "sourceMemoId": row.source_memo_id,
        "targetMemoId": row.target_memo_id,
        "tag": row.tag,
        "weight": float(row.weight),
        "createdAt": _isoformat(row.created_at),
        "updatedAt": _isoformat(row.updated_at),
        "version": row.version,
    }
    if row.reason:
        payload["reason"] = row.reason
    return payload


def serialize_node(row: MemoryEntry) -> dict:
    payload = {"memoId": row.id, "namespace": row.namespace}
    if row.title:
        payload["title"] = row.title
    return payload
