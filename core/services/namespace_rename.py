"""
Namespace rename: move one memo, or a whole namespace with its relations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError

from core.db import transactions_supported
from core.errors import NamespaceRenameConflict, TransactionsUnsupportedError
from core.models import MemoryEntry, MemoryRelation
from core.services.memory_shared import logger


@dataclass(frozen=True)
class NamespaceRenameResult:
    memo_ids: list[str] = field(default_factory=list)
    relation_count: int = 0


def _conflict(from_namespace: str, to_namespace: str) -> NamespaceRenameConflict:
    return NamespaceRenameConflict(
        f"Namespace rename from '{from_namespace}' to '{to_namespace}' collides with existing entries",
        data={"fromNamespace": from_namespace, "toNamespace": to_namespace},
    )


def _rename_single_memo(
    db,
    owner_id: str,
    from_namespace: str,
    to_namespace: str,
    memo_id: str,
) -> NamespaceRenameResult:
    try:
        updated = (
            db.query(MemoryEntry)
            .filter(MemoryEntry.owner_id == owner_id)
            .filter(MemoryEntry.namespace == from_namespace)
            .filter(MemoryEntry.id == memo_id)
            .update(
                {
                    MemoryEntry.namespace: to_namespace,
                    MemoryEntry.updated_at: datetime.utcnow(),
                    MemoryEntry.version: MemoryEntry.version + 1,
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise _conflict(from_namespace, to_namespace) from exc
    return NamespaceRenameResult(memo_ids=[memo_id] if updated else [], relation_count=0)


def _rename_subtree(
    db,
    owner_id: str,
    from_namespace: str,
    to_namespace: str,
) -> NamespaceRenameResult:
    now = datetime.utcnow()
    try:
        memo_ids = [
            row[0]
            for row in db.query(MemoryEntry.id)
            .filter(MemoryEntry.owner_id == owner_id)
            .filter(MemoryEntry.namespace == from_namespace)
            .order_by(MemoryEntry.id)
            .with_for_update()
            .all()
        ]
        if not memo_ids:
            db.rollback()
            return NamespaceRenameResult()

        (
            db.query(MemoryEntry)
            .filter(MemoryEntry.owner_id == owner_id)
            .filter(MemoryEntry.namespace == from_namespace)
            .filter(MemoryEntry.id.in_(memo_ids))
            .update(
                {
                    MemoryEntry.namespace: to_namespace,
                    MemoryEntry.updated_at: now,
                    MemoryEntry.version: MemoryEntry.version + 1,
                },
                synchronize_session=False,
            )
        )
        relation_count = (
            db.query(MemoryRelation)
            .filter(MemoryRelation.owner_id == owner_id)
            .filter(MemoryRelation.namespace == from_namespace)
            .update(
                {
                    MemoryRelation.namespace: to_namespace,
                    MemoryRelation.updated_at: now,
                    MemoryRelation.version: MemoryRelation.version + 1,
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise _conflict(from_namespace, to_namespace) from exc
    except Exception:
        db.rollback()
        raise
    return NamespaceRenameResult(memo_ids=memo_ids, relation_count=relation_count)


def rename_namespace(
    db,
    owner_id: str,
    from_namespace: str,
    to_namespace: str,
    memo_id: Optional[str] = None,
) -> NamespaceRenameResult:
    """Relocate one memo (``memo_id`` given) or every memo and relation in a namespace.

    Subtree mode runs in a single transaction and refuses to start on an
    engine without multi-statement transactions.
    """
    if from_namespace == to_namespace:
        return NamespaceRenameResult()

    if memo_id is not None:
        result = _rename_single_memo(db, owner_id, from_namespace, to_namespace, memo_id)
    else:
        if not transactions_supported(db.get_bind()):
            raise TransactionsUnsupportedError(
                "Namespace rename requires transactional database support"
            )
        result = _rename_subtree(db, owner_id, from_namespace, to_namespace)

    logger.info(
        "namespace_renamed",
        extra={
            "from_namespace": from_namespace,
            "to_namespace": to_namespace,
            "memo_count": len(result.memo_ids),
            "relation_count": result.relation_count,
        },
    )
    return result
