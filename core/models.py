"""
memospace Database Models
PostgreSQL + pgvector schema (SQLite for local development)
"""

from datetime import datetime
import uuid
from sqlalchemy import (
    Column, Integer, String, Text, Float, DateTime, CheckConstraint, Index, UniqueConstraint, JSON
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

import core.config as config

DB_BACKEND_EFFECTIVE = config.DB_BACKEND_EFFECTIVE
VECTOR_BACKEND_EFFECTIVE = config.VECTOR_BACKEND_EFFECTIVE

try:
    from pgvector.sqlalchemy import Vector as PgVector
    PGVECTOR_AVAILABLE = True
except ImportError:
    PgVector = None
    PGVECTOR_AVAILABLE = False

if (
    DB_BACKEND_EFFECTIVE == "postgres"
    and VECTOR_BACKEND_EFFECTIVE == "pgvector"
    and PGVECTOR_AVAILABLE
):
    EMBEDDING_COLUMN_TYPE = PgVector(config.EMBEDDING_DIM)
else:
    EMBEDDING_COLUMN_TYPE = JSON

JSON_TYPE = JSONB if DB_BACKEND_EFFECTIVE == "postgres" else JSON


def _uuid_default() -> str:
    return str(uuid.uuid4())


Base = declarative_base()


# =============================================================================
# Memos
# =============================================================================

class MemoryEntry(Base):
    __tablename__ = "memory_entries"

    owner_id = Column(String(100), primary_key=True, nullable=False)
    namespace = Column(Text, primary_key=True, nullable=False)
    id = Column(String(36), primary_key=True, nullable=False, default=_uuid_default)
    title = Column(Text)
    content = Column(Text, nullable=False)
    metadata_ = Column("metadata", JSON_TYPE, nullable=False, default=dict)
    embedding = Column(EMBEDDING_COLUMN_TYPE)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_memory_entries_owner_namespace_updated", "owner_id", "namespace", "updated_at"),
    )


# =============================================================================
# Relations
# =============================================================================

class MemoryRelation(Base):
    __tablename__ = "memory_relations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(100), nullable=False)
    namespace = Column(Text, nullable=False)
    source_memo_id = Column(String(36), nullable=False)
    target_memo_id = Column(String(36), nullable=False)
    tag = Column(String(config.MAX_TAG_LENGTH), nullable=False)
    weight = Column(Float, nullable=False)
    reason = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint(
            "owner_id", "namespace", "source_memo_id", "target_memo_id", "tag",
            name="uq_memory_relations_edge",
        ),
        CheckConstraint("weight >= 0 AND weight <= 1", name="ck_memory_relations_weight"),
        Index("ix_memory_relations_source", "owner_id", "namespace", "source_memo_id"),
        Index("ix_memory_relations_target", "owner_id", "namespace", "target_memo_id"),
    )


# =============================================================================
# API keys
# =============================================================================

class ApiKey(Base):
    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_hash = Column(String(64), nullable=False, unique=True)
    owner_id = Column(String(100), nullable=False)
    root_namespace = Column(Text, nullable=False)
    default_namespace = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    last_used_at = Column(DateTime(timezone=True))
