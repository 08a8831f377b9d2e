"""Create memo, relation, and api key tables.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

import core.config as config


revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _embedding_type(is_postgres: bool):
    if is_postgres and config.VECTOR_BACKEND_EFFECTIVE == "pgvector":
        from pgvector.sqlalchemy import Vector

        return Vector(config.EMBEDDING_DIM)
    return sa.JSON()


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    json_type = postgresql.JSONB() if is_postgres else sa.JSON()
    embedding_type = _embedding_type(is_postgres)
    has_vector = is_postgres and not isinstance(embedding_type, sa.JSON)

    if has_vector:
        op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # =============================================================================
    # Memos
    # =============================================================================
    op.create_table(
        "memory_entries",
        sa.Column("owner_id", sa.String(100), nullable=False),
        sa.Column("namespace", sa.Text(), nullable=False),
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("metadata", json_type, nullable=False),
        sa.Column("embedding", embedding_type, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("owner_id", "namespace", "id"),
    )
    op.create_index(
        "ix_memory_entries_owner_namespace_updated",
        "memory_entries",
        ["owner_id", "namespace", "updated_at"],
    )
    if has_vector:
        op.execute(
            "CREATE INDEX IF NOT EXISTS ix_memory_entries_embedding_cosine "
            "ON memory_entries USING hnsw (embedding vector_cosine_ops)"
        )
        op.execute(
            "CREATE INDEX IF NOT EXISTS ix_memory_entries_embedding_l2 "
            "ON memory_entries USING hnsw (embedding vector_l2_ops)"
        )
    if is_postgres:
        op.execute(
            "CREATE INDEX IF NOT EXISTS ix_memory_entries_metadata "
            "ON memory_entries USING gin (metadata jsonb_path_ops)"
        )

    # =============================================================================
    # Relations
    # =============================================================================
    op.create_table(
        "memory_relations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("owner_id", sa.String(100), nullable=False),
        sa.Column("namespace", sa.Text(), nullable=False),
        sa.Column("source_memo_id", sa.String(36), nullable=False),
        sa.Column("target_memo_id", sa.String(36), nullable=False),
        sa.Column("tag", sa.String(64), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "owner_id", "namespace", "source_memo_id", "target_memo_id", "tag",
            name="uq_memory_relations_edge",
        ),
        sa.CheckConstraint("weight >= 0 AND weight <= 1", name="ck_memory_relations_weight"),
    )
    op.create_index(
        "ix_memory_relations_source",
        "memory_relations",
        ["owner_id", "namespace", "source_memo_id"],
    )
    op.create_index(
        "ix_memory_relations_target",
        "memory_relations",
        ["owner_id", "namespace", "target_memo_id"],
    )

    # =============================================================================
    # API keys
    # =============================================================================
    op.create_table(
        "api_keys",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("owner_id", sa.String(100), nullable=False),
        sa.Column("root_namespace", sa.Text(), nullable=False),
        sa.Column("default_namespace", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token_hash", name="uq_api_keys_token_hash"),
    )


def downgrade() -> None:
    op.drop_table("api_keys")
    op.drop_index("ix_memory_relations_target", table_name="memory_relations")
    op.drop_index("ix_memory_relations_source", table_name="memory_relations")
    op.drop_table("memory_relations")
    op.drop_index("ix_memory_entries_owner_namespace_updated", table_name="memory_entries")
    op.drop_table("memory_entries")
