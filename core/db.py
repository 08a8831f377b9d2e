"""
Database initialization and migration helpers.
"""

from __future__ import annotations

import os
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

import core.config as config


class DB:
    """Database state holder (avoids global scoping issues)."""

    engine = None
    SessionLocal = None


def build_engine(database_url: str, *, sqlite: bool, autocommit: bool = False):
    engine_kwargs = {"pool_pre_ping": True}
    if sqlite:
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    engine = create_engine(database_url, **engine_kwargs)
    if autocommit:
        # Set as an execution option so transactions_supported can read it back.
        engine = engine.execution_options(isolation_level="AUTOCOMMIT")
    return engine


def transactions_supported(bind) -> bool:
    """False when ``bind`` runs every statement in its own implicit transaction."""
    if bind is None:
        return False
    isolation = bind.get_execution_options().get("isolation_level")
    return str(isolation or "").upper() != "AUTOCOMMIT"


def _get_alembic_config():
    try:
        from alembic.config import Config
    except ImportError as exc:
        raise RuntimeError("Alembic is required for migrations") from exc

    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    alembic_cfg = Config(os.path.join(base_dir, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(base_dir, "alembic"))
    if config.DATABASE_URL:
        alembic_cfg.set_main_option("sqlalchemy.url", config.DATABASE_URL)
    return alembic_cfg


def _get_schema_revisions(engine) -> tuple[Optional[str], Optional[str]]:
    from alembic.runtime.migration import MigrationContext
    from alembic.script import ScriptDirectory

    alembic_cfg = _get_alembic_config()
    script = ScriptDirectory.from_config(alembic_cfg)
    head_revision = script.get_current_head()
    with engine.connect() as conn:
        context = MigrationContext.configure(conn)
        current_revision = context.get_current_revision()
    return current_revision, head_revision


def _ensure_schema_up_to_date(engine) -> None:
    from alembic import command

    current_rev, head_rev = _get_schema_revisions(engine)
    if current_rev == head_rev:
        return

    if config.AUTO_MIGRATE_ON_STARTUP:
        alembic_cfg = _get_alembic_config()
        command.upgrade(alembic_cfg, "head")
        new_current, _ = _get_schema_revisions(engine)
        if new_current != head_rev:
            raise RuntimeError("Database migration did not reach expected revision")
    else:
        raise RuntimeError(
            f"Database schema out of date (current={current_rev}, expected={head_rev}). "
            "Run 'alembic upgrade head' or set AUTO_MIGRATE_ON_STARTUP=true for dev."
        )


def init_db() -> None:
    """Initialize database connection and bring the schema to head."""
    config.validate_and_prepare_config()

    config.logger.info("Connecting to database...")
    DB.engine = build_engine(
        config.DATABASE_URL,
        sqlite=config.DB_BACKEND == "sqlite",
        autocommit=config.DB_AUTOCOMMIT,
    )
    DB.SessionLocal = sessionmaker(bind=DB.engine)

    if (
        config.AUTO_CREATE_EXTENSIONS
        and config.DB_BACKEND == "postgres"
        and config.VECTOR_BACKEND_EFFECTIVE == "pgvector"
    ):
        config.logger.info("Ensuring pgvector extension...")
        with DB.engine.connect() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            conn.commit()
    else:
        config.logger.info("Skipping pgvector extension creation")

    _ensure_schema_up_to_date(DB.engine)

    if config.DB_AUTOCOMMIT:
        config.logger.warning("DB_AUTOCOMMIT enabled; namespace subtree rename is unavailable")
    config.logger.info("Database initialized")
