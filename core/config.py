"""
Shared configuration for memospace core.
"""

from __future__ import annotations

import logging
import os

logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO")
logger = logging.getLogger("memospace")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _derive_effective_backends(db_backend: str, vector_backend: str) -> tuple[str, str]:
    db_effective = db_backend if db_backend in {"postgres", "sqlite"} else "postgres"
    vector_effective = vector_backend if vector_backend in {"pgvector", "none"} else "none"
    if db_effective == "sqlite":
        vector_effective = "none"
    return db_effective, vector_effective


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
VECTOR_BACKEND = os.environ.get("VECTOR_BACKEND", "pgvector").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/memospace.db")
DATABASE_URL = os.environ.get("DATABASE_URL")
DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE = _derive_effective_backends(
    DB_BACKEND,
    VECTOR_BACKEND,
)

# Engines opened in autocommit mode cannot run the multi-statement rename.
DB_AUTOCOMMIT = _get_bool("DB_AUTOCOMMIT", False)

# Database initialization controls
AUTO_CREATE_EXTENSIONS = _get_bool("AUTO_CREATE_EXTENSIONS", True)
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Embedding settings
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
EMBEDDING_MODEL = os.environ.get("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIM = 1536
EMBEDDING_PROVIDER = os.environ.get("EMBEDDING_PROVIDER", "openai").strip().lower()

# OpenAI retry/backoff
EMBEDDING_TIMEOUT_SECONDS = _get_float("EMBEDDING_TIMEOUT_SECONDS", 30.0)
EMBEDDING_RETRY_MAX = _get_int("EMBEDDING_RETRY_MAX", 2)
EMBEDDING_RETRY_BACKOFF_SECONDS = _get_float("EMBEDDING_RETRY_BACKOFF_SECONDS", 0.5)
EMBEDDING_RETRY_JITTER_SECONDS = _get_float("EMBEDDING_RETRY_JITTER_SECONDS", 0.25)
EMBEDDING_FAILURE_THRESHOLD = _get_int("EMBEDDING_FAILURE_THRESHOLD", 5)
EMBEDDING_COOLDOWN_SECONDS = _get_int("EMBEDDING_COOLDOWN_SECONDS", 60)
EMBEDDING_HEALTHCHECK_ENABLED = _get_bool("EMBEDDING_HEALTHCHECK_ENABLED", True)

# Authentication
REQUIRE_AUTH = _get_bool("REQUIRE_AUTH", True)
# Tenant used for unauthenticated requests when REQUIRE_AUTH is off
LOCAL_OWNER_ID = os.environ.get("LOCAL_OWNER_ID", "local")
LOCAL_ROOT_NAMESPACE = os.environ.get("LOCAL_ROOT_NAMESPACE", "local")
NAMESPACE_OVERRIDE_HEADER = "x-namespace-default"

# Request/input limits
MAX_CONTENT_LENGTH = _get_int("MEMOSPACE_MAX_CONTENT_LENGTH", 20000)
MAX_QUERY_LENGTH = _get_int("MEMOSPACE_MAX_QUERY_LENGTH", 8000)
MAX_TITLE_LENGTH = _get_int("MEMOSPACE_MAX_TITLE_LENGTH", 500)
MAX_NAMESPACE_LENGTH = _get_int("MEMOSPACE_MAX_NAMESPACE_LENGTH", 512)
MAX_REASON_LENGTH = _get_int("MEMOSPACE_MAX_REASON_LENGTH", 2000)
MAX_PROPERTY_NAME_LENGTH = _get_int("MEMOSPACE_MAX_PROPERTY_NAME_LENGTH", 255)
MAX_METADATA_BYTES = _get_int("MEMOSPACE_MAX_METADATA_BYTES", 20000)
MAX_TAG_LENGTH = 64

# Operation bounds
SEARCH_K_DEFAULT = 10
SEARCH_K_MAX = 100
LIST_LIMIT_DEFAULT = 20
LIST_LIMIT_MAX = 100
NAMESPACE_DEPTH_DEFAULT = 1
NAMESPACE_DEPTH_MAX = 5
NAMESPACE_LIMIT_DEFAULT = 100
NAMESPACE_LIMIT_MAX = 500
RELATION_LIST_LIMIT_DEFAULT = 100
RELATION_LIST_LIMIT_MAX = 500
GRAPH_MAX_DEPTH_DEFAULT = 3
GRAPH_MAX_DEPTH_MAX = 10
GRAPH_LIMIT_DEFAULT = 200
GRAPH_LIMIT_MAX = 1000


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL, DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if VECTOR_BACKEND not in {"pgvector", "none"}:
        errors.append("VECTOR_BACKEND must be 'pgvector' or 'none'")

    if DB_BACKEND == "sqlite" and VECTOR_BACKEND == "pgvector":
        errors.append("VECTOR_BACKEND=pgvector requires DB_BACKEND=postgres")

    if EMBEDDING_PROVIDER not in {"openai", "none"}:
        errors.append("EMBEDDING_PROVIDER must be 'openai' or 'none'")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        url_lower = DATABASE_URL.lower()
        is_sqlite_url = url_lower.startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE = _derive_effective_backends(
        DB_BACKEND,
        VECTOR_BACKEND,
    )

    if EMBEDDING_PROVIDER == "openai" and not OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY is not set; query embeddings will be unavailable")

    if not REQUIRE_AUTH:
        if not LOCAL_ROOT_NAMESPACE.strip("/").strip():
            errors.append("LOCAL_ROOT_NAMESPACE is required when REQUIRE_AUTH is disabled")
        logger.warning(
            "REQUIRE_AUTH is disabled; unauthenticated requests act as the local tenant",
            extra={"owner_id": LOCAL_OWNER_ID, "root_namespace": LOCAL_ROOT_NAMESPACE},
        )

    if VECTOR_BACKEND_EFFECTIVE == "pgvector":
        from core.models import PGVECTOR_AVAILABLE

        if not PGVECTOR_AVAILABLE:
            errors.append("pgvector package is required when VECTOR_BACKEND=pgvector")

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
