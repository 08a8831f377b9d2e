import os
import zlib

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "none")
os.environ.setdefault("EMBEDDING_PROVIDER", "none")
os.environ.setdefault("AUTO_MIGRATE_ON_STARTUP", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import core.config as config
from core.context import RequestContext, TenantContext
from core.db import DB
from core.models import Base

OWNER_ID = "owner-1"
ROOT_NAMESPACE = "legacy"
DEFAULT_NAMESPACE = "legacy/DEF"


def fake_embedding(text: str) -> list[float]:
    """Bag-of-words vector: texts sharing words point the same way."""
    vector = [0.0] * config.EMBEDDING_DIM
    for word in text.lower().split():
        vector[zlib.crc32(word.encode("utf-8")) % config.EMBEDDING_DIM] += 1.0
    return vector


def axis_embedding(*weights: float) -> list[float]:
    vector = [0.0] * config.EMBEDDING_DIM
    for index, weight in enumerate(weights):
        vector[index] = float(weight)
    return vector


@pytest.fixture
def server_db(tmp_path):
    db_path = tmp_path / "memospace.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    DB.engine = engine
    DB.SessionLocal = SessionLocal
    try:
        yield SessionLocal
    finally:
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        engine.dispose()


@pytest.fixture
def db_session(server_db):
    session = server_db()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def tenant():
    return TenantContext(
        owner_id=OWNER_ID,
        root_namespace=ROOT_NAMESPACE,
        default_namespace=DEFAULT_NAMESPACE,
    )


@pytest.fixture
def context(tenant):
    return RequestContext(tenant=tenant, source="test")


@pytest.fixture
def embed():
    return fake_embedding
