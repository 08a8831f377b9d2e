"""
Dependency helpers for the standalone FastAPI app.
"""

from __future__ import annotations

from typing import Generator

from fastapi import Depends, Request

import core.config as config
from core.auth import authenticate_headers
from core.context import RequestContext
from core.db import DB
from core.errors import UnauthorizedError


def get_db_session() -> Generator:
    if DB.SessionLocal is None:
        raise RuntimeError("Database not initialized - SessionLocal is None")
    db = DB.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_request_context(request: Request, db=Depends(get_db_session)) -> RequestContext:
    tenant = authenticate_headers(db, request.headers)
    if tenant is None:
        raise UnauthorizedError("Valid API key required")
    context = RequestContext(
        tenant=tenant,
        request_id=request.headers.get("x-request-id"),
        source="http",
    )
    return context.with_default_override(request.headers.get(config.NAMESPACE_OVERRIDE_HEADER))
