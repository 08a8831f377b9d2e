"""
Invocation endpoint: ``POST /`` with ``{"tool": ..., "params": {...}}``.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core.context import RequestContext
from core.services.dispatcher import handle_invocation
from app.deps import get_request_context


router = APIRouter()


class InvocationRequest(BaseModel):
    tool: str
    params: Optional[Any] = None


@router.post("/")
def invoke(
    payload: InvocationRequest,
    context: RequestContext = Depends(get_request_context),
):
    """Dispatch one operation for the authenticated tenant."""
    response = handle_invocation(payload.tool, payload.params, context)
    return JSONResponse(status_code=response.status_code, content=response.body)
