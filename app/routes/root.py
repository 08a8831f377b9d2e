"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import core.config as config
from core.services.dispatcher import available_tools


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "memospace",
        "version": "0.1.0",
        "description": "Namespaced memo store with semantic search and a relation graph",
        "embedding_model": config.EMBEDDING_MODEL,
        "auth_required": config.REQUIRE_AUTH,
        "tools": available_tools(),
        "endpoints": {
            "invoke": "POST /",
            "health": "/health",
            "health_deps": "/health/deps",
            "mcp": "/mcp/",
        },
    }
