"""
Standalone FastAPI app wiring for memospace.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

import core.config as config
from core.db import DB, init_db
from core.embeddings import cleanup_http_client, init_http_client
from core.errors import MemospaceError
from core.mcp import MCPRouteNormalizerASGI, mcp_stream_app
from app.middleware import configure_middleware
from app.routes.health import router as health_router
from app.routes.invoke import router as invoke_router
from app.routes.root import router as root_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    init_db()
    init_http_client()
    try:
        async with mcp_stream_app.lifespan(mcp_stream_app):
            yield
    finally:
        cleanup_http_client()
        if DB.engine:
            DB.engine.dispose()


app = FastAPI(title="memospace", redirect_slashes=False, lifespan=lifespan)
configure_middleware(app)


@app.exception_handler(MemospaceError)
async def memospace_error_handler(request: Request, exc: MemospaceError):
    config.logger.info(
        "request_rejected",
        extra={"path": request.url.path, "error_code": exc.error_code, "status_code": exc.status_code},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error_code, "message": str(exc)},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    location = errors[0].get("loc", ()) if errors else ()
    field = ".".join(str(part) for part in location if part != "body") or "body"
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_input", "message": "Request body must be {\"tool\": str, \"params\": object}", "field": field},
    )


app.include_router(health_router)
app.include_router(root_router)
app.include_router(invoke_router)

app.mount("/mcp", mcp_stream_app)


# =============================================================================
# ASGI Application (module-level for production deployment)
# =============================================================================

asgi_app = MCPRouteNormalizerASGI(app)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(asgi_app, host="0.0.0.0", port=int(os.environ.get("PORT", "8080")))
