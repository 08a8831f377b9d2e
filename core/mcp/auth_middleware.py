"""
MCP authentication middleware for tenant isolation.

Extracts the bearer API key from MCP requests, resolves it to a tenant, and
sets the request context for the duration of the request using contextvars
(async-safe).
"""

from __future__ import annotations

import json
from typing import Optional

from core.auth import authenticate_headers
from core.context import (
    RequestContext,
    get_current_request_context,
    reset_current_request_context,
    set_current_request_context,
)
from core.db import DB
from core.errors import UnauthorizedError
import core.config as config


def get_current_context() -> RequestContext:
    """Get current request context; tools cannot run without one."""
    ctx = get_current_request_context()
    if ctx is None:
        raise UnauthorizedError("Valid API key required")
    return ctx


class MCPAuthMiddleware:
    """
    ASGI middleware that validates API keys and sets tenant context.

    Wraps MCP endpoints to provide per-request authentication and tenant isolation.
    """

    def __init__(self, app, session_factory=None):
        self.app = app
        self._session_factory = session_factory

    def __getattr__(self, name):
        return getattr(self.app, name)

    def _sessions(self):
        return self._session_factory or DB.SessionLocal

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # Extract headers (ASGI headers are bytes tuples)
        headers = {}
        for header_name, header_value in scope.get("headers", []):
            headers[header_name.decode("latin1").lower()] = header_value.decode("latin1")

        session_factory = self._sessions()
        if session_factory is None:
            config.logger.error("mcp_auth_middleware_no_db")
            await self._send_error(send, 500, "internal_error", "Database not initialized")
            return

        db = session_factory()
        try:
            tenant = authenticate_headers(db, headers)
        except Exception as e:
            config.logger.error(
                "mcp_auth_middleware_error",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            await self._send_error(send, 500, "internal_error", "Internal server error")
            return
        finally:
            db.close()

        if tenant is None:
            await self._send_error(send, 401, "unauthorized", "Valid API key required")
            return

        req_ctx = RequestContext(tenant=tenant, source="mcp").with_default_override(
            headers.get(config.NAMESPACE_OVERRIDE_HEADER)
        )
        token = set_current_request_context(req_ctx)
        try:
            await self.app(scope, receive, send)
        finally:
            reset_current_request_context(token)

    async def _send_error(self, send, status_code: int, code: str, detail: Optional[str]):
        """Send JSON error response."""
        body = json.dumps({"error": code, "message": detail}).encode("utf-8")

        await send({
            "type": "http.response.start",
            "status": status_code,
            "headers": [
                [b"content-type", b"application/json"],
                [b"content-length", str(len(body)).encode("latin1")],
            ],
        })

        await send({
            "type": "http.response.body",
            "body": body,
        })
