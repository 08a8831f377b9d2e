from core.mcp.auth_middleware import MCPAuthMiddleware, get_current_context
from core.mcp.server import REGISTERED_TOOLS, MCPRouteNormalizerASGI, mcp, mcp_stream_app

__all__ = [
    "mcp",
    "mcp_stream_app",
    "MCPAuthMiddleware",
    "MCPRouteNormalizerASGI",
    "REGISTERED_TOOLS",
    "get_current_context",
]
