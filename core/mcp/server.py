"""
MCP server wiring and tool registration.

Each tool forwards to the invocation dispatcher with the tenant context that
:class:`MCPAuthMiddleware` placed on the request.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from fastmcp import FastMCP

from core.mcp.auth_middleware import MCPAuthMiddleware, get_current_context
from core.services.dispatcher import handle_invocation

READ_ONLY_TOOL_ANNOTATIONS = {"readOnlyHint": True}
DESTRUCTIVE_TOOL_ANNOTATIONS = {"destructiveHint": True}

mcp = FastMCP("memospace")

REGISTERED_TOOLS: dict[str, str] = {}


def mcp_tool(operation: str, **kwargs):
    """Register a tool with FastMCP and remember which operation it forwards to."""
    def decorator(fn: Callable[..., dict]):
        REGISTERED_TOOLS[fn.__name__] = operation
        mcp.tool(**kwargs)(fn)
        return fn
    return decorator


def _invoke(operation: str, params: dict[str, Any], keep_null: tuple[str, ...] = ()) -> dict:
    cleaned = {key: value for key, value in params.items() if value is not None or key in keep_null}
    response = handle_invocation(operation, cleaned, get_current_context())
    if response.status_code != 200:
        return dict(response.body, status=response.status_code)
    return response.body


@mcp_tool("memory.save")
def memory_save(
    namespace: str,
    content: str,
    metadata: Optional[dict] = None,
    memoId: Optional[str] = None,
    title: Optional[str] = None,
) -> dict:
    """Save or update a memo in a namespace."""
    return _invoke(
        "memory.save",
        {"namespace": namespace, "content": content, "metadata": metadata, "memoId": memoId, "title": title},
    )


@mcp_tool("memory.search", annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_search(
    namespace: str,
    query: Optional[str] = None,
    pivotMemoId: Optional[str] = None,
    k: int = 10,
    minimumSimilarity: Optional[float] = None,
    distanceMetric: str = "cosine",
    excludePivot: Optional[bool] = None,
    metadataFilter: Optional[dict] = None,
) -> dict:
    """Semantic search by query text or pivot memo."""
    return _invoke(
        "memory.search",
        {
            "namespace": namespace,
            "query": query,
            "pivotMemoId": pivotMemoId,
            "k": k,
            "minimumSimilarity": minimumSimilarity,
            "distanceMetric": distanceMetric,
            "excludePivot": excludePivot,
            "metadataFilter": metadataFilter,
        },
    )


@mcp_tool("memory.delete", annotations=DESTRUCTIVE_TOOL_ANNOTATIONS)
def memory_delete(namespace: str, memoId: str) -> dict:
    return _invoke("memory.delete", {"namespace": namespace, "memoId": memoId})


@mcp_tool("memory.list", annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_list(
    namespace: Optional[str] = None,
    limit: int = 20,
    cursor: Optional[str] = None,
    orderBy: Optional[str] = None,
    orderDirection: str = "desc",
) -> dict:
    return _invoke(
        "memory.list",
        {
            "namespace": namespace,
            "limit": limit,
            "cursor": cursor,
            "orderBy": orderBy,
            "orderDirection": orderDirection,
        },
    )


@mcp_tool("memory.list_namespaces", annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_list_namespaces(namespace: Optional[str] = None, depth: int = 1, limit: int = 100) -> dict:
    return _invoke("memory.list_namespaces", {"namespace": namespace, "depth": depth, "limit": limit})


@mcp_tool("memory.property")
def memory_property(namespace: str, memoId: str, name: str, value: Any) -> dict:
    """Set a metadata property; a null value deletes it."""
    return _invoke(
        "memory.property",
        {"namespace": namespace, "memoId": memoId, "name": name, "value": value},
        keep_null=("value",),
    )


@mcp_tool("memory.property.delete", annotations=DESTRUCTIVE_TOOL_ANNOTATIONS)
def memory_property_delete(namespace: str, memoId: str, name: str) -> dict:
    return _invoke("memory.property.delete", {"namespace": namespace, "memoId": memoId, "name": name})


@mcp_tool("memory.property.list", annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_property_list(namespace: str, memoId: str) -> dict:
    return _invoke("memory.property.list", {"namespace": namespace, "memoId": memoId})


@mcp_tool("memory.relation.save")
def memory_relation_save(
    sourceMemoId: str,
    targetMemoId: str,
    tag: str,
    weight: float,
    namespace: Optional[str] = None,
    reason: Optional[str] = None,
) -> dict:
    return _invoke(
        "memory.relation.save",
        {
            "namespace": namespace,
            "sourceMemoId": sourceMemoId,
            "targetMemoId": targetMemoId,
            "tag": tag,
            "weight": weight,
            "reason": reason,
        },
    )


@mcp_tool("memory.relation.delete", annotations=DESTRUCTIVE_TOOL_ANNOTATIONS)
def memory_relation_delete(
    sourceMemoId: str,
    targetMemoId: str,
    tag: str,
    namespace: Optional[str] = None,
) -> dict:
    return _invoke(
        "memory.relation.delete",
        {"namespace": namespace, "sourceMemoId": sourceMemoId, "targetMemoId": targetMemoId, "tag": tag},
    )


@mcp_tool("memory.relation.list", annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_relation_list(
    namespace: Optional[str] = None,
    sourceMemoId: Optional[str] = None,
    targetMemoId: Optional[str] = None,
    tag: Optional[str] = None,
    limit: int = 100,
) -> dict:
    return _invoke(
        "memory.relation.list",
        {
            "namespace": namespace,
            "sourceMemoId": sourceMemoId,
            "targetMemoId": targetMemoId,
            "tag": tag,
            "limit": limit,
        },
    )


@mcp_tool("memory.relation.graph", annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_relation_graph(
    startMemoId: str,
    namespace: Optional[str] = None,
    maxDepth: int = 3,
    direction: str = "forward",
    tag: Optional[str] = None,
    limit: int = 200,
) -> dict:
    """Traverse relations from a memo up to maxDepth hops."""
    return _invoke(
        "memory.relation.graph",
        {
            "namespace": namespace,
            "startMemoId": startMemoId,
            "maxDepth": maxDepth,
            "direction": direction,
            "tag": tag,
            "limit": limit,
        },
    )


@mcp_tool("memory.namespace.rename", annotations=DESTRUCTIVE_TOOL_ANNOTATIONS)
def memory_namespace_rename(
    fromNamespace: str,
    toNamespace: str,
    memoId: Optional[str] = None,
) -> dict:
    """Move one memo, or a whole namespace with its relations."""
    return _invoke(
        "memory.namespace.rename",
        {"fromNamespace": fromNamespace, "toNamespace": toNamespace, "memoId": memoId},
    )


mcp_stream_app = MCPAuthMiddleware(mcp.http_app(
    path="/",
    transport="streamable-http",
    stateless_http=True,
    json_response=True,
))


class MCPRouteNormalizerASGI:
    """Route bare ``/mcp`` to the mounted app without a redirect."""

    def __init__(self, wrapped_app, prefix: str = "/mcp"):
        self.wrapped_app = wrapped_app
        self.prefix = prefix.rstrip("/")

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope.get("path") == self.prefix:
            scope = dict(scope)
            scope["path"] = self.prefix + "/"
        await self.wrapped_app(scope, receive, send)
