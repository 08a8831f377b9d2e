"""
Invocation dispatcher: one entry point for every memory operation.

``handle_invocation`` validates parameters, resolves namespaces against the
caller's tenant context, runs the storage operation in its own session and
wraps the outcome in an :class:`InvocationResponse`.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Callable, Optional

import core.config as config
from core.context import RequestContext
from core.db import DB
from core.errors import MemospaceError, NotFoundError, ValidationIssue
from core.graph import DIRECTIONS, FORWARD
from core.namespace import NamespaceResolution, resolve_for_context
from core.services import memory_relationships, memory_search, memory_store, namespace_rename
from core.services.memory_shared import logger, serialize_memo, serialize_node, serialize_relation
from core.validators import (
    validate_choice,
    validate_embedding_vector,
    validate_int_range,
    validate_memo_id,
    validate_metadata,
    validate_optional_bool,
    validate_optional_memo_id,
    validate_optional_text,
    validate_required_text,
    validate_tag,
    validate_unit_interval,
)

EmbedFn = Callable[[str], list]


@dataclass(frozen=True)
class InvocationResponse:
    status_code: int
    body: dict


@dataclass
class _Call:
    tool: str
    params: dict
    context: RequestContext
    db: Any
    embed: EmbedFn

    @property
    def owner_id(self) -> str:
        return self.context.tenant.owner_id

    @property
    def root_namespace(self) -> str:
        return self.context.tenant.root_namespace

    def resolve(self, name: str = "namespace", *, required: bool = False) -> NamespaceResolution:
        value = self.params.get(name)
        if required:
            validate_required_text(value, name, config.MAX_NAMESPACE_LENGTH)
        else:
            validate_optional_text(value, name, config.MAX_NAMESPACE_LENGTH)
        return resolve_for_context(self.context, value, field=name)

    def embed_text(self, text: str, field: str) -> list[float]:
        return validate_embedding_vector(self.embed(text), field=field)


TOOL_HANDLERS: dict[str, Callable[[_Call], dict]] = {}


def tool(name: str):
    """Register a handler under its wire name."""
    def decorator(fn: Callable[[_Call], dict]):
        TOOL_HANDLERS[name] = fn
        return fn
    return decorator


# =============================================================================
# Parameter helpers
# =============================================================================

def _int_param(params: dict, name: str, default: int, max_value: int, min_value: int = 1) -> int:
    value = params.get(name)
    if value is None:
        return default
    return validate_int_range(value, name, min_value, max_value)


def _optional_str(params: dict, name: str, max_len: int) -> Optional[str]:
    value = params.get(name)
    validate_optional_text(value, name, max_len)
    if value is None or not value.strip():
        return None
    return value.strip()


def _optional_tag(params: dict, name: str = "tag") -> Optional[str]:
    value = params.get(name)
    if value is None:
        return None
    return validate_tag(value, name)


def encode_cursor(offset: int) -> str:
    raw = json.dumps({"offset": offset}).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: Optional[str]) -> int:
    if cursor is None:
        return 0
    if not isinstance(cursor, str) or not cursor.strip():
        raise ValidationIssue("cursor must be a non-empty string", field="cursor", error_type="invalid_type")
    padded = cursor.strip() + "=" * (-len(cursor.strip()) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        offset = payload["offset"]
    except (binascii.Error, ValueError, KeyError, TypeError, UnicodeError) as exc:
        raise ValidationIssue("cursor is invalid", field="cursor", error_type="invalid_value") from exc
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise ValidationIssue("cursor is invalid", field="cursor", error_type="invalid_value")
    return offset


# =============================================================================
# Memo operations
# =============================================================================

@tool("memory.save")
def _memory_save(call: _Call) -> dict:
    params = call.params
    content = params.get("content")
    validate_required_text(content, "content", config.MAX_CONTENT_LENGTH)
    metadata = params.get("metadata")
    validate_metadata(metadata, "metadata")
    memo_id = validate_optional_memo_id(params.get("memoId"), "memoId")
    title = params.get("title")
    validate_optional_text(title, "title", config.MAX_TITLE_LENGTH)
    resolution = call.resolve(required=True)

    embedding = call.embed_text(content, "content")
    memo = memory_store.upsert_memo(
        call.db,
        call.owner_id,
        resolution.namespace,
        content=content,
        embedding=embedding,
        memo_id=memo_id,
        title=title,
        metadata_patch=metadata,
    )
    return {"memo": serialize_memo(memo), "rootNamespace": call.root_namespace}


@tool("memory.search")
def _memory_search(call: _Call) -> dict:
    params = call.params
    k = params.get("k")
    k = config.SEARCH_K_DEFAULT if k is None else k
    distance_metric = params.get("distanceMetric") or memory_search.COSINE
    minimum_similarity = params.get("minimumSimilarity")
    memory_search.validate_search_options(
        k=k,
        distance_metric=distance_metric,
        minimum_similarity=minimum_similarity,
    )
    query = params.get("query")
    validate_optional_text(query, "query", config.MAX_QUERY_LENGTH)
    if query is not None and not query.strip():
        raise ValidationIssue("query must be a non-empty string", field="query", error_type="required")
    pivot_memo_id = validate_optional_memo_id(params.get("pivotMemoId"), "pivotMemoId")
    if query and pivot_memo_id:
        raise ValidationIssue(
            "Provide either query or pivotMemoId, not both",
            field="pivotMemoId",
            error_type="incompatible",
        )
    exclude_pivot = validate_optional_bool(params.get("excludePivot"), "excludePivot")
    metadata_filter = params.get("metadataFilter")
    validate_metadata(metadata_filter, "metadataFilter")
    resolution = call.resolve(required=True)

    embedding = call.embed_text(query, "query") if query else None
    results = memory_search.search_memos(
        call.db,
        call.owner_id,
        resolution.namespace,
        embedding=embedding,
        pivot_memo_id=pivot_memo_id,
        metadata_filter=metadata_filter or None,
        k=k,
        minimum_similarity=minimum_similarity,
        distance_metric=distance_metric,
        exclude_pivot=exclude_pivot is not False,
    )
    items = [dict(serialize_memo(memo), score=score) for memo, score in results]
    return {
        "namespace": resolution.namespace,
        "rootNamespace": call.root_namespace,
        "items": items,
        "count": len(items),
    }


@tool("memory.delete")
def _memory_delete(call: _Call) -> dict:
    memo_id = validate_memo_id(call.params.get("memoId"), "memoId")
    resolution = call.resolve(required=True)
    memo = memory_store.delete_memo(call.db, call.owner_id, resolution.namespace, memo_id)
    if memo is None:
        raise NotFoundError("memo", f"Memo not found: {memo_id}")
    return {"deleted": True, "memo": serialize_memo(memo), "rootNamespace": call.root_namespace}


@tool("memory.list")
def _memory_list(call: _Call) -> dict:
    params = call.params
    limit = _int_param(params, "limit", config.LIST_LIMIT_DEFAULT, config.LIST_LIMIT_MAX)
    offset = decode_cursor(params.get("cursor"))
    order_by = _optional_str(params, "orderBy", config.MAX_PROPERTY_NAME_LENGTH)
    order_direction = validate_choice(params.get("orderDirection") or "desc", "orderDirection", ("asc", "desc"))
    resolution = call.resolve()

    memos, next_offset = memory_store.list_memos(
        call.db,
        call.owner_id,
        resolution.namespace,
        limit=limit,
        offset=offset,
        order_by=order_by,
        order_direction=order_direction,
    )
    body = {
        "namespace": resolution.namespace,
        "rootNamespace": call.root_namespace,
        "items": [serialize_memo(memo) for memo in memos],
        "count": len(memos),
    }
    if next_offset is not None:
        body["nextCursor"] = encode_cursor(next_offset)
    return body


@tool("memory.list_namespaces")
def _memory_list_namespaces(call: _Call) -> dict:
    params = call.params
    depth = _int_param(params, "depth", config.NAMESPACE_DEPTH_DEFAULT, config.NAMESPACE_DEPTH_MAX)
    limit = _int_param(params, "limit", config.NAMESPACE_LIMIT_DEFAULT, config.NAMESPACE_LIMIT_MAX)
    resolution = call.resolve()

    namespaces = memory_store.list_namespaces(
        call.db,
        call.owner_id,
        resolution.namespace,
        depth=depth,
        limit=limit,
    )
    return {
        "baseNamespace": resolution.namespace,
        "defaultNamespace": resolution.default_namespace,
        "rootNamespace": call.root_namespace,
        "depth": depth,
        "count": len(namespaces),
        "namespaces": namespaces,
    }


# =============================================================================
# Metadata properties
# =============================================================================

def _property_name(params: dict) -> str:
    name = params.get("name")
    validate_required_text(name, "name", config.MAX_PROPERTY_NAME_LENGTH)
    return name.strip()


def _property_response(call: _Call, name: str, value: Any) -> dict:
    memo_id = validate_memo_id(call.params.get("memoId"), "memoId")
    resolution = call.resolve(required=True)
    memo, previous, action, changed = memory_store.update_memo_property(
        call.db,
        call.owner_id,
        resolution.namespace,
        memo_id,
        name,
        value,
    )
    return {
        "memo": serialize_memo(memo),
        "property": {
            "name": name,
            "value": (memo.metadata_ or {}).get(name),
            "previousValue": previous,
            "action": action,
            "changed": changed,
        },
        "rootNamespace": call.root_namespace,
    }


@tool("memory.property")
def _memory_property(call: _Call) -> dict:
    name = _property_name(call.params)
    if "value" not in call.params:
        raise ValidationIssue("value is required (use null to delete)", field="value", error_type="required")
    value = call.params["value"]
    validate_metadata({name: value}, "value")
    return _property_response(call, name, value)


@tool("memory.property.delete")
def _memory_property_delete(call: _Call) -> dict:
    return _property_response(call, _property_name(call.params), None)


@tool("memory.property.list")
def _memory_property_list(call: _Call) -> dict:
    memo_id = validate_memo_id(call.params.get("memoId"), "memoId")
    resolution = call.resolve(required=True)
    memo = memory_store.get_memo(call.db, call.owner_id, resolution.namespace, memo_id)
    if memo is None:
        raise NotFoundError("memo", f"Memo not found: {memo_id}")
    properties = [{"name": key, "value": value} for key, value in (memo.metadata_ or {}).items()]
    return {
        "memoId": memo.id,
        "namespace": memo.namespace,
        "properties": properties,
        "rootNamespace": call.root_namespace,
    }


# =============================================================================
# Relations
# =============================================================================

def _relation_key(params: dict) -> tuple[str, str, str]:
    source = validate_memo_id(params.get("sourceMemoId"), "sourceMemoId")
    target = validate_memo_id(params.get("targetMemoId"), "targetMemoId")
    return source, target, validate_tag(params.get("tag"))


@tool("memory.relation.save")
def _relation_save(call: _Call) -> dict:
    params = call.params
    source, target, tag = _relation_key(params)
    if params.get("weight") is None:
        raise ValidationIssue("weight is required", field="weight", error_type="required")
    weight = validate_unit_interval(params.get("weight"), "weight")
    reason = _optional_str(params, "reason", config.MAX_REASON_LENGTH)
    resolution = call.resolve()

    relation = memory_relationships.upsert_relation(
        call.db,
        call.owner_id,
        resolution.namespace,
        source_memo_id=source,
        target_memo_id=target,
        tag=tag,
        weight=weight,
        reason=reason,
    )
    return {
        "namespace": resolution.namespace,
        "relation": serialize_relation(relation),
        "rootNamespace": call.root_namespace,
    }


@tool("memory.relation.delete")
def _relation_delete(call: _Call) -> dict:
    source, target, tag = _relation_key(call.params)
    resolution = call.resolve()
    relation = memory_relationships.delete_relation(
        call.db,
        call.owner_id,
        resolution.namespace,
        source_memo_id=source,
        target_memo_id=target,
        tag=tag,
    )
    if relation is None:
        raise NotFoundError("relation")
    return {
        "deleted": True,
        "relation": serialize_relation(relation),
        "rootNamespace": call.root_namespace,
    }


def _graph_body(call: _Call, namespace: str, edges: list[dict], nodes) -> dict:
    return {
        "namespace": namespace,
        "rootNamespace": call.root_namespace,
        "count": len(edges),
        "edges": edges,
        "nodes": [serialize_node(node) for node in nodes],
    }


@tool("memory.relation.list")
def _relation_list(call: _Call) -> dict:
    params = call.params
    source = validate_optional_memo_id(params.get("sourceMemoId"), "sourceMemoId")
    target = validate_optional_memo_id(params.get("targetMemoId"), "targetMemoId")
    tag = _optional_tag(params)
    limit = _int_param(params, "limit", config.RELATION_LIST_LIMIT_DEFAULT, config.RELATION_LIST_LIMIT_MAX)
    resolution = call.resolve()

    relations, nodes = memory_relationships.list_relations(
        call.db,
        call.owner_id,
        resolution.namespace,
        source_memo_id=source,
        target_memo_id=target,
        tag=tag,
        limit=limit,
    )
    edges = [serialize_relation(relation) for relation in relations]
    return _graph_body(call, resolution.namespace, edges, nodes)


@tool("memory.relation.graph")
def _relation_graph(call: _Call) -> dict:
    params = call.params
    start_memo_id = validate_memo_id(params.get("startMemoId"), "startMemoId")
    max_depth = _int_param(params, "maxDepth", config.GRAPH_MAX_DEPTH_DEFAULT, config.GRAPH_MAX_DEPTH_MAX)
    direction = validate_choice(params.get("direction") or FORWARD, "direction", DIRECTIONS)
    tag = _optional_tag(params)
    limit = _int_param(params, "limit", config.GRAPH_LIMIT_DEFAULT, config.GRAPH_LIMIT_MAX)
    resolution = call.resolve()

    graph_edges, nodes = memory_relationships.relation_graph(
        call.db,
        call.owner_id,
        resolution.namespace,
        start_memo_id=start_memo_id,
        max_depth=max_depth,
        direction=direction,
        tag=tag,
        limit=limit,
    )
    edges = [
        dict(
            serialize_relation(edge.relation),
            depth=edge.depth,
            direction=edge.direction,
            path=list(edge.path),
        )
        for edge in graph_edges
    ]
    return _graph_body(call, resolution.namespace, edges, nodes)


# =============================================================================
# Namespace rename
# =============================================================================

@tool("memory.namespace.rename")
def _namespace_rename(call: _Call) -> dict:
    memo_id = validate_optional_memo_id(call.params.get("memoId"), "memoId")
    source = call.resolve("fromNamespace", required=True)
    destination = call.resolve("toNamespace", required=True)

    result = namespace_rename.rename_namespace(
        call.db,
        call.owner_id,
        source.namespace,
        destination.namespace,
        memo_id=memo_id,
    )
    if memo_id is not None and not result.memo_ids and source.namespace != destination.namespace:
        raise NotFoundError("memo", f"Memo not found: {memo_id}")
    return {
        "previousNamespace": source.namespace,
        "newNamespace": destination.namespace,
        "memoIds": result.memo_ids,
        "updatedCount": len(result.memo_ids),
        "relationCount": result.relation_count,
        "rootNamespace": call.root_namespace,
    }


# =============================================================================
# Entry point
# =============================================================================

def _error_body(exc: MemospaceError) -> dict:
    body = {"error": exc.error_code, "message": str(exc)}
    field = getattr(exc, "field", None)
    if field:
        body["field"] = field
    return body


def _log_error(tool_name: str, exc: MemospaceError) -> None:
    payload = {
        "tool": tool_name,
        "error_code": exc.error_code,
        "status_code": exc.status_code,
        "detail": str(exc),
    }
    if isinstance(exc, ValidationIssue):
        payload["field"] = exc.field
        logger.info("tool_validation_error", extra=payload)
    elif exc.status_code >= 500:
        logger.warning("tool_error", extra=payload)
    else:
        logger.info("tool_error", extra=payload)


def _default_embed(text: str) -> list:
    from core.embeddings import embed_text_sync

    return embed_text_sync(text)


def handle_invocation(
    tool_name: str,
    params: Optional[dict],
    context: RequestContext,
    *,
    embed: Optional[EmbedFn] = None,
    session_factory=None,
) -> InvocationResponse:
    """Run ``tool_name`` with ``params`` on behalf of ``context``."""
    handler = TOOL_HANDLERS.get(tool_name)
    if handler is None:
        logger.info("tool_unknown", extra={"tool": tool_name})
        return InvocationResponse(400, {"error": "unknown_tool", "message": f"Unknown tool: {tool_name}"})
    if params is None:
        params = {}
    if not isinstance(params, dict):
        exc = ValidationIssue("params must be an object", field="params", error_type="invalid_type")
        _log_error(tool_name, exc)
        return InvocationResponse(exc.status_code, _error_body(exc))

    factory = session_factory or DB.SessionLocal
    if factory is None:
        logger.error("tool_db_not_initialized", extra={"tool": tool_name})
        return InvocationResponse(500, {"error": "internal_error", "message": "Database not initialized"})

    db = factory()
    try:
        call = _Call(
            tool=tool_name,
            params=params,
            context=context,
            db=db,
            embed=embed or _default_embed,
        )
        body = handler(call)
        return InvocationResponse(200, body)
    except MemospaceError as exc:
        db.rollback()
        _log_error(tool_name, exc)
        return InvocationResponse(exc.status_code, _error_body(exc))
    except Exception:
        db.rollback()
        logger.exception("tool_internal_error", extra={"tool": tool_name})
        return InvocationResponse(500, {"error": "internal_error", "message": "Internal server error"})
    finally:
        db.close()


def available_tools() -> list[str]:
    return sorted(TOOL_HANDLERS)
