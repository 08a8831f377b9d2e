"""
Hierarchical namespace resolution.

Namespaces are ``/``-joined segment paths. Every namespace handed to storage
is resolved here first and is guaranteed to sit under the tenant root.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from core.errors import InvalidNamespaceError


@dataclass(frozen=True)
class NamespaceResolution:
    namespace: str
    segments: tuple[str, ...]
    default_namespace: str


def split_namespace(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [segment.strip() for segment in value.split("/") if segment.strip()]


def join_namespace(segments: Sequence[str]) -> str:
    return "/".join(segments)


def _has_prefix(segments: Sequence[str], prefix: Sequence[str]) -> bool:
    if len(segments) < len(prefix):
        return False
    return list(segments[: len(prefix)]) == list(prefix)


def _resolve_segments(
    path: Optional[str],
    base: Sequence[str],
    root: Sequence[str],
    *,
    field: str,
) -> list[str]:
    raw = (path or "").strip()
    parts = split_namespace(raw)
    if not parts and not raw.startswith("/"):
        return list(base)

    if raw.startswith("/"):
        stack = list(root)
    elif _has_prefix(parts, root):
        stack = list(root)
        parts = parts[len(root):]
    else:
        stack = list(base)

    for part in parts:
        if part == ".":
            continue
        if part == "..":
            if len(stack) <= len(root):
                raise InvalidNamespaceError("Namespace resolution escaped root scope", field=field)
            stack.pop()
            continue
        stack.append(part)
    return stack


def _ensure_root(segments: Sequence[str], root: Sequence[str], message: str, field: str) -> None:
    if not _has_prefix(segments, root):
        raise InvalidNamespaceError(message, field=field)


def resolve_namespace(
    root_namespace: str,
    default_namespace: Optional[str],
    namespace: Optional[str] = None,
    default_override: Optional[str] = None,
    *,
    field: str = "namespace",
) -> NamespaceResolution:
    """Resolve ``namespace`` against the effective default under ``root_namespace``.

    ``default_override`` replaces the tenant default for this call only and is
    subject to the same root containment check.
    """
    root = split_namespace(root_namespace)
    if not root:
        raise InvalidNamespaceError("Root namespace is not configured", field="rootNamespace")

    default = _resolve_segments(default_namespace, root, root, field="defaultNamespace")
    _ensure_root(default, root, "Default namespace must reside under root namespace", "defaultNamespace")

    if default_override and default_override.strip():
        default = _resolve_segments(default_override, root, root, field="defaultNamespace")
        _ensure_root(
            default,
            root,
            "Default namespace override must reside under root namespace",
            "defaultNamespace",
        )

    segments = _resolve_segments(namespace, default, root, field=field)
    _ensure_root(segments, root, "Namespace must reside under root namespace", field)
    return NamespaceResolution(
        namespace=join_namespace(segments),
        segments=tuple(segments),
        default_namespace=join_namespace(default),
    )


def resolve_for_context(context, namespace: Optional[str] = None, *, field: str = "namespace") -> NamespaceResolution:
    """Resolve ``namespace`` for a :class:`core.context.RequestContext`."""
    tenant = context.tenant
    return resolve_namespace(
        tenant.root_namespace,
        tenant.default_namespace,
        namespace,
        context.default_override,
        field=field,
    )


def truncate_namespace(namespace: str, base_segments: Sequence[str], depth: int) -> str:
    """Cut ``namespace`` down to at most ``depth`` levels below ``base_segments``."""
    segments = split_namespace(namespace)
    return join_namespace(segments[: len(base_segments) + depth])
