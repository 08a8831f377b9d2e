"""
Request-scoped context objects for core services.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional
import contextvars


@dataclass(frozen=True)
class TenantContext:
    """Identity and namespace scope resolved from an API key."""

    owner_id: str
    root_namespace: str
    default_namespace: str


@dataclass(frozen=True)
class RequestContext:
    tenant: TenantContext
    default_override: Optional[str] = None
    request_id: Optional[str] = None
    source: Optional[str] = None

    @property
    def owner_id(self) -> str:
        return self.tenant.owner_id

    def with_default_override(self, value: Optional[str]) -> "RequestContext":
        cleaned = value.strip() if isinstance(value, str) else None
        return replace(self, default_override=cleaned or None)


_CURRENT_REQUEST_CONTEXT: contextvars.ContextVar[Optional["RequestContext"]] = contextvars.ContextVar(
    "memospace_request_context",
    default=None,
)


def get_current_request_context() -> Optional["RequestContext"]:
    return _CURRENT_REQUEST_CONTEXT.get()


def set_current_request_context(context: Optional["RequestContext"]) -> contextvars.Token:
    return _CURRENT_REQUEST_CONTEXT.set(context)


def reset_current_request_context(token: contextvars.Token) -> None:
    _CURRENT_REQUEST_CONTEXT.reset(token)


__all__ = [
    "TenantContext",
    "RequestContext",
    "get_current_request_context",
    "set_current_request_context",
    "reset_current_request_context",
]
