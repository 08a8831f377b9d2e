"""
API key lookup: bearer tokens resolve to a tenant context.

Only the SHA-256 hex digest of a token is stored.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime
from typing import Mapping, Optional

import core.config as config
from core.models import ApiKey
from core.context import TenantContext
from core.namespace import join_namespace, resolve_namespace, split_namespace

API_KEY_ACTIVE = "active"
API_KEY_REVOKED = "revoked"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.strip().encode("utf-8")).hexdigest()


def generate_token() -> str:
    return secrets.token_urlsafe(32)


def extract_bearer_token(headers: Mapping[str, str]) -> Optional[str]:
    """Read ``Authorization: Bearer <token>`` from lower-cased headers."""
    value = headers.get("authorization")
    if not value:
        return None
    scheme, _, token = value.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def find_api_key_context(db, token: Optional[str]) -> Optional[TenantContext]:
    """Return the tenant for an active key, or ``None``."""
    if not token or not token.strip():
        return None
    record = (
        db.query(ApiKey)
        .filter(ApiKey.token_hash == hash_token(token))
        .filter(ApiKey.status == API_KEY_ACTIVE)
        .first()
    )
    if record is None:
        return None
    record.last_used_at = datetime.utcnow()
    db.commit()
    return TenantContext(
        owner_id=record.owner_id,
        root_namespace=record.root_namespace,
        default_namespace=record.default_namespace,
    )


def local_tenant_context() -> TenantContext:
    root = join_namespace(split_namespace(config.LOCAL_ROOT_NAMESPACE))
    return TenantContext(owner_id=config.LOCAL_OWNER_ID, root_namespace=root, default_namespace=root)


def authenticate_headers(db, headers: Mapping[str, str]) -> Optional[TenantContext]:
    """Resolve request headers to a tenant.

    A presented token must be valid. Without one, the local tenant is used
    only when ``REQUIRE_AUTH`` is off.
    """
    token = extract_bearer_token(headers)
    if token is None:
        return None if config.REQUIRE_AUTH else local_tenant_context()
    return find_api_key_context(db, token)


def create_api_key(
    db,
    *,
    owner_id: str,
    root_namespace: str,
    default_namespace: Optional[str] = None,
) -> tuple[str, ApiKey]:
    """Store a new key and return ``(token, record)``; the token is not recoverable later."""
    root = join_namespace(split_namespace(root_namespace))
    resolution = resolve_namespace(root, default_namespace or root)
    token = generate_token()
    record = ApiKey(
        token_hash=hash_token(token),
        owner_id=owner_id,
        root_namespace=root,
        default_namespace=resolution.default_namespace,
        status=API_KEY_ACTIVE,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return token, record
