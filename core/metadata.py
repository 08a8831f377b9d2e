"""
Helpers for memo metadata documents.
"""

from __future__ import annotations

import re
from typing import Any, Optional

_MISSING = object()
_NON_DIGITS = re.compile(r"[^0-9]")


def merge_metadata(existing: Optional[dict], patch: Optional[dict]) -> dict:
    """Shallow merge; patch keys win and a ``None`` value is stored as-is."""
    merged = dict(existing or {})
    if patch:
        merged.update(patch)
    return merged


def set_metadata_property(
    existing: Optional[dict],
    name: str,
    value: Any,
) -> tuple[dict, Any, str, bool]:
    """Set or delete one metadata key.

    Returns ``(metadata, previous_value, action, changed)`` where ``action`` is
    one of ``created``, ``updated``, ``deleted`` or ``unchanged``. A ``None``
    value removes the key.
    """
    metadata = dict(existing or {})
    previous = metadata.get(name, _MISSING)

    if value is None:
        if previous is _MISSING:
            return metadata, None, "unchanged", False
        del metadata[name]
        return metadata, previous, "deleted", True

    if previous is _MISSING:
        metadata[name] = value
        return metadata, None, "created", True
    if previous == value:
        return metadata, previous, "unchanged", False
    metadata[name] = value
    return metadata, previous, "updated", True


def metadata_contains(document: Any, subset: Any) -> bool:
    """Structural containment with the semantics of PostgreSQL ``jsonb @>``."""
    if isinstance(subset, dict):
        if not isinstance(document, dict):
            return False
        for key, expected in subset.items():
            if key not in document:
                return False
            if not metadata_contains(document[key], expected):
                return False
        return True
    if isinstance(subset, list):
        if not isinstance(document, list):
            return False
        return all(
            any(metadata_contains(candidate, expected) for candidate in document)
            for expected in subset
        )
    if isinstance(document, list):
        # A scalar is contained by an array holding it.
        return any(_scalar_equal(item, subset) for item in document)
    return _scalar_equal(document, subset)


def _scalar_equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return left is right
    return left == right


def version_sort_key(value: Any) -> tuple[int, ...]:
    """Turn ``"1.10.2"`` style values into a comparable integer tuple.

    Non-digit characters are stripped from each dot segment and segments
    left without digits are dropped. Trailing zeros are trimmed so that
    ``"1.0"`` and ``"1"`` compare equal; blank or non-string values sort as 0.
    """
    if not isinstance(value, str) or not value.strip():
        return ()
    parts = []
    for segment in value.split("."):
        digits = _NON_DIGITS.sub("", segment)
        if digits:
            parts.append(int(digits))
    while parts and parts[-1] == 0:
        parts.pop()
    return tuple(parts)
