"""
Shared validation helpers for memospace services.

Every helper raises :class:`ValidationIssue` naming the offending wire field,
so bad input is rejected before any storage or embedding call.
"""

from __future__ import annotations

import json
import math
import uuid
from typing import Any, Optional, Sequence

from core.config import (
    EMBEDDING_DIM,
    MAX_METADATA_BYTES,
    MAX_TAG_LENGTH,
)
from core.errors import ValidationIssue


def validate_required_text(value: str, field: str, max_len: int) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationIssue(f"{field} must be a non-empty string", field=field, error_type="required")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_optional_text(value: Optional[str], field: str, max_len: int) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_int_range(value: Any, field: str, min_value: int, max_value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationIssue(f"{field} must be an integer", field=field, error_type="invalid_type")
    if value < min_value or value > max_value:
        raise ValidationIssue(
            f"{field} must be between {min_value} and {max_value}",
            field=field,
            error_type="out_of_range",
        )
    return value


def validate_limit(value: Any, field: str, max_value: int) -> int:
    return validate_int_range(value, field, 1, max_value)


def validate_unit_interval(value: Any, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationIssue(f"{field} must be a number", field=field, error_type="invalid_type")
    number = float(value)
    if not math.isfinite(number) or number < 0.0 or number > 1.0:
        raise ValidationIssue(f"{field} must be between 0.0 and 1.0", field=field, error_type="out_of_range")
    return number


def validate_optional_bool(value: Any, field: str) -> Optional[bool]:
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValidationIssue(f"{field} must be a boolean", field=field, error_type="invalid_type")
    return value


def validate_choice(value: Any, field: str, choices: Sequence[str]) -> str:
    if not isinstance(value, str) or value not in choices:
        raise ValidationIssue(
            f"{field} must be one of: {', '.join(choices)}",
            field=field,
            error_type="invalid_value",
        )
    return value


def validate_memo_id(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationIssue(f"{field} is required", field=field, error_type="required")
    try:
        return str(uuid.UUID(value.strip()))
    except ValueError as exc:
        raise ValidationIssue(f"{field} must be a valid UUID", field=field, error_type="invalid_id") from exc


def validate_optional_memo_id(value: Any, field: str) -> Optional[str]:
    if value is None:
        return None
    return validate_memo_id(value, field)


def validate_tag(value: Any, field: str = "tag") -> str:
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    tag = value.strip()
    if not tag:
        raise ValidationIssue(f"{field} is required", field=field, error_type="required")
    if len(tag) > MAX_TAG_LENGTH:
        raise ValidationIssue(
            f"{field} exceeds max length {MAX_TAG_LENGTH}",
            field=field,
            error_type="max_length",
        )
    return tag


def _check_json_value(value: Any, field: str) -> None:
    if value is None or isinstance(value, (str, bool, int)):
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationIssue(f"{field} must not contain non-finite numbers", field=field, error_type="invalid_value")
        return
    if isinstance(value, list):
        for item in value:
            _check_json_value(item, field)
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValidationIssue(f"{field} keys must be strings", field=field, error_type="invalid_type")
            _check_json_value(item, field)
        return
    raise ValidationIssue(f"{field} must be JSON-serializable", field=field, error_type="invalid_type")


def validate_metadata(metadata: Optional[dict], field: str) -> None:
    if metadata is None:
        return
    if not isinstance(metadata, dict):
        raise ValidationIssue(f"{field} must be an object", field=field, error_type="invalid_type")
    _check_json_value(metadata, field)
    try:
        size = len(json.dumps(metadata))
    except (TypeError, ValueError) as exc:
        raise ValidationIssue(f"{field} must be JSON-serializable", field=field, error_type="invalid_type") from exc
    if size > MAX_METADATA_BYTES:
        raise ValidationIssue(
            f"{field} exceeds max size {MAX_METADATA_BYTES} bytes",
            field=field,
            error_type="max_bytes",
        )


def validate_embedding_vector(vector: Any, field: str = "embedding") -> list[float]:
    if not isinstance(vector, (list, tuple)):
        raise ValidationIssue(f"{field} must be a list of numbers", field=field, error_type="invalid_type")
    if len(vector) != EMBEDDING_DIM:
        raise ValidationIssue(
            f"Embedding vector must have {EMBEDDING_DIM} dimensions, received {len(vector)}",
            field=field,
            error_type="invalid_dimension",
        )
    values = []
    for item in vector:
        if isinstance(item, bool) or not isinstance(item, (int, float)):
            raise ValidationIssue(f"{field} must contain only numbers", field=field, error_type="invalid_type")
        number = float(item)
        if not math.isfinite(number):
            raise ValidationIssue(
                "Embedding vector contains non-finite values",
                field=field,
                error_type="invalid_value",
            )
        values.append(number)
    return values
