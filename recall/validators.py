"""
Shared validation helpers for recall services.
"""

from __future__ import annotations

import re
from typing import Optional, Sequence

from recall.config import MAX_ID_LENGTH
from recall.errors import ValidationIssue
from recall.models import MemoryType

_OWNER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.:@-]+$")


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


def validate_owner_id(value: str, field: str = "owner_id") -> None:
    validate_required_text(value, field, MAX_ID_LENGTH)
    if not _OWNER_ID_PATTERN.match(value):
        raise ValidationIssue(
            f"{field} contains unsupported characters",
            field=field,
            error_type="invalid_format",
        )


def validate_limit(value: int, field: str, max_value: int) -> None:
    if value <= 0 or value > max_value:
        raise ValidationIssue(f"{field} must be between 1 and {max_value}", field=field, error_type="out_of_range")


def validate_fraction(value: float, field: str) -> None:
    if value is None or value < 0.0 or value > 1.0:
        raise ValidationIssue(f"{field} must be between 0.0 and 1.0", field=field, error_type="out_of_range")


def validate_memory_types(
    values: Optional[Sequence[str]],
    field: str = "memory_types",
) -> Optional[list[MemoryType]]:
    if values is None:
        return None
    converted = []
    for item in values:
        try:
            converted.append(MemoryType(item))
        except ValueError as exc:
            raise ValidationIssue(
                f"{field} contains unknown memory type {item!r}",
                field=field,
                error_type="invalid_choice",
            ) from exc
    return converted
