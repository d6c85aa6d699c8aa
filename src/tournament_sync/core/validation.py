"""Input validation for tournament sync.

This module provides validation functions for identifiers, remote paths
and sync scopes. All validators raise ValidationError with descriptive
messages.

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

import uuid
from typing import Any, List, Optional

from uuid6 import uuid7


class ValidationError(ValueError):
    """Validation error with field and message attributes."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"

    def __repr__(self) -> str:
        return f"ValidationError(field='{self.field}', message='{self.message}')"


__all__ = [
    "ValidationError",
    "new_entity_id",
    "validate_entity_id",
    "validate_path_segment",
    "split_path",
    "validate_document_path",
    "validate_collection_path",
    "validate_device_id",
    "validate_timeout_ms",
    "validate_optional_id",
]

# Document ids are used verbatim as remote path segments
MAX_ENTITY_ID_LENGTH = 1500
MAX_PATH_DEPTH = 100


def new_entity_id() -> str:
    """Generate a client-side entity id (UUID7 hex, 32 chars)."""
    return uuid7().hex


def validate_entity_id(value: Any, field_name: str = "id") -> str:
    """Validate an entity id and return it unchanged.

    Ids come from this device (UUID7 hex) or from other devices and the
    remote store (arbitrary strings), so only the path-safety rules apply.
    """
    if not isinstance(value, str):
        raise ValidationError(
            field_name, f"must be a string, got {type(value).__name__}"
        )
    if not value or not value.strip():
        raise ValidationError(field_name, "cannot be empty")
    if "/" in value:
        raise ValidationError(field_name, "cannot contain '/'")
    if value in (".", ".."):
        raise ValidationError(field_name, f"'{value}' is not a valid id")
    if len(value) > MAX_ENTITY_ID_LENGTH:
        raise ValidationError(
            field_name,
            f"cannot exceed {MAX_ENTITY_ID_LENGTH} characters (got {len(value)})",
        )
    return value


def validate_path_segment(segment: str, field_name: str = "path") -> str:
    """Validate a single segment of a hierarchical remote path."""
    try:
        return validate_entity_id(segment, field_name)
    except ValidationError as e:
        raise ValidationError(field_name, f"invalid segment '{segment}': {e.message}") from None


def split_path(path: str, field_name: str = "path") -> List[str]:
    """Split a slash-separated remote path into validated segments."""
    if not isinstance(path, str):
        raise ValidationError(field_name, f"must be a string, got {type(path).__name__}")
    stripped = path.strip("/")
    if not stripped:
        raise ValidationError(field_name, "cannot be empty")
    parts = stripped.split("/")
    if len(parts) > MAX_PATH_DEPTH:
        raise ValidationError(
            field_name, f"cannot exceed {MAX_PATH_DEPTH} segments (got {len(parts)})"
        )
    return [validate_path_segment(p, field_name) for p in parts]


def validate_document_path(path: str) -> List[str]:
    """Validate a document path (even number of segments)."""
    parts = split_path(path)
    if len(parts) % 2 != 0:
        raise ValidationError(
            "path", f"'{path}' is a collection path, expected a document path"
        )
    return parts


def validate_collection_path(path: str) -> List[str]:
    """Validate a collection path (odd number of segments)."""
    parts = split_path(path)
    if len(parts) % 2 != 1:
        raise ValidationError(
            "path", f"'{path}' is a document path, expected a collection path"
        )
    return parts


def validate_device_id(device_id: str) -> str:
    """Validate a device ID (UUID hex string, hyphens allowed)."""
    if not isinstance(device_id, str):
        raise ValidationError(
            "device_id", f"must be a string, got {type(device_id).__name__}"
        )
    try:
        return uuid.UUID(hex=device_id.replace("-", "")).hex
    except ValueError as e:
        raise ValidationError("device_id", f"invalid UUID format: {e}") from None


def validate_timeout_ms(value: Any, field_name: str = "timeout_ms") -> int:
    """Validate a timeout in milliseconds (positive integer)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(
            field_name, f"must be a number, got {type(value).__name__}"
        )
    if value <= 0:
        raise ValidationError(field_name, f"must be positive, got {value}")
    return int(value)


def validate_optional_id(value: Optional[str], field_name: str) -> Optional[str]:
    """Validate an id that may be absent."""
    if value is None:
        return None
    return validate_entity_id(value, field_name)
