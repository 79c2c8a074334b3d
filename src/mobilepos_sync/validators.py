"""
Input validation functions for records entering the local store.

Checks record type tags, identifiers and payloads before anything is
written, so a bad value is rejected up front instead of surfacing later as
a persistence failure.
"""

import json
import re
from typing import Any

_RECORD_TYPE_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Record type")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_record_type(record_type: str) -> tuple[bool, str]:
    """
    Validate a record type tag such as ``sale`` or ``cashbook``.

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Must be a non-empty string
        - Lowercase letters, digits and underscores, starting with a letter
        - At most 64 characters
    """
    if not isinstance(record_type, str) or not record_type.strip():
        return (
            False,
            format_validation_error("Record type", "cannot be empty"),
        )

    if len(record_type) > 64:
        return (
            False,
            format_validation_error(
                "Record type", "cannot exceed 64 characters"
            ),
        )

    if not _RECORD_TYPE_PATTERN.match(record_type):
        return (
            False,
            format_validation_error(
                "Record type",
                f"'{record_type}' must be lowercase letters, digits or "
                "underscores, starting with a letter",
            ),
        )

    return (True, "")


def validate_record_id(record_id: str) -> tuple[bool, str]:
    """Validate a record identifier passed in by a caller."""
    if not isinstance(record_id, str) or not record_id.strip():
        return (
            False,
            format_validation_error("Record id", "cannot be empty"),
        )
    return (True, "")


def validate_payload(
    payload: Any, max_size: int = 1_000_000
) -> tuple[bool, str]:
    """
    Validate a record payload.

    Args:
        payload: The caller-owned data to store
        max_size: Maximum serialised size in bytes (default: 1,000,000)

    Returns:
        Tuple of (is_valid, error_message).

    Validation rules:
        - Must be JSON serialisable, without NaN or Infinity
        - Serialised form cannot exceed max_size bytes
    """
    try:
        encoded = json.dumps(payload, allow_nan=False)
    except (TypeError, ValueError) as exc:
        return (
            False,
            format_validation_error(
                "Payload", f"must be JSON serialisable ({exc})"
            ),
        )

    if len(encoded.encode("utf-8")) > max_size:
        return (
            False,
            format_validation_error(
                "Payload", f"exceeds maximum size of {max_size} bytes"
            ),
        )

    return (True, "")
