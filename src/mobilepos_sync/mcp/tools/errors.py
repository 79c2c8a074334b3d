"""Error response builders and shared utilities for MCP tool handlers.

Structured error responses carry a corrective action so an AI agent can
recover without human intervention.
"""

import json
from typing import Any

import mcp.types as types

from ...storage.models import MutationStatus


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, validation_error,
            storage_error, stale, server_error, ...)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Record sale-1 not found", "Use record_list to find existing records.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def build_text_response(
    text: str, structured: dict[str, Any] | None = None
) -> types.CallToolResult:
    """Successful result with text content and optional structured JSON."""
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )


def dump_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


_STATUS_ERRORS: dict[MutationStatus, tuple[str, str]] = {
    MutationStatus.NOT_FOUND: (
        "not_found",
        "Use record_list to find existing record ids.",
    ),
    MutationStatus.STALE: (
        "stale",
        "The record changed meanwhile; fetch it with record_get and retry.",
    ),
    MutationStatus.PERSISTENCE_ERROR: (
        "storage_error",
        "Check free disk space and permissions of the data directory, then retry.",
    ),
}


def mutation_error(
    status: MutationStatus, record_id: str
) -> types.CallToolResult:
    """Error response for a non-applied ``MutationStatus``."""
    error_type, action = _STATUS_ERRORS.get(
        status, ("server_error", "Retry later.")
    )
    message = {
        MutationStatus.NOT_FOUND: f"Record {record_id} not found",
        MutationStatus.STALE: f"Record {record_id} was modified concurrently",
        MutationStatus.PERSISTENCE_ERROR: f"Could not persist change to {record_id}",
    }.get(status, f"Change to {record_id} not applied ({status.value})")
    return build_error_response(error_type, message, action)
