"""Record tool handlers for MCP server.

Exposes the local store to agents: create, update, delete, fetch and list
records.  Every change lands in the local store first and is marked
unsynced; nothing here talks to the server.
"""

import logging
from typing import Any

import mcp.types as types

from ...storage.models import Record
from ...sync.session import SyncSession
from ...validators import validate_record_id, validate_record_type
from .errors import (
    build_error_response,
    build_text_response,
    dump_json,
    mutation_error,
)
from .registry import ToolSpec

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 500

_DATA_SCHEMA = {
    "description": "Record payload (any JSON value, usually an object)",
}

RECORD_TOOLS = [
    types.Tool(
        name="record_save",
        description="Create a new local record of the given type. The record starts unsynced and is uploaded on the next sync. Returns the generated record id.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=False,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "type": {
                    "type": "string",
                    "description": "Record type tag, e.g. sale, purchase, product, customer",
                },
                "data": _DATA_SCHEMA,
            },
            "required": ["type", "data"],
        },
    ),
    types.Tool(
        name="record_update",
        description="Replace the payload of an existing record. The record becomes unsynced again.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Record id"},
                "data": _DATA_SCHEMA,
            },
            "required": ["id", "data"],
        },
    ),
    types.Tool(
        name="record_delete",
        description="Delete a local record. The deletion is not sent to the server.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Record id"},
            },
            "required": ["id"],
        },
    ),
    types.Tool(
        name="record_get",
        description="Get one local record by id, including its sync flag and timestamps.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Record id"},
            },
            "required": ["id"],
        },
    ),
    types.Tool(
        name="record_list",
        description="List local records in insertion order, optionally filtered by type or to unsynced records only.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "type": {
                    "type": "string",
                    "description": "Only records with exactly this type tag",
                },
                "unsynced_only": {
                    "type": "boolean",
                    "default": False,
                    "description": "Only records not yet confirmed by the server",
                },
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": MAX_LIST_LIMIT,
                    "default": DEFAULT_LIST_LIMIT,
                    "description": "Maximum number of records to return",
                },
            },
            "required": [],
        },
    ),
]


def _require_id(args: dict) -> str:
    record_id = args.get("id")
    if not isinstance(record_id, str):
        raise ValueError("id is required and must be a string")
    is_valid, error = validate_record_id(record_id)
    if not is_valid:
        raise ValueError(error)
    return record_id


def _summary_line(record: Record) -> str:
    flag = "synced" if record.synced else "pending"
    return f"- {record.id} [{record.type}] {flag}, updated {record.updated_at.isoformat()}"


async def _handle_record_save(
    session: SyncSession, args: dict
) -> types.CallToolResult:
    record_type = args.get("type")
    if not isinstance(record_type, str):
        raise ValueError("type is required and must be a string")
    if "data" not in args:
        raise ValueError("data is required")

    record_id = session.save(record_type, args["data"])
    logger.info("Saved %s record %s via MCP", record_type, record_id)
    return build_text_response(
        f"Saved {record_type} record {record_id} (pending sync)",
        {"id": record_id, "type": record_type, "synced": False},
    )


async def _handle_record_update(
    session: SyncSession, args: dict
) -> types.CallToolResult:
    record_id = _require_id(args)
    if "data" not in args:
        raise ValueError("data is required")

    status = session.update(record_id, args["data"])
    if not status:
        return mutation_error(status, record_id)
    return build_text_response(
        f"Updated record {record_id} (pending sync)",
        {"id": record_id, "status": status.value},
    )


async def _handle_record_delete(
    session: SyncSession, args: dict
) -> types.CallToolResult:
    record_id = _require_id(args)
    status = session.delete(record_id)
    if not status:
        return mutation_error(status, record_id)
    return build_text_response(
        f"Deleted record {record_id}",
        {"id": record_id, "status": status.value},
    )


async def _handle_record_get(
    session: SyncSession, args: dict
) -> types.CallToolResult:
    record_id = _require_id(args)
    record = session.store.get_by_id(record_id)
    if record is None:
        return build_error_response(
            "not_found",
            f"Record {record_id} not found",
            "Use record_list to find existing record ids.",
        )
    payload = record.to_storage()
    return build_text_response(dump_json(payload), payload)


async def _handle_record_list(
    session: SyncSession, args: dict
) -> types.CallToolResult:
    record_type = args.get("type")
    if record_type is not None:
        is_valid, error = validate_record_type(record_type)
        if not is_valid:
            raise ValueError(error)
    limit = args.get("limit", DEFAULT_LIST_LIMIT)
    if not isinstance(limit, int) or isinstance(limit, bool):
        raise ValueError("limit must be an integer")
    limit = max(1, min(limit, MAX_LIST_LIMIT))

    if args.get("unsynced_only", False):
        records = [
            r
            for r in session.store.get_unsynced()
            if record_type is None or r.type == record_type
        ]
    else:
        records = session.store.get_all(record_type)

    total = len(records)
    shown = records[:limit]
    if not shown:
        text = "No records found."
    else:
        lines = [f"Showing {len(shown)} of {total} record(s):"]
        lines.extend(_summary_line(r) for r in shown)
        text = "\n".join(lines)

    structured: dict[str, Any] = {
        "records": [r.to_storage() for r in shown],
        "total": total,
        "showing": len(shown),
    }
    return build_text_response(text, structured)


RECORD_SPECS: list[ToolSpec] = [
    ToolSpec(tool=RECORD_TOOLS[0], handler=_handle_record_save),
    ToolSpec(tool=RECORD_TOOLS[1], handler=_handle_record_update),
    ToolSpec(tool=RECORD_TOOLS[2], handler=_handle_record_delete),
    ToolSpec(tool=RECORD_TOOLS[3], handler=_handle_record_get, read_only=True),
    ToolSpec(tool=RECORD_TOOLS[4], handler=_handle_record_list, read_only=True),
]
