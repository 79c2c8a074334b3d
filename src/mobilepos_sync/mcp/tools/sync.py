"""MCP tool handlers for synchronisation.

Defines three tools:

- ``sync_now`` -- run an upload pass, or a full upload + download pass.
- ``sync_status`` -- online flag, status, last sync and pending changes.
- ``sync_clear_synced`` -- drop records the server already confirmed.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ...sync.reporter import (
    format_session_status,
    format_sync_result,
    result_to_json,
)
from ...sync.session import SyncSession
from .errors import build_text_response
from .registry import ToolSpec

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="sync_now",
        description=(
            "Upload all pending local records to the server. With full=true, "
            "also pull server-side changes afterwards. Refused while offline "
            "or while another sync is running."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "full": {
                    "type": "boolean",
                    "default": False,
                    "description": "Also pull changes from the server",
                },
                "recheck": {
                    "type": "boolean",
                    "default": True,
                    "description": "Probe the server first instead of trusting the last known online state",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="sync_status",
        description=(
            "Show sync state -- online flag, current status, last successful "
            "sync time and number of pending local changes."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    types.Tool(
        name="sync_clear_synced",
        description=(
            "Remove local records already confirmed by the server. Pending "
            "records are always kept."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
]


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


async def _handle_sync_now(
    session: SyncSession, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_now`` tool."""
    full = bool(args.get("full", False))
    if args.get("recheck", True) and not session.is_syncing:
        online = await session.engine.check_connection()
        # set_online may itself start an upload when coming back online.
        auto_result = await session.set_online(online)
        if auto_result is not None and not full:
            return build_text_response(
                format_sync_result(auto_result), result_to_json(auto_result)
            )

    result = await session.sync_now(full=full)
    return build_text_response(
        format_sync_result(result), result_to_json(result)
    )


async def _handle_sync_status(
    session: SyncSession, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_status`` tool."""
    snapshot = session.snapshot()
    stats = session.store.get_sync_stats()
    structured = {
        "isOnline": snapshot.is_online,
        "syncStatus": snapshot.sync_status.value,
        "lastSync": snapshot.last_sync,
        "pendingChanges": snapshot.pending_changes,
        "total": stats.total,
        "synced": stats.synced,
        "unsynced": stats.unsynced,
    }
    return build_text_response(
        format_session_status(snapshot, stats), structured
    )


async def _handle_sync_clear_synced(
    session: SyncSession, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_clear_synced`` tool."""
    removed = session.store.clear_synced()
    return build_text_response(
        f"Removed {removed} synced record(s).", {"removed": removed}
    )


SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(tool=SYNC_TOOLS[0], handler=_handle_sync_now),
    ToolSpec(tool=SYNC_TOOLS[1], handler=_handle_sync_status, read_only=True),
    ToolSpec(tool=SYNC_TOOLS[2], handler=_handle_sync_clear_synced),
]
