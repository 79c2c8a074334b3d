"""Sync result formatting functions.

- ``format_sync_result`` -- human-readable summary of one pass.
- ``result_to_json`` -- structured dict (camelCase keys) for MCP output.
- ``format_session_status`` -- one-screen view of the session snapshot.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mobilepos_sync.storage.models import SyncStats

    from .models import SessionSnapshot, SyncResult


def format_sync_result(result: SyncResult) -> str:
    """Format a sync result as human-readable text.

    Args:
        result: The completed (or refused) pass.

    Returns:
        Multi-line formatted string.
    """
    direction = result.direction.value
    if not result.attempted:
        reason = result.errors[0] if result.errors else "not attempted"
        return f"Sync ({direction}) not attempted: {reason}"

    lines: list[str] = []
    state = "succeeded" if result.success else "finished with errors"
    if result.cancelled:
        state = "cancelled"
    lines.append(f"Sync ({direction}) {state}")

    summary = f"{result.synced_count} synced, {result.failed_count} failed"
    if result.skipped_count:
        summary += f", {result.skipped_count} skipped"
    lines.append(summary)

    if result.completed_at:
        lines.append(f"Completed: {result.completed_at}")

    if result.errors:
        lines.append("")
        lines.append("Errors:")
        for error in result.errors:
            lines.append(f"  {error}")

    return "\n".join(lines)


def result_to_json(result: SyncResult) -> dict[str, Any]:
    """Convert a sync result to a JSON-serialisable dict."""
    return {
        "direction": result.direction.value,
        "success": result.success,
        "attempted": result.attempted,
        "cancelled": result.cancelled,
        "syncedCount": result.synced_count,
        "failedCount": result.failed_count,
        "skippedCount": result.skipped_count,
        "errors": list(result.errors),
        "checkpoint": result.checkpoint,
        "startedAt": result.started_at,
        "completedAt": result.completed_at,
    }


def format_session_status(
    snapshot: SessionSnapshot, stats: SyncStats | None = None
) -> str:
    """Format the session snapshot, plus store counts when given."""
    lines = [
        f"Online: {'yes' if snapshot.is_online else 'no'}",
        f"Status: {snapshot.sync_status.value}",
        f"Last sync: {snapshot.last_sync or 'never'}",
        f"Pending changes: {snapshot.pending_changes}",
    ]
    if stats is not None:
        lines.append(
            f"Records: {stats.total} total, {stats.synced} synced, "
            f"{stats.unsynced} unsynced"
        )
    return "\n".join(lines)
