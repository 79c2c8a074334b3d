"""Pydantic models for sync passes and session state.

- ``SyncDirection``: which way a pass moved data.
- ``SyncResult``: outcome of one upload, download or full pass.
- ``SyncStatus``: the session's current activity.
- ``SessionSnapshot``: what UI collaborators read from the session.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class SyncDirection(str, Enum):
    """Direction of a sync pass."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    FULL = "full"


class SyncResult(BaseModel):
    """Outcome of one sync pass.

    Attributes:
        direction: Upload, download or full (both).
        success: True iff the pass ran and nothing failed.
        synced_count: Records transmitted (upload) or applied (download).
        failed_count: Records that failed; each has an entry in ``errors``.
        skipped_count: Pulled records left alone by the merge policy.
        errors: Human-readable failure descriptions, in processing order.
        attempted: False when the pass was refused before any network
            transmit (offline, already syncing).
        cancelled: True when the pass stopped early on request; work done
            before the stop is kept.
        checkpoint: Pull checkpoint to use for the next download.
        started_at: ISO 8601 timestamp when the pass started.
        completed_at: ISO 8601 timestamp when the pass finished.
    """

    direction: SyncDirection = SyncDirection.UPLOAD
    success: bool = True
    synced_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    errors: list[str] = []
    attempted: bool = True
    cancelled: bool = False
    checkpoint: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def not_attempted(
        cls,
        direction: SyncDirection,
        reason: str,
        started_at: str | None = None,
        completed_at: str | None = None,
    ) -> SyncResult:
        """Result for a pass refused before any transmit."""
        return cls(
            direction=direction,
            success=False,
            attempted=False,
            errors=[reason],
            started_at=started_at,
            completed_at=completed_at,
        )

    def merge(self, other: SyncResult) -> SyncResult:
        """Combine an upload result with the download that followed it.

        Success is the AND of both, counts are summed and errors are
        concatenated in (self, other) order.
        """
        return SyncResult(
            direction=SyncDirection.FULL,
            success=self.success and other.success,
            synced_count=self.synced_count + other.synced_count,
            failed_count=self.failed_count + other.failed_count,
            skipped_count=self.skipped_count + other.skipped_count,
            errors=[*self.errors, *other.errors],
            attempted=self.attempted or other.attempted,
            cancelled=self.cancelled or other.cancelled,
            checkpoint=other.checkpoint or self.checkpoint,
            started_at=self.started_at or other.started_at,
            completed_at=other.completed_at or self.completed_at,
        )


class SyncStatus(str, Enum):
    """What the session is doing right now.  Exactly one at a time."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class SessionSnapshot(BaseModel):
    """Point-in-time view of the sync session for UI collaborators.

    Attributes:
        is_online: Last connectivity signal (advisory only).
        sync_status: Current activity.
        last_sync: ISO 8601 timestamp of the last successful pass.
        pending_changes: Number of unsynced records in the local store.
    """

    is_online: bool
    sync_status: SyncStatus
    last_sync: str | None = None
    pending_changes: int = 0

    model_config = {"frozen": True}
