"""Sync engine that reconciles the local store with the remote side.

The ``SyncEngine`` drives three kinds of pass:

1. ``sync_to_server``: snapshot the unsynced records, probe the server,
   then transmit each record in insertion order and mark it synced as soon
   as the server confirms it.
2. ``sync_from_server``: pull records changed on the server since a
   checkpoint and merge them into the store.
3. ``full_sync``: upload, then download, with the two results merged.

Error handling is per-record: one failed transmit never aborts the pass.
Only a failed connectivity probe short-circuits a pass, before any
transmit is issued.

Blocking transport calls run in worker threads with a timeout each, so the
engine can be driven from the MCP server's event loop.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone

from pydantic import ValidationError

from mobilepos_sync.core.async_utils import run_with_timeout
from mobilepos_sync.core.client import PullBatch, RemoteTransport
from mobilepos_sync.storage.models import MutationStatus, Record
from mobilepos_sync.storage.store import LocalStore
from mobilepos_sync.sync.models import SyncDirection, SyncResult
from mobilepos_sync.sync.resolver import ConflictResolver, LastWriteWinsResolver

logger = logging.getLogger(__name__)

OFFLINE_ERROR = "Cannot connect to server"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class SyncEngine:
    """Upload, download and full sync passes over one store.

    Args:
        store: The local store to reconcile.
        transport: Remote side (``PosApiClient`` in production).
        resolver: Conflict policy for pulled records that collide with
            unsynced local edits.  Defaults to last-write-wins.
        transmit_timeout: Seconds allowed per push or pull call.
        probe_timeout: Seconds allowed for the connectivity probe.
    """

    def __init__(
        self,
        store: LocalStore,
        transport: RemoteTransport,
        *,
        resolver: ConflictResolver | None = None,
        transmit_timeout: float = 10.0,
        probe_timeout: float = 5.0,
    ) -> None:
        self.store = store
        self.transport = transport
        self.resolver = resolver or LastWriteWinsResolver()
        self.transmit_timeout = transmit_timeout
        self.probe_timeout = probe_timeout
        self._cancel = threading.Event()

    # ------------------------------------------------------------------
    # Connectivity and cancellation
    # ------------------------------------------------------------------

    async def check_connection(self) -> bool:
        """Probe the server.  Never raises; any failure means offline."""
        try:
            return bool(
                await run_with_timeout(
                    self.transport.check_health, self.probe_timeout
                )
            )
        except Exception as exc:
            logger.debug("Connectivity probe failed: %s", _describe(exc))
            return False

    def cancel(self) -> None:
        """Stop issuing transmits in the pass currently running.

        Records already marked synced stay synced.  Has no effect on a pass
        started afterwards.
        """
        self._cancel.set()

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def sync_to_server(self) -> SyncResult:
        """Transmit every unsynced record, in insertion order.

        Returns:
            A ``SyncResult`` with ``success`` true iff nothing failed.
            When the server is unreachable no transmit is issued and the
            result has ``attempted=False``.
        """
        self._cancel.clear()
        started_at = _now_iso()
        pending = self.store.get_unsynced()

        if not pending:
            logger.debug("Nothing to upload")
            return SyncResult(
                direction=SyncDirection.UPLOAD,
                started_at=started_at,
                completed_at=_now_iso(),
            )

        if not await self.check_connection():
            logger.warning(
                "Server unreachable, %d record(s) left pending", len(pending)
            )
            return SyncResult.not_attempted(
                SyncDirection.UPLOAD,
                OFFLINE_ERROR,
                started_at=started_at,
                completed_at=_now_iso(),
            )

        synced = 0
        errors: list[str] = []
        cancelled = False

        for record in pending:
            if self._cancel.is_set():
                cancelled = True
                logger.info("Upload cancelled after %d record(s)", synced)
                break

            try:
                await run_with_timeout(
                    self.transport.push_record, self.transmit_timeout, record
                )
            except Exception as exc:
                reason = _describe(exc)
                logger.warning(
                    "Failed to sync %s %s: %s", record.type, record.id, reason
                )
                errors.append(
                    f"Failed to sync {record.type} {record.id}: {reason}"
                )
                continue

            status = self.store.mark_as_synced(
                record.id, expected_updated_at=record.updated_at
            )
            match status:
                case MutationStatus.APPLIED:
                    synced += 1
                case MutationStatus.STALE:
                    # Changed while in flight; the newer version stays pending.
                    logger.info(
                        "%s %s changed during upload, left unsynced",
                        record.type,
                        record.id,
                    )
                    synced += 1
                case MutationStatus.NOT_FOUND:
                    logger.info(
                        "%s %s deleted during upload", record.type, record.id
                    )
                    synced += 1
                case _:
                    logger.error(
                        "Failed to sync %s %s: could not record sync locally",
                        record.type,
                        record.id,
                    )
                    errors.append(
                        f"Failed to sync {record.type} {record.id}: "
                        "could not record sync locally"
                    )

        logger.info(
            "Upload finished: %d synced, %d failed", synced, len(errors)
        )
        return SyncResult(
            direction=SyncDirection.UPLOAD,
            success=not errors,
            synced_count=synced,
            failed_count=len(errors),
            errors=errors,
            cancelled=cancelled,
            started_at=started_at,
            completed_at=_now_iso(),
        )

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def sync_from_server(self, since: str | None = None) -> SyncResult:
        """Pull server-side changes after *since* and merge them locally.

        Merge rules per pulled record:

        - unknown id: inserted as synced;
        - local copy synced: replaced when the remote copy is newer,
          otherwise skipped;
        - local copy unsynced: the resolver decides.
        """
        started_at = _now_iso()
        try:
            batch: PullBatch = await run_with_timeout(
                self.transport.pull_changes, self.transmit_timeout, since
            )
        except Exception as exc:
            reason = _describe(exc)
            logger.warning("Failed to fetch server changes: %s", reason)
            return SyncResult(
                direction=SyncDirection.DOWNLOAD,
                success=False,
                failed_count=1,
                errors=[f"Failed to fetch server changes: {reason}"],
                checkpoint=since,
                started_at=started_at,
                completed_at=_now_iso(),
            )

        applied = 0
        skipped = 0
        errors: list[str] = []

        for raw in batch.records:
            try:
                remote = Record.from_storage(raw)
            except ValidationError as exc:
                ident = raw.get("id", "?") if isinstance(raw, dict) else "?"
                logger.warning(
                    "Invalid remote record %s: %d validation error(s)",
                    ident,
                    exc.error_count(),
                )
                errors.append(
                    f"Invalid remote record {ident}: "
                    f"{exc.error_count()} validation error(s)"
                )
                continue

            try:
                outcome = self._merge_remote(remote)
            except ValueError as exc:
                # Type tag or payload the local store does not accept.
                logger.warning("Invalid remote record %s: %s", remote.id, exc)
                errors.append(f"Invalid remote record {remote.id}: {exc}")
                continue
            if outcome is None:
                skipped += 1
            elif outcome:
                applied += 1
            else:
                errors.append(
                    f"Failed to sync {remote.type} {remote.id}: "
                    f"could not apply remote change ({outcome.value})"
                )

        logger.info(
            "Download finished: %d applied, %d skipped, %d failed",
            applied,
            skipped,
            len(errors),
        )
        return SyncResult(
            direction=SyncDirection.DOWNLOAD,
            success=not errors,
            synced_count=applied,
            failed_count=len(errors),
            skipped_count=skipped,
            errors=errors,
            checkpoint=batch.checkpoint,
            started_at=started_at,
            completed_at=_now_iso(),
        )

    def _merge_remote(self, remote: Record) -> MutationStatus | None:
        """Apply one pulled record.  Returns None when it was skipped."""
        local = self.store.get_by_id(remote.id)
        if local is None:
            return self._apply(remote)

        if local.synced:
            if remote.updated_at > local.updated_at:
                return self._apply(remote)
            return None

        if self.resolver.resolve(local, remote) == "remote":
            return self._apply(remote)
        return None

    def _apply(self, remote: Record) -> MutationStatus:
        return self.store.apply_remote(remote)

    # ------------------------------------------------------------------
    # Full
    # ------------------------------------------------------------------

    async def full_sync(self, since: str | None = None) -> SyncResult:
        """Upload then download; returns the merged result.

        The download runs even when the upload reported failures, so a
        flaky record never blocks incoming changes.  It is skipped when the
        upload found the server unreachable or was cancelled.
        """
        upload = await self.sync_to_server()
        if not upload.attempted or upload.cancelled:
            return upload.merge(
                SyncResult(
                    direction=SyncDirection.DOWNLOAD,
                    attempted=False,
                    checkpoint=since,
                )
            )
        download = await self.sync_from_server(since)
        return upload.merge(download)
