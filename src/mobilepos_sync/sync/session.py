"""The sync session: one shared access point for UI collaborators.

``SyncSession`` owns the online flag, the current ``SyncStatus``, the last
successful sync time and the pending-change count.  It is constructed once
by the application root (the MCP lifespan) and handed to every consumer.

The pending count is derived from the store only: a store listener refreshes
it after every mutation, and every pass refreshes it when it ends.
Connectivity changes never alter it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from mobilepos_sync.storage.models import MutationStatus
from mobilepos_sync.storage.store import LocalStore
from mobilepos_sync.sync.engine import SyncEngine
from mobilepos_sync.sync.models import (
    SessionSnapshot,
    SyncDirection,
    SyncResult,
    SyncStatus,
)
from mobilepos_sync.sync.state import SessionState

logger = logging.getLogger(__name__)

OFFLINE_REASON = "Device is offline"
BUSY_REASON = "Sync already in progress"


class SyncSession:
    """Drive and observe synchronisation for one store.

    Args:
        store: The local store.
        engine: The sync engine bound to *store*.
        state: Where the last sync time and pull checkpoint are persisted.
        auto_sync: Upload pending changes automatically when the session
            goes from offline to online.
    """

    def __init__(
        self,
        store: LocalStore,
        engine: SyncEngine,
        state: SessionState,
        *,
        auto_sync: bool = True,
    ) -> None:
        self.store = store
        self.engine = engine
        self.state = state
        self.auto_sync = auto_sync

        persisted = state.load()
        self._last_sync: str | None = persisted.get("last_sync")
        self._checkpoint: str | None = persisted.get("checkpoint")
        self._is_online = False
        self._status = SyncStatus.IDLE
        self._pending = store.get_sync_stats().unsynced
        self._pass_lock = asyncio.Lock()
        self._listeners: list[Callable[[SessionSnapshot], None]] = []

        store.add_listener(self._refresh_pending)

    # ------------------------------------------------------------------
    # Observed state
    # ------------------------------------------------------------------

    @property
    def is_online(self) -> bool:
        return self._is_online

    @property
    def sync_status(self) -> SyncStatus:
        return self._status

    @property
    def last_sync(self) -> str | None:
        return self._last_sync

    @property
    def checkpoint(self) -> str | None:
        return self._checkpoint

    @property
    def pending_changes(self) -> int:
        return self._pending

    @property
    def is_syncing(self) -> bool:
        return self._pass_lock.locked()

    def snapshot(self) -> SessionSnapshot:
        """Return the ``{is_online, sync_status, last_sync, pending_changes}`` view."""
        return SessionSnapshot(
            is_online=self._is_online,
            sync_status=self._status,
            last_sync=self._last_sync,
            pending_changes=self._pending,
        )

    def add_listener(self, callback: Callable[[SessionSnapshot], None]) -> None:
        """Call *callback* with a fresh snapshot whenever the state changes."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[SessionSnapshot], None]) -> None:
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    async def set_online(self, online: bool) -> SyncResult | None:
        """Apply a connectivity signal.

        Going online with pending changes starts an upload when
        ``auto_sync`` is on; its result is returned.  Going offline cancels
        any pass in flight and re-derives the pending count from the store.
        """
        was_online = self._apply_online(online)

        if not online:
            if self.is_syncing:
                logger.info("Went offline, cancelling sync in progress")
                self.engine.cancel()
            self._refresh_pending()
            return None

        if not was_online and self.auto_sync and self._pending > 0:
            logger.info(
                "Back online with %d pending change(s), syncing", self._pending
            )
            return await self.sync_now()
        return None

    def _apply_online(self, online: bool) -> bool:
        was_online = self._is_online
        if was_online != online:
            self._is_online = online
            logger.info("Connectivity changed: %s", "online" if online else "offline")
            self._notify()
        return was_online

    # ------------------------------------------------------------------
    # Sync passes
    # ------------------------------------------------------------------

    async def sync_now(self, full: bool = False) -> SyncResult:
        """Run one upload pass, or a full pass when *full* is set.

        Refused (``attempted=False``) while offline or while another pass
        is running.
        """
        direction = SyncDirection.FULL if full else SyncDirection.UPLOAD
        if not self._is_online:
            return SyncResult.not_attempted(direction, OFFLINE_REASON)
        if self._pass_lock.locked():
            return SyncResult.not_attempted(direction, BUSY_REASON)

        async with self._pass_lock:
            self._set_status(SyncStatus.SYNCING)
            try:
                if full:
                    result = await self.engine.full_sync(self._checkpoint)
                else:
                    result = await self.engine.sync_to_server()
            except Exception:
                logger.exception("Sync pass crashed")
                self._set_status(SyncStatus.ERROR)
                self._refresh_pending()
                raise

            self._record_outcome(result, full)
            self._refresh_pending()
            return result

    def _record_outcome(self, result: SyncResult, full: bool) -> None:
        if not result.attempted:
            # The probe just told us the server is unreachable.
            self._apply_online(False)

        changed = False
        if result.success and not result.cancelled:
            self._last_sync = result.completed_at
            changed = True
            if full and result.checkpoint:
                self._checkpoint = result.checkpoint
        if changed:
            self._save_state()

        self._set_status(SyncStatus.IDLE if result.success else SyncStatus.ERROR)

    def cancel_sync(self) -> bool:
        """Cancel the pass in flight.  Returns False when none is running."""
        if not self.is_syncing:
            return False
        self.engine.cancel()
        return True

    async def run_scheduler(self, interval: float) -> None:
        """Probe and run a full pass every *interval* seconds until cancelled."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        logger.info("Sync scheduler started (every %ss)", interval)
        while True:
            await asyncio.sleep(interval)
            online = await self.engine.check_connection()
            self._apply_online(online)
            if not online:
                self._refresh_pending()
                continue
            try:
                result = await self.sync_now(full=True)
            except Exception:
                # Already logged by sync_now; keep the schedule alive.
                continue
            if result.errors:
                logger.warning(
                    "Scheduled sync finished with %d error(s)", len(result.errors)
                )

    # ------------------------------------------------------------------
    # Store wrappers
    # ------------------------------------------------------------------

    def save(self, record_type: str, data: Any) -> str:
        return self.store.save(record_type, data)

    def update(self, record_id: str, data: Any) -> MutationStatus:
        return self.store.update(record_id, data)

    def delete(self, record_id: str) -> MutationStatus:
        return self.store.delete(record_id)

    def close(self) -> None:
        """Detach from the store and stop any pass in flight."""
        self.store.remove_listener(self._refresh_pending)
        if self.is_syncing:
            self.engine.cancel()
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _refresh_pending(self) -> None:
        pending = self.store.get_sync_stats().unsynced
        if pending != self._pending:
            self._pending = pending
            self._notify()

    def _set_status(self, status: SyncStatus) -> None:
        if status is not self._status:
            self._status = status
            self._notify()

    def _save_state(self) -> None:
        try:
            self.state.save(
                {
                    "version": 1,
                    "last_sync": self._last_sync,
                    "checkpoint": self._checkpoint,
                }
            )
        except OSError as exc:
            logger.error("Could not persist session state: %s", exc)

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for callback in list(self._listeners):
            try:
                callback(snap)
            except Exception:
                logger.exception("Session listener %r failed", callback)
