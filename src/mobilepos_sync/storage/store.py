"""The durable local store.

``LocalStore`` is the single authority for locally persisted records.  It
keeps an insertion-ordered index in memory and writes every mutation
through a ``StorageBackend`` *before* applying it, so memory never holds a
change the backend refused.

Every operation runs under one re-entrant lock; the store may be used from
the event loop thread and from worker threads at the same time without
losing updates.
"""

from __future__ import annotations

import copy
import logging
import secrets
import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError

from mobilepos_sync.storage.backends import StorageBackend
from mobilepos_sync.storage.errors import PersistenceError, StoreCorruptedError
from mobilepos_sync.storage.models import MutationStatus, Record, SyncStats
from mobilepos_sync.validators import (
    validate_payload,
    validate_record_id,
    validate_record_type,
)

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_TICK = timedelta(microseconds=1)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_record_id(record_type: str) -> str:
    """Return ``<type>-<base36 ms timestamp>-<8 hex chars>``."""
    millis = int(time.time() * 1000)
    return f"{record_type}-{_to_base36(millis)}-{secrets.token_hex(4)}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check(result: tuple[bool, str]) -> None:
    is_valid, error = result
    if not is_valid:
        raise ValueError(error)


class LocalStore:
    """Keyed collection of typed records persisted through a backend.

    Args:
        backend: Where records are persisted.
        compact_threshold: Journal entries after which the backend is
            compacted.

    Raises:
        StoreCorruptedError: If the persisted data cannot be parsed.
        PersistenceError: If the persisted data cannot be read.
    """

    def __init__(
        self, backend: StorageBackend, *, compact_threshold: int = 200
    ) -> None:
        self._backend = backend
        self._compact_threshold = compact_threshold
        self._lock = threading.RLock()
        self._listeners: list[Callable[[], None]] = []
        self._records: dict[str, Record] = {}

        for raw in backend.load():
            try:
                record = Record.from_storage(raw)
            except ValidationError as exc:
                raise StoreCorruptedError(
                    f"Invalid record in local storage: {exc}"
                ) from exc
            self._records[record.id] = record
        logger.info("Loaded %d records from local storage", len(self._records))

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def save(self, record_type: str, data: Any) -> str:
        """Create a new unsynced record and return its id.

        Raises:
            ValueError: If the type tag or payload is invalid.
            PersistenceError: If the record could not be written.
        """
        _check(validate_record_type(record_type))
        _check(validate_payload(data))

        with self._lock:
            now = _utcnow()
            record = Record(
                id=self._new_id(record_type),
                type=record_type,
                data=copy.deepcopy(data),
                synced=False,
                created_at=now,
                updated_at=now,
            )
            self._persist("save", self._backend.put, record.to_storage())
            self._records[record.id] = record
            self._maybe_compact()
        logger.debug("Saved %s record %s", record_type, record.id)
        self._notify()
        return record.id

    def update(self, record_id: str, data: Any) -> MutationStatus:
        """Replace a record's payload and reset it to unsynced."""
        _check(validate_payload(data))

        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                return MutationStatus.NOT_FOUND
            updated = current.model_copy(
                update={
                    "data": copy.deepcopy(data),
                    "synced": False,
                    # Strictly increasing, so an in-flight upload sees the change.
                    "updated_at": max(
                        _utcnow(), current.updated_at + _TICK
                    ),
                }
            )
            try:
                self._persist("update", self._backend.put, updated.to_storage())
            except PersistenceError:
                return MutationStatus.PERSISTENCE_ERROR
            self._records[record_id] = updated
            self._maybe_compact()
        self._notify()
        return MutationStatus.APPLIED

    def delete(self, record_id: str) -> MutationStatus:
        """Remove a record."""
        with self._lock:
            if record_id not in self._records:
                return MutationStatus.NOT_FOUND
            try:
                self._persist("delete", self._backend.delete, [record_id])
            except PersistenceError:
                return MutationStatus.PERSISTENCE_ERROR
            del self._records[record_id]
            self._maybe_compact()
        self._notify()
        return MutationStatus.APPLIED

    def mark_as_synced(
        self,
        record_id: str,
        expected_updated_at: datetime | None = None,
    ) -> MutationStatus:
        """Flag a record as confirmed by the remote side.

        Args:
            record_id: The record to flag.
            expected_updated_at: When given, the flag only flips if the
                record still carries this ``updated_at``.  A record changed
                after it was transmitted returns ``STALE`` and stays
                unsynced so the newer version goes out next time.
        """
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                return MutationStatus.NOT_FOUND
            if (
                expected_updated_at is not None
                and current.updated_at != expected_updated_at
            ):
                return MutationStatus.STALE
            if current.synced:
                return MutationStatus.APPLIED
            flagged = current.model_copy(
                update={"synced": True, "synced_at": _utcnow()}
            )
            try:
                self._persist(
                    "mark-synced", self._backend.put, flagged.to_storage()
                )
            except PersistenceError:
                return MutationStatus.PERSISTENCE_ERROR
            self._records[record_id] = flagged
            self._maybe_compact()
        self._notify()
        return MutationStatus.APPLIED

    def apply_remote(self, record: Record) -> MutationStatus:
        """Insert or overwrite a record received from the server.

        The stored copy is flagged synced.  An existing id keeps its
        original position in insertion order.
        """
        _check(validate_record_id(record.id))
        _check(validate_record_type(record.type))

        with self._lock:
            incoming = record.model_copy(
                update={"synced": True, "synced_at": _utcnow()}, deep=True
            )
            try:
                self._persist(
                    "apply-remote", self._backend.put, incoming.to_storage()
                )
            except PersistenceError:
                return MutationStatus.PERSISTENCE_ERROR
            self._records[incoming.id] = incoming
            self._maybe_compact()
        self._notify()
        return MutationStatus.APPLIED

    def clear(self) -> None:
        """Remove every record.  Irreversible.

        Raises:
            PersistenceError: If the backend could not be cleared.
        """
        with self._lock:
            self._persist("clear", self._backend.clear)
            self._records.clear()
            self._maybe_compact()
        logger.info("Cleared local storage")
        self._notify()

    def clear_synced(self) -> int:
        """Remove synced records, keeping every unsynced one.

        Returns:
            Number of records removed.

        Raises:
            PersistenceError: If the removal could not be written.
        """
        with self._lock:
            ids = [r.id for r in self._records.values() if r.synced]
            if not ids:
                return 0
            self._persist("clear-synced", self._backend.delete, ids)
            for record_id in ids:
                del self._records[record_id]
            self._maybe_compact()
        logger.info("Removed %d synced records", len(ids))
        self._notify()
        return len(ids)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_all(self, record_type: str | None = None) -> list[Record]:
        """Return a snapshot of all records, optionally of one type."""
        with self._lock:
            return [
                r.model_copy(deep=True)
                for r in self._records.values()
                if record_type is None or r.type == record_type
            ]

    def get_by_id(self, record_id: str) -> Record | None:
        with self._lock:
            record = self._records.get(record_id)
            return record.model_copy(deep=True) if record else None

    def get_unsynced(self) -> list[Record]:
        """Return unsynced records in insertion order."""
        with self._lock:
            return [
                r.model_copy(deep=True)
                for r in self._records.values()
                if not r.synced
            ]

    def get_sync_stats(self) -> SyncStats:
        with self._lock:
            total = len(self._records)
            synced = sum(1 for r in self._records.values() if r.synced)
        return SyncStats(total=total, synced=synced, unsynced=total - synced)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Register *callback* to run after every successful mutation."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[], None]) -> None:
        """Unregister *callback*.  No-op if it was never added."""
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _new_id(self, record_type: str) -> str:
        while True:
            candidate = generate_record_id(record_type)
            if candidate not in self._records:
                return candidate

    def _persist(self, action: str, func: Callable[..., None], *args) -> None:
        try:
            func(*args)
        except PersistenceError:
            logger.error("Local storage %s failed", action, exc_info=True)
            raise
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Local storage %s failed: %s", action, exc)
            raise PersistenceError(
                f"Local storage {action} failed: {exc}"
            ) from exc

    def _maybe_compact(self) -> None:
        if self._backend.journal_size < self._compact_threshold:
            return
        try:
            self._backend.compact(
                [r.to_storage() for r in self._records.values()]
            )
        except (OSError, TypeError, ValueError) as exc:
            # The journal still holds every change; try again next time.
            logger.warning("Compaction failed, journal kept: %s", exc)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception:
                logger.exception("Store listener %r failed", callback)
