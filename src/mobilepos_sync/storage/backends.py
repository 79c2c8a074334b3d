"""Persistence backends for the local store.

The store keeps its records in memory and writes every mutation through a
backend before applying it.  Two backends are provided:

* ``MemoryBackend`` -- nothing leaves the process; used by tests and by
  throw-away sessions.
* ``JournalFileBackend`` -- the on-device layout.  A snapshot file holds
  the full record list as JSON; every mutation since the last compaction
  is appended to a JSON-lines journal.  Startup loads the snapshot and
  replays the journal, so a mutation costs one appended line instead of a
  full rewrite.

Key design choices:

* **Atomic snapshots** -- ``compact()`` writes to a temp file then calls
  ``os.replace()`` so readers never see a partial snapshot.
* **Torn tail tolerance** -- a crash while appending can leave a partial
  last line.  It is dropped on load (and the journal rewritten); any other
  unreadable content raises ``StoreCorruptedError``.
* **Idempotent replay** -- replaying a journal over the snapshot it was
  compacted into yields the same records, so a crash between the snapshot
  replace and the journal truncation is harmless.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from mobilepos_sync.storage.errors import PersistenceError, StoreCorruptedError

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    """Protocol that all store backends must satisfy.

    Records cross this boundary in their persisted JSON shape (dicts with
    camelCase keys), never as model instances.
    """

    @property
    def journal_size(self) -> int:
        """Number of mutations written since the last compaction."""
        ...  # pragma: no cover

    def load(self) -> list[dict[str, Any]]:
        """Return all persisted records in insertion order."""
        ...  # pragma: no cover

    def put(self, record: dict[str, Any]) -> None:
        """Insert or replace one record (matched by ``id``)."""
        ...  # pragma: no cover

    def delete(self, record_ids: list[str]) -> None:
        """Remove the given ids; unknown ids are ignored."""
        ...  # pragma: no cover

    def clear(self) -> None:
        """Remove every record."""
        ...  # pragma: no cover

    def compact(self, records: list[dict[str, Any]]) -> None:
        """Replace the persisted state with *records* and reset the journal."""
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class MemoryBackend:
    """Keep records in a dict; nothing survives the process."""

    def __init__(self, records: list[dict[str, Any]] | None = None) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        for record in records or []:
            self._records[record["id"]] = copy.deepcopy(record)
        self._journal_size = 0

    @property
    def journal_size(self) -> int:
        return self._journal_size

    def load(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._records.values()]

    def put(self, record: dict[str, Any]) -> None:
        self._records[record["id"]] = copy.deepcopy(record)
        self._journal_size += 1

    def delete(self, record_ids: list[str]) -> None:
        for record_id in record_ids:
            self._records.pop(record_id, None)
        self._journal_size += 1

    def clear(self) -> None:
        self._records.clear()
        self._journal_size += 1

    def compact(self, records: list[dict[str, Any]]) -> None:
        self._records = {r["id"]: copy.deepcopy(r) for r in records}
        self._journal_size = 0


# ---------------------------------------------------------------------------
# Snapshot + journal file backend
# ---------------------------------------------------------------------------


class JournalFileBackend:
    """Persist records as a JSON snapshot plus an append-only journal.

    Args:
        data_dir: Directory holding the snapshot and journal files.
            Created on first write.
        storage_key: Base name for both files.
    """

    def __init__(
        self, data_dir: Path, storage_key: str = "mobilepos_data"
    ) -> None:
        self._data_dir = Path(data_dir)
        self._storage_key = storage_key
        self._journal_size = 0

    @property
    def snapshot_path(self) -> Path:
        return self._data_dir / f"{self._storage_key}.json"

    @property
    def journal_path(self) -> Path:
        return self._data_dir / f"{self._storage_key}.journal.jsonl"

    @property
    def journal_size(self) -> int:
        return self._journal_size

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> list[dict[str, Any]]:
        """Load the snapshot and replay the journal on top of it.

        Raises:
            StoreCorruptedError: If either file holds unreadable data.
            PersistenceError: If a file exists but cannot be read.
        """
        records = self._load_snapshot()
        self._journal_size, torn = self._replay_journal(records)
        if torn:
            # Rewrite so the next append does not land after a torn line.
            self.compact(list(records.values()))
        return list(records.values())

    def _load_snapshot(self) -> dict[str, dict[str, Any]]:
        path = self.snapshot_path
        if not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise StoreCorruptedError(
                f"Local data file {path} is not valid JSON: {exc}",
                path=str(path),
            ) from exc
        except OSError as exc:
            raise PersistenceError(
                f"Cannot read local data file {path}: {exc}"
            ) from exc

        if not isinstance(data, list):
            raise StoreCorruptedError(
                f"Local data file {path} must contain a JSON list, "
                f"found {type(data).__name__}",
                path=str(path),
            )

        records: dict[str, dict[str, Any]] = {}
        for index, item in enumerate(data):
            if not isinstance(item, dict) or "id" not in item:
                raise StoreCorruptedError(
                    f"Entry {index} in {path} is not a record object",
                    path=str(path),
                )
            records[item["id"]] = item
        return records

    def _replay_journal(
        self, records: dict[str, dict[str, Any]]
    ) -> tuple[int, bool]:
        """Apply journal entries to *records* in place.

        Returns:
            ``(entries_applied, torn_tail_dropped)``.
        """
        path = self.journal_path
        if not path.exists():
            return 0, False
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(
                f"Cannot read journal {path}: {exc}"
            ) from exc

        applied = 0
        for line_num, line in enumerate(lines, 1):
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError as exc:
                if line_num == len(lines):
                    logger.warning(
                        "Dropping torn journal entry at line %d of %s",
                        line_num,
                        path,
                    )
                    return applied, True
                raise StoreCorruptedError(
                    f"Journal {path} line {line_num} is not valid JSON: {exc}",
                    path=str(path),
                ) from exc
            self._apply_entry(records, entry, line_num)
            applied += 1
        return applied, False

    def _apply_entry(
        self,
        records: dict[str, dict[str, Any]],
        entry: Any,
        line_num: int,
    ) -> None:
        op = entry.get("op") if isinstance(entry, dict) else None
        match op:
            case "put" if "id" in (entry.get("record") or {}):
                record = entry["record"]
                records[record["id"]] = record
            case "delete":
                for record_id in entry.get("ids", []):
                    records.pop(record_id, None)
            case "clear":
                records.clear()
            case _:
                raise StoreCorruptedError(
                    f"Journal {self.journal_path} line {line_num} has an "
                    f"unknown entry: {entry!r}",
                    path=str(self.journal_path),
                )

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def put(self, record: dict[str, Any]) -> None:
        self._append({"op": "put", "record": record})

    def delete(self, record_ids: list[str]) -> None:
        self._append({"op": "delete", "ids": list(record_ids)})

    def clear(self) -> None:
        self._append({"op": "clear"})

    def compact(self, records: list[dict[str, Any]]) -> None:
        """Atomically rewrite the snapshot, then truncate the journal."""
        self._data_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._data_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(records, fh, indent=2)
            os.replace(tmp_path, self.snapshot_path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

        with open(self.journal_path, "w", encoding="utf-8"):
            pass
        self._journal_size = 0
        logger.debug(
            "Compacted %d records into %s", len(records), self.snapshot_path
        )

    def quarantine(self) -> list[Path]:
        """Move unreadable data files aside so the store can start empty.

        Returns:
            The new paths of the files that were moved.
        """
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        moved: list[Path] = []
        for path in (self.snapshot_path, self.journal_path):
            if path.exists():
                target = path.with_name(f"{path.name}.corrupt-{stamp}")
                os.replace(path, target)
                moved.append(target)
                logger.warning("Moved unreadable %s to %s", path, target)
        self._journal_size = 0
        return moved

    def _append(self, entry: dict[str, Any]) -> None:
        payload = (json.dumps(entry, separators=(",", ":")) + "\n").encode(
            "utf-8"
        )
        self._data_dir.mkdir(parents=True, exist_ok=True)
        with open(self.journal_path, "ab", buffering=0) as fh:
            offset = fh.tell()
            try:
                written = 0
                while written < len(payload):
                    written += fh.write(payload[written:])
                os.fsync(fh.fileno())
            except BaseException:
                # A failed append must leave no partial line behind.
                fh.truncate(offset)
                raise
        self._journal_size += 1
