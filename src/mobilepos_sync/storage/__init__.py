"""Durable local store for POS records.

Modules:

- ``models``   -- ``Record``, ``SyncStats``, ``MutationStatus``.
- ``backends`` -- ``StorageBackend`` protocol, ``MemoryBackend`` and the
  snapshot + journal ``JournalFileBackend``.
- ``store``    -- ``LocalStore``: save/update/delete/query and sync flags.
- ``errors``   -- ``PersistenceError``, ``StoreCorruptedError``.
"""

from .backends import JournalFileBackend, MemoryBackend, StorageBackend
from .errors import PersistenceError, StoreCorruptedError
from .models import MutationStatus, Record, SyncStats
from .store import LocalStore, generate_record_id

__all__ = [
    "JournalFileBackend",
    "LocalStore",
    "MemoryBackend",
    "MutationStatus",
    "PersistenceError",
    "Record",
    "StorageBackend",
    "StoreCorruptedError",
    "SyncStats",
    "generate_record_id",
]
