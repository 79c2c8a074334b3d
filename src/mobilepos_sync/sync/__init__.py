"""Offline-first synchronisation between the local store and the server.

Modules:

- ``engine``   -- ``SyncEngine``: upload, download and full passes.
- ``session``  -- ``SyncSession``: online flag, status, last sync time and
  pending-change count for UI collaborators.
- ``state``    -- ``SessionState``: persists the last sync time and the
  pull checkpoint in ``session.json``.
- ``models``   -- ``SyncResult``, ``SyncDirection``, ``SyncStatus``,
  ``SessionSnapshot``.
- ``resolver`` -- conflict policies for pulled records (last-write-wins,
  local-wins, remote-wins).
- ``reporter`` -- human-readable and JSON result formatting.

Usage example
-------------
::

    from mobilepos_sync.storage import JournalFileBackend, LocalStore
    from mobilepos_sync.sync import SessionState, SyncEngine, SyncSession

    store = LocalStore(JournalFileBackend(".mobilepos"))
    engine = SyncEngine(store, api_client)
    session = SyncSession(store, engine, SessionState(Path(".mobilepos")))

    await session.set_online(await engine.check_connection())
    store.save("sale", {"total": 42.25})
    result = await session.sync_now()
"""

from .engine import SyncEngine
from .models import SessionSnapshot, SyncDirection, SyncResult, SyncStatus
from .reporter import format_session_status, format_sync_result, result_to_json
from .resolver import (
    ConflictResolver,
    LastWriteWinsResolver,
    LocalWinsResolver,
    RemoteWinsResolver,
    create_resolver,
)
from .session import SyncSession
from .state import SessionState

__all__ = [
    "ConflictResolver",
    "LastWriteWinsResolver",
    "LocalWinsResolver",
    "RemoteWinsResolver",
    "SessionSnapshot",
    "SessionState",
    "SyncDirection",
    "SyncEngine",
    "SyncResult",
    "SyncSession",
    "SyncStatus",
    "create_resolver",
    "format_session_status",
    "format_sync_result",
    "result_to_json",
]
