"""Shared pytest fixtures for mobilepos-sync tests."""

from __future__ import annotations

import logging
from typing import Any

import pytest

from mobilepos_sync.config import Config
from mobilepos_sync.core.client import PullBatch, TransportError
from mobilepos_sync.storage import JournalFileBackend, LocalStore, MemoryBackend
from mobilepos_sync.storage.models import Record


class FakeTransport:
    """In-memory RemoteTransport replacement for testing.

    Records every pushed record; individual ids can be made to fail, and
    the health check and pull batch are settable.
    """

    def __init__(
        self,
        online: bool = True,
        fail_ids: set[str] | None = None,
        pull_records: list[Any] | None = None,
        checkpoint: str | None = None,
    ) -> None:
        self.online = online
        self.fail_ids: set[str] = set(fail_ids or ())
        self.pull_records: list[Any] = list(pull_records or [])
        self.checkpoint = checkpoint
        self.pull_error: Exception | None = None
        self.pushed: list[Record] = []
        self.health_calls = 0
        self.pull_calls: list[str | None] = []
        self.on_push = None

    def push_record(self, record: Record) -> None:
        if record.id in self.fail_ids:
            raise TransportError("HTTP 500: Internal Server Error")
        self.pushed.append(record)
        if self.on_push is not None:
            self.on_push(record)

    def check_health(self) -> bool:
        self.health_calls += 1
        return self.online

    def pull_changes(self, since: str | None) -> PullBatch:
        self.pull_calls.append(since)
        if self.pull_error is not None:
            raise self.pull_error
        return PullBatch(records=self.pull_records, checkpoint=self.checkpoint)


@pytest.fixture(autouse=True)
def _restore_root_log_level():
    """Undo root-logger level changes made by lifespan/logging tests."""
    root = logging.getLogger()
    original = root.level
    yield
    root.setLevel(original)


@pytest.fixture
def store():
    """A fresh store backed by memory only."""
    return LocalStore(MemoryBackend())


@pytest.fixture
def file_store(tmp_path):
    """A fresh store persisted under tmp_path."""
    return LocalStore(JournalFileBackend(tmp_path))


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def mock_config(tmp_path):
    """A Config pointing at a temp data directory."""
    return Config(
        api_url="https://api.example.com",
        auth_token="secret-token",
        data_dir=str(tmp_path / "data"),
    )


@pytest.fixture
def session(store, transport):
    """A SyncSession over the memory store, in-memory state and FakeTransport."""
    from mobilepos_sync.sync import SessionState, SyncEngine, SyncSession

    engine = SyncEngine(store, transport, transmit_timeout=1.0, probe_timeout=1.0)
    return SyncSession(store, engine, SessionState(None))
