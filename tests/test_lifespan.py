"""Tests for mobilepos_sync.mcp.lifespan - server startup/shutdown lifecycle.

Tests the server_lifespan() async context manager which:
- Loads config (with optional CLI overrides)
- Opens the local store and builds the sync session
- Probes the server, allowing an offline start
- Fails fast on config errors or unreadable local data
- Starts and stops the sync scheduler
"""

import asyncio
import logging
from contextlib import ExitStack
from unittest.mock import MagicMock, patch

import pytest

from mobilepos_sync.config import Config
from mobilepos_sync.config_schema import LoggingConfig
from mobilepos_sync.mcp.lifespan import (
    _apply_logging_section,
    build_session,
    open_store,
    server_lifespan,
)
from mobilepos_sync.storage import (
    JournalFileBackend,
    LocalStore,
    StoreCorruptedError,
)
from mobilepos_sync.sync import SyncSession, SyncStatus

# -------------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------------


def _make_config(tmp_path, **overrides):
    """Create a valid Config pointing at a temp data directory."""
    defaults = {
        "api_url": "https://api.example.com",
        "auth_token": "tok",
        "data_dir": str(tmp_path / "data"),
    }
    defaults.update(overrides)
    return Config(**defaults)


def _make_client(online=True):
    client = MagicMock()
    client.check_health.return_value = online
    client.push_record.return_value = None
    return client


def _patches(stack, config, client):
    """Patch every external input of server_lifespan()."""
    stack.enter_context(
        patch("mobilepos_sync.mcp.lifespan.load_dotenv")
    )
    stack.enter_context(
        patch(
            "mobilepos_sync.mcp.lifespan.discover_config_files",
            return_value=[],
        )
    )
    mock_load = stack.enter_context(
        patch("mobilepos_sync.mcp.lifespan.load_config", return_value=config)
    )
    stack.enter_context(
        patch(
            "mobilepos_sync.mcp.lifespan.PosApiClient", return_value=client
        )
    )
    stack.enter_context(patch("mobilepos_sync.mcp.lifespan._stderr_print"))
    return mock_load


# -------------------------------------------------------------------------
# server_lifespan() - startup
# -------------------------------------------------------------------------


class TestServerLifespanStartup:
    """Tests for the happy path through server_lifespan()."""

    async def test_successful_startup_online(self, tmp_path):
        config = _make_config(tmp_path)
        client = _make_client(online=True)

        with ExitStack() as stack:
            _patches(stack, config, client)
            async with server_lifespan() as ctx:
                assert ctx["config"] is config
                session = ctx["session"]
                assert isinstance(session, SyncSession)
                assert session.is_online is True
                assert session.sync_status is SyncStatus.IDLE

        client.check_health.assert_called()

    async def test_offline_start_allowed(self, tmp_path):
        config = _make_config(tmp_path)
        client = _make_client(online=False)

        with ExitStack() as stack:
            _patches(stack, config, client)
            async with server_lifespan() as ctx:
                assert ctx["session"].is_online is False

    async def test_pending_changes_uploaded_when_online(self, tmp_path):
        config = _make_config(tmp_path)
        seed = LocalStore(JournalFileBackend(tmp_path / "data"))
        record_id = seed.save("sale", {"total": 10})
        client = _make_client(online=True)

        with ExitStack() as stack:
            _patches(stack, config, client)
            async with server_lifespan() as ctx:
                session = ctx["session"]
                assert session.pending_changes == 0
                assert session.store.get_by_id(record_id).synced is True
                assert session.last_sync is not None

        pushed = client.push_record.call_args[0][0]
        assert pushed.id == record_id

    async def test_pending_changes_kept_when_auto_sync_off(self, tmp_path):
        config = _make_config(tmp_path, auto_sync=False)
        LocalStore(JournalFileBackend(tmp_path / "data")).save("sale", {})
        client = _make_client(online=True)

        with ExitStack() as stack:
            _patches(stack, config, client)
            async with server_lifespan() as ctx:
                assert ctx["session"].pending_changes == 1

        client.push_record.assert_not_called()

    async def test_overrides_forwarded_to_load_config(self, tmp_path):
        config = _make_config(tmp_path)
        overrides = {
            "api_url": "http://pos.local",
            "auth_token": "t",
            "data_dir": "/tmp/x",
            "insecure": True,
        }

        with ExitStack() as stack:
            mock_load = _patches(stack, config, _make_client())
            async with server_lifespan(overrides):
                pass

        kwargs = mock_load.call_args[1]
        assert kwargs["api_url"] == "http://pos.local"
        assert kwargs["auth_token"] == "t"
        assert kwargs["data_dir"] == "/tmp/x"
        assert kwargs["insecure"] is True
        assert kwargs["debug"] is False
        assert kwargs["yaml_fallbacks"] is None


# -------------------------------------------------------------------------
# server_lifespan() - failures
# -------------------------------------------------------------------------


class TestServerLifespanFailures:
    async def test_config_error_becomes_runtime_error(self, tmp_path):
        with ExitStack() as stack:
            _patches(stack, _make_config(tmp_path), _make_client())
            stack.enter_context(
                patch(
                    "mobilepos_sync.mcp.lifespan.load_config",
                    side_effect=ValueError("Invalid API URL"),
                )
            )
            with pytest.raises(RuntimeError, match="Configuration error"):
                async with server_lifespan():
                    pass

    async def test_corrupt_store_fails_fast(self, tmp_path):
        config = _make_config(tmp_path)
        data_dir = tmp_path / "data"
        data_dir.mkdir()
        (data_dir / "mobilepos_data.json").write_text("{not json")
        client = _make_client()

        with ExitStack() as stack:
            _patches(stack, config, client)
            with pytest.raises(RuntimeError, match="Local data error"):
                async with server_lifespan():
                    pass

        client.close.assert_called_once()

    async def test_corrupt_store_recovered_when_allowed(self, tmp_path):
        config = _make_config(tmp_path, recover_corrupt=True)
        data_dir = tmp_path / "data"
        data_dir.mkdir()
        (data_dir / "mobilepos_data.json").write_text("{not json")

        with ExitStack() as stack:
            _patches(stack, config, _make_client())
            async with server_lifespan() as ctx:
                assert len(ctx["session"].store) == 0

        assert list(data_dir.glob("mobilepos_data.json.corrupt-*"))


# -------------------------------------------------------------------------
# server_lifespan() - shutdown
# -------------------------------------------------------------------------


class TestServerLifespanShutdown:
    async def test_client_closed_on_exit(self, tmp_path):
        client = _make_client()
        with ExitStack() as stack:
            _patches(stack, _make_config(tmp_path), client)
            async with server_lifespan():
                client.close.assert_not_called()
        client.close.assert_called_once()

    async def test_scheduler_started_and_cancelled(self, tmp_path):
        config = _make_config(tmp_path, sync_interval=3600)

        with ExitStack() as stack:
            _patches(stack, config, _make_client())
            async with server_lifespan():
                tasks = [
                    t
                    for t in asyncio.all_tasks()
                    if "run_scheduler" in repr(t.get_coro())
                ]
                assert len(tasks) == 1
                scheduler = tasks[0]

        assert scheduler.cancelled()

    async def test_no_scheduler_by_default(self, tmp_path):
        with ExitStack() as stack:
            _patches(stack, _make_config(tmp_path), _make_client())
            async with server_lifespan():
                assert not [
                    t
                    for t in asyncio.all_tasks()
                    if "run_scheduler" in repr(t.get_coro())
                ]


# -------------------------------------------------------------------------
# Helpers: open_store(), build_session(), logging section
# -------------------------------------------------------------------------


class TestOpenStore:
    def test_raises_without_recovery(self, tmp_path):
        config = _make_config(tmp_path)
        data_dir = tmp_path / "data"
        data_dir.mkdir()
        (data_dir / "mobilepos_data.json").write_text('{"a": 1}')
        with pytest.raises(StoreCorruptedError):
            open_store(config)

    def test_uses_compact_threshold(self, tmp_path):
        store = open_store(_make_config(tmp_path, compact_threshold=3))
        for _ in range(4):
            store.save("sale", {})
        assert (tmp_path / "data" / "mobilepos_data.json").exists()

    def test_build_session_uses_strategy(self, tmp_path):
        config = _make_config(tmp_path, conflict_strategy="remote-wins")
        session = build_session(config, _make_client())
        assert type(session.engine.resolver).__name__ == "RemoteWinsResolver"
        assert session.auto_sync is True


class TestApplyLoggingSection:
    def test_sets_root_level(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        root = logging.getLogger()
        original = root.level
        try:
            _apply_logging_section(LoggingConfig(level="ERROR"), debug=False)
            assert root.level == logging.ERROR
        finally:
            root.setLevel(original)

    def test_debug_keeps_level(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        root = logging.getLogger()
        original = root.level
        try:
            root.setLevel(logging.DEBUG)
            _apply_logging_section(LoggingConfig(level="ERROR"), debug=True)
            assert root.level == logging.DEBUG
        finally:
            root.setLevel(original)
