"""Tests for the sync_* MCP tools."""

from mobilepos_sync.mcp.tools import ALL_SPECS, ToolRegistry
from mobilepos_sync.sync.engine import OFFLINE_ERROR
from mobilepos_sync.sync.session import OFFLINE_REASON


def _registry():
    return ToolRegistry(ALL_SPECS)


def _text(result):
    return result.content[0].text


class TestSyncNow:
    async def test_uploads_pending_after_recheck(self, session, transport):
        record_id = session.save("sale", {"total": 3})

        result = await _registry().call_tool("sync_now", {}, session)

        assert not result.isError
        data = result.structuredContent
        assert data["success"] is True
        assert data["syncedCount"] == 1
        assert session.store.get_by_id(record_id).synced is True
        assert [r.id for r in transport.pushed] == [record_id]
        assert session.is_online is True

    async def test_offline_without_recheck_is_refused(self, session, transport):
        session.save("sale", {})

        result = await _registry().call_tool(
            "sync_now", {"recheck": False}, session
        )

        data = result.structuredContent
        assert data["attempted"] is False
        assert data["errors"] == [OFFLINE_REASON]
        assert "not attempted" in _text(result)
        assert transport.pushed == []

    async def test_server_down(self, session, transport):
        transport.online = False
        session.save("sale", {})

        result = await _registry().call_tool("sync_now", {}, session)

        assert result.structuredContent["attempted"] is False
        assert session.is_online is False
        assert session.pending_changes == 1

    async def test_full_pass_pulls(self, session, transport):
        await session.set_online(True)
        transport.checkpoint = "cp-9"

        result = await _registry().call_tool(
            "sync_now", {"full": True}, session
        )

        assert result.structuredContent["direction"] == "full"
        assert result.structuredContent["checkpoint"] == "cp-9"
        assert transport.pull_calls == [None]
        assert session.checkpoint == "cp-9"

    async def test_partial_failure_reported(self, session, transport):
        await session.set_online(True)
        ok = session.save("sale", {})
        bad = session.save("sale", {})
        transport.fail_ids.add(bad)

        result = await _registry().call_tool(
            "sync_now", {"recheck": False}, session
        )

        data = result.structuredContent
        assert data["success"] is False
        assert data["syncedCount"] == 1
        assert data["failedCount"] == 1
        assert bad in data["errors"][0]
        assert session.store.get_by_id(ok).synced is True
        assert "finished with errors" in _text(result)

    async def test_offline_engine_error_text(self, session, transport):
        await session.set_online(True)
        session.save("sale", {})
        transport.online = False

        result = await _registry().call_tool(
            "sync_now", {"recheck": False}, session
        )

        assert result.structuredContent["errors"] == [OFFLINE_ERROR]


class TestSyncStatus:
    async def test_reports_snapshot(self, session):
        session.save("sale", {})
        done = session.save("sale", {})
        session.store.mark_as_synced(done)

        result = await _registry().call_tool("sync_status", {}, session)

        data = result.structuredContent
        assert data == {
            "isOnline": False,
            "syncStatus": "idle",
            "lastSync": None,
            "pendingChanges": 1,
            "total": 2,
            "synced": 1,
            "unsynced": 1,
        }
        assert "Last sync: never" in _text(result)


class TestSyncClearSynced:
    async def test_removes_only_synced(self, session):
        keep = session.save("sale", {})
        drop = session.save("sale", {})
        session.store.mark_as_synced(drop)

        result = await _registry().call_tool("sync_clear_synced", {}, session)

        assert result.structuredContent == {"removed": 1}
        assert session.store.get_by_id(keep) is not None
        assert session.store.get_by_id(drop) is None

        again = await _registry().call_tool("sync_clear_synced", {}, session)
        assert again.structuredContent == {"removed": 0}
