"""Tests for the record_* MCP tools."""

from unittest.mock import patch

from mobilepos_sync.mcp.tools import ALL_SPECS, ToolRegistry
from mobilepos_sync.storage.errors import PersistenceError
from mobilepos_sync.storage.models import MutationStatus


def _registry():
    return ToolRegistry(ALL_SPECS)


def _text(result):
    return result.content[0].text


class TestRecordSave:
    async def test_saves_unsynced_record(self, session):
        result = await _registry().call_tool(
            "record_save", {"type": "sale", "data": {"total": 9.5}}, session
        )

        assert not result.isError
        record_id = result.structuredContent["id"]
        record = session.store.get_by_id(record_id)
        assert record.type == "sale"
        assert record.data == {"total": 9.5}
        assert record.synced is False
        assert session.pending_changes == 1
        assert "pending sync" in _text(result)

    async def test_invalid_type_is_validation_error(self, session):
        result = await _registry().call_tool(
            "record_save", {"type": "Bad Type", "data": {}}, session
        )
        assert result.isError
        assert "validation_error" in _text(result)
        assert len(session.store) == 0

    async def test_missing_data_is_validation_error(self, session):
        result = await _registry().call_tool(
            "record_save", {"type": "sale"}, session
        )
        assert result.isError
        assert "data is required" in _text(result)

    async def test_persistence_failure_is_storage_error(self, session):
        with patch.object(
            session.store, "save", side_effect=PersistenceError("disk full")
        ):
            result = await _registry().call_tool(
                "record_save", {"type": "sale", "data": {}}, session
            )
        assert result.isError
        assert "storage_error" in _text(result)


class TestRecordUpdateDelete:
    async def test_update_resets_synced(self, session):
        record_id = session.save("sale", {"total": 1})
        session.store.mark_as_synced(record_id)

        result = await _registry().call_tool(
            "record_update", {"id": record_id, "data": {"total": 2}}, session
        )

        assert not result.isError
        assert result.structuredContent["status"] == "applied"
        record = session.store.get_by_id(record_id)
        assert record.data == {"total": 2}
        assert record.synced is False

    async def test_update_unknown_id(self, session):
        result = await _registry().call_tool(
            "record_update", {"id": "sale-nope", "data": {}}, session
        )
        assert result.isError
        assert "not_found" in _text(result)

    async def test_update_persistence_error_status(self, session):
        record_id = session.save("sale", {})
        with patch.object(
            session.store,
            "update",
            return_value=MutationStatus.PERSISTENCE_ERROR,
        ):
            result = await _registry().call_tool(
                "record_update", {"id": record_id, "data": {}}, session
            )
        assert result.isError
        assert "storage_error" in _text(result)

    async def test_delete(self, session):
        record_id = session.save("sale", {})
        result = await _registry().call_tool(
            "record_delete", {"id": record_id}, session
        )
        assert not result.isError
        assert session.store.get_by_id(record_id) is None

    async def test_delete_unknown_id(self, session):
        result = await _registry().call_tool(
            "record_delete", {"id": "sale-nope"}, session
        )
        assert result.isError
        assert "not_found" in _text(result)

    async def test_missing_id(self, session):
        result = await _registry().call_tool("record_delete", {}, session)
        assert result.isError
        assert "id is required" in _text(result)


class TestRecordGetList:
    async def test_get_returns_storage_shape(self, session):
        record_id = session.save("customer", {"name": "Ana"})
        result = await _registry().call_tool(
            "record_get", {"id": record_id}, session
        )
        assert not result.isError
        data = result.structuredContent
        assert data["id"] == record_id
        assert data["data"] == {"name": "Ana"}
        assert data["synced"] is False
        assert "createdAt" in data and "updatedAt" in data

    async def test_get_unknown(self, session):
        result = await _registry().call_tool(
            "record_get", {"id": "x-1"}, session
        )
        assert result.isError

    async def test_list_in_insertion_order(self, session):
        ids = [session.save("sale", {"n": n}) for n in range(3)]
        result = await _registry().call_tool("record_list", {}, session)
        listed = [r["id"] for r in result.structuredContent["records"]]
        assert listed == ids
        assert result.structuredContent["total"] == 3

    async def test_list_filters(self, session):
        sale = session.save("sale", {})
        synced_sale = session.save("sale", {})
        session.save("purchase", {})
        session.store.mark_as_synced(synced_sale)

        by_type = await _registry().call_tool(
            "record_list", {"type": "sale"}, session
        )
        assert by_type.structuredContent["total"] == 2

        pending = await _registry().call_tool(
            "record_list", {"type": "sale", "unsynced_only": True}, session
        )
        assert [r["id"] for r in pending.structuredContent["records"]] == [sale]

    async def test_list_limit(self, session):
        for _ in range(5):
            session.save("sale", {})
        result = await _registry().call_tool(
            "record_list", {"limit": 2}, session
        )
        assert result.structuredContent["showing"] == 2
        assert result.structuredContent["total"] == 5
        assert "Showing 2 of 5" in _text(result)

    async def test_list_empty(self, session):
        result = await _registry().call_tool("record_list", {}, session)
        assert _text(result) == "No records found."

    async def test_list_bad_limit(self, session):
        result = await _registry().call_tool(
            "record_list", {"limit": "ten"}, session
        )
        assert result.isError
