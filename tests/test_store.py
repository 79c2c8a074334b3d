"""Tests for LocalStore - the durable local record collection.

Covers:
- save/get round trip and initial flags
- update/delete/mark_as_synced outcomes, including not-found
- stats invariant and clear_synced idempotence
- snapshot semantics of query results
- write-ahead behaviour when the backend fails
- listeners and compaction
"""

import threading
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from mobilepos_sync.storage import (
    LocalStore,
    MemoryBackend,
    MutationStatus,
    PersistenceError,
    Record,
    StoreCorruptedError,
    generate_record_id,
)


class FailingBackend(MemoryBackend):
    """MemoryBackend whose writes can be switched to fail."""

    def __init__(self, records=None):
        super().__init__(records)
        self.fail = False

    def _check(self):
        if self.fail:
            raise OSError("No space left on device")

    def put(self, record):
        self._check()
        super().put(record)

    def delete(self, record_ids):
        self._check()
        super().delete(record_ids)

    def clear(self):
        self._check()
        super().clear()


# ---------------------------------------------------------------------------
# Record ids
# ---------------------------------------------------------------------------


class TestGenerateRecordId:
    def test_format(self):
        record_id = generate_record_id("sale")
        prefix, stamp, suffix = record_id.split("-")
        assert prefix == "sale"
        assert stamp.isalnum() and stamp == stamp.lower()
        assert len(suffix) == 8
        int(suffix, 16)

    def test_ids_differ(self):
        ids = {generate_record_id("sale") for _ in range(200)}
        assert len(ids) == 200

    def test_collision_regenerates(self, store):
        existing = store.save("sale", {})
        with patch(
            "mobilepos_sync.storage.store.generate_record_id",
            side_effect=[existing, "sale-abc-00000001"],
        ):
            new_id = store.save("sale", {})
        assert new_id == "sale-abc-00000001"
        assert len(store) == 2


# ---------------------------------------------------------------------------
# save / get
# ---------------------------------------------------------------------------


class TestSave:
    def test_round_trip(self, store):
        record_id = store.save("sale", {"total": 42.25})
        record = store.get_by_id(record_id)
        assert record is not None
        assert record.type == "sale"
        assert record.data == {"total": 42.25}

    def test_new_record_is_unsynced_with_equal_timestamps(self, store):
        record = store.get_by_id(store.save("purchase", {"qty": 3}))
        assert record.synced is False
        assert record.created_at == record.updated_at
        assert record.synced_at is None

    def test_payload_is_copied(self, store):
        payload = {"items": [1, 2]}
        record_id = store.save("sale", payload)
        payload["items"].append(3)
        assert store.get_by_id(record_id).data == {"items": [1, 2]}

    def test_invalid_type_rejected(self, store):
        with pytest.raises(ValueError, match="Record type"):
            store.save("Sale Order", {})
        assert len(store) == 0

    def test_unserialisable_payload_rejected(self, store):
        with pytest.raises(ValueError, match="JSON serialisable"):
            store.save("sale", {"when": object()})

    def test_persistence_failure_raises_and_keeps_memory_clean(self):
        backend = FailingBackend()
        store = LocalStore(backend)
        backend.fail = True
        with pytest.raises(PersistenceError):
            store.save("sale", {"total": 1})
        assert len(store) == 0
        assert store.get_unsynced() == []

    def test_get_missing_returns_none(self, store):
        assert store.get_by_id("sale-missing") is None


# ---------------------------------------------------------------------------
# update
# ---------------------------------------------------------------------------


class TestUpdate:
    def test_replaces_payload_and_resets_synced(self, store):
        record_id = store.save("sale", {"total": 1})
        store.mark_as_synced(record_id)

        status = store.update(record_id, {"total": 2})

        assert status is MutationStatus.APPLIED
        assert status
        record = store.get_by_id(record_id)
        assert record.data == {"total": 2}
        assert record.synced is False
        assert record.updated_at >= record.created_at

    def test_updated_at_strictly_increases(self, store):
        record_id = store.save("sale", {})
        before = store.get_by_id(record_id).updated_at
        store.update(record_id, {"x": 1})
        assert store.get_by_id(record_id).updated_at > before

    def test_created_at_unchanged(self, store):
        record_id = store.save("sale", {})
        created = store.get_by_id(record_id).created_at
        store.update(record_id, {"x": 1})
        assert store.get_by_id(record_id).created_at == created

    def test_missing_id_returns_not_found(self, store):
        status = store.update("sale-nope", {"x": 1})
        assert status is MutationStatus.NOT_FOUND
        assert not status
        assert len(store) == 0

    def test_persistence_failure_leaves_record_unchanged(self):
        backend = FailingBackend()
        store = LocalStore(backend)
        record_id = store.save("sale", {"total": 1})
        backend.fail = True

        status = store.update(record_id, {"total": 2})

        assert status is MutationStatus.PERSISTENCE_ERROR
        assert store.get_by_id(record_id).data == {"total": 1}


# ---------------------------------------------------------------------------
# delete
# ---------------------------------------------------------------------------


class TestDelete:
    def test_removes_record(self, store):
        record_id = store.save("sale", {})
        assert store.delete(record_id) is MutationStatus.APPLIED
        assert store.get_by_id(record_id) is None

    def test_missing_returns_not_found(self, store):
        assert store.delete("sale-nope") is MutationStatus.NOT_FOUND

    def test_second_delete_is_not_found(self, store):
        record_id = store.save("sale", {})
        store.delete(record_id)
        assert not store.delete(record_id)

    def test_persistence_failure_keeps_record(self):
        backend = FailingBackend()
        store = LocalStore(backend)
        record_id = store.save("sale", {})
        backend.fail = True
        assert store.delete(record_id) is MutationStatus.PERSISTENCE_ERROR
        assert store.get_by_id(record_id) is not None


# ---------------------------------------------------------------------------
# mark_as_synced
# ---------------------------------------------------------------------------


class TestMarkAsSynced:
    def test_flips_flag_only(self, store):
        record_id = store.save("sale", {"total": 5})
        before = store.get_by_id(record_id)

        assert store.mark_as_synced(record_id) is MutationStatus.APPLIED

        after = store.get_by_id(record_id)
        assert after.synced is True
        assert after.synced_at is not None
        assert after.data == before.data
        assert after.updated_at == before.updated_at
        assert after.created_at == before.created_at

    def test_missing_id_creates_nothing(self, store):
        assert store.mark_as_synced("sale-nope") is MutationStatus.NOT_FOUND
        assert store.get_by_id("sale-nope") is None
        assert len(store) == 0

    def test_stale_when_modified_after_snapshot(self, store):
        record_id = store.save("sale", {"v": 1})
        snapshot = store.get_by_id(record_id)
        store.update(record_id, {"v": 2})

        status = store.mark_as_synced(
            record_id, expected_updated_at=snapshot.updated_at
        )

        assert status is MutationStatus.STALE
        assert store.get_by_id(record_id).synced is False

    def test_matching_expectation_applies(self, store):
        record_id = store.save("sale", {})
        snapshot = store.get_by_id(record_id)
        status = store.mark_as_synced(
            record_id, expected_updated_at=snapshot.updated_at
        )
        assert status is MutationStatus.APPLIED

    def test_already_synced_writes_nothing(self):
        backend = MemoryBackend()
        store = LocalStore(backend, compact_threshold=1000)
        record_id = store.save("sale", {})
        store.mark_as_synced(record_id)
        writes = backend.journal_size
        assert store.mark_as_synced(record_id) is MutationStatus.APPLIED
        assert backend.journal_size == writes


# ---------------------------------------------------------------------------
# apply_remote
# ---------------------------------------------------------------------------


class TestApplyRemote:
    def _remote(self, record_id="sale-remote-1", **data):
        return Record.from_storage(
            {
                "id": record_id,
                "type": "sale",
                "data": data or {"total": 9},
                "synced": False,
                "createdAt": "2026-01-01T00:00:00Z",
                "updatedAt": "2026-01-02T00:00:00Z",
            }
        )

    def test_inserts_as_synced(self, store):
        assert store.apply_remote(self._remote()) is MutationStatus.APPLIED
        record = store.get_by_id("sale-remote-1")
        assert record.synced is True
        assert record.synced_at is not None
        assert store.get_unsynced() == []

    def test_overwrite_keeps_insertion_position(self, store):
        store.apply_remote(self._remote("sale-a"))
        store.save("sale", {})
        store.apply_remote(self._remote("sale-a", total=99))
        ids = [r.id for r in store.get_all()]
        assert ids[0] == "sale-a"
        assert store.get_by_id("sale-a").data == {"total": 99}


# ---------------------------------------------------------------------------
# Queries and stats
# ---------------------------------------------------------------------------


class TestQueries:
    def test_get_all_insertion_order_and_filter(self, store):
        a = store.save("sale", {"n": 1})
        b = store.save("purchase", {"n": 2})
        c = store.save("sale", {"n": 3})
        assert [r.id for r in store.get_all()] == [a, b, c]
        assert [r.id for r in store.get_all("sale")] == [a, c]
        assert store.get_all("cashbook") == []

    def test_get_all_is_a_snapshot(self, store):
        store.save("sale", {})
        snapshot = store.get_all()
        store.save("sale", {})
        assert len(snapshot) == 1

    def test_returned_payload_is_a_copy(self, store):
        record_id = store.save("sale", {"items": []})
        store.get_by_id(record_id).data["items"].append("x")
        assert store.get_by_id(record_id).data == {"items": []}

    def test_get_unsynced(self, store):
        a = store.save("sale", {})
        b = store.save("sale", {})
        c = store.save("sale", {})
        store.mark_as_synced(b)
        assert [r.id for r in store.get_unsynced()] == [a, c]

    def test_stats_invariant(self, store):
        ids = [store.save("sale", {"n": n}) for n in range(5)]
        store.mark_as_synced(ids[0])
        store.mark_as_synced(ids[3])
        stats = store.get_sync_stats()
        assert stats.total == 5
        assert stats.synced == 2
        assert stats.unsynced == 3
        assert stats.total == stats.synced + stats.unsynced


# ---------------------------------------------------------------------------
# clear / clear_synced
# ---------------------------------------------------------------------------


class TestClear:
    def test_clear_removes_everything(self, store):
        store.save("sale", {})
        store.save("sale", {})
        store.clear()
        assert len(store) == 0
        assert store.get_sync_stats().total == 0

    def test_clear_failure_raises_and_keeps_records(self):
        backend = FailingBackend()
        store = LocalStore(backend)
        store.save("sale", {})
        backend.fail = True
        with pytest.raises(PersistenceError):
            store.clear()
        assert len(store) == 1

    def test_clear_synced_keeps_unsynced(self, store):
        a = store.save("sale", {})
        b = store.save("sale", {})
        store.mark_as_synced(a)

        assert store.clear_synced() == 1
        assert [r.id for r in store.get_all()] == [b]

    def test_clear_synced_is_idempotent(self, store):
        ids = [store.save("sale", {"n": n}) for n in range(4)]
        store.mark_as_synced(ids[1])
        store.mark_as_synced(ids[2])

        store.clear_synced()
        first = [r.id for r in store.get_unsynced()]
        assert store.clear_synced() == 0
        second = [r.id for r in store.get_unsynced()]

        assert first == second == [ids[0], ids[3]]


# ---------------------------------------------------------------------------
# Loading, listeners, compaction, concurrency
# ---------------------------------------------------------------------------


class TestLoading:
    def test_loads_backend_records(self):
        backend = MemoryBackend(
            [
                {
                    "id": "sale-1",
                    "type": "sale",
                    "data": {"total": 1},
                    "synced": True,
                    "createdAt": "2026-01-01T00:00:00Z",
                    "updatedAt": "2026-01-01T00:00:00Z",
                }
            ]
        )
        store = LocalStore(backend)
        assert store.get_by_id("sale-1").synced is True

    def test_invalid_record_raises_corrupted(self):
        backend = MemoryBackend([{"id": "sale-1", "type": "sale"}])
        with pytest.raises(StoreCorruptedError):
            LocalStore(backend)


class TestListeners:
    def test_called_after_mutation(self, store):
        callback = MagicMock()
        store.add_listener(callback)
        record_id = store.save("sale", {})
        store.update(record_id, {"x": 1})
        store.mark_as_synced(record_id)
        store.delete(record_id)
        assert callback.call_count == 4

    def test_not_called_for_not_found(self, store):
        callback = MagicMock()
        store.add_listener(callback)
        store.update("sale-nope", {})
        store.delete("sale-nope")
        callback.assert_not_called()

    def test_removed_listener_not_called(self, store):
        callback = MagicMock()
        store.add_listener(callback)
        store.remove_listener(callback)
        store.remove_listener(callback)
        store.save("sale", {})
        callback.assert_not_called()

    def test_failing_listener_does_not_break_mutation(self, store):
        store.add_listener(MagicMock(side_effect=RuntimeError("boom")))
        record_id = store.save("sale", {})
        assert store.get_by_id(record_id) is not None


class TestCompaction:
    def test_compacts_at_threshold(self):
        backend = MemoryBackend()
        store = LocalStore(backend, compact_threshold=3)
        store.save("sale", {})
        store.save("sale", {})
        assert backend.journal_size == 2
        store.save("sale", {})
        assert backend.journal_size == 0
        assert len(backend.load()) == 3

    def test_compaction_failure_keeps_data(self):
        backend = MemoryBackend()
        backend.compact = MagicMock(side_effect=OSError("disk full"))
        store = LocalStore(backend, compact_threshold=1)
        record_id = store.save("sale", {})
        assert store.get_by_id(record_id) is not None


class TestConcurrency:
    def test_parallel_saves_lose_nothing(self, store):
        def worker():
            for n in range(50):
                store.save("sale", {"n": n})

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store) == 200
        assert store.get_sync_stats().unsynced == 200

    def test_parallel_updates_keep_timestamps_monotonic(self, store):
        record_id = store.save("sale", {})
        start = store.get_by_id(record_id).updated_at

        def worker():
            for n in range(25):
                store.update(record_id, {"n": n})

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get_by_id(record_id).updated_at >= start + timedelta(
            microseconds=100
        )
