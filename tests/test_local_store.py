"""Tests for the SQLite local store.

Tests:
- Local changes write entity and queue entry together
- Conditional writes of server copies (local wins until pushed)
- Completing confirmed operations, including re-keying
- Discarding operations
- Sync metadata
- Storage failures surface as StorageError
- Schema version and reopening an existing file
"""

import json

import pytest
from conftest import OWNER_ID, cache_synced, make_profile, make_record

from haircut_history.errors import StorageError
from haircut_history.hashing import content_hash
from haircut_history.serializers import profile_from_wire
from haircut_history.storage import LocalStore
from haircut_history.storage.schema import SCHEMA_VERSION
from haircut_history.types import EntityType, OperationType, SyncStatus


class TestCachedEntities:
    def test_upsert_and_read_back(self, store):
        profile = cache_synced(store, make_profile())
        loaded = store.get_profile("p1")
        assert loaded.name == profile.name
        assert loaded.measurements == profile.measurements
        assert loaded.sync_status == SyncStatus.SYNCED
        assert loaded.content_hash == profile.content_hash

    def test_record_round_trip(self, store):
        record = cache_synced(store, make_record(photo_urls=["a.png", "b.png"], price=19.5))
        loaded = store.get_record("r1")
        assert loaded.photo_urls == ["a.png", "b.png"]
        assert loaded.price == 19.5
        assert loaded.date == record.date
        assert content_hash(loaded) == record.content_hash

    def test_entities_by_owner(self, store):
        cache_synced(store, make_profile("p1"))
        cache_synced(store, make_profile("p2", owner_user_id="someone-else"))
        cache_synced(store, make_record("r1", profile_id="p1"))
        cache_synced(store, make_record("r2", profile_id="p2"))

        ids = [e.id for e in store.get_cached_entities_by_owner(OWNER_ID)]
        assert ids == ["p1", "r1"]

    def test_delete_cached_entity(self, store):
        cache_synced(store, make_profile())
        assert store.delete_cached_entity(EntityType.PROFILE, "p1") is True
        assert store.get_profile("p1") is None
        assert store.delete_cached_entity(EntityType.PROFILE, "p1") is False


class TestLocalChanges:
    def test_create_marks_pending_and_queues_payload(self, store):
        profile = make_profile()
        op_id = store.save_local_change(profile, OperationType.CREATE)

        cached = store.get_profile("p1")
        assert cached.sync_status == SyncStatus.PENDING_UPLOAD
        assert cached.content_hash == content_hash(profile)

        op = store.get_pending_operation(op_id)
        assert op.operation_type == OperationType.CREATE
        assert op.entity_type == EntityType.PROFILE
        assert profile_from_wire(json.loads(op.payload)).name == "Alex"

    def test_record_change_carries_parent(self, store):
        op_id = store.save_local_change(make_record(profile_id="p9"), OperationType.CREATE)
        assert store.get_pending_operation(op_id).parent_id == "p9"

    def test_delete_of_synced_entity_marks_pending_delete(self, store):
        cache_synced(store, make_profile())
        op_id = store.save_local_change(store.get_profile("p1"), OperationType.DELETE)

        assert store.get_profile("p1").sync_status == SyncStatus.PENDING_DELETE
        op = store.get_pending_operation(op_id)
        assert op.operation_type == OperationType.DELETE
        assert op.payload is None

    def test_delete_of_unsent_create_removes_row(self, store):
        profile = make_profile()
        store.save_local_change(profile, OperationType.CREATE)

        assert store.save_local_change(profile, OperationType.DELETE) is None
        assert store.get_profile("p1") is None
        assert store.get_pending_count() == 0

    def test_unsynced_entities_always_have_queue_entry(self, store):
        cache_synced(store, make_profile("p1"))
        store.save_local_change(make_profile("p2"), OperationType.CREATE)
        store.save_local_change(store.get_profile("p1"), OperationType.DELETE)

        queued = {op.entity_id for op in store.list_pending_operations()}
        unsynced = {e.id for e in store.get_unsynced_entities(EntityType.PROFILE)}
        assert unsynced == {"p1", "p2"}
        assert unsynced <= queued


class TestServerWrites:
    def test_upsert_from_server_inserts_new(self, store):
        assert store.upsert_from_server(make_profile()) is True
        cached = store.get_profile("p1")
        assert cached.sync_status == SyncStatus.SYNCED
        assert cached.last_synced_at is not None
        assert cached.content_hash == content_hash(cached)

    def test_upsert_from_server_overwrites_synced(self, store):
        cache_synced(store, make_profile(name="Old"))
        assert store.upsert_from_server(make_profile(name="New")) is True
        assert store.get_profile("p1").name == "New"

    def test_upsert_from_server_keeps_pending_local(self, store):
        store.save_local_change(make_profile(name="Local edit"), OperationType.CREATE)

        assert store.upsert_from_server(make_profile(name="Server")) is False
        cached = store.get_profile("p1")
        assert cached.name == "Local edit"
        assert cached.sync_status == SyncStatus.PENDING_UPLOAD

    def test_apply_remote_delete_removes_profile_and_synced_records(self, store):
        cache_synced(store, make_profile())
        cache_synced(store, make_record("r1"))
        store.save_local_change(make_record("r2"), OperationType.CREATE)

        assert store.apply_remote_delete(EntityType.PROFILE, "p1") is True
        assert store.get_profile("p1") is None
        assert store.get_record("r1") is None
        # Unpushed local record is kept until its push resolves
        assert store.get_record("r2") is not None

    def test_apply_remote_delete_skips_pending_entity(self, store):
        cache_synced(store, make_profile())
        store.save_local_change(make_profile(name="Edited"), OperationType.UPDATE)

        assert store.apply_remote_delete(EntityType.PROFILE, "p1") is False
        assert store.get_profile("p1").name == "Edited"


class TestCompleteOperation:
    def test_last_op_marks_entity_synced(self, store):
        store.save_local_change(make_profile(), OperationType.CREATE)
        op = store.list_pending_operations()[0]
        server = make_profile()
        server.content_hash = "server-hash-0001"

        assert store.complete_operation(op, server) is True

        cached = store.get_profile("p1")
        assert cached.sync_status == SyncStatus.SYNCED
        assert cached.last_synced_at is not None
        assert cached.content_hash == "server-hash-0001"
        assert store.get_pending_count() == 0

    def test_entity_stays_pending_while_ops_remain(self, store):
        store.save_local_change(make_profile(name="v1"), OperationType.CREATE)
        store.save_local_change(make_profile(name="v2"), OperationType.UPDATE)
        first = store.list_pending_operations()[0]

        store.complete_operation(first, make_profile(name="v1"))

        cached = store.get_profile("p1")
        assert cached.sync_status == SyncStatus.PENDING_UPLOAD
        assert cached.name == "v2"
        assert cached.last_synced_at is not None
        assert store.get_pending_count() == 1

    def test_second_completion_is_noop(self, store):
        store.save_local_change(make_profile(), OperationType.CREATE)
        op = store.list_pending_operations()[0]

        assert store.complete_operation(op, make_profile()) is True
        assert store.complete_operation(op, make_profile()) is False
        assert store.get_pending_count() == 0
        assert len(store.get_profiles()) == 1

    def test_confirmed_delete_removes_row(self, store):
        cache_synced(store, make_profile())
        cache_synced(store, make_record())
        store.save_local_change(store.get_profile("p1"), OperationType.DELETE)
        op = store.list_pending_operations()[0]

        store.complete_operation(op)

        assert store.get_profile("p1") is None
        assert store.get_record("r1") is None

    def test_server_assigned_id_rekeys_entity_children_and_ops(self, store):
        store.save_local_change(make_profile("local-p"), OperationType.CREATE)
        store.save_local_change(make_record("r1", profile_id="local-p"), OperationType.CREATE)
        create_profile_op = store.list_pending_operations()[0]

        store.complete_operation(create_profile_op, make_profile("server-p"))

        assert store.get_profile("local-p") is None
        assert store.get_profile("server-p").sync_status == SyncStatus.SYNCED
        assert store.get_record("r1").profile_id == "server-p"
        remaining = store.list_pending_operations()
        assert [(o.entity_id, o.parent_id) for o in remaining] == [("r1", "server-p")]


class TestDiscard:
    def test_discard_never_synced_create_removes_entity(self, store):
        store.save_local_change(make_profile(), OperationType.CREATE)
        op = store.list_pending_operations()[0]

        assert store.discard_operation(op.id) is True
        assert store.get_profile("p1") is None
        assert store.get_pending_count() == 0

    def test_discard_update_reverts_to_synced(self, store):
        cache_synced(store, make_profile())
        edited = store.get_profile("p1")
        edited.name = "Edited"
        store.save_local_change(edited, OperationType.UPDATE)
        op = store.list_pending_operations()[0]

        store.discard_operation(op.id)

        assert store.get_profile("p1").sync_status == SyncStatus.SYNCED

    def test_discard_missing_returns_false(self, store):
        assert store.discard_operation(12345) is False


class TestSyncMeta:
    def test_last_sync_time(self, store):
        assert store.get_last_sync_time() is None
        store.set_last_sync_time("2024-05-01T12:00:00+00:00")
        assert store.get_last_sync_time().year == 2024

    def test_arbitrary_meta(self, store):
        store.set_sync_meta("server_time", "x")
        store.set_sync_meta("server_time", "y")
        assert store.get_sync_meta("server_time") == "y"
        assert store.get_sync_meta("missing") is None


class TestStorageErrors:
    def test_sqlite_errors_become_storage_error(self, store):
        with store._connect() as conn:
            conn.execute("DROP TABLE pending_operations")

        with pytest.raises(StorageError):
            store.list_pending_operations()

    def test_failed_transaction_rolls_back(self, store):
        with store._connect() as conn:
            conn.execute("DROP TABLE pending_operations")

        with pytest.raises(StorageError):
            store.save_local_change(make_profile(), OperationType.CREATE)
        assert store.get_profile("p1") is None


class TestSchema:
    def test_version_recorded(self, store):
        with store._connect() as conn:
            row = conn.execute("SELECT version FROM schema_version").fetchone()
        assert row["version"] == SCHEMA_VERSION

    def test_reopening_keeps_cache_and_queue(self, tmp_path):
        db_path = tmp_path / "cache.db"
        first = LocalStore(db_path=db_path)
        cache_synced(first, make_profile("p1"))
        first.save_local_change(make_profile("p2"), OperationType.CREATE)

        reopened = LocalStore(db_path=db_path)

        assert reopened.get_profile("p1").sync_status == SyncStatus.SYNCED
        assert [op.entity_id for op in reopened.list_pending_operations()] == ["p2"]
        with reopened._connect() as conn:
            rows = conn.execute("SELECT version FROM schema_version").fetchall()
        assert [row["version"] for row in rows] == [SCHEMA_VERSION]
