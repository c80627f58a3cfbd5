"""Tests for the cached data service."""

from unittest.mock import MagicMock

import pytest
from conftest import OWNER_ID, cache_synced, make_profile, make_record

from haircut_history.data_service import DataService
from haircut_history.sync import Reconciler
from haircut_history.types import OperationType, SyncStatus


@pytest.fixture
def service(store):
    return DataService(store)


class TestProfiles:
    def test_new_profile_gets_id_and_queues_create(self, store, service):
        profile = make_profile(profile_id=None)

        op_id = service.save_profile(profile)

        assert profile.id
        assert profile.owner_or_parent_id == OWNER_ID
        assert profile.created_at is not None
        assert store.get_pending_operation(op_id).operation_type == OperationType.CREATE
        assert [p.id for p in service.list_profiles(OWNER_ID)] == [profile.id]

    def test_unchanged_save_is_not_queued(self, store, service):
        cache_synced(store, make_profile())

        assert service.save_profile(store.get_profile("p1")) is None
        assert store.get_pending_count() == 0
        assert store.get_profile("p1").sync_status == SyncStatus.SYNCED

    def test_edit_queues_update_and_keeps_sync_history(self, store, service):
        cache_synced(store, make_profile())
        edited = store.get_profile("p1")
        synced_at = edited.last_synced_at
        edited.description = "Growing it out"

        op_id = service.save_profile(edited)

        op = store.get_pending_operation(op_id)
        assert op.operation_type == OperationType.UPDATE
        saved = store.get_profile("p1")
        assert saved.sync_status == SyncStatus.PENDING_UPLOAD
        assert saved.last_synced_at == synced_at

    def test_delete_hides_profile(self, store, service):
        cache_synced(store, make_profile())

        assert service.delete_profile("p1") is True

        assert service.get_profile("p1") is None
        assert service.list_profiles() == []
        assert store.get_profile("p1").sync_status == SyncStatus.PENDING_DELETE
        assert service.delete_profile("p1") is False

    def test_delete_of_unsent_profile_leaves_nothing(self, store, service):
        service.save_profile(make_profile())

        service.delete_profile("p1")

        assert store.get_profile("p1") is None
        assert store.get_pending_count() == 0

    def test_saving_pending_delete_raises(self, store, service):
        cache_synced(store, make_profile())
        service.delete_profile("p1")

        with pytest.raises(ValueError):
            service.save_profile(make_profile(name="Too late"))


class TestRecords:
    def test_save_record_sets_parent(self, store, service):
        record = make_record(record_id=None, profile_id="")

        op_id = service.save_record("p1", record)

        assert record.owner_or_parent_id == "p1"
        assert store.get_pending_operation(op_id).parent_id == "p1"
        assert [r.id for r in service.list_records("p1")] == [record.id]

    def test_delete_record_checks_parent(self, store, service):
        cache_synced(store, make_record())

        assert service.delete_record("other", "r1") is False
        assert service.delete_record("p1", "r1") is True
        assert service.get_record("r1") is None
        assert service.list_records("p1") == []


class TestSyncIntegration:
    def test_not_synced_ids(self, store, service):
        service.save_profile(make_profile("stuck"))
        service.save_profile(make_profile("fine"))
        op = store.list_pending_operations()[0]
        for _ in range(5):
            store.mark_operation_failed(op.id, "server down")

        assert service.not_synced_ids() == {"stuck"}

    def test_push_on_write_triggers_push(self, store):
        reconciler = MagicMock()
        service = DataService(store, reconciler=reconciler, push_on_write=True)

        service.save_profile(make_profile())
        service.delete_profile("p1")

        assert reconciler.process_pending_operations.call_count == 2

    def test_no_push_by_default(self, store):
        reconciler = MagicMock()
        service = DataService(store, reconciler=reconciler)

        service.save_profile(make_profile())

        reconciler.process_pending_operations.assert_not_called()


class TestProfileDeleteCascade:
    def test_deleting_unsent_profile_drops_its_unsent_records(self, store, remote, service):
        service.save_profile(make_profile("p-off"))
        service.save_record("p-off", make_record("r-off", profile_id="p-off"))

        assert service.delete_profile("p-off") is True

        assert store.list_pending_operations() == []
        assert store.get_profile("p-off") is None
        assert store.get_record("r-off") is None

        Reconciler(store, remote).sync(OWNER_ID)
        assert remote.calls_for("create_record") == []
        assert remote.calls_for("create_profile") == []

    def test_deleting_synced_profile_drops_only_unsent_records(self, store, service):
        cache_synced(store, make_profile())
        cache_synced(store, make_record("r-synced"))
        service.save_record("p1", make_record("r-new"))

        service.delete_profile("p1")

        ops = store.list_pending_operations()
        assert [(o.operation_type, o.entity_id) for o in ops] == [(OperationType.DELETE, "p1")]
        assert store.get_record("r-new") is None
        # Known to the server; removed once the profile delete is confirmed
        assert store.get_record("r-synced") is not None
