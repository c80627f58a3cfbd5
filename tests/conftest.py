"""
Pytest fixtures and test configuration for haircut-history tests.
"""

import copy
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

import pytest

from haircut_history.errors import NotFound
from haircut_history.hashing import content_hash
from haircut_history.storage import LocalStore
from haircut_history.types import (
    EntityType,
    HaircutRecord,
    Measurement,
    Profile,
    SyncSnapshot,
    SyncSnapshotEntry,
    SyncStatus,
)

OWNER_ID = "owner-1"


class FakeRemote:
    """In-memory stand-in for the HTTP API.

    Creates with an existing id behave as upserts, like the real server.
    Queue failures with ``fail_next(method, exc)``; each queued exception is
    raised once, in order.
    """

    def __init__(self):
        self.profiles: Dict[str, Profile] = {}
        self.records: Dict[str, HaircutRecord] = {}
        self.tombstones: Set[Tuple[EntityType, str]] = set()
        self.calls: List[Tuple[str, object]] = []
        self.sent: List[object] = []  # entity copies received by create/update
        self.assign_ids: Dict[str, str] = {}
        self._failures: Dict[str, List[Exception]] = {}
        self.closed = False

    # --- test helpers ---

    def fail_next(self, method: str, exc: Exception) -> None:
        self._failures.setdefault(method, []).append(exc)

    def calls_for(self, method: str) -> list:
        return [arg for name, arg in self.calls if name == method]

    def seed_profile(self, profile: Profile) -> Profile:
        stored = copy.deepcopy(profile)
        stored.content_hash = content_hash(stored)
        self.profiles[stored.id] = stored
        return stored

    def seed_record(self, record: HaircutRecord) -> HaircutRecord:
        stored = copy.deepcopy(record)
        stored.content_hash = content_hash(stored)
        self.records[stored.id] = stored
        return stored

    def _call(self, method: str, arg) -> None:
        self.calls.append((method, arg))
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    def close(self) -> None:
        self.closed = True

    # --- RemoteApi ---

    def fetch_sync_snapshot(self, owner_id: str) -> SyncSnapshot:
        self._call("fetch_sync_snapshot", owner_id)
        owned = {p.id for p in self.profiles.values() if p.owner_user_id == owner_id}
        entries = [
            SyncSnapshotEntry(
                id=p.id,
                content_hash=p.content_hash,
                updated_at=p.updated_at,
                entity_type=EntityType.PROFILE,
            )
            for p in self.profiles.values()
            if p.id in owned
        ]
        entries.extend(
            SyncSnapshotEntry(
                id=r.id,
                content_hash=r.content_hash,
                updated_at=r.updated_at,
                entity_type=EntityType.HAIRCUT_RECORD,
                parent_id=r.profile_id,
            )
            for r in self.records.values()
            if r.profile_id in owned
        )
        entries.extend(
            SyncSnapshotEntry(id=entity_id, content_hash="", is_deleted=True, entity_type=etype)
            for etype, entity_id in sorted(self.tombstones)
        )
        return SyncSnapshot(entries=entries, server_time=datetime.now(timezone.utc))

    def fetch_profiles_by_ids(self, ids):
        self._call("fetch_profiles_by_ids", list(ids))
        return [copy.deepcopy(self.profiles[i]) for i in ids if i in self.profiles]

    def fetch_records_by_ids(self, profile_id, ids):
        self._call("fetch_records_by_ids", (profile_id, list(ids)))
        return [
            copy.deepcopy(self.records[i])
            for i in ids
            if i in self.records and self.records[i].profile_id == profile_id
        ]

    def create_profile(self, profile):
        self._call("create_profile", profile.id)
        self.sent.append(copy.deepcopy(profile))
        stored = copy.deepcopy(profile)
        stored.id = self.assign_ids.get(profile.id, profile.id)
        return copy.deepcopy(self.seed_profile(stored))

    def update_profile(self, profile):
        self._call("update_profile", profile.id)
        self.sent.append(copy.deepcopy(profile))
        if profile.id not in self.profiles:
            raise NotFound(f"Profile {profile.id} not found", code="NOT_FOUND", status_code=404)
        return copy.deepcopy(self.seed_profile(profile))

    def delete_profile(self, profile_id):
        self._call("delete_profile", profile_id)
        if profile_id not in self.profiles:
            raise NotFound(f"Profile {profile_id} not found", code="NOT_FOUND", status_code=404)
        del self.profiles[profile_id]
        self.tombstones.add((EntityType.PROFILE, profile_id))

    def create_record(self, profile_id, record):
        self._call("create_record", (profile_id, record.id))
        self.sent.append(copy.deepcopy(record))
        stored = copy.deepcopy(record)
        stored.id = self.assign_ids.get(record.id, record.id)
        stored.profile_id = profile_id
        return copy.deepcopy(self.seed_record(stored))

    def update_record(self, profile_id, record):
        self._call("update_record", (profile_id, record.id))
        self.sent.append(copy.deepcopy(record))
        if record.id not in self.records:
            raise NotFound(f"Record {record.id} not found", code="NOT_FOUND", status_code=404)
        return copy.deepcopy(self.seed_record(record))

    def delete_record(self, profile_id, record_id):
        self._call("delete_record", (profile_id, record_id))
        if record_id not in self.records:
            raise NotFound(f"Record {record_id} not found", code="NOT_FOUND", status_code=404)
        del self.records[record_id]
        self.tombstones.add((EntityType.HAIRCUT_RECORD, record_id))


def make_profile(
    profile_id: Optional[str] = "p1",
    name: str = "Alex",
    owner_user_id: str = OWNER_ID,
    **kwargs,
) -> Profile:
    kwargs.setdefault(
        "measurements",
        [
            Measurement(area="sides", guard_size="#2", technique="fade", step_order=1),
            Measurement(area="top", guard_size="scissors", technique="point cut", step_order=2),
        ],
    )
    return Profile(id=profile_id or "", owner_user_id=owner_user_id, name=name, **kwargs)


def make_record(
    record_id: Optional[str] = "r1",
    profile_id: str = "p1",
    stylist_name: str = "Sam",
    **kwargs,
) -> HaircutRecord:
    kwargs.setdefault("date", datetime(2024, 3, 1, 15, 30, tzinfo=timezone.utc))
    kwargs.setdefault("price", 25.0)
    return HaircutRecord(
        id=record_id or "",
        profile_id=profile_id,
        stylist_name=stylist_name,
        **kwargs,
    )


def cache_synced(store: LocalStore, entity):
    """Put an entity in the local cache as if it had been pulled."""
    entity.content_hash = content_hash(entity)
    entity.sync_status = SyncStatus.SYNCED
    entity.last_synced_at = datetime.now(timezone.utc)
    store.upsert_cached_entity(entity)
    return entity


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point the app home at a temp dir and clear credential env vars."""
    home = tmp_path / "home"
    monkeypatch.setenv("HAIRCUT_HISTORY_HOME", str(home))
    for var in ("HAIRCUT_API_URL", "HAIRCUT_AUTH_TOKEN", "HAIRCUT_USER_ID"):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database path."""
    return tmp_path / "cache.db"


@pytest.fixture
def store(temp_db):
    """Create a LocalStore instance for testing."""
    return LocalStore(db_path=temp_db)


@pytest.fixture
def remote():
    return FakeRemote()
