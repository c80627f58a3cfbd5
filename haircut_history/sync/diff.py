"""Classify a server sync snapshot against the local cache.

Pure functions, no I/O: the reconciler feeds in what it read from the store
and the API and acts on the resulting plan.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from ..types import CachedEntity, EntityType, SyncSnapshot, SyncSnapshotEntry, SyncStatus

EntityKey = Tuple[EntityType, str]


@dataclass
class SyncPlan:
    """What a pull phase has to do."""

    pull_new: List[SyncSnapshotEntry] = field(default_factory=list)
    pull_updated: List[SyncSnapshotEntry] = field(default_factory=list)
    delete_local: List[EntityKey] = field(default_factory=list)
    no_op: List[EntityKey] = field(default_factory=list)
    # Server changes held back because the local copy has unpushed changes
    conflicts: List[EntityKey] = field(default_factory=list)

    @property
    def to_pull(self) -> List[SyncSnapshotEntry]:
        return self.pull_new + self.pull_updated

    def is_empty(self) -> bool:
        return not (self.pull_new or self.pull_updated or self.delete_local)


def _key(entity_type: EntityType, entity_id: str) -> EntityKey:
    return (EntityType(entity_type), entity_id)


def compute_sync_plan(snapshot: SyncSnapshot, local: Iterable[CachedEntity]) -> SyncPlan:
    """Diff a server snapshot against local entities.

    Per server entry:
    - unknown locally and not deleted: pull-new
    - known, not deleted, hash differs: pull-updated
    - known and deleted: delete-local
    - known and hash equal: no-op

    A local entity that is not ``synced`` is never pulled over or deleted;
    a differing server entry for it is reported as a conflict instead.
    A ``synced`` local entity absent from the snapshot is deleted locally,
    but only for entity types the snapshot covers.
    """
    plan = SyncPlan()
    local_by_key: Dict[EntityKey, CachedEntity] = {
        _key(e.entity_type, e.id): e for e in local
    }
    seen = set()

    for entry in snapshot.entries:
        key = _key(entry.entity_type, entry.id)
        seen.add(key)
        cached = local_by_key.get(key)

        if cached is None:
            if not entry.is_deleted:
                plan.pull_new.append(entry)
            continue

        if cached.sync_status != SyncStatus.SYNCED:
            if entry.is_deleted or entry.content_hash != cached.content_hash:
                plan.conflicts.append(key)
            else:
                plan.no_op.append(key)
            continue

        if entry.is_deleted:
            plan.delete_local.append(key)
        elif entry.content_hash != cached.content_hash:
            plan.pull_updated.append(entry)
        else:
            plan.no_op.append(key)

    for key, cached in local_by_key.items():
        if (
            key not in seen
            and key[0] in snapshot.covered_types
            and cached.sync_status == SyncStatus.SYNCED
        ):
            plan.delete_local.append(key)

    return plan
