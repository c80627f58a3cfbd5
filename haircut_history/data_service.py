"""Local-first data access for profiles and haircut records.

Reads come from the local cache. Writes land in the cache and the pending
operation queue in one transaction; the reconciler pushes them later (or
right away when ``push_on_write`` is set).
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Set

from .hashing import content_hash
from .storage import DEFAULT_MAX_RETRIES, LocalStore
from .sync import Reconciler
from .types import HaircutRecord, OperationType, Profile, SyncStatus

logger = logging.getLogger(__name__)


class DataService:
    """Cached CRUD over a ``LocalStore``.

    Args:
        store: Local cache and queue.
        reconciler: Optional reconciler used when ``push_on_write`` is True.
        push_on_write: Push the queue after every write (errors stay queued).
    """

    def __init__(
        self,
        store: LocalStore,
        reconciler: Optional[Reconciler] = None,
        push_on_write: bool = False,
    ):
        self.store = store
        self.reconciler = reconciler
        self.push_on_write = push_on_write

    # === Profiles ===

    def list_profiles(self, owner_id: Optional[str] = None) -> List[Profile]:
        return [
            p
            for p in self.store.get_profiles(owner_id)
            if p.sync_status != SyncStatus.PENDING_DELETE
        ]

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        profile = self.store.get_profile(profile_id)
        if profile is None or profile.sync_status == SyncStatus.PENDING_DELETE:
            return None
        return profile

    def save_profile(self, profile: Profile) -> Optional[int]:
        """Create or update a profile.

        Returns:
            The queue id, or None when the edit changed nothing.
        """
        return self._save(profile, self.store.get_profile(profile.id) if profile.id else None)

    def delete_profile(self, profile_id: str) -> bool:
        profile = self.store.get_profile(profile_id)
        if profile is None or profile.sync_status == SyncStatus.PENDING_DELETE:
            return False
        self.store.save_local_change(profile, OperationType.DELETE)
        logger.info(f"Marked profile {profile_id} for deletion")
        self._after_write()
        return True

    # === Haircut records ===

    def list_records(self, profile_id: str) -> List[HaircutRecord]:
        return [
            r
            for r in self.store.get_records(profile_id)
            if r.sync_status != SyncStatus.PENDING_DELETE
        ]

    def get_record(self, record_id: str) -> Optional[HaircutRecord]:
        record = self.store.get_record(record_id)
        if record is None or record.sync_status == SyncStatus.PENDING_DELETE:
            return None
        return record

    def save_record(self, profile_id: str, record: HaircutRecord) -> Optional[int]:
        """Create or update a haircut record under ``profile_id``."""
        record.profile_id = profile_id
        existing = self.store.get_record(record.id) if record.id else None
        return self._save(record, existing)

    def delete_record(self, profile_id: str, record_id: str) -> bool:
        record = self.store.get_record(record_id)
        if record is None or record.profile_id != profile_id:
            return False
        if record.sync_status == SyncStatus.PENDING_DELETE:
            return False
        self.store.save_local_change(record, OperationType.DELETE)
        logger.info(f"Marked haircut record {record_id} for deletion")
        self._after_write()
        return True

    # === Sync status ===

    def not_synced_ids(self, threshold: int = DEFAULT_MAX_RETRIES) -> Set[str]:
        """Entities whose pushes keep failing, for a "not synced" indicator."""
        return self.store.get_stuck_entity_ids(min_retries=threshold)

    # === Internals ===

    def _save(self, entity, existing) -> Optional[int]:
        now = datetime.now(timezone.utc)
        if existing is None:
            entity.id = entity.id or str(uuid.uuid4())
            entity.created_at = entity.created_at or now
            entity.updated_at = now
            entity.last_synced_at = None
            op_type = OperationType.CREATE
        else:
            if existing.sync_status == SyncStatus.PENDING_DELETE:
                raise ValueError(f"{entity.entity_type.value} {entity.id} is pending deletion")
            if content_hash(entity) == content_hash(existing):
                logger.debug(f"No changes to {entity.entity_type.value}:{entity.id}, not queued")
                return None
            entity.created_at = existing.created_at
            entity.updated_at = now
            entity.last_synced_at = existing.last_synced_at
            op_type = OperationType.UPDATE

        op_id = self.store.save_local_change(entity, op_type)
        self._after_write()
        return op_id

    def _after_write(self) -> None:
        if self.push_on_write and self.reconciler is not None:
            self.reconciler.process_pending_operations()
