"""Sync reconciler for haircut-history.

One pass runs in two phases:

1. Push: replay the pending operation queue against the remote API in id
   order. A failure blocks the rest of that entity's operations (and those
   of records under a blocked profile) for this pass; other entities carry on.
2. Pull: fetch the server snapshot, diff it against the local cache, batch
   fetch new/changed entities and apply server deletes. Local entities with
   unpushed changes are never overwritten.

Only one pass runs at a time. API errors are isolated per entity or batch;
a ``StorageError`` aborts the pass.
"""

import logging
import threading
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Set

from ..config import DEFAULT_BATCH_SIZE, DEFAULT_MAX_RETRIES
from ..errors import ApiError, NotFound, StorageError, SyncCancelled
from ..protocols import RemoteApi
from ..serializers import load_payload
from ..storage import LocalStore
from ..types import (
    CachedEntity,
    EntityType,
    HaircutRecord,
    OperationType,
    PendingOperation,
    Profile,
    SyncResult,
    SyncState,
    format_datetime,
)
from .diff import SyncPlan, compute_sync_plan

logger = logging.getLogger(__name__)

SyncListener = Callable[[SyncResult], None]


def _batches(ids: List[str], size: int):
    for start in range(0, len(ids), size):
        yield ids[start : start + size]


class Reconciler:
    """Drives sync passes between a ``LocalStore`` and a ``RemoteApi``.

    Args:
        store: Local cache and queue.
        remote: Remote API (``ApiClient`` or a test double).
        max_retries: Operations that failed this many times are no longer attempted.
        batch_size: Ids per batch fetch in the pull phase.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteApi,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.store = store
        self.remote = remote
        self.max_retries = max_retries
        self.batch_size = batch_size
        self._lock = threading.Lock()
        self._state = SyncState.IDLE
        self._listeners: List[SyncListener] = []

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    def add_listener(self, callback: SyncListener) -> None:
        """Register a callback invoked with every completed pass result."""
        self._listeners.append(callback)

    # === Entry points ===

    def sync(self, owner_id: str, cancel_event: Optional[threading.Event] = None) -> SyncResult:
        """Run a full pass. Returns ``skipped=True`` if a pass is already running."""
        if not self._lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping")
            return SyncResult(skipped=True, state=self._state)
        try:
            return self._run(owner_id, cancel_event)
        finally:
            self._lock.release()

    def force_sync(
        self, owner_id: str, cancel_event: Optional[threading.Event] = None
    ) -> SyncResult:
        """Run a full pass, waiting for an in-flight pass to finish first."""
        with self._lock:
            return self._run(owner_id, cancel_event)

    def process_pending_operations(
        self, cancel_event: Optional[threading.Event] = None
    ) -> SyncResult:
        """Push the queue without pulling."""
        if not self._lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping push")
            return SyncResult(skipped=True, state=self._state)
        try:
            return self._run(None, cancel_event)
        finally:
            self._lock.release()

    # === Pass ===

    def _set_state(self, state: SyncState) -> None:
        logger.debug(f"Sync state: {self._state.value} -> {state.value}")
        self._state = state

    def _check_cancelled(self, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelled("Sync pass cancelled")

    def _run(self, owner_id: Optional[str], cancel_event: Optional[threading.Event]) -> SyncResult:
        result = SyncResult()
        self._set_state(SyncState.IDLE)
        try:
            self._set_state(SyncState.PUSHING)
            self._push(result, cancel_event)

            completed = True
            if owner_id is not None:
                self._set_state(SyncState.PULLING)
                completed = self._pull(owner_id, result, cancel_event)

            self._set_state(SyncState.RECONCILED if completed else SyncState.FAILED)
        except SyncCancelled:
            logger.info("Sync cancelled")
            result.cancelled = True
            self._set_state(SyncState.FAILED)
        except StorageError as e:
            logger.error(f"Local store failure, aborting sync: {e}", exc_info=True)
            result.aborted = True
            result.errors.append(f"Local store failure: {e}")
            self._set_state(SyncState.FAILED)
        except Exception as e:
            logger.error(f"Sync failed unexpectedly: {e}", exc_info=True)
            result.errors.append(f"Unexpected sync failure: {e}")
            self._set_state(SyncState.FAILED)

        result.state = self._state
        logger.info(
            f"Sync {result.state.value}: pushed={result.pushed}, pulled={result.pulled}, "
            f"deleted={result.deleted}, failed={result.failed}, conflicts={result.conflicts}"
        )
        self._notify(result)
        return result

    def _notify(self, result: SyncResult) -> None:
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception as e:
                logger.error(f"Sync listener failed: {e}", exc_info=True)

    # === Push phase ===

    def _push(self, result: SyncResult, cancel_event: Optional[threading.Event]) -> None:
        ops = self.store.list_pending_operations()
        if not ops:
            return
        logger.debug(f"Pushing {len(ops)} queued operations")

        blocked: Set[str] = set()
        renamed: Dict[str, str] = {}

        for op in ops:
            self._check_cancelled(cancel_event)

            op.entity_id = renamed.get(op.entity_id, op.entity_id)
            if op.parent_id:
                op.parent_id = renamed.get(op.parent_id, op.parent_id)

            if op.entity_id in blocked or (op.parent_id and op.parent_id in blocked):
                logger.debug(f"Skipping op {op.id}: earlier operation for its entity failed")
                blocked.add(op.entity_id)
                continue

            if op.retry_count >= self.max_retries:
                logger.debug(
                    f"Skipping op {op.id} for {op.entity_type.value}:{op.entity_id}: "
                    f"exceeded max retries"
                )
                blocked.add(op.entity_id)
                continue

            entity = None
            if op.operation_type != OperationType.DELETE:
                entity = self._load_entity(op)
                if entity is None:
                    self._record_failure(op, "No payload or cached copy to push", result)
                    blocked.add(op.entity_id)
                    continue

            self.store.mark_operation_attempt(op.id)
            try:
                server_entity = self._apply_remote(op, entity)
            except ApiError as e:
                self._record_failure(op, str(e), result)
                blocked.add(op.entity_id)
                continue

            self.store.complete_operation(op, server_entity)
            result.pushed += 1
            if server_entity is not None and server_entity.id and server_entity.id != op.entity_id:
                renamed[op.entity_id] = server_entity.id
            logger.debug(
                f"Pushed {op.operation_type.value} {op.entity_type.value}:{op.entity_id}"
            )

    def _load_entity(self, op: PendingOperation) -> Optional[CachedEntity]:
        """Entity to send for a create/update: the queued snapshot, else the cached row."""
        entity = load_payload(op.entity_type, op.payload)
        if entity is None:
            entity = self.store.get_entity(op.entity_type, op.entity_id)
        if entity is None:
            return None
        entity.id = op.entity_id
        if isinstance(entity, HaircutRecord) and op.parent_id:
            entity.profile_id = op.parent_id
        return entity

    def _apply_remote(
        self, op: PendingOperation, entity: Optional[CachedEntity]
    ) -> Optional[CachedEntity]:
        """Send one operation. Returns the server's copy for create/update."""
        is_profile = op.entity_type == EntityType.PROFILE

        if op.operation_type == OperationType.DELETE:
            try:
                if is_profile:
                    self.remote.delete_profile(op.entity_id)
                else:
                    self.remote.delete_record(op.parent_id, op.entity_id)
            except NotFound:
                logger.debug(f"{op.entity_type.value}:{op.entity_id} already gone on server")
            return None

        if op.operation_type == OperationType.CREATE:
            if is_profile:
                return self.remote.create_profile(entity)
            return self.remote.create_record(op.parent_id, entity)

        if is_profile:
            return self.remote.update_profile(entity)
        return self.remote.update_record(op.parent_id, entity)

    def _record_failure(self, op: PendingOperation, error: str, result: SyncResult) -> None:
        retry_count = self.store.mark_operation_failed(op.id, error)
        result.failed += 1
        message = (
            f"Failed to push {op.operation_type.value} {op.entity_type.value}:{op.entity_id}: "
            f"{error} (retry {retry_count}/{self.max_retries})"
        )
        result.errors.append(message)
        if retry_count >= self.max_retries:
            logger.warning(
                f"{op.entity_type.value}:{op.entity_id} exceeded max retries, "
                f"op {op.id} will not be retried until requeued"
            )
        else:
            logger.warning(message)

    # === Pull phase ===

    def _pull(
        self, owner_id: str, result: SyncResult, cancel_event: Optional[threading.Event]
    ) -> bool:
        """Returns False if the snapshot could not be fetched."""
        self._check_cancelled(cancel_event)
        try:
            snapshot = self.remote.fetch_sync_snapshot(owner_id)
        except ApiError as e:
            logger.warning(f"Could not fetch sync snapshot: {e}")
            result.errors.append(f"Failed to fetch sync snapshot: {e}")
            return False

        local = self.store.get_cached_entities_by_owner(owner_id)
        plan = compute_sync_plan(snapshot, local)
        result.conflicts += len(plan.conflicts)
        for entity_type, entity_id in plan.conflicts:
            logger.debug(f"Keeping local {entity_type.value}:{entity_id}, push pending")

        self._pull_entities(plan, local, result, cancel_event)

        for entity_type, entity_id in plan.delete_local:
            self._check_cancelled(cancel_event)
            if self.store.apply_remote_delete(entity_type, entity_id):
                result.deleted += 1

        self.store.set_last_sync_time()
        if snapshot.server_time is not None:
            self.store.set_sync_meta("server_time", format_datetime(snapshot.server_time))
        return True

    def _pull_entities(
        self,
        plan: SyncPlan,
        local: List[CachedEntity],
        result: SyncResult,
        cancel_event: Optional[threading.Event],
    ) -> None:
        server_hashes = {(e.entity_type, e.id): e.content_hash for e in plan.to_pull}
        local_parents = {e.id: e.profile_id for e in local if isinstance(e, HaircutRecord)}

        profile_ids = [e.id for e in plan.to_pull if e.entity_type == EntityType.PROFILE]
        records_by_profile: "OrderedDict[str, List[str]]" = OrderedDict()
        for entry in plan.to_pull:
            if entry.entity_type != EntityType.HAIRCUT_RECORD:
                continue
            parent_id = entry.parent_id or local_parents.get(entry.id)
            if not parent_id:
                logger.warning(f"Snapshot record {entry.id} has no profile id, skipping")
                result.failed += 1
                continue
            records_by_profile.setdefault(parent_id, []).append(entry.id)

        # Profiles first so pulled records land under a known parent
        for batch in _batches(profile_ids, self.batch_size):
            self._check_cancelled(cancel_event)
            try:
                profiles: List[Profile] = self.remote.fetch_profiles_by_ids(batch)
            except ApiError as e:
                self._record_batch_failure(EntityType.PROFILE, batch, e, result)
                continue
            self._store_pulled(profiles, server_hashes, result)

        for profile_id, record_ids in records_by_profile.items():
            for batch in _batches(record_ids, self.batch_size):
                self._check_cancelled(cancel_event)
                try:
                    records = self.remote.fetch_records_by_ids(profile_id, batch)
                except ApiError as e:
                    self._record_batch_failure(EntityType.HAIRCUT_RECORD, batch, e, result)
                    continue
                for record in records:
                    record.profile_id = record.profile_id or profile_id
                self._store_pulled(records, server_hashes, result)

    def _store_pulled(self, entities, server_hashes, result: SyncResult) -> None:
        for entity in entities:
            snapshot_hash = server_hashes.get((entity.entity_type, entity.id))
            if snapshot_hash:
                entity.content_hash = snapshot_hash
            if self.store.upsert_from_server(entity):
                result.pulled += 1

    def _record_batch_failure(
        self, entity_type: EntityType, batch: List[str], error: ApiError, result: SyncResult
    ) -> None:
        result.failed += 1
        message = f"Failed to fetch {len(batch)} {entity_type.value} entities: {error}"
        result.errors.append(message)
        logger.warning(message)
