"""SQLite local store for haircut-history.

Local-first storage with:
- Cached copies of profiles and haircut records, tagged with sync status
- A durable queue of pending operations
- Sync metadata (last sync time)

Connections are opened per operation. Writes that touch an entity row and
the queue together run in one ``BEGIN IMMEDIATE`` transaction, so readers
never see an entity marked pending without its queue entry.
"""

import contextlib
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from ..config import get_db_path
from ..errors import StorageError
from ..hashing import content_hash
from ..serializers import dump_payload
from ..types import (
    CachedEntity,
    EntityType,
    HaircutRecord,
    OperationType,
    PendingOperation,
    Profile,
    SyncStatus,
    parse_datetime,
    utc_now,
)
from . import entities_crud as crud
from .queue import (
    DEFAULT_MAX_RETRIES,
    PendingOperationQueue,
    count_for_entity,
    delete_operation,
    enqueue_collapsed,
    row_to_operation,
)
from .schema import init_db

logger = logging.getLogger(__name__)


class LocalStore:
    """Embedded store shared by the data service, the reconciler and the CLI."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path is not None else get_db_path()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create store directory {self.db_path.parent}: {e}") from e

        self._queue = PendingOperationQueue(connect_fn=self._connect, now_fn=self._now)

        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Open a connection. Prefer ``_connect()``, which also commits and closes."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Context manager that handles transactions AND closes connection.

        Commits on success, rolls back on exception, closes in all cases.
        ``sqlite3.Error`` is re-raised as ``StorageError``.
        """
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open local store {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise StorageError(str(e)) from e
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextlib.contextmanager
    def _transaction(self):
        """Like ``_connect()`` but takes the write lock up front."""
        with self._connect() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Could not start transaction: {e}") from e
            yield conn

    def _init_db(self):
        with self._connect() as conn:
            init_db(conn, self.db_path)

    def _now(self) -> str:
        """Get current timestamp as ISO string."""
        return utc_now()

    # === Cached Entities ===

    def upsert_cached_entity(self, entity: CachedEntity) -> None:
        """Write an entity row as-is (status and hash included)."""
        with self._connect() as conn:
            crud.upsert_entity(conn, entity)

    def get_entity(self, entity_type: EntityType, entity_id: str) -> Optional[CachedEntity]:
        with self._connect() as conn:
            return crud.get_entity(conn, entity_type, entity_id)

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        return self.get_entity(EntityType.PROFILE, profile_id)

    def get_record(self, record_id: str) -> Optional[HaircutRecord]:
        return self.get_entity(EntityType.HAIRCUT_RECORD, record_id)

    def get_profiles(self, owner_user_id: Optional[str] = None) -> List[Profile]:
        with self._connect() as conn:
            return crud.get_profiles(conn, owner_user_id)

    def get_records(self, profile_id: str) -> List[HaircutRecord]:
        with self._connect() as conn:
            return crud.get_records(conn, profile_id)

    def get_cached_entities_by_owner(self, owner_user_id: str) -> List[CachedEntity]:
        """All profiles of an owner followed by their haircut records."""
        with self._connect() as conn:
            entities: List[CachedEntity] = list(crud.get_profiles(conn, owner_user_id))
            entities.extend(crud.get_records_for_owner(conn, owner_user_id))
        return entities

    def get_unsynced_entities(self, entity_type: EntityType) -> List[CachedEntity]:
        with self._connect() as conn:
            return crud.get_entities_by_status(
                conn, entity_type, [SyncStatus.PENDING_UPLOAD, SyncStatus.PENDING_DELETE]
            )

    def delete_cached_entity(self, entity_type: EntityType, entity_id: str) -> bool:
        with self._connect() as conn:
            return crud.delete_entity(conn, entity_type, entity_id)

    # === Local Mutations ===

    def save_local_change(
        self, entity: CachedEntity, operation_type: OperationType
    ) -> Optional[int]:
        """Record a local create/update/delete and its queue entry atomically.

        Create and update write the entity as ``pending_upload`` with a fresh
        content hash and queue a payload snapshot. Delete marks the entity
        ``pending_delete``; if the queue collapses the delete (the create never
        left the device), the row is removed instead. Deleting a profile also
        removes its haircut records that never reached the server, together
        with their queued operations.

        Returns:
            The queue id, or None if nothing needs to reach the server.
        """
        operation_type = OperationType(operation_type)
        op = PendingOperation(
            id=None,
            operation_type=operation_type,
            entity_type=entity.entity_type,
            entity_id=entity.id,
            parent_id=entity.profile_id if isinstance(entity, HaircutRecord) else None,
        )
        now = self._now()

        with self._transaction() as conn:
            if operation_type == OperationType.DELETE:
                op_id = enqueue_collapsed(conn, op, now)
                if op_id is None:
                    crud.delete_entity(conn, entity.entity_type, entity.id)
                else:
                    crud.set_sync_state(
                        conn, entity.entity_type, entity.id, SyncStatus.PENDING_DELETE
                    )
                    entity.sync_status = SyncStatus.PENDING_DELETE
                if entity.entity_type == EntityType.PROFILE:
                    crud.delete_unqueued_records_for_profile(
                        conn, entity.id, include_synced=op_id is None
                    )
            else:
                entity.content_hash = content_hash(entity)
                entity.sync_status = SyncStatus.PENDING_UPLOAD
                crud.upsert_entity(conn, entity)
                op.payload = dump_payload(entity)
                op_id = enqueue_collapsed(conn, op, now)

        logger.debug(
            f"Queued {operation_type.value} for {entity.entity_type.value}:{entity.id} "
            f"(op {op_id})"
        )
        return op_id

    # === Pending Operation Queue ===

    def enqueue_operation(self, op: PendingOperation) -> Optional[int]:
        return self._queue.enqueue(op)

    def list_pending_operations(self, max_retries: Optional[int] = None) -> List[PendingOperation]:
        return self._queue.list_pending(max_retries=max_retries)

    def get_pending_operation(self, op_id: int) -> Optional[PendingOperation]:
        return self._queue.get(op_id)

    def remove_pending_operation(self, op_id: int) -> bool:
        return self._queue.remove(op_id)

    def mark_operation_attempt(self, op_id: int) -> None:
        self._queue.mark_attempt(op_id)

    def mark_operation_failed(self, op_id: int, error: str) -> int:
        return self._queue.mark_failed(op_id, error)

    def get_pending_count(self) -> int:
        return self._queue.pending_count()

    def get_failed_operations(self, min_retries: int = DEFAULT_MAX_RETRIES) -> List[PendingOperation]:
        return self._queue.get_failed(min_retries=min_retries)

    def requeue_operations(self, op_ids: Optional[List[int]] = None) -> int:
        return self._queue.requeue(op_ids)

    def get_queue_status(self, max_retries: int = DEFAULT_MAX_RETRIES) -> Dict[str, Any]:
        return self._queue.status(max_retries=max_retries)

    def get_stuck_entity_ids(self, min_retries: int = DEFAULT_MAX_RETRIES) -> Set[str]:
        """Ids of entities with at least one operation at the retry threshold."""
        return {op.entity_id for op in self._queue.get_failed(min_retries=min_retries)}

    def discard_operation(self, op_id: int) -> bool:
        """Abandon a queued operation.

        When it was the entity's last queued operation, the local intent is
        dropped with it: a never-synced entity is removed, anything else is
        marked ``synced`` so the next pass restores the server copy.
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM pending_operations WHERE id = ?", (op_id,)
            ).fetchone()
            if row is None:
                return False
            op = row_to_operation(row)
            delete_operation(conn, op_id)
            if count_for_entity(conn, op.entity_id) == 0:
                entity = crud.get_entity(conn, op.entity_type, op.entity_id)
                if entity is not None:
                    if entity.last_synced_at is None:
                        crud.delete_entity(conn, op.entity_type, op.entity_id)
                    else:
                        crud.set_sync_state(conn, op.entity_type, op.entity_id, SyncStatus.SYNCED)
        logger.info(
            f"Discarded {op.operation_type.value} for {op.entity_type.value}:{op.entity_id}"
        )
        return True

    # === Sync Support ===

    def complete_operation(
        self, op: PendingOperation, server_entity: Optional[CachedEntity] = None
    ) -> bool:
        """Apply a server-confirmed operation to the local store.

        Removes the queue entry and updates the entity in one transaction.
        A confirmed delete removes the row (and a profile's synced records).
        A confirmed create/update re-keys the entity when the server assigned
        a different id, stamps ``last_synced_at`` and, once no operation for
        the entity remains, marks it ``synced`` with the server's hash.

        Returns:
            False if the operation was already completed (replayed ack).
        """
        now = self._now()
        with self._transaction() as conn:
            if not delete_operation(conn, op.id):
                logger.debug(f"Operation {op.id} already completed")
                return False

            if op.operation_type == OperationType.DELETE:
                crud.delete_entity(conn, op.entity_type, op.entity_id)
                if op.entity_type == EntityType.PROFILE:
                    crud.delete_synced_records_for_profile(conn, op.entity_id)
                return True

            entity_id = op.entity_id
            if server_entity is not None and server_entity.id and server_entity.id != entity_id:
                crud.rekey_entity(conn, op.entity_type, entity_id, server_entity.id)
                logger.info(
                    f"Re-keyed {op.entity_type.value} {entity_id} -> {server_entity.id}"
                )
                entity_id = server_entity.id

            local = crud.get_entity(conn, op.entity_type, entity_id)
            if local is None:
                return True

            if count_for_entity(conn, entity_id) == 0:
                server_hash = server_entity.content_hash if server_entity is not None else None
                crud.set_sync_state(
                    conn,
                    op.entity_type,
                    entity_id,
                    SyncStatus.SYNCED,
                    content_hash=server_hash or local.content_hash or content_hash(local),
                    last_synced_at=now,
                )
            else:
                crud.set_sync_state(
                    conn, op.entity_type, entity_id, local.sync_status, last_synced_at=now
                )
        return True

    def upsert_from_server(self, entity: CachedEntity) -> bool:
        """Write a pulled server copy unless the local row holds unpushed changes.

        Returns:
            True if the row was written.
        """
        entity.sync_status = SyncStatus.SYNCED
        entity.last_synced_at = parse_datetime(self._now())
        if not entity.content_hash:
            entity.content_hash = content_hash(entity)
        with self._connect() as conn:
            written = crud.upsert_entity_if_synced(conn, entity)
        if not written:
            logger.debug(
                f"Kept local {entity.entity_type.value}:{entity.id}, it has unpushed changes"
            )
        return written

    def apply_remote_delete(self, entity_type: EntityType, entity_id: str) -> bool:
        """Remove a row the server deleted, unless it holds unpushed changes."""
        with self._transaction() as conn:
            deleted = crud.delete_entity_if_synced(conn, entity_type, entity_id)
            if deleted and EntityType(entity_type) == EntityType.PROFILE:
                crud.delete_synced_records_for_profile(conn, entity_id)
        return deleted

    # === Sync Metadata ===

    def get_sync_meta(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM sync_meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_sync_meta(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sync_meta (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, self._now()),
            )

    def get_last_sync_time(self) -> Optional[datetime]:
        """Get the timestamp of the last completed sync pass."""
        return parse_datetime(self.get_sync_meta("last_sync_time"))

    def set_last_sync_time(self, when: Optional[str] = None) -> None:
        self.set_sync_meta("last_sync_time", when or self._now())
