"""Pending operation queue for the local store.

Local mutations are appended here and replayed against the server in id
order. Rows leave the queue only after the server confirms the mutation
(``remove``) or a user abandons them (``discard``).

Module-level functions take an open connection so the store can write an
entity row and its queue entry in one transaction. ``PendingOperationQueue``
wraps them for callers that only touch the queue.
"""

import logging
import sqlite3
from typing import Any, Callable, Dict, List, Optional

from ..types import EntityType, OperationType, PendingOperation, parse_datetime

logger = logging.getLogger(__name__)

# Operations at or beyond this many failures are no longer attempted
DEFAULT_MAX_RETRIES = 5

MAX_ERROR_LENGTH = 500


def row_to_operation(row: sqlite3.Row) -> PendingOperation:
    return PendingOperation(
        id=row["id"],
        operation_type=OperationType(row["operation_type"]),
        entity_type=EntityType(row["entity_type"]),
        entity_id=row["entity_id"],
        parent_id=row["parent_id"],
        payload=row["payload"],
        created_at=parse_datetime(row["created_at"]),
        retry_count=row["retry_count"] or 0,
        last_error=row["last_error"],
        last_attempt_at=parse_datetime(row["last_attempt_at"]),
    )


def insert_operation(conn: sqlite3.Connection, op: PendingOperation, now: str) -> int:
    """Append an operation. AUTOINCREMENT keeps ids strictly increasing."""
    cursor = conn.execute(
        """INSERT INTO pending_operations
           (operation_type, entity_type, entity_id, parent_id, payload, created_at,
            retry_count, last_error, last_attempt_at)
           VALUES (?, ?, ?, ?, ?, ?, 0, NULL, NULL)""",
        (
            OperationType(op.operation_type).value,
            EntityType(op.entity_type).value,
            op.entity_id,
            op.parent_id,
            op.payload,
            now,
        ),
    )
    op.id = cursor.lastrowid
    return op.id


def operations_for_entity(conn: sqlite3.Connection, entity_id: str) -> List[PendingOperation]:
    rows = conn.execute(
        "SELECT * FROM pending_operations WHERE entity_id = ? ORDER BY id", (entity_id,)
    ).fetchall()
    return [row_to_operation(row) for row in rows]


def enqueue_collapsed(
    conn: sqlite3.Connection, op: PendingOperation, now: str
) -> Optional[int]:
    """Append an operation, collapsing superseded entries for the same entity.

    A delete supersedes earlier updates for the entity, so those are dropped.
    If the entity's create was never attempted, the server has never seen it:
    every queued operation for the entity is dropped and nothing is appended.
    Returns the new id, or None when the delete collapsed to a no-op.

    A profile delete also drops the queued operations of its haircut records
    that never reached the server: all of them when the profile itself was
    never sent, otherwise those of records whose create is still unsent.

    Creates and updates are appended as-is, so their replay order is kept.
    """
    if OperationType(op.operation_type) != OperationType.DELETE:
        return insert_operation(conn, op, now)

    existing = operations_for_entity(conn, op.entity_id)
    unsent_create = any(
        e.operation_type == OperationType.CREATE and e.last_attempt_at is None for e in existing
    )
    if EntityType(op.entity_type) == EntityType.PROFILE:
        drop_child_operations(conn, op.entity_id, unsent_only=not unsent_create)

    if unsent_create:
        conn.execute("DELETE FROM pending_operations WHERE entity_id = ?", (op.entity_id,))
        logger.debug(
            "Delete of %s:%s cancels its unsent create (%d ops dropped)",
            op.entity_type.value,
            op.entity_id,
            len(existing),
        )
        return None

    superseded = [e.id for e in existing if e.operation_type == OperationType.UPDATE]
    if superseded:
        placeholders = ",".join("?" * len(superseded))
        conn.execute(
            f"DELETE FROM pending_operations WHERE id IN ({placeholders})", superseded
        )
        logger.debug(
            "Delete of %s:%s supersedes %d queued updates",
            op.entity_type.value,
            op.entity_id,
            len(superseded),
        )
    return insert_operation(conn, op, now)


def drop_child_operations(
    conn: sqlite3.Connection, parent_id: str, unsent_only: bool = True
) -> int:
    """Drop queued operations of records under a deleted profile.

    With ``unsent_only`` only records whose create was never attempted lose
    their operations; records the server already knows keep theirs.
    """
    if unsent_only:
        cursor = conn.execute(
            """DELETE FROM pending_operations
               WHERE parent_id = ? AND entity_id IN (
                   SELECT entity_id FROM pending_operations
                   WHERE parent_id = ? AND operation_type = ? AND last_attempt_at IS NULL)""",
            (parent_id, parent_id, OperationType.CREATE.value),
        )
    else:
        cursor = conn.execute(
            "DELETE FROM pending_operations WHERE parent_id = ?", (parent_id,)
        )
    if cursor.rowcount:
        logger.debug("Delete of profile %s drops %d record ops", parent_id, cursor.rowcount)
    return cursor.rowcount


def delete_operation(conn: sqlite3.Connection, op_id: int) -> bool:
    cursor = conn.execute("DELETE FROM pending_operations WHERE id = ?", (op_id,))
    return cursor.rowcount > 0


def count_for_entity(conn: sqlite3.Connection, entity_id: str) -> int:
    return conn.execute(
        "SELECT COUNT(*) FROM pending_operations WHERE entity_id = ?", (entity_id,)
    ).fetchone()[0]


class PendingOperationQueue:
    """Durable FIFO of local mutations.

    Args:
        connect_fn: Context manager returning a DB connection (commits on exit).
        now_fn: Returns current UTC timestamp as ISO string.
    """

    def __init__(self, connect_fn: Callable, now_fn: Callable[[], str]):
        self._connect = connect_fn
        self._now = now_fn

    def enqueue(self, op: PendingOperation) -> Optional[int]:
        """Append an operation (see ``enqueue_collapsed`` for delete handling)."""
        with self._connect() as conn:
            return enqueue_collapsed(conn, op, self._now())

    def list_pending(self, max_retries: Optional[int] = None) -> List[PendingOperation]:
        """All queued operations in ascending id order.

        Args:
            max_retries: If given, only operations with fewer failures.
        """
        with self._connect() as conn:
            if max_retries is None:
                rows = conn.execute("SELECT * FROM pending_operations ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM pending_operations WHERE retry_count < ? ORDER BY id",
                    (max_retries,),
                ).fetchall()
        return [row_to_operation(row) for row in rows]

    # The queue is read whole, never popped
    peek_all = list_pending

    def get(self, op_id: int) -> Optional[PendingOperation]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM pending_operations WHERE id = ?", (op_id,)
            ).fetchone()
        return row_to_operation(row) if row else None

    def mark_attempt(self, op_id: int) -> None:
        """Stamp an operation as handed to the server."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE pending_operations SET last_attempt_at = ? WHERE id = ?",
                (self._now(), op_id),
            )

    def mark_failed(self, op_id: int, error: str) -> int:
        """Record a failure and increment the retry count.

        Returns:
            The new retry count (0 if the operation no longer exists).
        """
        with self._connect() as conn:
            conn.execute(
                """UPDATE pending_operations
                   SET retry_count = retry_count + 1,
                       last_error = ?,
                       last_attempt_at = ?
                   WHERE id = ?""",
                (error[:MAX_ERROR_LENGTH], self._now(), op_id),
            )
            row = conn.execute(
                "SELECT retry_count FROM pending_operations WHERE id = ?", (op_id,)
            ).fetchone()
        return row["retry_count"] if row else 0

    def remove(self, op_id: int) -> bool:
        """Remove a confirmed operation. Removing twice is a no-op."""
        with self._connect() as conn:
            return delete_operation(conn, op_id)

    def pending_count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM pending_operations").fetchone()[0]

    def get_failed(self, min_retries: int = DEFAULT_MAX_RETRIES) -> List[PendingOperation]:
        """Operations that reached the retry threshold, most recent attempt first."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT * FROM pending_operations
                   WHERE retry_count >= ?
                   ORDER BY last_attempt_at DESC, id""",
                (min_retries,),
            ).fetchall()
        return [row_to_operation(row) for row in rows]

    def requeue(self, op_ids: Optional[List[int]] = None) -> int:
        """Reset retry tracking so failed operations are attempted again.

        Args:
            op_ids: Specific operation ids, or None for all failed operations.
        Returns:
            Number of operations reset.
        """
        with self._connect() as conn:
            if op_ids:
                placeholders = ",".join("?" * len(op_ids))
                cursor = conn.execute(
                    f"""UPDATE pending_operations SET retry_count = 0, last_error = NULL
                        WHERE id IN ({placeholders})""",
                    op_ids,
                )
            else:
                cursor = conn.execute(
                    """UPDATE pending_operations SET retry_count = 0, last_error = NULL
                       WHERE retry_count > 0"""
                )
            return cursor.rowcount

    def status(self, max_retries: int = DEFAULT_MAX_RETRIES) -> Dict[str, Any]:
        """Queue counts for status displays."""
        with self._connect() as conn:
            pending = conn.execute("SELECT COUNT(*) FROM pending_operations").fetchone()[0]
            failed = conn.execute(
                "SELECT COUNT(*) FROM pending_operations WHERE retry_count >= ?", (max_retries,)
            ).fetchone()[0]
            by_entity = {
                row["entity_type"]: row["count"]
                for row in conn.execute(
                    """SELECT entity_type, COUNT(*) as count
                       FROM pending_operations GROUP BY entity_type"""
                ).fetchall()
            }
            by_operation = {
                row["operation_type"]: row["count"]
                for row in conn.execute(
                    """SELECT operation_type, COUNT(*) as count
                       FROM pending_operations GROUP BY operation_type"""
                ).fetchall()
            }
        return {
            "pending": pending,
            "failed": failed,
            "by_entity": by_entity,
            "by_operation": by_operation,
        }
