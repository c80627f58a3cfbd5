"""Cached entity CRUD for the local store.

Row conversion and single-statement writes for profiles and haircut records.
All functions take an open connection so callers can group several writes
into one transaction (an entity row and its queue entry, for example).
"""

import json
import logging
import sqlite3
from typing import List, Optional

from ..types import (
    CachedEntity,
    EntityType,
    HaircutRecord,
    Profile,
    SyncStatus,
    format_datetime,
    parse_datetime,
)
from ..serializers import measurement_to_wire, measurements_from_wire
from .schema import ENTITY_TABLES, validate_table_name

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = (
    "id",
    "owner_user_id",
    "name",
    "description",
    "measurements",
    "avatar_url",
    "image_url1",
    "image_url2",
    "image_url3",
    "haircut_count",
    "created_at",
    "updated_at",
    "content_hash",
    "sync_status",
    "last_synced_at",
)

RECORD_COLUMNS = (
    "id",
    "profile_id",
    "created_by_user_id",
    "date",
    "stylist_name",
    "location",
    "photo_urls",
    "notes",
    "price",
    "duration_minutes",
    "created_at",
    "updated_at",
    "content_hash",
    "sync_status",
    "last_synced_at",
)


def table_for(entity_type: EntityType) -> str:
    return validate_table_name(ENTITY_TABLES[EntityType(entity_type).value])


def _load_json_list(value: Optional[str]) -> list:
    if not value:
        return []
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Corrupt JSON list column, treating as empty")
        return []
    return data if isinstance(data, list) else []


# === Row conversion ===


def row_to_profile(row: sqlite3.Row) -> Profile:
    return Profile(
        id=row["id"],
        owner_user_id=row["owner_user_id"],
        name=row["name"],
        description=row["description"],
        measurements=measurements_from_wire(_load_json_list(row["measurements"])),
        avatar_url=row["avatar_url"],
        image_url1=row["image_url1"],
        image_url2=row["image_url2"],
        image_url3=row["image_url3"],
        haircut_count=row["haircut_count"] or 0,
        created_at=parse_datetime(row["created_at"]),
        updated_at=parse_datetime(row["updated_at"]),
        content_hash=row["content_hash"],
        sync_status=SyncStatus(row["sync_status"]),
        last_synced_at=parse_datetime(row["last_synced_at"]),
    )


def row_to_record(row: sqlite3.Row) -> HaircutRecord:
    return HaircutRecord(
        id=row["id"],
        profile_id=row["profile_id"],
        created_by_user_id=row["created_by_user_id"] or "",
        date=parse_datetime(row["date"]),
        stylist_name=row["stylist_name"],
        location=row["location"],
        photo_urls=[u for u in _load_json_list(row["photo_urls"]) if isinstance(u, str)],
        notes=row["notes"],
        price=row["price"],
        duration_minutes=row["duration_minutes"],
        created_at=parse_datetime(row["created_at"]),
        updated_at=parse_datetime(row["updated_at"]),
        content_hash=row["content_hash"],
        sync_status=SyncStatus(row["sync_status"]),
        last_synced_at=parse_datetime(row["last_synced_at"]),
    )


def row_to_entity(entity_type: EntityType, row: sqlite3.Row) -> CachedEntity:
    if EntityType(entity_type) == EntityType.PROFILE:
        return row_to_profile(row)
    return row_to_record(row)


def _profile_values(profile: Profile) -> tuple:
    return (
        profile.id,
        profile.owner_user_id,
        profile.name,
        profile.description,
        json.dumps([measurement_to_wire(m) for m in profile.measurements]),
        profile.avatar_url,
        profile.image_url1,
        profile.image_url2,
        profile.image_url3,
        profile.haircut_count,
        format_datetime(profile.created_at),
        format_datetime(profile.updated_at),
        profile.content_hash,
        SyncStatus(profile.sync_status).value,
        format_datetime(profile.last_synced_at),
    )


def _record_values(record: HaircutRecord) -> tuple:
    return (
        record.id,
        record.profile_id,
        record.created_by_user_id,
        format_datetime(record.date),
        record.stylist_name,
        record.location,
        json.dumps(list(record.photo_urls)),
        record.notes,
        record.price,
        record.duration_minutes,
        format_datetime(record.created_at),
        format_datetime(record.updated_at),
        record.content_hash,
        SyncStatus(record.sync_status).value,
        format_datetime(record.last_synced_at),
    )


def _columns_and_values(entity: CachedEntity):
    if isinstance(entity, Profile):
        return PROFILE_COLUMNS, _profile_values(entity)
    if isinstance(entity, HaircutRecord):
        return RECORD_COLUMNS, _record_values(entity)
    raise TypeError(f"Unsupported entity type: {type(entity).__name__}")


# === Writes ===


def upsert_entity(conn: sqlite3.Connection, entity: CachedEntity) -> None:
    """Insert or fully replace an entity row."""
    table = table_for(entity.entity_type)
    columns, values = _columns_and_values(entity)
    placeholders = ", ".join("?" * len(columns))
    conn.execute(
        f"INSERT OR REPLACE INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
        values,
    )


def upsert_entity_if_synced(conn: sqlite3.Connection, entity: CachedEntity) -> bool:
    """Write a server copy unless the local row holds unpushed changes.

    A single UPSERT statement: inserts when the row is absent, updates only
    when the existing row is still ``synced``. Returns True if a row was
    written.
    """
    table = table_for(entity.entity_type)
    columns, values = _columns_and_values(entity)
    placeholders = ", ".join("?" * len(columns))
    assignments = ", ".join(f"{c} = excluded.{c}" for c in columns if c != "id")
    cursor = conn.execute(
        f"""INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})
            ON CONFLICT(id) DO UPDATE SET {assignments}
            WHERE {table}.sync_status = ?""",
        values + (SyncStatus.SYNCED.value,),
    )
    return cursor.rowcount > 0


def get_entity(
    conn: sqlite3.Connection, entity_type: EntityType, entity_id: str
) -> Optional[CachedEntity]:
    table = table_for(entity_type)
    row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (entity_id,)).fetchone()
    return row_to_entity(entity_type, row) if row else None


def delete_entity(conn: sqlite3.Connection, entity_type: EntityType, entity_id: str) -> bool:
    table = table_for(entity_type)
    cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (entity_id,))
    return cursor.rowcount > 0


def delete_entity_if_synced(
    conn: sqlite3.Connection, entity_type: EntityType, entity_id: str
) -> bool:
    table = table_for(entity_type)
    cursor = conn.execute(
        f"DELETE FROM {table} WHERE id = ? AND sync_status = ?",
        (entity_id, SyncStatus.SYNCED.value),
    )
    return cursor.rowcount > 0


def delete_synced_records_for_profile(conn: sqlite3.Connection, profile_id: str) -> int:
    cursor = conn.execute(
        "DELETE FROM haircut_records WHERE profile_id = ? AND sync_status = ?",
        (profile_id, SyncStatus.SYNCED.value),
    )
    return cursor.rowcount


def delete_unqueued_records_for_profile(
    conn: sqlite3.Connection, profile_id: str, include_synced: bool = False
) -> int:
    """Remove records under a profile that have no queued operation left.

    Unsynced rows without a queue entry are local intent nobody will push.
    ``include_synced`` also removes synced rows (the profile never reached
    the server, so nothing under it can exist there).
    """
    sql = """DELETE FROM haircut_records
             WHERE profile_id = ?
               AND id NOT IN (SELECT entity_id FROM pending_operations)"""
    params = [profile_id]
    if not include_synced:
        sql += " AND sync_status != ?"
        params.append(SyncStatus.SYNCED.value)
    return conn.execute(sql, params).rowcount


def set_sync_state(
    conn: sqlite3.Connection,
    entity_type: EntityType,
    entity_id: str,
    status: SyncStatus,
    *,
    content_hash: Optional[str] = None,
    last_synced_at: Optional[str] = None,
) -> bool:
    """Update sync metadata of one row. ``None`` arguments leave columns untouched."""
    table = table_for(entity_type)
    cursor = conn.execute(
        f"""UPDATE {table}
            SET sync_status = ?,
                content_hash = COALESCE(?, content_hash),
                last_synced_at = COALESCE(?, last_synced_at)
            WHERE id = ?""",
        (SyncStatus(status).value, content_hash, last_synced_at, entity_id),
    )
    return cursor.rowcount > 0


def rekey_entity(
    conn: sqlite3.Connection, entity_type: EntityType, old_id: str, new_id: str
) -> None:
    """Move a row (and anything pointing at it) to a server-assigned id."""
    table = table_for(entity_type)
    conn.execute(f"UPDATE {table} SET id = ? WHERE id = ?", (new_id, old_id))
    conn.execute(
        "UPDATE pending_operations SET entity_id = ? WHERE entity_id = ?", (new_id, old_id)
    )
    if EntityType(entity_type) == EntityType.PROFILE:
        conn.execute(
            "UPDATE haircut_records SET profile_id = ? WHERE profile_id = ?", (new_id, old_id)
        )
        conn.execute(
            "UPDATE pending_operations SET parent_id = ? WHERE parent_id = ?", (new_id, old_id)
        )


# === Reads ===


def get_profiles(conn: sqlite3.Connection, owner_user_id: Optional[str] = None) -> List[Profile]:
    if owner_user_id is None:
        rows = conn.execute("SELECT * FROM profiles ORDER BY name, id").fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM profiles WHERE owner_user_id = ? ORDER BY name, id",
            (owner_user_id,),
        ).fetchall()
    return [row_to_profile(row) for row in rows]


def get_records(conn: sqlite3.Connection, profile_id: str) -> List[HaircutRecord]:
    rows = conn.execute(
        "SELECT * FROM haircut_records WHERE profile_id = ? ORDER BY date DESC, id",
        (profile_id,),
    ).fetchall()
    return [row_to_record(row) for row in rows]


def get_records_for_owner(conn: sqlite3.Connection, owner_user_id: str) -> List[HaircutRecord]:
    rows = conn.execute(
        """SELECT r.* FROM haircut_records r
           JOIN profiles p ON p.id = r.profile_id
           WHERE p.owner_user_id = ?
           ORDER BY r.profile_id, r.date DESC, r.id""",
        (owner_user_id,),
    ).fetchall()
    return [row_to_record(row) for row in rows]


def get_entities_by_status(
    conn: sqlite3.Connection, entity_type: EntityType, statuses: List[SyncStatus]
) -> List[CachedEntity]:
    table = table_for(entity_type)
    placeholders = ",".join("?" * len(statuses))
    rows = conn.execute(
        f"SELECT * FROM {table} WHERE sync_status IN ({placeholders}) ORDER BY id",
        [SyncStatus(s).value for s in statuses],
    ).fetchall()
    return [row_to_entity(entity_type, row) for row in rows]
