"""Database schema for the local cache.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Database initialization (init_db)
"""

import logging
import os
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

# Schema version, recorded in schema_version
SCHEMA_VERSION = 1

# Allowed table names for SQL queries built with f-strings
ALLOWED_TABLES = frozenset(
    {
        "profiles",
        "haircut_records",
        "pending_operations",
        "sync_meta",
        "schema_version",
    }
)

# Entity tables keyed by EntityType value
ENTITY_TABLES = {
    "profile": "profiles",
    "haircut_record": "haircut_records",
}


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection.

    Raises:
        ValueError: If table name is not in allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Cached profiles
CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY,
    owner_user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    measurements TEXT NOT NULL DEFAULT '[]',  -- JSON array
    avatar_url TEXT,
    image_url1 TEXT,
    image_url2 TEXT,
    image_url3 TEXT,
    haircut_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT,
    updated_at TEXT,
    -- Sync metadata
    content_hash TEXT,
    sync_status TEXT NOT NULL DEFAULT 'synced',
    last_synced_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_profiles_owner ON profiles(owner_user_id);
CREATE INDEX IF NOT EXISTS idx_profiles_status ON profiles(sync_status);

-- Cached haircut records
CREATE TABLE IF NOT EXISTS haircut_records (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    created_by_user_id TEXT NOT NULL DEFAULT '',
    date TEXT,
    stylist_name TEXT,
    location TEXT,
    photo_urls TEXT NOT NULL DEFAULT '[]',  -- JSON array
    notes TEXT,
    price REAL,
    duration_minutes INTEGER,
    created_at TEXT,
    updated_at TEXT,
    -- Sync metadata
    content_hash TEXT,
    sync_status TEXT NOT NULL DEFAULT 'synced',
    last_synced_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_haircut_records_profile ON haircut_records(profile_id);
CREATE INDEX IF NOT EXISTS idx_haircut_records_status ON haircut_records(sync_status);

-- Pending operation queue (replayed in id order)
CREATE TABLE IF NOT EXISTS pending_operations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    operation_type TEXT NOT NULL,  -- create, update, delete
    entity_type TEXT NOT NULL,  -- profile, haircut_record
    entity_id TEXT NOT NULL,
    parent_id TEXT,
    payload TEXT,  -- JSON snapshot of the entity, NULL for deletes
    created_at TEXT NOT NULL,
    retry_count INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    last_attempt_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_pending_operations_entity ON pending_operations(entity_id);

-- Sync metadata (last sync time, server time)
CREATE TABLE IF NOT EXISTS sync_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def init_db(conn: sqlite3.Connection, db_path: Path) -> None:
    """Initialize the database schema.

    Args:
        conn: Database connection.
        db_path: Path to the database file (for permissions).
    """
    conn.executescript(SCHEMA)

    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    else:
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))

    conn.commit()

    # Owner read/write only: the cache holds personal data
    try:
        os.chmod(db_path, 0o600)
    except OSError as e:
        logger.warning(f"Could not set secure permissions: {e}")

