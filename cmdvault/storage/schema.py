"""Database schema for cmdvault SQLite storage.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Database initialization (init_db)
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2  # v2: sync_conflicts.diff_hash

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

-- The command library (local replica)
CREATE TABLE IF NOT EXISTS commands (
    id TEXT PRIMARY KEY,
    sync_id TEXT,
    prompt TEXT NOT NULL,
    command TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',   -- JSON array
    shell TEXT,
    is_favorite INTEGER NOT NULL DEFAULT 0,
    source TEXT NOT NULL DEFAULT 'manual',
    usage_count INTEGER NOT NULL DEFAULT 0,
    skip_destructive_warning INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_used_at TEXT,
    last_synced_at TEXT,
    deleted_at TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_commands_sync_id ON commands(sync_id);
CREATE INDEX IF NOT EXISTS idx_commands_updated ON commands(updated_at);

-- Persistent sync state (remote handle, sync version, last sync time)
CREATE TABLE IF NOT EXISTS sync_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Sync conflict history (tracks resolved conflicts for user visibility)
CREATE TABLE IF NOT EXISTS sync_conflicts (
    id TEXT PRIMARY KEY,
    sync_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    resolution TEXT NOT NULL,
    resolved_at TEXT NOT NULL,
    local_version TEXT NOT NULL,   -- JSON snapshot of local version
    remote_version TEXT NOT NULL,  -- JSON snapshot of remote version
    local_summary TEXT,
    remote_summary TEXT,
    diff_hash TEXT
);
CREATE INDEX IF NOT EXISTS idx_sync_conflicts_resolved ON sync_conflicts(resolved_at);
"""


def migrate_schema(conn: sqlite3.Connection) -> None:
    """Bring an older database up to SCHEMA_VERSION."""
    tables = {
        row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
    }
    if "sync_conflicts" in tables:
        cols = {row[1] for row in conn.execute("PRAGMA table_info(sync_conflicts)")}
        if "diff_hash" not in cols:
            logger.info("Migrating sync_conflicts: adding diff_hash")
            conn.execute("ALTER TABLE sync_conflicts ADD COLUMN diff_hash TEXT")


def init_db(conn: sqlite3.Connection) -> None:
    """Initialize the database schema."""
    migrate_schema(conn)
    conn.executescript(SCHEMA)

    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    else:
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
