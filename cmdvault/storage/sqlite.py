"""SQLite storage backend for cmdvault.

Local-first storage with:
- The command library (the local replica the sync engine reconciles)
- Sync metadata (remote handle, sync version, last sync time)
- Sync conflict history
"""

import contextlib
import json
import logging
import sqlite3
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from cmdvault.protocols import StorageError
from cmdvault.types import (
    CommandRecord,
    CommandSource,
    ConflictRecord,
    format_datetime,
    generate_command_id,
    parse_datetime,
    utc_now,
)
from cmdvault.utils import get_cmdvault_home

from .schema import init_db

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id",
    "sync_id",
    "prompt",
    "command",
    "tags",
    "shell",
    "is_favorite",
    "source",
    "usage_count",
    "skip_destructive_warning",
    "created_at",
    "updated_at",
    "last_used_at",
    "last_synced_at",
    "deleted_at",
)


class SQLiteStorage:
    """SQLite-backed command library.

    Implements the RecordStore and MetaStore protocols used by the sync
    engine, plus the everyday CRUD the CLI needs.

    Args:
        db_path: Database file. Defaults to ``<data dir>/commands.db``.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else get_cmdvault_home() / "commands.db"
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            init_db(conn)

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Context manager that handles transactions AND closes connection.

        - Transaction commit on success
        - Transaction rollback on exception
        - Connection close in all cases
        """
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    # === Row conversion ===

    def _row_to_command(self, row: sqlite3.Row) -> CommandRecord:
        try:
            tags = json.loads(row["tags"]) if row["tags"] else []
        except json.JSONDecodeError:
            logger.warning("Corrupt tags for command %s, treating as empty", row["id"])
            tags = []
        return CommandRecord(
            id=row["id"],
            sync_id=row["sync_id"],
            prompt=row["prompt"],
            command=row["command"],
            tags=tags,
            shell=row["shell"],
            is_favorite=bool(row["is_favorite"]),
            source=row["source"],
            usage_count=row["usage_count"] or 0,
            skip_destructive_warning=bool(row["skip_destructive_warning"]),
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
            last_used_at=parse_datetime(row["last_used_at"]),
            last_synced_at=parse_datetime(row["last_synced_at"]),
            deleted_at=parse_datetime(row["deleted_at"]),
        )

    def _command_params(self, record: CommandRecord) -> tuple:
        return (
            record.id,
            record.sync_id,
            record.prompt,
            record.command,
            json.dumps(list(record.tags)),
            record.shell,
            int(bool(record.is_favorite)),
            record.source,
            record.usage_count,
            int(bool(record.skip_destructive_warning)),
            format_datetime(record.created_at),
            format_datetime(record.updated_at),
            format_datetime(record.last_used_at),
            format_datetime(record.last_synced_at),
            format_datetime(record.deleted_at),
        )

    def _upsert(self, conn: sqlite3.Connection, record: CommandRecord) -> None:
        placeholders = ", ".join("?" * len(_COLUMNS))
        conn.execute(
            f"INSERT OR REPLACE INTO commands ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
            self._command_params(record),
        )

    # === Command CRUD ===

    def add_command(
        self,
        prompt: str,
        command: str,
        tags: Optional[List[str]] = None,
        shell: Optional[str] = None,
        source: str = CommandSource.MANUAL.value,
    ) -> CommandRecord:
        """Create and store a new command."""
        if not command or not command.strip():
            raise ValueError("command cannot be empty")
        now = utc_now()
        record = CommandRecord(
            id=generate_command_id(),
            prompt=prompt or command,
            command=command,
            tags=list(tags or []),
            shell=shell,
            source=source,
            created_at=now,
            updated_at=now,
        )
        with self._connect() as conn:
            self._upsert(conn, record)
        return record

    def save_command(self, record: CommandRecord) -> CommandRecord:
        """Store a record as-is (no timestamp changes)."""
        with self._connect() as conn:
            self._upsert(conn, record)
        return record

    def update_command(self, record_id: str, **changes: Any) -> Optional[CommandRecord]:
        """Apply content changes and bump ``updated_at``."""
        existing = self.get_command(record_id)
        if existing is None or existing.is_deleted:
            return None
        updated = replace(existing, **changes, updated_at=utc_now())
        with self._connect() as conn:
            self._upsert(conn, updated)
        return updated

    def get_command(self, record_id: str) -> Optional[CommandRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM commands WHERE id = ?", (record_id,)).fetchone()
        return self._row_to_command(row) if row else None

    def list_commands(
        self, include_deleted: bool = False, tag: Optional[str] = None
    ) -> List[CommandRecord]:
        """List commands, favourites first then most recently updated."""
        query = "SELECT * FROM commands"
        if not include_deleted:
            query += " WHERE deleted_at IS NULL"
        query += " ORDER BY is_favorite DESC, updated_at DESC"
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()
        records = [self._row_to_command(row) for row in rows]
        if tag:
            records = [r for r in records if tag in r.tags]
        return records

    def search_commands(self, query: str, limit: int = 50) -> List[CommandRecord]:
        """Case-insensitive substring search over prompt, command and tags."""
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        with self._connect() as conn:
            rows = conn.execute(
                r"""SELECT * FROM commands
                   WHERE deleted_at IS NULL
                     AND (prompt LIKE ? ESCAPE '\' OR command LIKE ? ESCAPE '\'
                          OR tags LIKE ? ESCAPE '\')
                   ORDER BY usage_count DESC, updated_at DESC
                   LIMIT ?""",
                (pattern, pattern, pattern, limit),
            ).fetchall()
        return [self._row_to_command(row) for row in rows]

    def soft_delete_command(self, record_id: str) -> bool:
        """Tombstone a command so the deletion can propagate on the next sync."""
        now = format_datetime(utc_now())
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE commands SET deleted_at = ?, updated_at = ? "
                "WHERE id = ? AND deleted_at IS NULL",
                (now, now, record_id),
            )
            return cursor.rowcount > 0

    def record_usage(self, record_id: str) -> bool:
        """Count a run of the command. Usage is not content and does not bump updated_at."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE commands SET usage_count = usage_count + 1, last_used_at = ? "
                "WHERE id = ? AND deleted_at IS NULL",
                (format_datetime(utc_now()), record_id),
            )
            return cursor.rowcount > 0

    def toggle_favorite(self, record_id: str) -> Optional[bool]:
        """Flip the favourite flag; returns the new value, or None if missing."""
        existing = self.get_command(record_id)
        if existing is None or existing.is_deleted:
            return None
        updated = self.update_command(record_id, is_favorite=not existing.is_favorite)
        return updated.is_favorite if updated else None

    def count_commands(self, include_deleted: bool = False) -> int:
        query = "SELECT COUNT(*) FROM commands"
        if not include_deleted:
            query += " WHERE deleted_at IS NULL"
        with self._connect() as conn:
            return conn.execute(query).fetchone()[0]

    # === RecordStore protocol ===

    def read_all(self) -> List[CommandRecord]:
        """Every record, tombstones included, in creation order."""
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM commands ORDER BY created_at, id").fetchall()
        return [self._row_to_command(row) for row in rows]

    def replace_all(self, records: Iterable[CommandRecord]) -> int:
        """Replace the whole library in a single transaction."""
        records = list(records)
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM commands")
                for record in records:
                    self._upsert(conn, record)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to replace command library: {e}") from e
        return len(records)

    def merge_write(self, records: Iterable[CommandRecord]) -> int:
        """Upsert records matched on ``sync_id`` (or ``id``); newer ``updated_at`` wins.

        Returns:
            Number of records written.
        """
        local_by_key = {r.key: r for r in self.read_all()}
        written = 0
        try:
            with self._connect() as conn:
                for incoming in records:
                    existing = local_by_key.get(incoming.key)
                    if existing is not None:
                        if incoming.updated_at <= existing.updated_at:
                            continue
                        if existing.id != incoming.id:
                            conn.execute("DELETE FROM commands WHERE id = ?", (existing.id,))
                    self._upsert(conn, incoming)
                    local_by_key[incoming.key] = incoming
                    written += 1
        except sqlite3.Error as e:
            raise StorageError(f"Failed to merge commands: {e}") from e
        return written

    # === MetaStore protocol ===

    def get_meta(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM sync_meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sync_meta (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, format_datetime(utc_now())),
            )

    def delete_meta(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM sync_meta WHERE key = ?", (key,))

    def get_last_sync_time(self) -> Optional[datetime]:
        """Get the timestamp of the last successful sync."""
        return parse_datetime(self.get_meta("last_sync_time"))

    # === Conflict history ===

    def save_sync_conflict(self, conflict: ConflictRecord) -> str:
        """Save a resolved conflict. Deduplicates by diff_hash when available."""
        with self._connect() as conn:
            if conflict.diff_hash:
                existing = conn.execute(
                    "SELECT id FROM sync_conflicts WHERE diff_hash = ?", (conflict.diff_hash,)
                ).fetchone()
                if existing:
                    return existing["id"]
            conn.execute(
                """INSERT INTO sync_conflicts
                   (id, sync_id, kind, resolution, resolved_at, local_version,
                    remote_version, local_summary, remote_summary, diff_hash)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    conflict.id,
                    conflict.sync_id,
                    conflict.kind,
                    conflict.resolution,
                    format_datetime(conflict.resolved_at),
                    json.dumps(conflict.local_version),
                    json.dumps(conflict.remote_version),
                    conflict.local_summary,
                    conflict.remote_summary,
                    conflict.diff_hash,
                ),
            )
        return conflict.id

    def get_sync_conflicts(self, limit: int = 100) -> List[ConflictRecord]:
        """Get recent sync conflict history, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM sync_conflicts ORDER BY resolved_at DESC LIMIT ?", (limit,)
            ).fetchall()
        return [
            ConflictRecord(
                id=row["id"],
                sync_id=row["sync_id"],
                kind=row["kind"],
                resolution=row["resolution"],
                resolved_at=parse_datetime(row["resolved_at"]),
                local_version=self._from_json(row["local_version"]),
                remote_version=self._from_json(row["remote_version"]),
                local_summary=row["local_summary"],
                remote_summary=row["remote_summary"],
                diff_hash=row["diff_hash"],
            )
            for row in rows
        ]

    def clear_sync_conflicts(self) -> int:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM sync_conflicts")
            return cursor.rowcount

    def _from_json(self, s: Optional[str]) -> Dict[str, Any]:
        if not s:
            return {}
        try:
            return json.loads(s)
        except json.JSONDecodeError:
            return {}
