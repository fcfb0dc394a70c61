"""Activity log storage using SQLite.

One table, ``crm_activity_log``, capped at a fixed number of rows: after
each insert that pushes the count over the cap, the single oldest row
(lowest log_id) is deleted.

Context is stored as a versioned JSON document so old rows stay readable
when the shape of the context changes:
    {"version": 1, "data": {...}}
"""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from pydantic import BaseModel, Field

from crmsync.activity.levels import get_severity_level

TABLE_NAME = "crm_activity_log"
DEFAULT_CAP = 10000
CONTEXT_VERSION = 1
SOURCE_MAX_LENGTH = 200


class LogEntry(BaseModel):
    """One stored activity log row."""

    log_id: int
    timestamp: datetime
    level: int = Field(..., description="Severity (200 info .. 500 error)")
    user_id: int
    source: str
    message: str
    context: Optional[Dict[str, Any]] = None

    @property
    def level_name(self) -> Optional[str]:
        return get_severity_level(self.level)


def serialize_context(context: Optional[Dict[str, Any]]) -> Optional[str]:
    """Wrap a context dict in a versioned JSON document (None when empty)."""
    if not context:
        return None
    return json.dumps({"version": CONTEXT_VERSION, "data": context}, default=str, sort_keys=True)


def deserialize_context(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    """Read a stored context document.

    Documents without a version marker are returned as-is.
    """
    if not raw:
        return None
    document = json.loads(raw)
    if isinstance(document, dict) and "version" in document and "data" in document:
        return document["data"]
    return document


class LogStorage:
    """SQLite storage for activity log entries.

    Supports context manager protocol:
        with LogStorage(db_path) as storage:
            storage.insert(...)
    """

    def __init__(self, db_path: Path, cap: int = DEFAULT_CAP):
        """Initialize log storage.

        Args:
            db_path: Path to SQLite database file
            cap: Maximum number of rows kept
        """
        if db_path is None:
            raise TypeError("LogStorage requires explicit db_path.")
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.cap = cap
        self._write_lock = threading.Lock()
        self._init_tables()

    def __enter__(self) -> "LogStorage":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Connections are opened per operation; nothing stays open."""

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success, always close."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_tables(self) -> None:
        """Initialize the log table (migrations)."""
        with self._connect() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                    log_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    level INTEGER NOT NULL,
                    user INTEGER NOT NULL,
                    source VARCHAR({SOURCE_MAX_LENGTH}) NOT NULL,
                    message TEXT NOT NULL,
                    context TEXT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_level ON {TABLE_NAME}(level)"
            )

    # =========================================================================
    # Writes
    # =========================================================================

    def insert(
        self,
        timestamp: datetime,
        level: int,
        user_id: int,
        source: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Insert one entry and evict the oldest row if over the cap.

        Returns:
            log_id of the new row
        """
        with self._write_lock, self._connect() as conn:
            cursor = conn.execute(
                f"""
                INSERT INTO {TABLE_NAME} (timestamp, level, user, source, message, context)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                    level,
                    user_id,
                    source[:SOURCE_MAX_LENGTH],
                    message,
                    serialize_context(context),
                ),
            )
            log_id = cursor.lastrowid

            row_count = conn.execute(f"SELECT COUNT(*) FROM {TABLE_NAME}").fetchone()[0]
            if row_count > self.cap:
                conn.execute(
                    f"DELETE FROM {TABLE_NAME} "
                    f"WHERE log_id = (SELECT MIN(log_id) FROM {TABLE_NAME})"
                )
        return log_id

    def flush(self) -> int:
        """Delete every entry and reset the ID counter.

        Returns:
            Number of rows deleted
        """
        with self._write_lock, self._connect() as conn:
            deleted = conn.execute(f"DELETE FROM {TABLE_NAME}").rowcount
            conn.execute("DELETE FROM sqlite_sequence WHERE name = ?", (TABLE_NAME,))
        return deleted

    def delete(self, log_ids: Iterable[int]) -> int:
        """Delete entries by ID.

        Returns:
            Number of rows deleted
        """
        ids = [int(log_id) for log_id in log_ids]
        if not ids:
            return 0
        placeholders = ",".join("?" for _ in ids)
        with self._write_lock, self._connect() as conn:
            return conn.execute(
                f"DELETE FROM {TABLE_NAME} WHERE log_id IN ({placeholders})", ids
            ).rowcount

    # =========================================================================
    # Reads
    # =========================================================================

    def _row_to_entry(self, row: sqlite3.Row) -> LogEntry:
        return LogEntry(
            log_id=row["log_id"],
            timestamp=datetime.strptime(row["timestamp"], "%Y-%m-%d %H:%M:%S"),
            level=row["level"],
            user_id=row["user"],
            source=row["source"],
            message=row["message"],
            context=deserialize_context(row["context"]),
        )

    def get(self, log_id: int) -> Optional[LogEntry]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM {TABLE_NAME} WHERE log_id = ?", (log_id,)
            ).fetchone()
        return self._row_to_entry(row) if row else None

    def list_entries(
        self,
        limit: int = 100,
        offset: int = 0,
        level: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> List[LogEntry]:
        """Newest entries first, optionally filtered by severity and user."""
        clauses = []
        params: List[Any] = []
        if level is not None:
            clauses.append("level = ?")
            params.append(level)
        if user_id is not None:
            clauses.append("user = ?")
            params.append(user_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM {TABLE_NAME} {where} ORDER BY log_id DESC LIMIT ? OFFSET ?",
                (*params, limit, offset),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def count(self) -> int:
        with self._connect() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {TABLE_NAME}").fetchone()[0]

    def min_log_id(self) -> Optional[int]:
        with self._connect() as conn:
            return conn.execute(f"SELECT MIN(log_id) FROM {TABLE_NAME}").fetchone()[0]
