"""Embedded SQLite task store.

This module provides:
- SQLiteStore: TaskStore over a local SQLite database
- CRUD helpers (save, list_tasks, delete) used by the host program

Schema:
    tasks holds one row per task with timestamps stored as fixed-width
    ISO 8601 strings, so ``modified_utc > ?`` compares chronologically.
    task_to_tag holds the tag set.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from tasksync.core.config import StoreConfig
from tasksync.core.errors import (
    ConflictError,
    NotFoundError,
    ProtocolError,
    UnreachableError,
)
from tasksync.core.types import TaskRecord, format_utc, is_stale_write, parse_utc, tombstone
from tasksync.stores.base import TaskStore

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"

TASK_COLUMNS = (
    "id",
    "created_utc",
    "modified_utc",
    "body",
    "status",
    "priority",
    "due_utc",
    "ready_utc",
    "closed_utc",
    "recurrence",
    "user",
    "metadata",
    "deleted",
)


class SQLiteStore(TaskStore):
    """Task store backed by an embedded SQLite database."""

    def __init__(self, config: StoreConfig) -> None:
        """Configure the store. The database is opened on first use.

        Args:
            config: SQLite store configuration (``file://`` uri).
        """
        self._name = config.name
        self._db_path = config.sqlite_path
        self._timeout = config.timeout
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None

    @property
    def name(self) -> str:
        return self._name

    def _open(self) -> sqlite3.Connection:
        """Open (and create if needed) the database.

        Raises:
            UnreachableError: If the database cannot be opened.
        """
        conn = None
        try:
            if self._db_path != MEMORY_PATH:
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self._db_path,
                timeout=self._timeout,
                check_same_thread=False,
                isolation_level=None,  # Autocommit; transactions are explicit
            )
            conn.row_factory = sqlite3.Row

            if self._db_path != MEMORY_PATH:
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")

            self._create_tables(conn)
        except (OSError, sqlite3.Error) as e:
            if conn is not None:
                conn.close()
            raise UnreachableError(f"Cannot open {self._db_path}: {e}", self._name) from e
        logger.debug("Opened %s", self._db_path)
        return conn

    def _create_tables(self, conn: sqlite3.Connection) -> None:
        """Create database tables if they don't exist."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                created_utc TEXT NOT NULL,
                modified_utc TEXT NOT NULL,
                body TEXT NOT NULL,
                status TEXT NOT NULL,
                priority REAL,
                due_utc TEXT,
                ready_utc TEXT,
                closed_utc TEXT,
                recurrence TEXT,
                user TEXT,
                metadata TEXT,
                deleted INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_tasks_modified ON tasks (modified_utc);

            CREATE TABLE IF NOT EXISTS task_to_tag (
                task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                tag TEXT NOT NULL,
                PRIMARY KEY (task_id, tag)
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @contextmanager
    def _guard(self) -> Iterator[sqlite3.Connection]:
        """Serialize access, open on first use, and translate storage failures."""
        with self._lock:
            if self._conn is None:
                self._conn = self._open()
            try:
                yield self._conn
            except sqlite3.OperationalError as e:
                raise UnreachableError(f"SQLite unavailable: {e}", self._name) from e
            except sqlite3.DatabaseError as e:
                raise ProtocolError(f"SQLite error: {e}", self._name) from e

    def _tags_for(self, conn: sqlite3.Connection, task_ids: list[str]) -> dict[str, set[str]]:
        tags: dict[str, set[str]] = {task_id: set() for task_id in task_ids}
        if not task_ids:
            return tags
        placeholders = ", ".join("?" for _ in task_ids)
        rows = conn.execute(
            f"SELECT task_id, tag FROM task_to_tag WHERE task_id IN ({placeholders})",
            task_ids,
        ).fetchall()
        for row in rows:
            tags[row["task_id"]].add(row["tag"])
        return tags

    def _from_rows(self, conn: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[TaskRecord]:
        tags = self._tags_for(conn, [row["id"] for row in rows])
        records = []
        for row in rows:
            try:
                records.append(_row_to_record(row, tags[row["id"]]))
            except (TypeError, ValueError) as e:
                raise ProtocolError(f"Malformed task row {row['id']}: {e}", self._name) from e
        return records

    # === TaskStore contract ===

    def list_changed_since(self, cutoff: datetime) -> list[TaskRecord]:
        with self._guard() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE modified_utc > ?",
                (format_utc(cutoff),),
            ).fetchall()
            records = self._from_rows(conn, rows)
        logger.debug("%s: %d task(s) changed since %s", self._name, len(records), cutoff)
        return records

    def get_by_id(self, task_id: str) -> TaskRecord:
        with self._guard() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"Task not found: {task_id}", self._name)
            return self._from_rows(conn, [row])[0]

    def upsert(self, record: TaskRecord) -> None:
        values = _record_to_values(record)
        with self._guard() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute("SELECT * FROM tasks WHERE id = ?", (record.id,)).fetchone()
                if row is not None:
                    stored = self._from_rows(conn, [row])[0]
                    if is_stale_write(stored, record):
                        raise ConflictError(
                            f"Task {record.id} stored at {row['modified_utc']} "
                            f"supersedes write at {values['modified_utc']}",
                            self._name,
                        )
                columns = ", ".join(TASK_COLUMNS)
                placeholders = ", ".join(f":{c}" for c in TASK_COLUMNS)
                updates = ", ".join(f"{c} = excluded.{c}" for c in TASK_COLUMNS if c != "id")
                conn.execute(
                    f"INSERT INTO tasks ({columns}) VALUES ({placeholders}) "
                    f"ON CONFLICT(id) DO UPDATE SET {updates}",
                    values,
                )
                conn.execute("DELETE FROM task_to_tag WHERE task_id = ?", (record.id,))
                conn.executemany(
                    "INSERT INTO task_to_tag (task_id, tag) VALUES (?, ?)",
                    [(record.id, tag) for tag in sorted(record.tags)],
                )
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    # === Local CRUD helpers ===

    def save(self, record: TaskRecord) -> TaskRecord:
        """Store a task created or edited locally."""
        self.upsert(record)
        return record

    def list_tasks(self, include_deleted: bool = False) -> list[TaskRecord]:
        """List tasks ordered by id (creation order)."""
        query = "SELECT * FROM tasks"
        if not include_deleted:
            query += " WHERE deleted = 0"
        query += " ORDER BY id"
        with self._guard() as conn:
            rows = conn.execute(query).fetchall()
            return self._from_rows(conn, rows)

    def delete(self, task_id: str, now: datetime | None = None) -> TaskRecord:
        """Delete a task by writing a tombstone.

        Raises:
            NotFoundError: No task with this id.
        """
        record = tombstone(self.get_by_id(task_id), now)
        self.upsert(record)
        return record


def _record_to_values(record: TaskRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "created_utc": format_utc(record.created_utc),
        "modified_utc": format_utc(record.modified_utc),
        "body": record.body,
        "status": record.status,
        "priority": record.priority,
        "due_utc": record.due_utc,
        "ready_utc": record.ready_utc,
        "closed_utc": record.closed_utc,
        "recurrence": record.recurrence,
        "user": record.user,
        "metadata": record.metadata,
        "deleted": int(record.deleted),
    }


def _row_to_record(row: sqlite3.Row, tags: set[str]) -> TaskRecord:
    return TaskRecord(
        id=row["id"],
        created_utc=parse_utc(row["created_utc"]),
        modified_utc=parse_utc(row["modified_utc"]),
        body=row["body"],
        status=row["status"],
        priority=row["priority"],
        tags=frozenset(tags),
        due_utc=row["due_utc"],
        ready_utc=row["ready_utc"],
        closed_utc=row["closed_utc"],
        recurrence=row["recurrence"],
        user=row["user"],
        metadata=row["metadata"],
        deleted=bool(row["deleted"]),
    )
