"""Server database using SQLAlchemy with SQLite.

This module provides:
- Task storage keyed by ULID
- Changed-since queries for incremental sync
- Create-or-update with caller-supplied modified_utc and optimistic locking
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from tasksync.core.types import TaskRecord, TaskStatus, is_stale_write
from tasksync.server.models import Base, Task, TaskTag

if TYPE_CHECKING:
    from sqlalchemy import Engine


class StaleWriteError(Exception):
    """Raised when an upsert would overwrite a task that supersedes it."""


def _as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _to_record(task: Task) -> TaskRecord:
    return TaskRecord(
        id=task.id,
        created_utc=_as_utc(task.created_utc),
        modified_utc=_as_utc(task.modified_utc),
        body=task.body,
        status=task.status,
        priority=task.priority,
        tags=frozenset(t.tag for t in task.tags),
        due_utc=task.due_utc,
        ready_utc=task.ready_utc,
        closed_utc=task.closed_utc,
        recurrence=task.recurrence,
        user=task.user,
        metadata=task.metadata_,
        deleted=task.deleted,
    )


class Database:
    """SQLAlchemy database for server tasks.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    Writes are serialized so the optimistic-lock check and the write happen
    atomically.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()

        # Create engine with check_same_thread=False for multi-threaded access
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        # Enable WAL mode
        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")

        # Create tables if they don't exist
        Base.metadata.create_all(self._engine)

    @property
    def path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine)

    # === Task operations ===

    def get_task(self, task_id: str) -> TaskRecord | None:
        """Get a task by id.

        Returns:
            TaskRecord if found, None otherwise.
        """
        with self._session() as session:
            task = session.get(Task, task_id)
            return _to_record(task) if task else None

    def list_changed_since(self, since: datetime) -> list[TaskRecord]:
        """List tasks (tombstones included) modified strictly after `since`."""
        with self._session() as session:
            stmt = (
                select(Task)
                .where(Task.modified_utc > _as_utc(since))
                .order_by(Task.modified_utc, Task.id)
            )
            return [_to_record(task) for task in session.execute(stmt).scalars().all()]

    def list_open_tasks(self, limit: int = 10) -> list[TaskRecord]:
        """List open, non-deleted tasks, earliest due first."""
        with self._session() as session:
            stmt = (
                select(Task)
                .where(Task.deleted.is_(False), Task.status == TaskStatus.OPEN.value)
                .order_by(Task.due_utc.is_(None), Task.due_utc, Task.priority.desc(), Task.id)
                .limit(limit)
            )
            return [_to_record(task) for task in session.execute(stmt).scalars().all()]

    def upsert_task(self, record: TaskRecord) -> TaskRecord:
        """Create a task or overwrite the stored one.

        The stored modified_utc is taken from `record` as-is.

        Raises:
            StaleWriteError: If the stored task supersedes `record` (later
                modified_utc, or equal modified_utc and greater canonical bytes).
        """
        with self._write_lock, self._session() as session:
            task = session.get(Task, record.id)
            if task is None:
                task = Task(id=record.id)
                session.add(task)
            elif is_stale_write(_to_record(task), record):
                raise StaleWriteError(
                    f"Task {record.id} stored at {_as_utc(task.modified_utc).isoformat()} "
                    f"supersedes write at {record.modified_utc.isoformat()}"
                )

            task.created_utc = _as_utc(record.created_utc)
            task.modified_utc = _as_utc(record.modified_utc)
            task.body = record.body
            task.status = record.status
            task.priority = record.priority
            task.due_utc = record.due_utc
            task.ready_utc = record.ready_utc
            task.closed_utc = record.closed_utc
            task.recurrence = record.recurrence
            task.user = record.user
            task.metadata_ = record.metadata
            task.deleted = record.deleted
            existing = {t.tag for t in task.tags}
            task.tags = [t for t in task.tags if t.tag in record.tags] + [
                TaskTag(tag=tag) for tag in sorted(record.tags - existing)
            ]

            session.commit()
            session.refresh(task)
            return _to_record(task)
