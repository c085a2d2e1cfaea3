"""Shared types for tasksync.

This module defines the task record that is synchronized between stores,
the state of a sync pass, and the timestamp helpers every store uses so
that `modified_utc` values compare identically everywhere.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from ulid import ULID


class PassState(str, Enum):
    """State of a sync pass over one pair of stores.

    Terminal states are COMMITTED, PARTIALLY_APPLIED and FAILED.
    """

    IDLE = "idle"
    FETCHING_CHANGES = "fetching_changes"
    RECONCILING = "reconciling"
    APPLYING = "applying"
    COMMITTED = "committed"
    PARTIALLY_APPLIED = "partially_applied"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PassState.COMMITTED, PassState.PARTIALLY_APPLIED, PassState.FAILED)


class TaskStatus(str, Enum):
    """Status of a task."""

    OPEN = "open"
    DONE = "done"


# === Timestamps ===


def utc_now() -> datetime:
    """Current wall-clock time in UTC."""
    return datetime.now(UTC)


def format_utc(value: datetime) -> str:
    """Format a timestamp as fixed-width ISO 8601 in UTC.

    The fixed width (always microseconds, always +00:00) keeps string
    comparison in SQL consistent with datetime comparison.
    """
    if value.tzinfo is None:
        raise ValueError(f"Naive datetime not allowed: {value!r}")
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def parse_utc(value: str) -> datetime:
    """Parse an ISO 8601 timestamp. Naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def new_ulid() -> str:
    """Generate a new task identifier (lowercase ULID)."""
    return str(ULID()).lower()


# === Task record ===


@dataclass(frozen=True)
class TaskRecord:
    """A task as stored in any backend.

    Identity across stores is decided by `id` alone. Everything except
    `id`, `created_utc` and `modified_utc` is payload that the sync engine
    copies without interpreting.

    Attributes:
        id: Lowercase ULID, generated once by the store that created the task.
        created_utc: Creation time, immutable.
        modified_utc: Time of last mutation.
        body: Task description.
        status: "open" or "done".
        priority: Optional priority adjustment.
        tags: Set of tags.
        due_utc: Optional due date (opaque string).
        ready_utc: Optional date from which the task is actionable.
        closed_utc: Optional close date.
        recurrence: Optional ISO 8601 recurrence duration (e.g. "P1D").
        user: Optional owner name.
        metadata: Optional free-form metadata.
        deleted: Tombstone flag. Deleting a task is a mutation.
    """

    id: str
    created_utc: datetime
    modified_utc: datetime
    body: str = ""
    status: str = TaskStatus.OPEN.value
    priority: float | None = None
    tags: frozenset[str] = field(default_factory=frozenset)
    due_utc: str | None = None
    ready_utc: str | None = None
    closed_utc: str | None = None
    recurrence: str | None = None
    user: str | None = None
    metadata: str | None = None
    deleted: bool = False

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Task id must not be empty")
        if self.created_utc.tzinfo is None or self.modified_utc.tzinfo is None:
            raise ValueError(f"Task {self.id}: timestamps must be timezone-aware")
        if self.modified_utc < self.created_utc:
            raise ValueError(
                f"Task {self.id}: modified_utc {self.modified_utc.isoformat()} "
                f"is before created_utc {self.created_utc.isoformat()}"
            )
        if not isinstance(self.tags, frozenset):
            object.__setattr__(self, "tags", frozenset(self.tags))

    def payload(self) -> dict[str, Any]:
        """Domain fields only (no id, no timestamps)."""
        return {
            "body": self.body,
            "status": self.status,
            "priority": self.priority,
            "tags": sorted(self.tags),
            "due_utc": self.due_utc,
            "ready_utc": self.ready_utc,
            "closed_utc": self.closed_utc,
            "recurrence": self.recurrence,
            "user": self.user,
            "metadata": self.metadata,
            "deleted": self.deleted,
        }

    def to_dict(self) -> dict[str, Any]:
        """Wire form used by the API and for serialization."""
        data: dict[str, Any] = {
            "id": self.id,
            "created_utc": format_utc(self.created_utc),
            "modified_utc": format_utc(self.modified_utc),
        }
        data.update(self.payload())
        return data

    def to_bytes(self) -> bytes:
        """Canonical byte form. Equal records always produce equal bytes."""
        return json.dumps(
            self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False
        ).encode("utf-8")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskRecord:
        """Create from a wire-form dictionary.

        Raises:
            KeyError: If a required field is missing.
            ValueError: If a timestamp is malformed.
        """
        priority = data.get("priority")
        return cls(
            id=data["id"],
            created_utc=parse_utc(data["created_utc"]),
            modified_utc=parse_utc(data["modified_utc"]),
            body=data.get("body", ""),
            status=data.get("status", TaskStatus.OPEN.value),
            priority=float(priority) if priority is not None else None,
            tags=frozenset(data.get("tags") or ()),
            due_utc=data.get("due_utc"),
            ready_utc=data.get("ready_utc"),
            closed_utc=data.get("closed_utc"),
            recurrence=data.get("recurrence"),
            user=data.get("user"),
            metadata=data.get("metadata"),
            deleted=bool(data.get("deleted", False)),
        )


def new_task(body: str, *, now: datetime | None = None, **fields: Any) -> TaskRecord:
    """Create a new task with a fresh id."""
    timestamp = now or utc_now()
    return TaskRecord(
        id=new_ulid(),
        created_utc=timestamp,
        modified_utc=timestamp,
        body=body,
        **fields,
    )


def touch(record: TaskRecord, now: datetime | None = None, **changes: Any) -> TaskRecord:
    """Return a mutated copy with a fresh modified_utc."""
    timestamp = now or utc_now()
    if timestamp <= record.modified_utc:
        # An edit must strictly supersede the record it replaces.
        timestamp = record.modified_utc + timedelta(microseconds=1)
    return replace(record, modified_utc=timestamp, **changes)


def is_stale_write(stored: TaskRecord, incoming: TaskRecord) -> bool:
    """True if `incoming` must not overwrite `stored`.

    Uses the same total order as conflict resolution: later modified_utc
    wins, and on equal timestamps the greater canonical bytes win. Equal
    records are not stale, so repeating a write is harmless.
    """
    if stored.modified_utc != incoming.modified_utc:
        return stored.modified_utc > incoming.modified_utc
    return stored.to_bytes() > incoming.to_bytes()


def tombstone(record: TaskRecord, now: datetime | None = None) -> TaskRecord:
    """Mark a task deleted. The tombstone syncs like any other change."""
    return touch(record, now, deleted=True)
