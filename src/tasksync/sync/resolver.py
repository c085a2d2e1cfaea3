"""Conflict resolution for one task seen in two stores.

Last-writer-wins at task-record granularity:

| A               | B       | Action                        |
|-----------------|---------|-------------------------------|
| absent          | present | Create in A from B            |
| present         | absent  | Create in B from A            |
| newer           | older   | Update B to match A           |
| older           | newer   | Update A to match B           |
| same timestamp, same bytes  | No-op (converged)  |
| same timestamp, diff bytes  | Greater canonical bytes win |

The byte-order tie-break makes the result identical whichever store is
passed as A, so both sides converge in a single pass.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto

from tasksync.core.types import TaskRecord


class Action(Enum):
    """Write required to converge one task."""

    NOOP = auto()
    CREATE_IN_A = auto()
    CREATE_IN_B = auto()
    UPDATE_A = auto()
    UPDATE_B = auto()


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolve().

    Attributes:
        action: Write to perform.
        record: Record to write (None for NOOP).
        reason: Human-readable explanation, for logs.
    """

    action: Action
    record: TaskRecord | None
    reason: str

    @property
    def writes_a(self) -> bool:
        return self.action in (Action.CREATE_IN_A, Action.UPDATE_A)

    @property
    def writes_b(self) -> bool:
        return self.action in (Action.CREATE_IN_B, Action.UPDATE_B)

    @property
    def is_create(self) -> bool:
        return self.action in (Action.CREATE_IN_A, Action.CREATE_IN_B)


def resolve(a: TaskRecord | None, b: TaskRecord | None) -> Resolution:
    """Decide which representation of a task wins.

    Args:
        a: The task as stored in A, or None if absent.
        b: The task as stored in B, or None if absent.

    Returns:
        Resolution describing the single write needed, if any.

    Raises:
        ValueError: If both records are present with different ids.
    """
    if a is None and b is None:
        return Resolution(Action.NOOP, None, "absent from both stores")
    if a is None:
        return Resolution(Action.CREATE_IN_A, b, "missing in A")
    if b is None:
        return Resolution(Action.CREATE_IN_B, a, "missing in B")
    if a.id != b.id:
        raise ValueError(f"Cannot resolve different tasks: {a.id} != {b.id}")

    if a.modified_utc > b.modified_utc:
        return Resolution(Action.UPDATE_B, a, "A modified later")
    if a.modified_utc < b.modified_utc:
        return Resolution(Action.UPDATE_A, b, "B modified later")

    a_bytes = a.to_bytes()
    b_bytes = b.to_bytes()
    if a_bytes == b_bytes:
        return Resolution(Action.NOOP, None, "already converged")
    if a_bytes > b_bytes:
        return Resolution(Action.UPDATE_B, a, "same timestamp, A wins tie-break")
    return Resolution(Action.UPDATE_A, b, "same timestamp, B wins tie-break")
