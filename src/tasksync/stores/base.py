"""Store adapter contract.

Every backend strain implements TaskStore. The sync engine only talks to
stores through this interface and never branches on strain.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime

from tasksync.core.types import TaskRecord


class TaskStore(ABC):
    """Uniform interface over one storage backend."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable identifier of this store."""

    @abstractmethod
    def list_changed_since(self, cutoff: datetime) -> Sequence[TaskRecord]:
        """Return every record with modified_utc strictly greater than cutoff.

        Order is unspecified.

        Raises:
            UnreachableError: Backend cannot be contacted.
            ProtocolError: Response is malformed.
        """

    @abstractmethod
    def get_by_id(self, task_id: str) -> TaskRecord:
        """Return the record with this id.

        Raises:
            NotFoundError: No record with this id.
            UnreachableError: Backend cannot be contacted.
            ProtocolError: Response is malformed.
        """

    @abstractmethod
    def upsert(self, record: TaskRecord) -> None:
        """Create the record or overwrite the stored one.

        The stored modified_utc is set to record.modified_utc. A store never
        substitutes its own clock here.

        Raises:
            ConflictError: A record with a newer modified_utc is already stored.
            UnreachableError: Backend cannot be contacted.
            ProtocolError: Response is malformed.
        """

    def close(self) -> None:
        """Release backend resources."""

    def __enter__(self) -> TaskStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
