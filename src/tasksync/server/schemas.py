"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from pydantic import BaseModel, Field

from tasksync.core.types import TaskRecord

# === Task schemas ===


class TaskSchema(BaseModel):
    """Task in requests and responses. Field names are stable across versions."""

    id: str
    created_utc: str
    modified_utc: str
    body: str = ""
    status: str = "open"
    priority: float | None = None
    tags: list[str] = Field(default_factory=list)
    due_utc: str | None = None
    ready_utc: str | None = None
    closed_utc: str | None = None
    recurrence: str | None = None
    user: str | None = None
    metadata: str | None = None
    deleted: bool = False

    def to_record(self) -> TaskRecord:
        """Convert to a TaskRecord.

        Raises:
            ValueError: If timestamps are malformed or inconsistent.
        """
        return TaskRecord.from_dict(self.model_dump())


# === Health schema ===


class HealthResponse(BaseModel):
    """Health check response."""

    status: str


# === Converters ===


def task_to_response(record: TaskRecord) -> TaskSchema:
    """Convert TaskRecord to response model."""
    return TaskSchema(**record.to_dict())
