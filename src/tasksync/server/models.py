"""SQLAlchemy models for the tasksync server.

This module defines the database schema using SQLAlchemy ORM.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


class Task(Base):
    """A task stored on the server."""

    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(26), primary_key=True)
    created_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    modified_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    priority: Mapped[float | None] = mapped_column(Float, nullable=True)
    due_utc: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ready_utc: Mapped[str | None] = mapped_column(String(64), nullable=True)
    closed_utc: Mapped[str | None] = mapped_column(String(64), nullable=True)
    recurrence: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_: Mapped[str | None] = mapped_column("metadata", Text, nullable=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    tags: Mapped[list[TaskTag]] = relationship(
        "TaskTag",
        back_populates="task",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # Indexes
    __table_args__ = (Index("idx_tasks_modified", "modified_utc"),)


class TaskTag(Base):
    """One tag on a task."""

    __tablename__ = "task_to_tag"

    task_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True
    )
    tag: Mapped[str] = mapped_column(String(255), primary_key=True)

    # Relationships
    task: Mapped[Task] = relationship("Task", back_populates="tags")
