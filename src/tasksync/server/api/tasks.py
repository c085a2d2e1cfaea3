"""Task API routes used by the Api store adapter."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from tasksync.core.types import parse_utc
from tasksync.server.api.deps import get_db
from tasksync.server.database import Database, StaleWriteError
from tasksync.server.schemas import TaskSchema, task_to_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.get("", response_model=list[TaskSchema])
def list_tasks(
    limit: int = Query(default=10, ge=1, le=1000),
    db: Database = Depends(get_db),
) -> list[TaskSchema]:
    """List open tasks, earliest due first."""
    return [task_to_response(t) for t in db.list_open_tasks(limit=limit)]


# Note: must be registered before the generic /{task_id} route
@router.get("/changes", response_model=list[TaskSchema])
def list_changes(
    since: str = Query(
        ...,
        description="ISO 8601 timestamp. Tasks modified strictly after this time.",
    ),
    db: Database = Depends(get_db),
) -> list[TaskSchema]:
    """List tasks (including tombstones) modified since a timestamp."""
    try:
        since_dt = parse_utc(since)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid timestamp: {since}",
        ) from e
    return [task_to_response(t) for t in db.list_changed_since(since_dt)]


@router.get("/{task_id}", response_model=TaskSchema)
def get_task(
    task_id: str,
    db: Database = Depends(get_db),
) -> TaskSchema:
    """Get a task by id."""
    record = db.get_task(task_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Task not found: {task_id}",
        )
    return task_to_response(record)


@router.put("/{task_id}", response_model=TaskSchema)
def put_task(
    task_id: str,
    request: TaskSchema,
    db: Database = Depends(get_db),
) -> TaskSchema:
    """Create or update a task, keeping the caller's modified_utc."""
    if request.id != task_id:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Task id mismatch: {request.id} != {task_id}",
        )
    try:
        record = request.to_record()
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e

    try:
        stored = db.upsert_task(record)
    except StaleWriteError as e:
        logger.info("Rejected stale write for %s", task_id)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e
    return task_to_response(stored)
