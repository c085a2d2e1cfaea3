"""HTTP task store for the tasksync server API.

This module provides:
- ApiStore: TaskStore talking to a remote task server over HTTP

Endpoints used:
    GET /api/tasks/changes?since=<iso>   tasks modified after a timestamp
    GET /api/tasks/{id}                  one task
    PUT /api/tasks/{id}                  create-or-update with explicit modified_utc
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from tasksync.core.config import StoreConfig
from tasksync.core.errors import (
    ConflictError,
    NotFoundError,
    ProtocolError,
    UnreachableError,
)
from tasksync.core.retry import retry_with_backoff
from tasksync.core.types import TaskRecord, format_utc
from tasksync.stores.base import TaskStore

logger = logging.getLogger(__name__)

# Gateway errors mean the backend is down, not that the request was wrong
UNAVAILABLE_STATUS_CODES = frozenset({502, 503, 504})


class ApiStore(TaskStore):
    """Task store backed by the tasksync server REST API."""

    def __init__(
        self,
        config: StoreConfig,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            config: Api store configuration (base URL, timeout, retries).
            client: Optional pre-built httpx client (used by tests).
        """
        self._name = config.name
        self._retries = config.retries
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=config.uri,
            timeout=config.timeout,
        )

    @property
    def name(self) -> str:
        return self._name

    def close(self) -> None:
        """Close the HTTP client."""
        if self._owns_client:
            self._client.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying transport errors, and map error statuses."""

        def send() -> httpx.Response:
            return self._client.request(method, url, **kwargs)

        try:
            response = retry_with_backoff(
                send,
                max_retries=self._retries,
                retryable_exceptions=(httpx.TransportError,),
            )
        except httpx.TimeoutException as e:
            raise UnreachableError(f"Timed out: {method} {url}", self._name) from e
        except httpx.TransportError as e:
            raise UnreachableError(f"Cannot reach server: {e}", self._name) from e

        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Raise the matching store error for non-success responses."""
        status = response.status_code
        if status < 400:
            return response
        detail = _detail(response)
        if status == 404:
            raise NotFoundError(detail or "Resource not found", self._name)
        if status == 409:
            raise ConflictError(detail or "Conflict", self._name)
        if status in UNAVAILABLE_STATUS_CODES:
            raise UnreachableError(f"Server unavailable ({status})", self._name)
        raise ProtocolError(detail or "Unknown error", self._name, status_code=status)

    def _decode(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(
                f"Invalid JSON from server: {e}", self._name, response.status_code
            ) from e

    def _to_record(self, data: Any) -> TaskRecord:
        if not isinstance(data, dict):
            raise ProtocolError(f"Expected a task object, got {type(data).__name__}", self._name)
        try:
            return TaskRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed task: {e}", self._name) from e

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the server is healthy."""
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === TaskStore contract ===

    def list_changed_since(self, cutoff: datetime) -> list[TaskRecord]:
        response = self._request(
            "GET",
            "/api/tasks/changes",
            params={"since": format_utc(cutoff)},
        )
        data = self._decode(response)
        if not isinstance(data, list):
            raise ProtocolError("Expected a list of tasks", self._name)
        records = [self._to_record(item) for item in data]
        logger.debug("%s: %d task(s) changed since %s", self._name, len(records), cutoff)
        return records

    def get_by_id(self, task_id: str) -> TaskRecord:
        response = self._request("GET", f"/api/tasks/{task_id}")
        return self._to_record(self._decode(response))

    def upsert(self, record: TaskRecord) -> None:
        self._request("PUT", f"/api/tasks/{record.id}", json=record.to_dict())


def _detail(response: httpx.Response) -> str | None:
    """Extract FastAPI's error detail if the body carries one."""
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and data.get("detail") is not None:
        return str(data["detail"])
    return None
