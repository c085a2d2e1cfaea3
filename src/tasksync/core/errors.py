"""Exceptions shared by stores, the sync engine and the CLI."""

from __future__ import annotations


class ConfigError(Exception):
    """Configuration is missing or invalid. Aborts before any pass starts."""


class StoreError(Exception):
    """Base exception for store adapter errors."""

    kind = "store"

    def __init__(self, message: str, store: str | None = None) -> None:
        super().__init__(message)
        self.store = store


class UnreachableError(StoreError):
    """Backend cannot be contacted (includes timeouts)."""

    kind = "unreachable"


class ProtocolError(StoreError):
    """Backend returned a malformed or unexpected response."""

    kind = "protocol"

    def __init__(
        self,
        message: str,
        store: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, store)
        self.status_code = status_code


class ConflictError(StoreError):
    """Backend rejected an upsert because a newer record is already stored."""

    kind = "conflict"


class NotFoundError(StoreError):
    """No record with the requested id. Not a failure for the sync engine."""

    kind = "not_found"
