"""Core module - Task records, configuration, and errors."""

from tasksync.core.config import (
    AppConfig,
    StoreConfig,
    StoreStrain,
    SyncSettings,
    load_config,
)
from tasksync.core.errors import (
    ConfigError,
    ConflictError,
    NotFoundError,
    ProtocolError,
    StoreError,
    UnreachableError,
)
from tasksync.core.types import (
    PassState,
    TaskRecord,
    TaskStatus,
    is_stale_write,
    new_task,
    tombstone,
    touch,
    utc_now,
)

__all__ = [
    # Config
    "AppConfig",
    "StoreConfig",
    "StoreStrain",
    "SyncSettings",
    "load_config",
    # Errors
    "ConfigError",
    "ConflictError",
    "NotFoundError",
    "ProtocolError",
    "StoreError",
    "UnreachableError",
    # Types
    "PassState",
    "TaskRecord",
    "TaskStatus",
    "is_stale_write",
    "new_task",
    "tombstone",
    "touch",
    "utc_now",
]
