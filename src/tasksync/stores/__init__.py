"""Store adapters - one TaskStore implementation per backend strain."""

from __future__ import annotations

from tasksync.core.config import StoreConfig, StoreStrain
from tasksync.stores.api import ApiStore
from tasksync.stores.base import TaskStore
from tasksync.stores.sqlite import SQLiteStore

STORE_CLASSES: dict[StoreStrain, type[TaskStore]] = {
    StoreStrain.API: ApiStore,
    StoreStrain.SQLITE: SQLiteStore,
}


def create_store(config: StoreConfig) -> TaskStore:
    """Create the store adapter for a configured strain."""
    store_class = STORE_CLASSES[config.strain]
    return store_class(config)  # type: ignore[call-arg]


__all__ = [
    "ApiStore",
    "SQLiteStore",
    "STORE_CLASSES",
    "TaskStore",
    "create_store",
]
