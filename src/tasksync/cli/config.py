"""Configuration helpers shared by CLI commands."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from tasksync.core.config import AppConfig, load_config
from tasksync.core.errors import ConfigError
from tasksync.stores import create_store
from tasksync.stores.base import TaskStore
from tasksync.sync.engine import SyncEngine
from tasksync.sync.state import SyncStateStore


def load_config_or_exit(config_path: Path | None) -> AppConfig:
    """Load the config file, printing the error and exiting on failure."""
    try:
        return load_config(config_path)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@contextmanager
def open_engine(config: AppConfig) -> Iterator[SyncEngine]:
    """Open every configured store and the Sync State, closing them on exit."""
    state = SyncStateStore(config.settings.state_path)
    stores: list[TaskStore] = []
    try:
        for store_config in config.stores:
            stores.append(create_store(store_config))
        yield SyncEngine(stores, state, config.settings)
    finally:
        for store in stores:
            store.close()
        state.close()
