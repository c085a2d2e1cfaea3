"""Configuration classes for tasksync.

The configuration file is TOML, by default at
``$XDG_CONFIG_HOME/tasksync/config.toml``::

    [settings]
    lookback_days = 3
    interval_seconds = 300

    [[sync]]
    strain = "SQLite"
    uri = "file:///home/me/tasks.db"

    [[sync]]
    strain = "Api"
    uri = "http://localhost:8080"

Each ``[[sync]]`` entry becomes one store. The list is the full set of
stores kept pairwise consistent.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from tasksync.core.errors import ConfigError

SQLITE_URI_PREFIX = "file://"


class StoreStrain(str, Enum):
    """Kind of backend a store adapter speaks."""

    API = "Api"
    SQLITE = "SQLite"

    @classmethod
    def parse(cls, value: str) -> StoreStrain:
        for strain in cls:
            if strain.value.lower() == str(value).lower():
                return strain
        valid = ", ".join(s.value for s in cls)
        raise ConfigError(f"Unknown strain {value!r} (expected one of: {valid})")


def get_config_dir() -> Path:
    """Get the configuration directory for tasksync."""
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / "tasksync"


def default_config_path() -> Path:
    """Config file path, honouring TASKSYNC_CONFIG."""
    override = os.environ.get("TASKSYNC_CONFIG")
    if override:
        return Path(override).expanduser()
    return get_config_dir() / "config.toml"


@dataclass
class StoreConfig:
    """One configured store.

    Attributes:
        strain: Backend kind.
        uri: Connection string. ``file://<path>`` for SQLite, base URL for Api.
        timeout: Per-call timeout in seconds.
        retries: Internal retry attempts on transport errors (Api only).
    """

    strain: StoreStrain
    uri: str
    timeout: float = 10.0
    retries: int = 2

    def __post_init__(self) -> None:
        if not isinstance(self.strain, StoreStrain):
            self.strain = StoreStrain.parse(self.strain)
        if not self.uri:
            raise ConfigError(f"{self.strain.value} store is missing a uri")
        if self.strain is StoreStrain.API:
            self.uri = self.uri.rstrip("/")
        elif not self.uri.startswith(SQLITE_URI_PREFIX):
            raise ConfigError(
                f"Expected SQLite uri to start with {SQLITE_URI_PREFIX} but found {self.uri}"
            )

    @property
    def name(self) -> str:
        """Stable store identifier, used in Sync State pair keys."""
        return f"{self.strain.value}:{self.uri}"

    @property
    def sqlite_path(self) -> str:
        """Filesystem path of a SQLite store (``:memory:`` allowed)."""
        if self.strain is not StoreStrain.SQLITE:
            raise ConfigError(f"{self.name} is not a SQLite store")
        return self.uri[len(SQLITE_URI_PREFIX):]


@dataclass
class SyncSettings:
    """Engine and scheduler settings.

    Attributes:
        lookback_days: Cutoff lookback for pairs with no recorded sync.
        interval_seconds: Daemon polling interval.
        max_concurrent_upserts: Upper bound on concurrent upserts per pair.
        max_concurrent_pairs: Upper bound on pairs synced concurrently.
        timeout: Default per-call store timeout in seconds.
        state_path: SQLite file holding per-pair Sync State.
    """

    lookback_days: int = 3
    interval_seconds: float = 300.0
    max_concurrent_upserts: int = 4
    max_concurrent_pairs: int = 4
    timeout: float = 10.0
    state_path: Path = field(default_factory=lambda: get_config_dir() / "state.db")

    def __post_init__(self) -> None:
        self.state_path = Path(self.state_path).expanduser()
        if self.lookback_days < 0:
            raise ConfigError("lookback_days must be >= 0")
        if self.interval_seconds <= 0:
            raise ConfigError("interval_seconds must be > 0")
        if self.max_concurrent_upserts < 1 or self.max_concurrent_pairs < 1:
            raise ConfigError("concurrency limits must be >= 1")


@dataclass
class AppConfig:
    """Parsed configuration file."""

    stores: list[StoreConfig]
    settings: SyncSettings = field(default_factory=SyncSettings)
    path: Path | None = None

    def validate(self) -> None:
        """Check the store list is usable for syncing.

        Raises:
            ConfigError: Fewer than two stores, or the same store twice.
        """
        if len(self.stores) < 2:
            raise ConfigError(
                f"At least two [[sync]] stores are required, found {len(self.stores)}"
            )
        names = [store.name for store in self.stores]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigError(f"Store configured more than once: {', '.join(duplicates)}")


def parse_config(data: dict[str, Any], path: Path | None = None) -> AppConfig:
    """Build an AppConfig from parsed TOML data."""
    raw_settings = data.get("settings", {})
    if not isinstance(raw_settings, dict):
        raise ConfigError("[settings] must be a table")
    known = set(SyncSettings.__dataclass_fields__)
    unknown = sorted(set(raw_settings) - known)
    if unknown:
        raise ConfigError(f"Unknown settings: {', '.join(unknown)}")
    try:
        settings = SyncSettings(**raw_settings)
    except TypeError as e:
        raise ConfigError(f"Invalid settings: {e}") from e

    raw_stores = data.get("sync", [])
    if not isinstance(raw_stores, list):
        raise ConfigError("[[sync]] must be an array of tables")

    stores: list[StoreConfig] = []
    for index, entry in enumerate(raw_stores):
        if not isinstance(entry, dict):
            raise ConfigError(f"[[sync]] entry {index} must be a table")
        if "strain" not in entry:
            raise ConfigError(f"[[sync]] entry {index} is missing 'strain'")
        stores.append(
            StoreConfig(
                strain=StoreStrain.parse(entry["strain"]),
                uri=entry.get("uri", ""),
                timeout=float(entry.get("timeout", settings.timeout)),
                retries=int(entry.get("retries", 2)),
            )
        )

    config = AppConfig(stores=stores, settings=settings, path=path)
    config.validate()
    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Load and validate the configuration file.

    Args:
        path: Explicit config path. Defaults to default_config_path().

    Raises:
        ConfigError: File missing, not TOML, or invalid.
    """
    config_file = path or default_config_path()
    if not config_file.exists():
        raise ConfigError(f"Couldn't find config file at {config_file}")
    try:
        data = tomllib.loads(config_file.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{config_file} parse failed: {e}") from e
    return parse_config(data, path=config_file)
