"""Persisted Sync State.

This module provides:
- SyncStateStore: SQLite-backed per-pair cutoffs
- PairState: One persisted entry
- pair_key: Order-independent key for a pair of stores

A cutoff is the last successful-sync timestamp for an unordered pair of
stores. It is created on the first successful sync of that pair, advanced
after every successful pass, and removed only by reset().
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from tasksync.core.types import format_utc, parse_utc, utc_now

logger = logging.getLogger(__name__)

PAIR_SEPARATOR = " <-> "


def pair_key(a: str, b: str) -> str:
    """Key for an unordered pair of store names."""
    if a == b:
        raise ValueError(f"A store cannot be paired with itself: {a}")
    first, second = sorted((a, b))
    return f"{first}{PAIR_SEPARATOR}{second}"


@dataclass
class PairState:
    """Persisted cutoff for one pair of stores."""

    pair_key: str
    last_synced_utc: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> PairState:
        """Create PairState from database row."""
        return cls(
            pair_key=row["pair_key"],
            last_synced_utc=parse_utc(row["last_synced_utc"]),
            updated_at=parse_utc(row["updated_at"]),
        )


class SyncStateStore:
    """SQLite-based Sync State, owned by the host process.

    All writes go through one lock so concurrent pair syncs never race on
    the database.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize the state database.

        Args:
            db_path: Path to SQLite database file (or ":memory:").
        """
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS sync_state (
                pair_key TEXT PRIMARY KEY,
                last_synced_utc TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def get(self, a: str, b: str) -> PairState | None:
        """Get the persisted state for a pair, if any."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM sync_state WHERE pair_key = ?",
                (pair_key(a, b),),
            ).fetchone()
        return PairState.from_row(row) if row else None

    def get_cutoff(self, a: str, b: str) -> datetime | None:
        """Last successful-sync time for a pair, or None if never synced."""
        state = self.get(a, b)
        return state.last_synced_utc if state else None

    def advance(self, a: str, b: str, synced_at: datetime) -> datetime:
        """Advance the cutoff for a pair.

        The cutoff never moves backwards; an older timestamp leaves the
        stored value unchanged.

        Returns:
            The cutoff now stored.
        """
        key = pair_key(a, b)
        value = format_utc(synced_at)
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO sync_state (pair_key, last_synced_utc, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(pair_key) DO UPDATE SET
                    last_synced_utc = MAX(last_synced_utc, excluded.last_synced_utc),
                    updated_at = excluded.updated_at
                """,
                (key, value, format_utc(utc_now())),
            )
            row = self._conn.execute(
                "SELECT last_synced_utc FROM sync_state WHERE pair_key = ?",
                (key,),
            ).fetchone()
        stored = parse_utc(row["last_synced_utc"])
        logger.debug("Cutoff for %s is now %s", key, row["last_synced_utc"])
        return stored

    def list_pairs(self) -> list[PairState]:
        """List all persisted pair states."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM sync_state ORDER BY pair_key"
            ).fetchall()
        return [PairState.from_row(row) for row in rows]

    def reset(self, key: str | None = None) -> int:
        """Delete persisted state for one pair key, or for all pairs.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            if key is None:
                cursor = self._conn.execute("DELETE FROM sync_state")
            else:
                cursor = self._conn.execute(
                    "DELETE FROM sync_state WHERE pair_key = ?", (key,)
                )
        if cursor.rowcount:
            logger.info("Reset sync state for %s", key or "all pairs")
        return cursor.rowcount
