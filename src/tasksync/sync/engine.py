"""Sync engine for reconciling tasks across stores.

This module provides:
- SyncEngine: Runs pairwise reconciliation over every configured store pair
- PairResult: Outcome of one pair (counts, failed ids, terminal state)
- PassResult: Outcome of a full pass over all pairs

Pair algorithm:
    1. cutoff = persisted Sync State for the pair, or now - lookback_days
    2. fetch changes since cutoff from both stores concurrently
    3. for ids reported by only one side, look up the other side by id
    4. resolve each id (last-writer-wins, byte-order tie-break)
    5. apply the required upserts, each independently
    6. advance the cutoff to the time captured before step 2, but only if
       every id was accounted for without failure

A failed fetch, or a Protocol error on any call, aborts that pair only. A
lookup or upsert rejected by the store (Conflict) or unable to reach it
(Unreachable) fails that id only; the cutoff stays put so the id is retried
on the next pass.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from tasksync.core.config import SyncSettings
from tasksync.core.errors import (
    ConfigError,
    ConflictError,
    NotFoundError,
    StoreError,
    UnreachableError,
)
from tasksync.core.types import PassState, TaskRecord, utc_now
from tasksync.stores.base import TaskStore
from tasksync.sync.resolver import Resolution, resolve
from tasksync.sync.state import SyncStateStore, pair_key

logger = logging.getLogger(__name__)

# Failures confined to one id. Anything else from a store aborts the pair.
PER_ID_ERRORS = (ConflictError, UnreachableError)


@dataclass
class PairResult:
    """Outcome of syncing one pair of stores."""

    store_a: str
    store_b: str
    state: PassState = PassState.IDLE
    cutoff: datetime | None = None
    started_at: datetime | None = None
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    failed_ids: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    error_kind: str | None = None

    @property
    def pair(self) -> str:
        return pair_key(self.store_a, self.store_b)

    @property
    def writes(self) -> int:
        return self.created + self.updated

    def record_failure(self, task_id: str, error: Exception) -> None:
        kind = getattr(error, "kind", type(error).__name__)
        self.failed += 1
        self.failed_ids[task_id] = f"{kind}: {error}"

    def describe(self) -> str:
        if self.state is PassState.FAILED:
            return f"{self.pair}: failed ({self.error_kind}) {self.error}"
        return (
            f"{self.pair}: {self.state.value} "
            f"(created {self.created}, updated {self.updated}, "
            f"skipped {self.skipped}, failed {self.failed})"
        )


@dataclass
class PassResult:
    """Outcome of one sync pass over all pairs."""

    pairs: list[PairResult]
    started_at: datetime
    finished_at: datetime

    @property
    def ok(self) -> bool:
        """True unless some pair aborted."""
        return all(p.state is not PassState.FAILED for p in self.pairs)

    @property
    def exit_code(self) -> int:
        """Process exit code. Per-id failures self-heal and exit 0."""
        return 0 if self.ok else 1

    def count(self, state: PassState) -> int:
        return sum(1 for p in self.pairs if p.state is state)

    def summary(self) -> str:
        totals = {
            name: sum(getattr(p, name) for p in self.pairs)
            for name in ("created", "updated", "skipped", "failed")
        }
        return (
            f"{len(self.pairs)} pair(s): "
            f"{self.count(PassState.COMMITTED)} committed, "
            f"{self.count(PassState.PARTIALLY_APPLIED)} partial, "
            f"{self.count(PassState.FAILED)} failed; "
            f"created {totals['created']}, updated {totals['updated']}, "
            f"skipped {totals['skipped']}, failed {totals['failed']}"
        )


class SyncEngine:
    """Reconciles every unordered pair of stores.

    Usage:
        engine = SyncEngine(stores, SyncStateStore(path), settings)
        result = engine.run_pass()
        print(result.summary())
    """

    def __init__(
        self,
        stores: Sequence[TaskStore],
        state: SyncStateStore,
        settings: SyncSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the engine.

        Args:
            stores: All stores to keep pairwise consistent.
            state: Persisted per-pair cutoffs.
            settings: Lookback and concurrency limits.
            clock: Source of "now" (replaced in tests).

        Raises:
            ConfigError: Fewer than two stores, or duplicate store names.
        """
        if len(stores) < 2:
            raise ConfigError(f"At least two stores are required, got {len(stores)}")
        names = [store.name for store in stores]
        if len(set(names)) != len(names):
            raise ConfigError(f"Duplicate store names: {names}")

        self._stores = list(stores)
        self._state = state
        self._settings = settings or SyncSettings()
        self._clock = clock

    @property
    def stores(self) -> list[TaskStore]:
        return list(self._stores)

    def pairs(self) -> list[tuple[TaskStore, TaskStore]]:
        """Every unordered pair of configured stores."""
        return list(itertools.combinations(self._stores, 2))

    def run_pass(self, lookback_days: int | None = None) -> PassResult:
        """Sync every pair once. Independent pairs run concurrently.

        Args:
            lookback_days: Overrides settings.lookback_days for pairs
                without a recorded cutoff.
        """
        started_at = self._clock()
        pairs = self.pairs()
        workers = min(self._settings.max_concurrent_pairs, len(pairs))
        logger.info("Sync pass started over %d pair(s)", len(pairs))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sync-pair") as pool:
            results = list(
                pool.map(lambda pair: self.sync_pair(pair[0], pair[1], lookback_days), pairs)
            )

        result = PassResult(pairs=results, started_at=started_at, finished_at=self._clock())
        logger.info("Sync pass finished: %s", result.summary())
        return result

    def sync_pair(
        self,
        a: TaskStore,
        b: TaskStore,
        lookback_days: int | None = None,
    ) -> PairResult:
        """Reconcile one pair of stores."""
        result = PairResult(store_a=a.name, store_b=b.name)
        try:
            self._sync_pair(a, b, lookback_days, result)
        except StoreError as e:
            result.state = PassState.FAILED
            result.error = str(e)
            result.error_kind = e.kind
            logger.warning("Sync of %s aborted: %s", result.pair, e)
        except Exception as e:
            result.state = PassState.FAILED
            result.error = str(e)
            result.error_kind = type(e).__name__
            logger.exception("Unexpected error while syncing %s", result.pair)
        return result

    def _sync_pair(
        self,
        a: TaskStore,
        b: TaskStore,
        lookback_days: int | None,
        result: PairResult,
    ) -> None:
        # 1. Cutoff
        cutoff = self._state.get_cutoff(a.name, b.name)
        if cutoff is None:
            days = self._settings.lookback_days if lookback_days is None else lookback_days
            cutoff = self._clock() - timedelta(days=days)
            logger.debug("No sync recorded for %s, looking back %d day(s)", result.pair, days)
        result.cutoff = cutoff

        # 2. Fetch, capturing "now" first so mutations during the pass are
        # picked up next time
        result.started_at = self._clock()
        result.state = PassState.FETCHING_CHANGES
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="sync-fetch") as pool:
            future_a = pool.submit(a.list_changed_since, cutoff)
            future_b = pool.submit(b.list_changed_since, cutoff)
            changed_a = {r.id: r for r in future_a.result()}
            changed_b = {r.id: r for r in future_b.result()}
        logger.debug(
            "%s: %d changed in %s, %d changed in %s",
            result.pair,
            len(changed_a),
            a.name,
            len(changed_b),
            b.name,
        )

        # 3-4. Confirm one-sided changes and resolve
        result.state = PassState.RECONCILING
        task_ids = sorted(changed_a.keys() | changed_b.keys())
        writes = self._reconcile(a, b, task_ids, changed_a, changed_b, result)

        # 5. Apply
        result.state = PassState.APPLYING
        self._apply(a, b, writes, result)

        # 6. Commit cutoff only if every id is accounted for
        if result.failed:
            result.state = PassState.PARTIALLY_APPLIED
            logger.warning(
                "%s: %d task(s) failed, cutoff not advanced: %s",
                result.pair,
                result.failed,
                ", ".join(sorted(result.failed_ids)),
            )
            return

        self._state.advance(a.name, b.name, result.started_at)
        result.state = PassState.COMMITTED
        logger.info("%s", result.describe())

    def _reconcile(
        self,
        a: TaskStore,
        b: TaskStore,
        task_ids: list[str],
        changed_a: dict[str, TaskRecord],
        changed_b: dict[str, TaskRecord],
        result: PairResult,
    ) -> list[tuple[Resolution, TaskRecord]]:
        """Look up missing sides and resolve every id.

        Returns the resolutions that need a write, paired with the record
        to write.

        Raises:
            ProtocolError: A lookup got a malformed response. Aborts the pair.
        """

        def reconcile_one(task_id: str) -> Resolution | StoreError:
            try:
                record_a = changed_a.get(task_id) or _lookup(a, task_id)
                record_b = changed_b.get(task_id) or _lookup(b, task_id)
            except PER_ID_ERRORS as e:
                return e
            return resolve(record_a, record_b)

        writes: list[tuple[Resolution, TaskRecord]] = []
        with self._upsert_pool() as pool:
            outcomes = pool.map(reconcile_one, task_ids)
            for task_id, outcome in zip(task_ids, outcomes):
                if isinstance(outcome, StoreError):
                    result.record_failure(task_id, outcome)
                    logger.warning("%s: lookup of %s failed: %s", result.pair, task_id, outcome)
                    continue
                if outcome.record is None:
                    result.skipped += 1
                    continue
                logger.debug(
                    "%s: %s %s (%s)", result.pair, outcome.action.name, task_id, outcome.reason
                )
                writes.append((outcome, outcome.record))
        return writes

    def _apply(
        self,
        a: TaskStore,
        b: TaskStore,
        writes: list[tuple[Resolution, TaskRecord]],
        result: PairResult,
    ) -> None:
        """Issue every required upsert.

        Conflict and Unreachable failures are per id.

        Raises:
            ProtocolError: An upsert got a malformed response. Aborts the pair.
        """

        def apply_one(write: tuple[Resolution, TaskRecord]) -> StoreError | None:
            resolution, record = write
            target = a if resolution.writes_a else b
            try:
                target.upsert(record)
            except PER_ID_ERRORS as e:
                return e
            return None

        with self._upsert_pool() as pool:
            outcomes = pool.map(apply_one, writes)
            for (resolution, record), error in zip(writes, outcomes):
                if error is not None:
                    result.record_failure(record.id, error)
                    logger.warning("%s: upsert of %s failed: %s", result.pair, record.id, error)
                elif resolution.is_create:
                    result.created += 1
                else:
                    result.updated += 1

    def _upsert_pool(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(
            max_workers=self._settings.max_concurrent_upserts,
            thread_name_prefix="sync-upsert",
        )


def _lookup(store: TaskStore, task_id: str) -> TaskRecord | None:
    """Fetch a record by id, treating NotFound as absent."""
    try:
        return store.get_by_id(task_id)
    except NotFoundError:
        return None
