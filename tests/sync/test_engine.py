"""Tests for the sync engine."""

from __future__ import annotations

import threading
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from tasksync.core.config import SyncSettings
from tasksync.core.errors import (
    ConfigError,
    ConflictError,
    NotFoundError,
    ProtocolError,
    StoreError,
    UnreachableError,
)
from tasksync.core.types import PassState, TaskRecord, is_stale_write
from tasksync.stores.base import TaskStore
from tasksync.sync.engine import PairResult, PassResult, SyncEngine
from tasksync.sync.state import SyncStateStore

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


class MemoryStore(TaskStore):
    """In-memory store with the same optimistic lock as the real adapters.

    Failures can be injected per operation to exercise error paths.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self.tasks: dict[str, TaskRecord] = {}
        self.upserts: list[str] = []
        self.fetch_error: StoreError | None = None
        self.lookup_errors: dict[str, StoreError] = {}
        self.upsert_errors: dict[str, StoreError] = {}
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    def put(self, record: TaskRecord) -> TaskRecord:
        """Mutate the store directly, as a user of this backend would."""
        self.tasks[record.id] = record
        return record

    def list_changed_since(self, cutoff: datetime) -> list[TaskRecord]:
        if self.fetch_error:
            raise self.fetch_error
        return [t for t in self.tasks.values() if t.modified_utc > cutoff]

    def get_by_id(self, task_id: str) -> TaskRecord:
        if task_id in self.lookup_errors:
            raise self.lookup_errors[task_id]
        try:
            return self.tasks[task_id]
        except KeyError:
            raise NotFoundError(task_id, self._name) from None

    def upsert(self, record: TaskRecord) -> None:
        if record.id in self.upsert_errors:
            raise self.upsert_errors[record.id]
        with self._lock:
            current = self.tasks.get(record.id)
            if current is not None and is_stale_write(current, record):
                raise ConflictError(record.id, self._name)
            self.tasks[record.id] = record
            self.upserts.append(record.id)


class Clock:
    """Settable clock for deterministic cutoffs."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_task(task_id: str, minutes: int = 0, **fields) -> TaskRecord:  # type: ignore[no-untyped-def]
    """Task created an hour before T0 and modified `minutes` after that."""
    created = T0 - timedelta(hours=1)
    return TaskRecord(
        id=task_id,
        created_utc=created,
        modified_utc=created + timedelta(minutes=minutes),
        body=fields.pop("body", f"task {task_id}"),
        **fields,
    )


def snapshot(store: MemoryStore) -> dict[str, bytes]:
    return {task_id: t.to_bytes() for task_id, t in store.tasks.items()}


@pytest.fixture
def state(tmp_path: Path) -> Generator[SyncStateStore, None, None]:
    s = SyncStateStore(tmp_path / "state.db")
    yield s
    s.close()


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def store_a() -> MemoryStore:
    return MemoryStore("SQLite:file:///a.db")


@pytest.fixture
def store_b() -> MemoryStore:
    return MemoryStore("Api:http://b")


@pytest.fixture
def engine(
    store_a: MemoryStore, store_b: MemoryStore, state: SyncStateStore, clock: Clock
) -> SyncEngine:
    return SyncEngine([store_a, store_b], state, SyncSettings(), clock=clock)


class TestEngineInit:
    """Tests for SyncEngine construction."""

    def test_requires_two_stores(self, store_a: MemoryStore, state: SyncStateStore) -> None:
        with pytest.raises(ConfigError, match="At least two"):
            SyncEngine([store_a], state)

    def test_rejects_duplicate_names(self, state: SyncStateStore) -> None:
        with pytest.raises(ConfigError, match="Duplicate"):
            SyncEngine([MemoryStore("x"), MemoryStore("x")], state)

    def test_pairs_cover_every_combination(self, state: SyncStateStore) -> None:
        stores = [MemoryStore(n) for n in ("a", "b", "c", "d")]
        engine = SyncEngine(stores, state)
        assert len(engine.pairs()) == 6


class TestScenarios:
    """Reference scenarios for a single pair."""

    def test_create_missing_record(
        self, engine: SyncEngine, store_a: MemoryStore, store_b: MemoryStore
    ) -> None:
        """A task only in A is created in B with identical payload and timestamp."""
        t1 = store_a.put(make_task("t1", minutes=10, tags={"x"}))

        result = engine.run_pass()

        assert result.ok
        assert store_b.tasks["t1"] == t1
        assert result.pairs[0].created == 1
        assert result.pairs[0].state is PassState.COMMITTED

    def test_newer_record_wins(
        self, engine: SyncEngine, store_a: MemoryStore, store_b: MemoryStore
    ) -> None:
        store_a.put(make_task("t2", minutes=20, body="from A"))
        store_b.put(make_task("t2", minutes=15, body="from B"))

        result = engine.run_pass()

        assert store_a.tasks["t2"].body == store_b.tasks["t2"].body == "from A"
        assert store_b.tasks["t2"].modified_utc == make_task("t2", minutes=20).modified_utc
        assert result.pairs[0].updated == 1
        assert store_a.upserts == []

    def test_equal_timestamp_tie_break(
        self, engine: SyncEngine, store_a: MemoryStore, store_b: MemoryStore
    ) -> None:
        """Same modified_utc, different bytes: both end with the greater bytes."""
        a = store_a.put(make_task("t3", minutes=30, body="apple"))
        b = store_b.put(make_task("t3", minutes=30, body="banana"))
        expected = max(a, b, key=lambda t: t.to_bytes())

        engine.run_pass()

        assert store_a.tasks["t3"] == store_b.tasks["t3"] == expected

    def test_unreachable_pair_isolated(self, state: SyncStateStore, clock: Clock) -> None:
        """A failing store aborts its own pairs only."""
        a, b, c = MemoryStore("a"), MemoryStore("b"), MemoryStore("c")
        a.put(make_task("t4"))
        b.fetch_error = UnreachableError("connection refused", "b")
        engine = SyncEngine([a, b, c], state, clock=clock)

        result = engine.run_pass()

        by_pair = {(p.store_a, p.store_b): p for p in result.pairs}
        assert by_pair["a", "b"].state is PassState.FAILED
        assert by_pair["a", "b"].error_kind == "unreachable"
        assert by_pair["b", "c"].state is PassState.FAILED
        assert by_pair["a", "c"].state is PassState.COMMITTED
        assert c.tasks["t4"] == a.tasks["t4"]
        assert state.get_cutoff("a", "b") is None
        assert state.get_cutoff("a", "c") is not None
        assert not result.ok
        assert result.exit_code == 1

    def test_protocol_error_aborts_pair(
        self, engine: SyncEngine, store_b: MemoryStore, state: SyncStateStore
    ) -> None:
        store_b.fetch_error = ProtocolError("garbage", store_b.name, status_code=500)

        pair = engine.run_pass().pairs[0]

        assert pair.state is PassState.FAILED
        assert pair.error_kind == "protocol"
        assert state.list_pairs() == []

    def test_protocol_error_on_upsert_aborts_pair(
        self, engine: SyncEngine, store_a: MemoryStore, store_b: MemoryStore, state: SyncStateStore
    ) -> None:
        """A malformed upsert response is surfaced, not retried as a per-id failure."""
        store_a.put(make_task("t1", minutes=1))
        store_b.upsert_errors["t1"] = ProtocolError("bad body", store_b.name, status_code=500)

        result = engine.run_pass()

        pair = result.pairs[0]
        assert pair.state is PassState.FAILED
        assert pair.error_kind == "protocol"
        assert state.get_cutoff(store_a.name, store_b.name) is None
        assert result.exit_code == 1

    def test_protocol_error_on_lookup_aborts_pair(
        self, engine: SyncEngine, store_a: MemoryStore, store_b: MemoryStore, state: SyncStateStore
    ) -> None:
        store_a.put(make_task("t1", minutes=1))
        store_b.lookup_errors["t1"] = ProtocolError("not json", store_b.name)

        result = engine.run_pass()

        assert result.pairs[0].state is PassState.FAILED
        assert result.pairs[0].error_kind == "protocol"
        assert "t1" not in store_b.tasks
        assert state.list_pairs() == []
        assert result.exit_code == 1

    def test_late_tie_break_loser_rejected(self, state: SyncStateStore, clock: Clock) -> None:
        """A pair acting on a stale read cannot replace the tie-break winner.

        (B, C) has already written B's version into C, but (A, C) read C
        before that write and still sees the task as absent.
        """
        a, b, c = MemoryStore("a"), MemoryStore("b"), MemoryStore("c")
        a.put(make_task("t1", minutes=5, body="aaa"))
        winner = b.put(make_task("t1", minutes=5, body="zzz"))
        engine = SyncEngine([a, b, c], state, clock=clock)
        engine.sync_pair(b, c)
        assert c.tasks["t1"] == winner

        c.list_changed_since = lambda cutoff: []  # type: ignore[method-assign]
        c.lookup_errors["t1"] = NotFoundError("t1", c.name)
        pair = engine.sync_pair(a, c)

        assert c.tasks["t1"] == winner
        assert pair.state is PassState.PARTIALLY_APPLIED
        assert pair.failed_ids["t1"].startswith("conflict")
        assert state.get_cutoff("a", "c") is None


class TestProperties:
    """Convergence, idempotence, monotonicity and failure isolation."""

    def test_convergence(
        self, engine: SyncEngine, store_a: MemoryStore, store_b: MemoryStore
    ) -> None:
        store_a.put(make_task("only-a", minutes=1))
        store_b.put(make_task("only-b", minutes=2))
        store_a.put(make_task("both-a-newer", minutes=9, body="a"))
        store_b.put(make_task("both-a-newer", minutes=3, body="b"))
        store_a.put(make_task("both-b-newer", minutes=4, body="a"))
        store_b.put(make_task("both-b-newer", minutes=8, body="b"))
        store_a.put(make_task("same", minutes=5))
        store_b.put(make_task("same", minutes=5))
        store_a.put(make_task("deleted-in-a", minutes=7, deleted=True))
        store_b.put(make_task("deleted-in-a", minutes=6))

        result = engine.run_pass()

        assert snapshot(store_a) == snapshot(store_b)
        pair = result.pairs[0]
        assert (pair.created, pair.updated, pair.skipped, pair.failed) == (2, 3, 1, 0)
        assert store_b.tasks["deleted-in-a"].deleted is True

    def test_idempotence(
        self,
        engine: SyncEngine,
        store_a: MemoryStore,
        store_b: MemoryStore,
        state: SyncStateStore,
        clock: Clock,
    ) -> None:
        store_a.put(make_task("t1", minutes=1))
        store_b.put(make_task("t2", minutes=2))
        engine.run_pass()
        writes = len(store_a.upserts) + len(store_b.upserts)
        clock.now = T0 + timedelta(minutes=5)

        second = engine.run_pass()

        assert len(store_a.upserts) + len(store_b.upserts) == writes
        assert second.pairs[0].writes == 0
        assert state.get_cutoff(store_a.name, store_b.name) == clock.now

    def test_monotonicity(
        self, engine: SyncEngine, store_a: MemoryStore, store_b: MemoryStore
    ) -> None:
        before = {}
        for i in range(11):
            a = store_a.put(make_task(f"t{i}", minutes=i))
            b = store_b.put(make_task(f"t{i}", minutes=10 - i))
            before[a.id] = max(a.modified_utc, b.modified_utc)

        engine.run_pass()

        for task_id, expected in before.items():
            assert store_a.tasks[task_id].modified_utc == expected
            assert store_b.tasks[task_id].modified_utc == expected

    def test_partial_failure_isolation(
        self,
        engine: SyncEngine,
        store_a: MemoryStore,
        store_b: MemoryStore,
        state: SyncStateStore,
        clock: Clock,
    ) -> None:
        for i in range(4):
            store_a.put(make_task(f"t{i}", minutes=i))
        store_b.upsert_errors["t2"] = ConflictError("rejected", store_b.name)

        result = engine.run_pass()

        pair = result.pairs[0]
        assert pair.state is PassState.PARTIALLY_APPLIED
        assert pair.created == 3
        assert pair.failed == 1
        assert list(pair.failed_ids) == ["t2"]
        assert sorted(store_b.tasks) == ["t0", "t1", "t3"]
        assert state.get_cutoff(store_a.name, store_b.name) is None
        # Per-id failures self-heal and do not fail the invocation
        assert result.ok
        assert result.exit_code == 0

        # Next pass retries the failed id and commits
        del store_b.upsert_errors["t2"]
        clock.now = T0 + timedelta(minutes=5)
        retry = engine.run_pass()

        assert retry.pairs[0].state is PassState.COMMITTED
        assert store_b.tasks["t2"] == store_a.tasks["t2"]

    def test_lookup_failure_is_per_id(
        self, engine: SyncEngine, store_a: MemoryStore, store_b: MemoryStore
    ) -> None:
        store_a.put(make_task("t1", minutes=1))
        store_a.put(make_task("t2", minutes=2))
        store_b.lookup_errors["t1"] = UnreachableError("timeout", store_b.name)

        pair = engine.run_pass().pairs[0]

        assert pair.state is PassState.PARTIALLY_APPLIED
        assert "t1" in pair.failed_ids
        assert "t2" in store_b.tasks


class TestCutoff:
    """Tests for how the cutoff is chosen and advanced."""

    def test_first_sync_uses_lookback(
        self, engine: SyncEngine, store_a: MemoryStore, store_b: MemoryStore
    ) -> None:
        store_a.put(make_task("recent"))
        old = TaskRecord(
            id="old",
            created_utc=T0 - timedelta(days=10),
            modified_utc=T0 - timedelta(days=10),
        )
        store_a.put(old)

        engine.run_pass()

        assert "recent" in store_b.tasks
        assert "old" not in store_b.tasks

    def test_lookback_override(
        self, engine: SyncEngine, store_a: MemoryStore, store_b: MemoryStore
    ) -> None:
        store_a.put(
            TaskRecord(
                id="old",
                created_utc=T0 - timedelta(days=10),
                modified_utc=T0 - timedelta(days=10),
            )
        )

        result = engine.run_pass(lookback_days=30)

        assert "old" in store_b.tasks
        assert result.pairs[0].cutoff == T0 - timedelta(days=30)

    def test_recorded_cutoff_used(
        self,
        engine: SyncEngine,
        store_a: MemoryStore,
        store_b: MemoryStore,
        state: SyncStateStore,
    ) -> None:
        state.advance(store_a.name, store_b.name, T0 - timedelta(minutes=30))
        store_a.put(make_task("before-cutoff", minutes=10))
        store_a.put(make_task("after-cutoff", minutes=45))

        result = engine.run_pass(lookback_days=30)

        assert sorted(store_b.tasks) == ["after-cutoff"]
        assert result.pairs[0].cutoff == T0 - timedelta(minutes=30)

    def test_cutoff_is_time_before_fetch(
        self,
        engine: SyncEngine,
        store_a: MemoryStore,
        store_b: MemoryStore,
        state: SyncStateStore,
        clock: Clock,
    ) -> None:
        """Mutations made during a pass are picked up by the next one."""
        started = T0 + timedelta(minutes=1)

        def fetch_and_advance_clock(cutoff: datetime) -> list[TaskRecord]:
            clock.now = T0 + timedelta(minutes=2)
            return list(store_a.tasks.values())

        clock.now = started
        store_a.list_changed_since = fetch_and_advance_clock  # type: ignore[method-assign]

        result = engine.run_pass()

        assert result.pairs[0].started_at == started
        assert state.get_cutoff(store_a.name, store_b.name) == started


class TestResults:
    """Tests for PairResult/PassResult reporting."""

    def test_summary(self) -> None:
        committed = PairResult("a", "b", state=PassState.COMMITTED, created=2, updated=1)
        partial = PairResult("a", "c", state=PassState.PARTIALLY_APPLIED, skipped=3, failed=1)
        failed = PairResult("b", "c", state=PassState.FAILED, error="down", error_kind="unreachable")
        result = PassResult([committed, partial, failed], T0, T0)

        assert result.summary() == (
            "3 pair(s): 1 committed, 1 partial, 1 failed; "
            "created 2, updated 1, skipped 3, failed 1"
        )
        assert result.count(PassState.FAILED) == 1

    def test_describe_failed(self) -> None:
        pair = PairResult("a", "b", state=PassState.FAILED, error="down", error_kind="unreachable")
        assert pair.describe() == "a <-> b: failed (unreachable) down"

    def test_record_failure(self) -> None:
        pair = PairResult("a", "b")
        pair.record_failure("t1", ConflictError("newer stored"))
        assert pair.failed == 1
        assert pair.failed_ids == {"t1": "conflict: newer stored"}

    def test_unexpected_error_fails_pair(
        self, engine: SyncEngine, store_b: MemoryStore
    ) -> None:
        """Bugs in an adapter fail the pair instead of crashing the pass."""

        def explode(cutoff: datetime) -> list[TaskRecord]:
            raise RuntimeError("bug")

        store_b.list_changed_since = explode  # type: ignore[method-assign]

        pair = engine.run_pass().pairs[0]

        assert pair.state is PassState.FAILED
        assert pair.error_kind == "RuntimeError"
