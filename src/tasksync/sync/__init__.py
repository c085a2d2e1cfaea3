"""Sync module - Conflict resolution, engine, state, and scheduling."""

from tasksync.sync.engine import PairResult, PassResult, SyncEngine
from tasksync.sync.resolver import Action, Resolution, resolve
from tasksync.sync.scheduler import SyncScheduler, run_once
from tasksync.sync.state import PairState, SyncStateStore, pair_key

__all__ = [
    # Engine
    "PairResult",
    "PassResult",
    "SyncEngine",
    # Resolver
    "Action",
    "Resolution",
    "resolve",
    # Scheduler
    "SyncScheduler",
    "run_once",
    # State
    "PairState",
    "SyncStateStore",
    "pair_key",
]
