"""Scheduler for periodic sync passes (daemon mode).

This module provides:
- SyncScheduler: Runs a full sync pass on an interval
- run_once: One-shot pass for the CLI

Passes never overlap, and stopping the scheduler waits for an in-flight
pass to finish, so Sync State is never left half-written.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tasksync.core.types import utc_now

if TYPE_CHECKING:
    from tasksync.sync.engine import PassResult, SyncEngine

logger = logging.getLogger(__name__)

JOB_ID = "sync_pass"


def run_once(engine: SyncEngine, lookback_days: int | None = None) -> PassResult:
    """Perform exactly one pass and return its outcome."""
    return engine.run_pass(lookback_days=lookback_days)


class SyncScheduler:
    """Scheduler that triggers a sync pass every `interval_seconds`."""

    def __init__(
        self,
        engine: SyncEngine,
        interval_seconds: float,
        lookback_days: int | None = None,
        on_result: Callable[[PassResult], None] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            engine: Engine to run.
            interval_seconds: Seconds between pass starts.
            lookback_days: Lookback for pairs without a recorded cutoff.
            on_result: Optional callback invoked after each pass.
        """
        self._engine = engine
        self._interval = interval_seconds
        self._lookback_days = lookback_days
        self._on_result = on_result
        self._scheduler: BackgroundScheduler | None = None
        self._lock = threading.Lock()
        self._last_result: PassResult | None = None
        self._passes = 0

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    @property
    def last_result(self) -> PassResult | None:
        with self._lock:
            return self._last_result

    @property
    def passes(self) -> int:
        with self._lock:
            return self._passes

    def _sync_job(self) -> None:
        """Job function for a scheduled pass."""
        try:
            result = self._engine.run_pass(lookback_days=self._lookback_days)
        except Exception:
            logger.exception("Error during scheduled sync pass")
            return

        with self._lock:
            self._last_result = result
            self._passes += 1
        if self._on_result:
            self._on_result(result)

    def start(self, run_immediately: bool = True) -> None:
        """Start the scheduler.

        Args:
            run_immediately: Trigger the first pass now instead of after
                one interval.
        """
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        job_options: dict[str, datetime] = {}
        if run_immediately:
            job_options["next_run_time"] = utc_now()
        self._scheduler.add_job(
            self._sync_job,
            trigger=IntervalTrigger(seconds=self._interval),
            id=JOB_ID,
            name="Sync pass",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **job_options,
        )
        self._scheduler.start()
        logger.info("Sync scheduler started (every %.0fs)", self._interval)

    def stop(self) -> None:
        """Stop the scheduler, waiting for an in-flight pass to finish."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=True)
            self._scheduler = None
            logger.info("Sync scheduler stopped")

    def run_forever(self, stop_event: threading.Event) -> None:
        """Run until stop_event is set, then stop cleanly."""
        self.start()
        try:
            while not stop_event.wait(timeout=1.0):
                pass
        finally:
            self.stop()
