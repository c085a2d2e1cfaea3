"""Sync command for the tasksync CLI.

Commands:
- sync: Reconcile every configured store pair once, or continuously with --daemon
"""

from __future__ import annotations

import signal
import sys
import threading
from pathlib import Path

import click

from tasksync.cli.config import load_config_or_exit, open_engine
from tasksync.core.errors import ConfigError
from tasksync.core.types import PassState
from tasksync.sync.engine import PassResult
from tasksync.sync.scheduler import SyncScheduler, run_once


def _echo_result(result: PassResult) -> None:
    for pair in result.pairs:
        color = {
            PassState.COMMITTED: "green",
            PassState.PARTIALLY_APPLIED: "yellow",
            PassState.FAILED: "red",
        }.get(pair.state)
        click.echo(click.style(f"  {pair.describe()}", fg=color))
        for task_id, reason in sorted(pair.failed_ids.items()):
            click.echo(f"    ✗ {task_id}: {reason}")
    click.echo(f"Sync complete: {result.summary()}")


@click.command()
@click.argument("n_days", type=click.IntRange(min=0), required=False)
@click.option("--daemon", "-d", is_flag=True, help="Keep syncing on an interval until stopped.")
@click.option(
    "--interval",
    "-i",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds between passes in daemon mode (default: from config).",
)
@click.pass_context
def sync(ctx: click.Context, n_days: int | None, daemon: bool, interval: float | None) -> None:
    """Synchronize tasks across all configured stores.

    N_DAYS is the lookback used for store pairs that have never been
    synced (default: lookback_days from the config file).
    """
    config_path: Path | None = ctx.obj.get("config_path")
    config = load_config_or_exit(config_path)

    try:
        with open_engine(config) as engine:
            if not daemon:
                result = run_once(engine, lookback_days=n_days)
                _echo_result(result)
                if result.exit_code:
                    sys.exit(result.exit_code)
                return

            seconds = interval or config.settings.interval_seconds
            stop_event = threading.Event()

            def request_stop(signum: int, frame: object) -> None:
                click.echo("\nStopping after the current pass...")
                stop_event.set()

            signal.signal(signal.SIGINT, request_stop)
            signal.signal(signal.SIGTERM, request_stop)

            scheduler = SyncScheduler(
                engine,
                interval_seconds=seconds,
                lookback_days=n_days,
                on_result=_echo_result,
            )
            click.echo(f"Syncing {len(engine.stores)} stores every {seconds:g}s (Ctrl+C to stop)")
            scheduler.run_forever(stop_event)
            click.echo(f"Stopped after {scheduler.passes} pass(es).")
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
