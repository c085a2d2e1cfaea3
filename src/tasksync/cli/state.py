"""Sync State commands for the tasksync CLI.

Commands:
- status: Show the recorded cutoff for every configured store pair
- reset-state: Forget recorded cutoffs so the next pass looks back again
"""

from __future__ import annotations

import itertools
from pathlib import Path

import click

from tasksync.cli.config import load_config_or_exit
from tasksync.core.config import StoreStrain
from tasksync.core.types import format_utc
from tasksync.stores.api import ApiStore
from tasksync.sync.state import SyncStateStore, pair_key


@click.command()
@click.option("--check", is_flag=True, help="Also check that each Api store's server responds.")
@click.pass_context
def status(ctx: click.Context, check: bool) -> None:
    """Show when each store pair was last synced."""
    config = load_config_or_exit(ctx.obj.get("config_path"))

    state = SyncStateStore(config.settings.state_path)
    try:
        recorded = {entry.pair_key: entry for entry in state.list_pairs()}
    finally:
        state.close()

    click.echo(f"Config: {config.path}")
    click.echo(f"State:  {config.settings.state_path}\n")

    if check:
        for store_config in config.stores:
            if store_config.strain is not StoreStrain.API:
                continue
            with ApiStore(store_config) as store:
                healthy = store.health_check()
            if healthy:
                label = click.style("reachable", fg="green")
            else:
                label = click.style("unreachable", fg="red")
            click.echo(f"  {store_config.name}: {label}")
        click.echo()

    names = [store.name for store in config.stores]
    for a, b in itertools.combinations(names, 2):
        key = pair_key(a, b)
        entry = recorded.pop(key, None)
        if entry is None:
            click.echo(f"  {key}: never synced")
        else:
            click.echo(f"  {key}: last synced {format_utc(entry.last_synced_utc)}")

    # Pairs whose stores have since been removed from the config
    for key in sorted(recorded):
        click.echo(f"  {key}: not configured")


@click.command("reset-state")
@click.option(
    "--pair",
    "pair",
    nargs=2,
    type=str,
    default=None,
    metavar="STORE_A STORE_B",
    help="Only reset this pair (store names as shown by 'tasksync status').",
)
@click.option("--force", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def reset_state(ctx: click.Context, pair: tuple[str, str] | None, force: bool) -> None:
    """Forget recorded sync cutoffs.

    The next pass for a reset pair looks back over the default lookback
    window again. Tasks themselves are not touched.
    """
    config = load_config_or_exit(ctx.obj.get("config_path"))
    state_path: Path = config.settings.state_path

    key = None
    if pair:
        try:
            key = pair_key(*pair)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--pair") from e

    if not force:
        target = key or "ALL store pairs"
        if not click.confirm(f"Reset sync state for {target}?"):
            click.echo("Aborted.")
            return

    state = SyncStateStore(state_path)
    try:
        removed = state.reset(key)
    finally:
        state.close()

    click.echo(f"Removed {removed} sync state entr{'y' if removed == 1 else 'ies'}.")
