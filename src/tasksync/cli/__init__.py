"""Command-line interface for tasksync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- sync: Reconcile all configured stores (once, or as a daemon)
- status: Show recorded sync cutoffs
- reset-state: Forget recorded sync cutoffs
- server: Task server commands
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from tasksync.cli.server import server
from tasksync.cli.state import reset_state, status
from tasksync.cli.sync import sync
from tasksync.logging_setup import setup_logging


@click.group()
@click.version_option(package_name="tasksync")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: TASKSYNC_CONFIG or ~/.config/tasksync/config.toml).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """tasksync - keep task stores consistent with each other."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    # Command output is echoed; logs only add warnings unless verbose
    setup_logging(logging.DEBUG if verbose else logging.WARNING)


# Sync commands
cli.add_command(sync)

# State commands
cli.add_command(status)
cli.add_command(reset_state)

# Server commands
cli.add_command(server)


def main() -> None:
    cli()


__all__ = ["cli", "main"]
