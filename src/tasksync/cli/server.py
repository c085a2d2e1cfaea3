"""Task server commands for the tasksync CLI.

Commands:
- server run: Serve the task API backing the Api store strain
"""

from __future__ import annotations

import os

import click


@click.group()
def server() -> None:
    """Task server commands."""


@server.command("run")
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind.")
@click.option("--port", default=8000, show_default=True, type=int, help="Port to listen on.")
@click.option(
    "--db-path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to database file (default: TASKSYNC_DB_PATH or ./tasksync.db).",
)
def run(host: str, port: int, db_path: str | None) -> None:
    """Run the task server with uvicorn."""
    import uvicorn

    if db_path:
        os.environ["TASKSYNC_DB_PATH"] = db_path

    uvicorn.run(
        "tasksync.server.app:app_factory",
        factory=True,
        host=host,
        port=port,
    )
