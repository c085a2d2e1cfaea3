"""Logging configuration shared by the CLI and the task server."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are noisy at INFO
QUIET_LOGGERS = ("apscheduler", "httpx", "httpcore")


def setup_logging(
    level: int = logging.INFO,
    log_path: Path | None = None,
    extra_loggers: tuple[str, ...] = (),
) -> None:
    """Configure logging to stdout and optionally a file.

    Handlers are attached to the ``tasksync`` logger (and any
    ``extra_loggers``), replacing handlers from a previous call.

    Args:
        level: Level for tasksync loggers.
        log_path: Optional log file.
        extra_loggers: Other loggers that should share the handlers
            (e.g. uvicorn's).
    """
    formatter = logging.Formatter(LOG_FORMAT)

    handlers: list[logging.Handler] = []

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    handlers.append(stdout_handler)

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root_logger = logging.getLogger("tasksync")
    root_logger.setLevel(level)
    for name in ("tasksync", *extra_loggers):
        target = logging.getLogger(name)
        for handler in list(target.handlers):
            target.removeHandler(handler)
        for handler in handlers:
            target.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
