"""Retry logic with exponential backoff.

Store adapters use retry_with_backoff as their internal retry policy for
transport errors. The sync engine itself never retries within a pass;
anything still failing is retried on the next scheduled pass.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_RETRIES = 2
DEFAULT_INITIAL_BACKOFF = 0.5  # seconds
DEFAULT_MAX_BACKOFF = 5.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0


def retry_with_backoff(
    func: Callable[[], T],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] | None = None,
) -> T:
    """Execute a function with exponential backoff retry.

    Args:
        func: Function to execute.
        max_retries: Maximum number of retry attempts.
        initial_backoff: Initial backoff time in seconds.
        max_backoff: Maximum backoff time in seconds.
        backoff_multiplier: Multiplier for each retry.
        retryable_exceptions: Tuple of exception types to retry on.
        sleep: Sleep function (defaults to time.sleep).

    Returns:
        Result of the function.

    Raises:
        The last exception if all retries fail.
    """
    backoff = initial_backoff
    attempt = 0

    while True:
        try:
            return func()
        except retryable_exceptions as e:
            if attempt >= max_retries:
                if max_retries:
                    logger.warning("All %d retries failed: %s", max_retries, e)
                raise

            attempt += 1
            logger.info(
                "Attempt %d/%d failed: %s. Retrying in %.1fs...",
                attempt,
                max_retries + 1,
                e,
                backoff,
            )
            (sleep or time.sleep)(backoff)
            backoff = min(backoff * backoff_multiplier, max_backoff)
