"""Retry with exponential backoff for service results.

The synchronization service never retries on its own. Callers that want
to (the CLI does for listing) wrap an operation with retry_result(), which
re-invokes it while it returns a retryable failure.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from speleosync.client.errors import ServiceResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 60.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0


def retry_result(
    func: Callable[[], ServiceResult[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    sleep: Callable[[float], None] = time.sleep,
) -> ServiceResult[T]:
    """Execute an operation, retrying while it fails with a retryable error.

    Args:
        func: Operation returning a ServiceResult.
        max_retries: Maximum number of retry attempts.
        initial_backoff: Initial backoff time in seconds.
        max_backoff: Maximum backoff time in seconds.
        backoff_multiplier: Multiplier for each retry.
        sleep: Sleep function, replaceable in tests.

    Returns:
        The first successful or non-retryable result, or the last result
        once retries are exhausted.
    """
    backoff = initial_backoff

    for attempt in range(max_retries + 1):
        result = func()
        if not result.retryable:
            return result

        if attempt == max_retries:
            if max_retries:
                logger.error(f"All {max_retries} retries failed: {result.error}")
            return result

        logger.warning(
            f"Attempt {attempt + 1}/{max_retries + 1} failed: {result.error}. "
            f"Retrying in {backoff:.1f}s..."
        )
        sleep(backoff)
        backoff = min(backoff * backoff_multiplier, max_backoff)

    raise RuntimeError("Unexpected retry loop exit")
