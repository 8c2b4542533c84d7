# feeledger/utils/retry.py
# Bounded exponential backoff for calls into the persistence layer.

import logging
import time
from typing import Callable, Optional, TypeVar

from feeledger.core.config import settings
from feeledger.core.errors import DependencyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delays(max_attempts: int, base_delay: float) -> list[float]:
    """Sleep before each retry: base, 2*base, 4*base, ... (one fewer than attempts)."""
    return [base_delay * (2 ** n) for n in range(max(max_attempts - 1, 0))]


def with_retry(
    operation: Callable[[], T],
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "store call",
) -> T:
    """
    Run `operation`, retrying only on a transient DependencyError.

    Validation, not-found and conflict errors propagate on the first
    raise. After the last attempt the final DependencyError is re-raised.
    """
    attempts = max_attempts or settings.RETRY_MAX_ATTEMPTS
    delay = settings.RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay
    delays = backoff_delays(attempts, delay)

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except DependencyError as e:
            if not e.transient or attempt == attempts:
                raise
            wait = delays[attempt - 1]
            logger.warning(
                f"{label} failed (attempt {attempt}/{attempts}): {e.message}. "
                f"Retrying in {wait:.1f}s"
            )
            sleep(wait)

    raise AssertionError("unreachable")  # loop always returns or raises
