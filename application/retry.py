from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from domain.errors import TransientStoreError


log = logging.getLogger(__name__)

T = TypeVar("T")


def run_with_retry(
    func: Callable[[], T],
    *,
    attempts: int = 3,
    backoff_base: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Execute a store operation, re-running it on `TransientStoreError`.

    Each attempt must be a complete operation: the store has already rolled
    back the failed transaction, so nothing from a previous attempt
    survives. The last transient error is re-raised once `attempts` is
    exhausted; every other exception propagates immediately.
    """

    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(attempts):
        try:
            return func()
        except TransientStoreError as exc:
            if attempt >= attempts - 1:
                log.error("Giving up after %d attempts: %s", attempts, exc)
                raise
            delay = backoff_base * (2 ** attempt)
            log.warning(
                "Transient store error (attempt %d/%d), retrying in %.3fs: %s",
                attempt + 1,
                attempts,
                delay,
                exc,
            )
            sleep(delay)

    raise AssertionError("unreachable")
