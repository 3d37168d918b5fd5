from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from pbl.config import LedgerSettings
from pbl.domain.errors import ConcurrencyConflict

log = logging.getLogger("pbl.ledger")

T = TypeVar("T")


def run_with_conflict_retry(
    operation: Callable[[], T],
    settings: LedgerSettings,
    name: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run a ledger transaction, retrying lock timeouts with exponential backoff."""
    retries = max(0, int(settings.conflict_retries))
    last_err: ConcurrencyConflict | None = None

    for attempt in range(retries + 1):
        if attempt:
            wait = settings.conflict_backoff_seconds * (2 ** (attempt - 1))
            log.warning("ledger_conflict_retry op=%s attempt=%s wait=%.3f error=%s", name, attempt, wait, last_err)
            sleep(wait)
        try:
            return operation()
        except ConcurrencyConflict as e:
            last_err = e

    assert last_err is not None
    raise last_err
