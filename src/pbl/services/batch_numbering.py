from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from pbl.domain.errors import DuplicateBatchNumberError

log = logging.getLogger("pbl.batches")


def format_batch_number(when: datetime, sequence: int, millis: Optional[int] = None) -> str:
    """BT-MMDDYY-HHMMSS-NNN, or BT-MMDDYY-HHMMSSmmm-NNN when millis is given."""
    time_part = when.strftime("%H%M%S")
    if millis is not None:
        time_part += f"{millis % 1000:03d}"
    return f"BT-{when.strftime('%m%d%y')}-{time_part}-{sequence:03d}"


class BatchNumberGenerator:
    def __init__(self, clock: Callable[[], datetime] | None = None, max_attempts: int = 5):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.clock = clock or datetime.now
        self.max_attempts = int(max_attempts)

    def next_number(self, uow, product_id: int, when: datetime | None = None) -> str:
        """Next free batch number for the product.

        The sequence is the count of every batch the product ever had plus one,
        so it keeps climbing across days. A clash with an existing number is
        retried with the time part extended to milliseconds.
        """
        when = when or self.clock()
        sequence = uow.count_batches(product_id) + 1
        base_millis = when.microsecond // 1000

        for attempt in range(self.max_attempts):
            millis = None if attempt == 0 else base_millis + attempt - 1
            candidate = format_batch_number(when, sequence, millis)
            if not uow.batch_number_exists(product_id, candidate):
                return candidate
            log.warning(
                "batch_number_collision product_id=%s candidate=%s attempt=%s",
                product_id,
                candidate,
                attempt + 1,
            )

        raise DuplicateBatchNumberError(
            f"Could not generate a unique batch number for product {product_id} "
            f"after {self.max_attempts} attempts."
        )
