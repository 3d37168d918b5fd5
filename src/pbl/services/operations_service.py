from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Optional

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerHealthReport:
    sqlite_integrity: str
    stock_drift: tuple[tuple[int, int, int], ...]
    price_drift: tuple[tuple[int, Optional[Decimal], Decimal], ...]
    legacy_products: int
    db_size_bytes: int
    logs_count: int
    generated_at: str

    @property
    def healthy(self) -> bool:
        return self.sqlite_integrity == "ok" and not self.stock_drift and not self.price_drift


class OperationsService:
    def __init__(
        self,
        repo,
        db_path: Path | str,
        logs_dir: Path | str,
        clock: Callable[[], datetime] | None = None,
    ):
        self.repo = repo
        self.db_path = Path(db_path)
        self.logs_dir = Path(logs_dir)
        self.clock = clock or datetime.now

    def run_ledger_check(self) -> LedgerHealthReport:
        """Compare the cached product fields with what the batches say they should be.

        stock_drift rows are (product_id, total_stock, sum of active batches);
        price_drift rows are (product_id, current_price, FIFO batch price).
        """
        now = self.clock()
        integrity = self.repo.integrity_check()
        stock_drift = tuple(self.repo.stock_drift())

        price_drift = []
        for product_id in self.repo.product_ids_with_active_stock():
            product = self.repo.get_product_by_id(product_id, include_archived=True)
            expected = self.repo.current_batch_price(product_id, now.date())
            if product is None or expected is None or expected.selling_price is None:
                continue
            if product.current_price != expected.selling_price:
                price_drift.append((product_id, product.current_price, expected.selling_price))

        logs_count = len(list(self.logs_dir.glob("*.log"))) if self.logs_dir.exists() else 0
        size = self.db_path.stat().st_size if self.db_path.exists() else 0
        report = LedgerHealthReport(
            sqlite_integrity=integrity,
            stock_drift=stock_drift,
            price_drift=tuple(price_drift),
            legacy_products=len(self.repo.legacy_product_ids()),
            db_size_bytes=size,
            logs_count=logs_count,
            generated_at=now.isoformat(timespec="seconds"),
        )
        if report.healthy:
            log.info("ledger_check_ok legacy_products=%s", report.legacy_products)
        else:
            log.error(
                "ledger_check_failed integrity=%s stock_drift=%s price_drift=%s",
                integrity,
                len(stock_drift),
                len(price_drift),
            )
        return report
