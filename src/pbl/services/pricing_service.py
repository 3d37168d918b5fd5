from __future__ import annotations

import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from pbl.config import LedgerSettings
from pbl.domain.errors import NotFoundError
from pbl.domain.models import CurrentBatchPrice, PriceHistoryEntry, RefreshResult
from pbl.repositories.sqlite_repo import timestamp
from pbl.repositories.unit_of_work import LedgerUnitOfWork
from pbl.services.conflicts import run_with_conflict_retry

log = logging.getLogger("pbl.pricing")


class PriceSynchronizer:
    """Keeps products.current_price equal to the selling price of the FIFO batch.

    The price source is the oldest batch that still has stock, is active and is
    not expired. When no such batch exists, or it carries no selling price, the
    product keeps whatever price it already had.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self.clock = clock or datetime.now

    def sync(self, uow, product_id: int, reason: str = "fifo_sync", changed_by: Optional[str] = None) -> bool:
        product = uow.get_product(product_id)
        if product is None:
            return False

        now = self.clock()
        source = uow.price_source_batch(product_id, now.date())
        if source is None or source.selling_price is None:
            return False

        new_price: Decimal = source.selling_price
        if product.current_price is not None and product.current_price == new_price:
            return False

        ts = timestamp(now)
        uow.set_product_price(product_id, new_price, ts)
        uow.insert_price_history(product_id, product.current_price, new_price, reason, changed_by, ts)
        log.info(
            "price_synced product_id=%s old=%s new=%s batch=%s reason=%s",
            product_id,
            product.current_price,
            new_price,
            source.batch_number,
            reason,
        )
        return True


class PricingService:
    def __init__(
        self,
        repo,
        synchronizer: PriceSynchronizer | None = None,
        uow_factory: Callable[[], LedgerUnitOfWork] | None = None,
        settings: LedgerSettings | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repo = repo
        self.clock = clock or datetime.now
        self.synchronizer = synchronizer or PriceSynchronizer(self.clock)
        self.uow_factory = uow_factory or repo.unit_of_work
        self.settings = settings or LedgerSettings()
        self.sleep = sleep

    def _require_product(self, product_id: int) -> None:
        if self.repo.get_product_by_id(int(product_id), include_archived=True) is None:
            raise NotFoundError("Product not found.")

    def get_current_batch_price(self, product_id: int) -> Optional[CurrentBatchPrice]:
        self._require_product(product_id)
        return self.repo.current_batch_price(int(product_id), self.clock().date())

    def sync_product_price(self, product_id: int, changed_by: Optional[str] = None) -> bool:
        self._require_product(product_id)

        def _run() -> bool:
            with self.uow_factory() as uow:
                return self.synchronizer.sync(uow, int(product_id), reason="manual_sync", changed_by=changed_by)

        return run_with_conflict_retry(_run, self.settings, "sync_product_price", self.sleep)

    def refresh_all_product_prices(self, changed_by: Optional[str] = None) -> RefreshResult:
        """Re-sync every product that still has an active batch with stock."""

        def _run() -> RefreshResult:
            with self.uow_factory() as uow:
                product_ids = uow.product_ids_with_active_stock()
                changed = 0
                for product_id in product_ids:
                    if self.synchronizer.sync(uow, product_id, reason="refresh_all", changed_by=changed_by):
                        changed += 1
                return RefreshResult(products_updated=len(product_ids), prices_changed=changed)

        result = run_with_conflict_retry(_run, self.settings, "refresh_all_product_prices", self.sleep)
        log.info("prices_refreshed products=%s changed=%s", result.products_updated, result.prices_changed)
        return result

    def price_history(self, product_id: int) -> list[PriceHistoryEntry]:
        self._require_product(product_id)
        return self.repo.price_history(int(product_id))
