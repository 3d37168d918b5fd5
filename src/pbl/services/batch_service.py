from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from pbl.config import LedgerSettings
from pbl.domain.errors import NotFoundError, ValidationError
from pbl.domain.models import (
    BATCH_ACTIVE,
    BATCH_DEPLETED,
    AddBatchResult,
    Batch,
    BatchAdjustment,
    BatchAnalytics,
    Product,
)
from pbl.domain.numbers import CENT, ZERO, markup_percentage, optional_decimal, to_quantity
from pbl.repositories.sqlite_repo import timestamp
from pbl.repositories.unit_of_work import LedgerUnitOfWork
from pbl.services.batch_numbering import BatchNumberGenerator, format_batch_number
from pbl.services.conflicts import run_with_conflict_retry
from pbl.services.pricing_service import PriceSynchronizer

log = logging.getLogger("pbl.batches")

LEGACY_BATCH_NOTE = "Initial stock from product creation"


def coerce_date(value: object, field: str = "Expiry date") -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as exc:
        raise ValidationError(f"{field} must be a date (YYYY-MM-DD).") from exc


@dataclass(frozen=True)
class BatchFields:
    quantity: int
    expiry_date: Optional[date]
    purchase_price: Optional[Decimal]
    selling_price: Optional[Decimal]
    supplier_name: Optional[str]
    notes: Optional[str]


def validate_batch_fields(
    quantity: object,
    expiry_date: object = None,
    purchase_price: object = None,
    selling_price: object = None,
    supplier_name: Optional[str] = None,
    notes: Optional[str] = None,
) -> BatchFields:
    qty = to_quantity(quantity)
    if qty <= 0:
        raise ValidationError("Quantity must be >= 1.")
    expiry = coerce_date(expiry_date)
    buy = optional_decimal(purchase_price, "Purchase price")
    sell = optional_decimal(selling_price, "Selling price")
    if buy is not None and buy < ZERO:
        raise ValidationError("Purchase price must be >= 0.")
    if sell is not None and sell <= ZERO:
        raise ValidationError("Selling price must be > 0.")
    return BatchFields(
        quantity=qty,
        expiry_date=expiry,
        purchase_price=buy,
        selling_price=sell,
        supplier_name=(supplier_name or "").strip() or None,
        notes=(notes or "").strip() or None,
    )


def backfill_legacy_batch(uow, product: Product) -> Optional[int]:
    """Turn stock recorded on the product row into batch 001.

    Only applies to a product that has stock but has never had a batch. The
    batch takes the product's own creation time so it sorts first in FIFO.
    Product total_stock already counts these units and is left alone.
    """
    if product.total_stock <= 0 or uow.count_batches(product.id) > 0:
        return None

    created = datetime.fromisoformat(product.created_at)
    batch_number = format_batch_number(created, 1)
    batch_id = uow.insert_batch(
        product_id=product.id,
        batch_number=batch_number,
        quantity=product.total_stock,
        expiry_date=product.expiry_date,
        purchase_price=product.cost_price,
        selling_price=product.current_price,
        markup_percentage=markup_percentage(product.cost_price, product.current_price),
        supplier_name=product.supplier,
        notes=LEGACY_BATCH_NOTE,
        created_at=product.created_at,
    )
    log.info(
        "legacy_backfill product_id=%s batch_id=%s batch_number=%s qty=%s",
        product.id,
        batch_id,
        batch_number,
        product.total_stock,
    )
    return batch_id


class BatchService:
    def __init__(
        self,
        repo,
        numbering: BatchNumberGenerator | None = None,
        synchronizer: PriceSynchronizer | None = None,
        uow_factory: Callable[[], LedgerUnitOfWork] | None = None,
        settings: LedgerSettings | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repo = repo
        self.settings = settings or LedgerSettings()
        self.clock = clock or datetime.now
        self.numbering = numbering or BatchNumberGenerator(self.clock, self.settings.batch_number_retries)
        self.synchronizer = synchronizer or PriceSynchronizer(self.clock)
        self.uow_factory = uow_factory or repo.unit_of_work
        self.sleep = sleep

    def add_batch(
        self,
        product_id: int,
        quantity: object,
        expiry_date: object = None,
        purchase_price: object = None,
        selling_price: object = None,
        supplier_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> AddBatchResult:
        fields = validate_batch_fields(quantity, expiry_date, purchase_price, selling_price, supplier_name, notes)
        qty = fields.quantity
        expiry = fields.expiry_date
        buy = fields.purchase_price
        sell = fields.selling_price
        supplier_name = fields.supplier_name
        notes = fields.notes
        markup = markup_percentage(buy, sell)

        def _run() -> AddBatchResult:
            with self.uow_factory() as uow:
                product = uow.get_product(int(product_id))
                if product is None:
                    raise NotFoundError("Product not found.")

                backfilled = backfill_legacy_batch(uow, product)

                now = self.clock()
                batch_number = self.numbering.next_number(uow, product.id, now)
                batch_id = uow.insert_batch(
                    product_id=product.id,
                    batch_number=batch_number,
                    quantity=qty,
                    expiry_date=expiry,
                    purchase_price=buy,
                    selling_price=sell,
                    markup_percentage=markup,
                    supplier_name=supplier_name,
                    notes=notes,
                    created_at=timestamp(now),
                )
                new_stock = uow.change_product_stock(product.id, qty, timestamp(now))
                self.synchronizer.sync(uow, product.id, reason="batch_added")
                return AddBatchResult(
                    batch_id=batch_id,
                    batch_number=batch_number,
                    new_stock_level=new_stock,
                    markup_percentage=markup,
                    backfilled_batch_id=backfilled,
                )

        result = run_with_conflict_retry(_run, self.settings, "add_batch", self.sleep)
        log.info(
            "batch_added product_id=%s batch_id=%s batch_number=%s qty=%s stock=%s markup=%s",
            product_id,
            result.batch_id,
            result.batch_number,
            qty,
            result.new_stock_level,
            result.markup_percentage,
        )
        return result

    def adjust_batch_quantity(
        self, batch_id: int, new_quantity: object, reason: str, user_id: Optional[str] = None
    ) -> Batch:
        """Administrative correction of a batch's remaining quantity (count errors, damage)."""
        qty = to_quantity(new_quantity, "New quantity")
        if qty < 0:
            raise ValidationError("New quantity must be >= 0.")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required for batch corrections.")

        def _run() -> tuple[Batch, int]:
            with self.uow_factory() as uow:
                batch = uow.get_batch(int(batch_id))
                if batch is None:
                    raise NotFoundError("Batch not found.")
                if qty > batch.original_quantity:
                    raise ValidationError(
                        f"New quantity cannot exceed the original batch quantity ({batch.original_quantity})."
                    )
                old_qty = batch.remaining_quantity
                if qty == old_qty:
                    return batch, old_qty

                ts = timestamp(self.clock())
                status = BATCH_DEPLETED if qty == 0 else BATCH_ACTIVE
                uow.set_batch_remaining(batch.id, qty, status, ts)
                # depleted batches were already out of total_stock
                counted_before = old_qty if batch.status == BATCH_ACTIVE else 0
                uow.change_product_stock(batch.product_id, qty - counted_before, ts)
                uow.insert_batch_adjustment(batch.id, batch.product_id, old_qty, qty, reason, user_id, ts)
                if status != batch.status or qty == 0:
                    self.synchronizer.sync(uow, batch.product_id, reason="batch_adjusted", changed_by=user_id)
                return uow.get_batch(batch.id), old_qty

        updated, old_qty = run_with_conflict_retry(_run, self.settings, "adjust_batch_quantity", self.sleep)
        if updated.remaining_quantity != old_qty:
            log.info(
                "batch_adjusted batch_id=%s product_id=%s old=%s new=%s reason=%s user=%s",
                updated.id,
                updated.product_id,
                old_qty,
                updated.remaining_quantity,
                reason,
                user_id,
            )
        return updated

    def backfill_legacy_stock(self) -> int:
        """Give every product that still holds pre-batch stock its batch 001."""
        created = 0
        for product_id in self.repo.legacy_product_ids():

            def _run(pid: int = product_id) -> bool:
                with self.uow_factory() as uow:
                    product = uow.get_product(pid)
                    if product is None or backfill_legacy_batch(uow, product) is None:
                        return False
                    self.synchronizer.sync(uow, pid, reason="legacy_backfill")
                    return True

            if run_with_conflict_retry(_run, self.settings, "backfill_legacy_stock", self.sleep):
                created += 1
        return created

    def get_product_batches_fifo(self, product_id: int) -> list[Batch]:
        if self.repo.get_product_by_id(int(product_id), include_archived=True) is None:
            raise NotFoundError("Product not found.")
        return self.repo.list_batches_fifo(int(product_id))

    def batch_adjustments(self, batch_id: int) -> list[BatchAdjustment]:
        if self.repo.get_batch(int(batch_id)) is None:
            raise NotFoundError("Batch not found.")
        return self.repo.batch_adjustments(int(batch_id))

    def list_expiring_batches(self, within_days: int = 30) -> list[Batch]:
        if within_days < 0:
            raise ValidationError("Days must be >= 0.")
        today = self.clock().date()
        return self.repo.list_expiring_batches(today, today + timedelta(days=int(within_days)))

    def batch_analytics(self, expiring_within_days: int = 30) -> BatchAnalytics:
        today = self.clock().date()
        horizon = today + timedelta(days=int(expiring_within_days))
        batches = self.repo.list_all_batches()

        active = [b for b in batches if b.status == BATCH_ACTIVE]
        total_value = sum(
            (Decimal(b.remaining_quantity) * (b.purchase_price or ZERO) for b in active),
            ZERO,
        )
        average_size = (
            (Decimal(sum(b.remaining_quantity for b in active)) / Decimal(len(active))).quantize(CENT)
            if active
            else ZERO.quantize(CENT)
        )
        return BatchAnalytics(
            total_batches=len(batches),
            active_batches=len(active),
            depleted_batches=sum(1 for b in batches if b.remaining_quantity == 0),
            expired_batches=sum(1 for b in batches if b.expiry_date is not None and b.expiry_date < today),
            expiring_batches=sum(
                1 for b in batches if b.expiry_date is not None and today <= b.expiry_date <= horizon
            ),
            unique_products=len({b.product_id for b in batches}),
            total_value=total_value,
            average_batch_size=average_size,
        )
