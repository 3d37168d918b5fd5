from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from pbl.domain.errors import InsufficientStockError, NotFoundError, ValidationError
from pbl.domain.models import (
    BATCH_ACTIVE,
    BATCH_DEPLETED,
    AllocationResult,
    Product,
    SaleBatchAllocation,
    StockAvailability,
)
from pbl.domain.numbers import ZERO, to_quantity
from pbl.repositories.sqlite_repo import timestamp
from pbl.services.batch_service import backfill_legacy_batch
from pbl.services.pricing_service import PriceSynchronizer


class FifoAllocator:
    """Draws a sold quantity from a product's batches, oldest first.

    Must run inside an open unit of work: the batch rows it reads are the ones
    it decrements, and a shortfall raises so the caller's transaction rolls
    back every allocation already written for the sale.
    """

    def __init__(self, synchronizer: PriceSynchronizer | None = None, clock: Callable[[], datetime] | None = None):
        self.clock = clock or datetime.now
        self.synchronizer = synchronizer or PriceSynchronizer(self.clock)

    def allocate(
        self,
        uow,
        product_id: int,
        quantity: int,
        sale_id: Optional[int] = None,
        sale_item_id: Optional[int] = None,
    ) -> AllocationResult:
        if quantity <= 0:
            raise ValidationError("Qty must be >= 1.")

        product = uow.get_product(product_id)
        if product is None:
            raise NotFoundError("Product not found.")
        backfill_legacy_batch(uow, product)

        batches = uow.active_batches_fifo(product_id)
        available = sum(b.remaining_quantity for b in batches)
        if available < quantity:
            raise InsufficientStockError(product_id, quantity, available, label=product.display_name)

        ts = timestamp(self.clock())
        needed = quantity
        allocations: list[SaleBatchAllocation] = []
        depleted_any = False

        for batch in batches:
            if needed == 0:
                break
            take = min(needed, batch.remaining_quantity)
            purchase = batch.purchase_price if batch.purchase_price is not None else ZERO
            selling = batch.selling_price if batch.selling_price is not None else (product.current_price or ZERO)
            cogs = Decimal(take) * purchase
            revenue = Decimal(take) * selling
            allocation = SaleBatchAllocation(
                batch_id=batch.id,
                batch_number=batch.batch_number,
                product_id=product_id,
                quantity_sold=take,
                batch_purchase_price=purchase,
                batch_selling_price=selling,
                item_cogs=cogs,
                item_revenue=revenue,
                item_profit=revenue - cogs,
                sale_id=sale_id,
                sale_item_id=sale_item_id,
            )
            if sale_id is not None and sale_item_id is not None:
                allocation_id = uow.insert_allocation(allocation, ts)
                allocation = replace(allocation, id=allocation_id)

            remaining = batch.remaining_quantity - take
            status = BATCH_DEPLETED if remaining == 0 else BATCH_ACTIVE
            uow.set_batch_remaining(batch.id, remaining, status, ts)
            depleted_any = depleted_any or remaining == 0

            allocations.append(allocation)
            needed -= take

        uow.change_product_stock(product_id, -quantity, ts)
        if depleted_any:
            self.synchronizer.sync(uow, product_id, reason="batch_depleted")

        return AllocationResult(
            product_id=product_id,
            quantity=quantity,
            allocations=tuple(allocations),
            item_cogs=sum((a.item_cogs for a in allocations), ZERO),
            item_revenue=sum((a.item_revenue for a in allocations), ZERO),
        )


def available_in_unit_of_work(uow, product: Product) -> int:
    """Sellable units seen from inside a transaction, counting legacy stock not yet in a batch."""
    if uow.count_batches(product.id) == 0:
        return max(product.total_stock, 0)
    return sum(b.remaining_quantity for b in uow.active_batches_fifo(product.id))


def check_availability(repo, product_id: int, quantity: object) -> StockAvailability:
    """Read-only stock pre-check for a cart line; the allocator still decides."""
    qty = to_quantity(quantity, "Qty")
    if qty <= 0:
        raise ValidationError("Qty must be >= 1.")
    product = repo.get_product_by_id(int(product_id))
    if product is None:
        raise NotFoundError("Product not found.")
    available = repo.available_quantity(int(product_id))
    if available == 0 and product.total_stock > 0 and not repo.list_batches_fifo(int(product_id)):
        # legacy stock not yet attributed to a batch
        available = product.total_stock
    return StockAvailability(product_id=int(product_id), requested=qty, available=available)
