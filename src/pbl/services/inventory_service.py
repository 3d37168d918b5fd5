from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from pbl.domain.errors import NotFoundError, ValidationError
from pbl.domain.models import Product
from pbl.domain.numbers import ZERO, optional_decimal, to_quantity
from pbl.services.batch_service import coerce_date


class InventoryService:
    """Product catalog. Stock and price on a product are owned by the ledger."""

    def __init__(self, repo, clock: Callable[[], datetime] | None = None):
        self.repo = repo
        self.clock = clock or datetime.now

    def list_products(self) -> list[Product]:
        return self.repo.list_products()

    def get_product(self, product_id: int) -> Product:
        p = self.repo.get_product_by_id(int(product_id))
        if not p:
            raise NotFoundError("Product not found.")
        return p

    def low_stock_products(self, limit: int = 50) -> list[Product]:
        return self.repo.list_low_stock_products(limit)

    def add_product(
        self,
        generic_name: str,
        brand_name: Optional[str] = None,
        price: object = None,
        cost_price: object = None,
        opening_stock: object = 0,
        reorder_level: object = 0,
        expiry_date: object = None,
        supplier: Optional[str] = None,
    ) -> int:
        """Register a product.

        ``opening_stock`` is carried on the product row, the way stock was
        recorded before batch tracking; it becomes batch 001 the first time the
        product is restocked, sold or backfilled.
        """
        generic_name = (generic_name or "").strip()
        brand_name = (brand_name or "").strip() or None
        if not generic_name:
            raise ValidationError("Generic name is required.")
        stock = to_quantity(opening_stock, "Opening stock")
        reorder = to_quantity(reorder_level, "Reorder level")
        if stock < 0 or reorder < 0:
            raise ValidationError("Stock values must be >= 0.")
        sell = optional_decimal(price, "Price")
        cost = optional_decimal(cost_price, "Cost price")
        if cost is not None and cost < ZERO:
            raise ValidationError("Cost must be >= 0.")
        if sell is not None and sell <= ZERO:
            raise ValidationError("Price must be > 0.")
        return self.repo.add_product(
            generic_name,
            brand_name,
            sell,
            cost,
            stock,
            reorder,
            coerce_date(expiry_date),
            (supplier or "").strip() or None,
            self.clock(),
        )

    def archive_product(self, product_id: int) -> None:
        self.get_product(product_id)
        if not self.repo.archive_product(int(product_id)):
            raise NotFoundError("Product not found.")
