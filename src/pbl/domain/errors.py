from __future__ import annotations

from typing import Optional


class AppError(Exception):
    """Base app error."""

    kind = "error"


class ValidationError(AppError):
    kind = "validation"


class NotFoundError(AppError):
    kind = "not_found"


class InsufficientStockError(AppError):
    kind = "insufficient_stock"

    def __init__(self, product_id: int, requested: int, available: int, label: Optional[str] = None):
        self.product_id = int(product_id)
        self.requested = int(requested)
        self.available = int(available)
        self.shortfall = self.requested - self.available
        name = label or f"product {self.product_id}"
        super().__init__(
            f"Not enough stock for {name}. Requested: {self.requested}, "
            f"available: {self.available}, short by {self.shortfall}."
        )


class DuplicateBatchNumberError(AppError):
    kind = "duplicate_batch_number"


class ConcurrencyConflict(AppError):
    kind = "concurrency_conflict"
