from .models import Product, Batch, SaleBatchAllocation, AllocationResult, SaleHeader, SaleOutcome
from .errors import (
    ValidationError,
    NotFoundError,
    InsufficientStockError,
    DuplicateBatchNumberError,
    ConcurrencyConflict,
)

__all__ = [
    "Product",
    "Batch",
    "SaleBatchAllocation",
    "AllocationResult",
    "SaleHeader",
    "SaleOutcome",
    "ValidationError",
    "NotFoundError",
    "InsufficientStockError",
    "DuplicateBatchNumberError",
    "ConcurrencyConflict",
]
