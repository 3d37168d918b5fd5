from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

BATCH_ACTIVE = "active"
BATCH_DEPLETED = "depleted"


@dataclass(frozen=True)
class Product:
    id: int
    generic_name: str
    brand_name: Optional[str]
    current_price: Optional[Decimal]
    cost_price: Optional[Decimal]
    total_stock: int
    reorder_level: int
    expiry_date: Optional[date]
    supplier: Optional[str]
    created_at: str
    is_active: int = 1

    @property
    def display_name(self) -> str:
        if self.brand_name:
            return f"{self.generic_name} ({self.brand_name})"
        return self.generic_name


@dataclass(frozen=True)
class Batch:
    id: int
    product_id: int
    batch_number: str
    original_quantity: int
    remaining_quantity: int
    expiry_date: Optional[date]
    purchase_price: Optional[Decimal]
    selling_price: Optional[Decimal]
    markup_percentage: Decimal
    supplier_name: Optional[str]
    notes: Optional[str]
    status: str
    created_at: str

    @property
    def sequence(self) -> int:
        return int(self.batch_number.rsplit("-", 1)[-1])


@dataclass(frozen=True)
class AddBatchResult:
    batch_id: int
    batch_number: str
    new_stock_level: int
    markup_percentage: Decimal
    backfilled_batch_id: Optional[int] = None


@dataclass(frozen=True)
class CurrentBatchPrice:
    batch_id: int
    selling_price: Optional[Decimal]
    purchase_price: Decimal
    available_quantity: int
    expiry_date: Optional[date]
    batch_number: str


@dataclass(frozen=True)
class RefreshResult:
    products_updated: int
    prices_changed: int = 0


@dataclass(frozen=True)
class SaleBatchAllocation:
    batch_id: int
    batch_number: str
    product_id: int
    quantity_sold: int
    batch_purchase_price: Decimal
    batch_selling_price: Decimal
    item_cogs: Decimal
    item_revenue: Decimal
    item_profit: Decimal
    id: Optional[int] = None
    sale_id: Optional[int] = None
    sale_item_id: Optional[int] = None


@dataclass(frozen=True)
class AllocationResult:
    product_id: int
    quantity: int
    allocations: tuple[SaleBatchAllocation, ...]
    item_cogs: Decimal
    item_revenue: Decimal

    @property
    def item_profit(self) -> Decimal:
        return self.item_revenue - self.item_cogs


@dataclass(frozen=True)
class StockAvailability:
    product_id: int
    requested: int
    available: int

    @property
    def sufficient(self) -> bool:
        return self.available >= self.requested

    @property
    def shortfall(self) -> int:
        return max(0, self.requested - self.available)


@dataclass(frozen=True)
class SaleHeader:
    id: int
    created_at: str
    user_id: Optional[str]
    payment_method: Optional[str]
    customer_name: Optional[str]
    notes: Optional[str]
    discount_type: str
    discount_percentage: Decimal
    discount_amount: Decimal
    subtotal_before_discount: Decimal
    total_amount: Decimal
    total_revenue: Decimal
    total_cogs: Decimal
    gross_profit: Decimal
    profit_margin_percentage: Decimal
    status: str = "completed"


@dataclass(frozen=True)
class SaleItem:
    id: int
    sale_id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    total_price: Decimal


@dataclass(frozen=True)
class SaleOutcome:
    """Checkout result. Ledger failures come back here instead of being raised."""

    success: bool
    sale_id: Optional[int] = None
    total_cogs: Decimal = Decimal("0")
    gross_profit: Decimal = Decimal("0")
    profit_margin: Decimal = Decimal("0")
    error: Optional[str] = None
    error_kind: Optional[str] = None
    product_id: Optional[int] = None
    requested: Optional[int] = None
    available: Optional[int] = None
    items: tuple[AllocationResult, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SaleProfitDetail:
    product_name: str
    batch_number: str
    quantity_sold: int
    purchase_price: Decimal
    selling_price: Decimal
    item_cogs: Decimal
    item_revenue: Decimal
    item_profit: Decimal


@dataclass(frozen=True)
class PriceHistoryEntry:
    id: int
    product_id: int
    old_price: Optional[Decimal]
    new_price: Decimal
    reason: Optional[str]
    changed_by: Optional[str]
    created_at: str


@dataclass(frozen=True)
class BatchAdjustment:
    id: int
    batch_id: int
    product_id: int
    old_quantity: int
    new_quantity: int
    reason: str
    user_id: Optional[str]
    created_at: str

    @property
    def delta(self) -> int:
        return self.new_quantity - self.old_quantity


@dataclass(frozen=True)
class BatchAnalytics:
    total_batches: int
    active_batches: int
    depleted_batches: int
    expired_batches: int
    expiring_batches: int
    unique_products: int
    total_value: Decimal
    average_batch_size: Decimal


@dataclass(frozen=True)
class SalesSummary:
    sales_count: int
    total_amount: Decimal
    total_revenue: Decimal
    total_cogs: Decimal
    gross_profit: Decimal
    profit_margin_percentage: Decimal
