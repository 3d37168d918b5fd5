from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional

from pbl.config import LedgerSettings
from pbl.domain.errors import AppError, InsufficientStockError, NotFoundError, ValidationError
from pbl.domain.models import (
    AllocationResult,
    SaleHeader,
    SaleItem,
    SaleOutcome,
    SaleProfitDetail,
    SalesSummary,
    StockAvailability,
)
from pbl.domain.numbers import HUNDRED, ZERO, money, optional_decimal, percentage, to_quantity
from pbl.repositories.sqlite_repo import timestamp
from pbl.repositories.unit_of_work import LedgerUnitOfWork
from pbl.services.allocation import FifoAllocator, available_in_unit_of_work, check_availability
from pbl.services.conflicts import run_with_conflict_retry

log = logging.getLogger("pbl.sales")

DISCOUNT_TYPES = ("none", "percentage", "fixed", "senior", "pwd")


@dataclass(frozen=True)
class SaleTotals:
    total_revenue: Decimal
    total_cogs: Decimal
    gross_profit: Decimal
    profit_margin: Decimal


def aggregate_sale(results: Iterable[AllocationResult]) -> SaleTotals:
    """Sale-level COGS, revenue and margin from its per-item allocations."""
    results = list(results)
    revenue = sum((r.item_revenue for r in results), ZERO)
    cogs = sum((r.item_cogs for r in results), ZERO)
    gross = revenue - cogs
    return SaleTotals(
        total_revenue=revenue,
        total_cogs=cogs,
        gross_profit=gross,
        profit_margin=percentage(gross, revenue),
    )


@dataclass(frozen=True)
class _CartLine:
    product_id: int
    quantity: int
    unit_price: Optional[Decimal]


class SalesService:
    def __init__(
        self,
        repo,
        allocator: FifoAllocator | None = None,
        uow_factory: Callable[[], LedgerUnitOfWork] | None = None,
        settings: LedgerSettings | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repo = repo
        self.clock = clock or datetime.now
        self.allocator = allocator or FifoAllocator(clock=self.clock)
        self.uow_factory = uow_factory or repo.unit_of_work
        self.settings = settings or LedgerSettings()
        self.sleep = sleep

    def create_sale_with_items(self, header: dict | None, items: Iterable[dict]) -> SaleOutcome:
        """
        header: {user_id, payment_method, customer_name, notes, discount_type,
                 discount_percentage, discount_amount, total_amount}  (all optional)
        items: [{product_id, quantity, unit_price?}]

        Header, items, allocations, batch decrements and profit totals commit
        together or not at all. Ledger failures are returned as an unsuccessful
        SaleOutcome; anything else propagates.
        """
        header = dict(header or {})
        try:
            lines = self._validate_items(items)
            discount = self._validate_discount(header)
            outcome = run_with_conflict_retry(
                lambda: self._record_sale(header, discount, lines),
                self.settings,
                "create_sale_with_items",
                self.sleep,
            )
        except AppError as e:
            log.warning("sale_rejected kind=%s error=%s user=%s", e.kind, e, header.get("user_id"))
            if isinstance(e, InsufficientStockError):
                return SaleOutcome(
                    success=False,
                    error=str(e),
                    error_kind=e.kind,
                    product_id=e.product_id,
                    requested=e.requested,
                    available=e.available,
                )
            return SaleOutcome(success=False, error=str(e), error_kind=e.kind)

        log.info(
            "sale_created sale_id=%s items=%s cogs=%s profit=%s margin=%s user=%s",
            outcome.sale_id,
            len(lines),
            outcome.total_cogs,
            outcome.gross_profit,
            outcome.profit_margin,
            header.get("user_id"),
        )
        return outcome

    def _validate_items(self, items: Iterable[dict]) -> list[_CartLine]:
        items = list(items or [])
        if not items:
            raise ValidationError("Cart is empty.")
        lines = []
        for it in items:
            try:
                product_id = int(it["product_id"])
            except (KeyError, TypeError, ValueError) as e:
                raise ValidationError("Each item needs a product_id.") from e
            qty = to_quantity(it.get("quantity"), "Qty")
            if qty <= 0:
                raise ValidationError("Qty must be >= 1.")
            unit_price = optional_decimal(it.get("unit_price"), "Unit price")
            if unit_price is not None and unit_price <= ZERO:
                raise ValidationError("Unit price must be > 0.")
            lines.append(_CartLine(product_id, qty, unit_price))
        return lines

    def _validate_discount(self, header: dict) -> dict:
        discount_type = str(header.get("discount_type") or "none").strip().lower()
        if discount_type not in DISCOUNT_TYPES:
            raise ValidationError(f"Unknown discount type: {discount_type}.")
        pct = optional_decimal(header.get("discount_percentage"), "Discount percentage") or ZERO
        if pct < ZERO or pct > HUNDRED:
            raise ValidationError("Discount percentage must be between 0 and 100.")
        amount = optional_decimal(header.get("discount_amount"), "Discount amount")
        if amount is not None and amount < ZERO:
            raise ValidationError("Discount amount must be >= 0.")
        total = optional_decimal(header.get("total_amount"), "Total amount")
        if total is not None and total < ZERO:
            raise ValidationError("Total amount must be >= 0.")
        return {"type": discount_type, "percentage": pct, "amount": amount, "total": total}

    def _record_sale(self, header: dict, discount: dict, lines: list[_CartLine]) -> SaleOutcome:
        with self.uow_factory() as uow:
            priced: list[tuple[_CartLine, Decimal]] = []
            for line in lines:
                product = uow.get_product(line.product_id)
                if product is None:
                    raise NotFoundError(f"Product {line.product_id} not found.")
                unit_price = line.unit_price if line.unit_price is not None else product.current_price
                if unit_price is None:
                    raise ValidationError(f"{product.display_name} has no selling price.")
                available = available_in_unit_of_work(uow, product)
                if line.quantity > available:
                    raise InsufficientStockError(product.id, line.quantity, available, label=product.display_name)
                priced.append((line, unit_price))

            subtotal = sum((Decimal(line.quantity) * price for line, price in priced), ZERO)
            discount_amount = discount["amount"]
            if discount_amount is None:
                discount_amount = money(subtotal * discount["percentage"] / HUNDRED)
            if discount_amount > subtotal:
                raise ValidationError("Discount cannot exceed the sale subtotal.")
            total_amount = discount["total"] if discount["total"] is not None else subtotal - discount_amount

            sale_id = uow.insert_sale(
                created_at=timestamp(self.clock()),
                user_id=header.get("user_id"),
                payment_method=header.get("payment_method"),
                customer_name=header.get("customer_name"),
                notes=header.get("notes"),
                discount_type=discount["type"],
                discount_percentage=discount["percentage"],
                discount_amount=discount_amount,
                subtotal_before_discount=subtotal,
                total_amount=total_amount,
            )

            results: list[AllocationResult] = []
            for line, unit_price in priced:
                sale_item_id = uow.insert_sale_item(
                    sale_id, line.product_id, line.quantity, unit_price, Decimal(line.quantity) * unit_price
                )
                results.append(
                    self.allocator.allocate(uow, line.product_id, line.quantity, sale_id=sale_id, sale_item_id=sale_item_id)
                )

            totals = aggregate_sale(results)
            uow.write_sale_totals(
                sale_id, totals.total_revenue, totals.total_cogs, totals.gross_profit, totals.profit_margin
            )

        return SaleOutcome(
            success=True,
            sale_id=sale_id,
            total_cogs=totals.total_cogs,
            gross_profit=totals.gross_profit,
            profit_margin=totals.profit_margin,
            items=tuple(results),
        )

    def check_availability(self, product_id: int, quantity: object) -> StockAvailability:
        return check_availability(self.repo, product_id, quantity)

    def get_sale(self, sale_id: int) -> SaleHeader:
        sale = self.repo.get_sale_header(int(sale_id))
        if sale is None:
            raise NotFoundError("Sale not found.")
        return sale

    def sale_items_for_sale(self, sale_id: int) -> list[SaleItem]:
        self.get_sale(sale_id)
        return self.repo.sale_items_for_sale(int(sale_id))

    def get_sale_profit_details(self, sale_id: int) -> list[SaleProfitDetail]:
        self.get_sale(sale_id)
        return self.repo.sale_profit_details(int(sale_id))

    def list_sales_between(self, start_iso: str, end_iso: str) -> list[SaleHeader]:
        return self.repo.list_sales_between(start_iso, end_iso)

    def sales_summary_between(self, start_iso: str, end_iso: str) -> SalesSummary:
        sales = self.list_sales_between(start_iso, end_iso)
        revenue = sum((s.total_revenue for s in sales), ZERO)
        cogs = sum((s.total_cogs for s in sales), ZERO)
        gross = sum((s.gross_profit for s in sales), ZERO)
        return SalesSummary(
            sales_count=len(sales),
            total_amount=sum((s.total_amount for s in sales), ZERO),
            total_revenue=revenue,
            total_cogs=cogs,
            gross_profit=gross,
            profit_margin_percentage=percentage(gross, revenue),
        )
