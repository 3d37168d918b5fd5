from __future__ import annotations

import sqlite3
from datetime import date
from decimal import Decimal
from typing import Optional, Protocol

from pbl.domain.errors import ConcurrencyConflict
from pbl.domain.models import BATCH_ACTIVE, Batch, Product, SaleBatchAllocation
from pbl.domain.numbers import to_db
from pbl.repositories.sqlite_repo import (
    BATCH_COLUMNS,
    PRODUCT_COLUMNS,
    batch_from_row,
    columns,
    fifo_order,
    product_from_row,
)


def is_lock_error(exc: BaseException) -> bool:
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


class LedgerUnitOfWork(Protocol):
    def __enter__(self) -> "LedgerUnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def get_product(self, product_id: int) -> Optional[Product]: ...
    def count_batches(self, product_id: int) -> int: ...
    def batch_number_exists(self, product_id: int, batch_number: str) -> bool: ...
    def active_batches_fifo(self, product_id: int) -> list[Batch]: ...


class SqliteUnitOfWork:
    """One write transaction on one connection.

    ``BEGIN IMMEDIATE`` takes the database write lock before anything is read,
    so batch quantities seen inside the block cannot change under it. A second
    writer waits up to the repository busy timeout and then fails with
    ``ConcurrencyConflict``. Leaving the block commits; an exception rolls back.
    """

    def __init__(self, repo):
        self.repo = repo
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def cur(self) -> sqlite3.Cursor:
        if self._conn is None:
            raise RuntimeError("Unit of work is not active.")
        return self._conn.cursor()

    def __enter__(self) -> "SqliteUnitOfWork":
        conn = self.repo._conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as exc:
            conn.close()
            if is_lock_error(exc):
                raise ConcurrencyConflict("Ledger is busy with another transaction.") from exc
            raise
        self._conn = conn
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        conn = self._conn
        self._conn = None
        if conn is None:
            return None
        try:
            if exc_type is None:
                try:
                    conn.commit()
                except sqlite3.OperationalError as commit_exc:
                    conn.rollback()
                    if is_lock_error(commit_exc):
                        raise ConcurrencyConflict("Ledger commit timed out waiting for readers.") from commit_exc
                    raise
            else:
                conn.rollback()
        finally:
            conn.close()
        if exc is not None and is_lock_error(exc):
            raise ConcurrencyConflict("Ledger is busy with another transaction.") from exc
        return None

    # ---------- Products ----------
    def get_product(self, product_id: int) -> Optional[Product]:
        r = self.cur.execute(
            f"SELECT {columns(PRODUCT_COLUMNS)} FROM products WHERE id=? AND is_active=1", (int(product_id),)
        ).fetchone()
        return product_from_row(r) if r else None

    def change_product_stock(self, product_id: int, delta: int, updated_at: str) -> int:
        cur = self.cur
        cur.execute(
            "UPDATE products SET total_stock = total_stock + ?, updated_at=? WHERE id=?",
            (int(delta), updated_at, int(product_id)),
        )
        r = cur.execute("SELECT total_stock FROM products WHERE id=?", (int(product_id),)).fetchone()
        return int(r["total_stock"])

    def set_product_price(self, product_id: int, price: Decimal, updated_at: str) -> None:
        self.cur.execute(
            "UPDATE products SET current_price=?, updated_at=? WHERE id=?",
            (to_db(price), updated_at, int(product_id)),
        )

    def insert_price_history(
        self,
        product_id: int,
        old_price: Optional[Decimal],
        new_price: Decimal,
        reason: str,
        changed_by: Optional[str],
        created_at: str,
    ) -> int:
        cur = self.cur
        cur.execute(
            """
            INSERT INTO price_history (product_id, old_price, new_price, reason, changed_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (int(product_id), to_db(old_price), to_db(new_price), reason, changed_by, created_at),
        )
        return int(cur.lastrowid)

    def product_ids_with_active_stock(self) -> list[int]:
        rows = self.cur.execute(
            """
            SELECT DISTINCT product_id FROM product_batches
            WHERE remaining_quantity > 0 AND status=?
            ORDER BY product_id
            """,
            (BATCH_ACTIVE,),
        ).fetchall()
        return [int(r["product_id"]) for r in rows]

    # ---------- Batches ----------
    def count_batches(self, product_id: int) -> int:
        r = self.cur.execute("SELECT COUNT(*) FROM product_batches WHERE product_id=?", (int(product_id),)).fetchone()
        return int(r[0])

    def batch_number_exists(self, product_id: int, batch_number: str) -> bool:
        r = self.cur.execute(
            "SELECT 1 FROM product_batches WHERE product_id=? AND batch_number=?",
            (int(product_id), batch_number),
        ).fetchone()
        return r is not None

    def insert_batch(
        self,
        product_id: int,
        batch_number: str,
        quantity: int,
        expiry_date: Optional[date],
        purchase_price: Optional[Decimal],
        selling_price: Optional[Decimal],
        markup_percentage: Decimal,
        supplier_name: Optional[str],
        notes: Optional[str],
        created_at: str,
    ) -> int:
        cur = self.cur
        cur.execute(
            """
            INSERT INTO product_batches (
                product_id, batch_number, original_quantity, remaining_quantity, expiry_date,
                purchase_price, selling_price, markup_percentage, supplier_name, notes,
                status, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(product_id),
                batch_number,
                int(quantity),
                int(quantity),
                expiry_date.isoformat() if expiry_date else None,
                to_db(purchase_price),
                to_db(selling_price),
                to_db(markup_percentage),
                supplier_name,
                notes,
                BATCH_ACTIVE,
                created_at,
                created_at,
            ),
        )
        return int(cur.lastrowid)

    def get_batch(self, batch_id: int) -> Optional[Batch]:
        r = self.cur.execute(
            f"SELECT {columns(BATCH_COLUMNS)} FROM product_batches WHERE id=?", (int(batch_id),)
        ).fetchone()
        return batch_from_row(r) if r else None

    def active_batches_fifo(self, product_id: int) -> list[Batch]:
        rows = self.cur.execute(
            f"""
            SELECT {columns(BATCH_COLUMNS)}
            FROM product_batches
            WHERE product_id=? AND remaining_quantity > 0 AND status=?
            ORDER BY {fifo_order()}
            """,
            (int(product_id), BATCH_ACTIVE),
        ).fetchall()
        return [batch_from_row(r) for r in rows]

    def price_source_batch(self, product_id: int, today: date) -> Optional[Batch]:
        """Oldest active, unexpired batch with stock."""
        r = self.cur.execute(
            f"""
            SELECT {columns(BATCH_COLUMNS)}
            FROM product_batches
            WHERE product_id=? AND remaining_quantity > 0 AND status=?
              AND (expiry_date IS NULL OR expiry_date > ?)
            ORDER BY {fifo_order()}
            LIMIT 1
            """,
            (int(product_id), BATCH_ACTIVE, today.isoformat()),
        ).fetchone()
        return batch_from_row(r) if r else None

    def set_batch_remaining(self, batch_id: int, remaining: int, status: str, updated_at: str) -> None:
        self.cur.execute(
            "UPDATE product_batches SET remaining_quantity=?, status=?, updated_at=? WHERE id=?",
            (int(remaining), status, updated_at, int(batch_id)),
        )

    def insert_batch_adjustment(
        self,
        batch_id: int,
        product_id: int,
        old_quantity: int,
        new_quantity: int,
        reason: str,
        user_id: Optional[str],
        created_at: str,
    ) -> int:
        cur = self.cur
        cur.execute(
            """
            INSERT INTO batch_adjustments (batch_id, product_id, old_quantity, new_quantity, reason, user_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (int(batch_id), int(product_id), int(old_quantity), int(new_quantity), reason, user_id, created_at),
        )
        return int(cur.lastrowid)

    # ---------- Sales ----------
    def insert_sale(
        self,
        created_at: str,
        user_id: Optional[str],
        payment_method: Optional[str],
        customer_name: Optional[str],
        notes: Optional[str],
        discount_type: str,
        discount_percentage: Decimal,
        discount_amount: Decimal,
        subtotal_before_discount: Decimal,
        total_amount: Decimal,
    ) -> int:
        cur = self.cur
        cur.execute(
            """
            INSERT INTO sales (
                created_at, user_id, payment_method, customer_name, notes, discount_type,
                discount_percentage, discount_amount, subtotal_before_discount, total_amount
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                created_at,
                user_id,
                payment_method,
                customer_name,
                notes,
                discount_type,
                to_db(discount_percentage),
                to_db(discount_amount),
                to_db(subtotal_before_discount),
                to_db(total_amount),
            ),
        )
        return int(cur.lastrowid)

    def insert_sale_item(
        self, sale_id: int, product_id: int, quantity: int, unit_price: Decimal, total_price: Decimal
    ) -> int:
        cur = self.cur
        cur.execute(
            """
            INSERT INTO sale_items (sale_id, product_id, quantity, unit_price, total_price)
            VALUES (?, ?, ?, ?, ?)
            """,
            (int(sale_id), int(product_id), int(quantity), to_db(unit_price), to_db(total_price)),
        )
        return int(cur.lastrowid)

    def insert_allocation(self, allocation: SaleBatchAllocation, created_at: str) -> int:
        cur = self.cur
        cur.execute(
            """
            INSERT INTO sale_batch_allocations (
                sale_id, sale_item_id, batch_id, product_id, quantity_sold,
                batch_purchase_price, batch_selling_price, item_cogs, item_revenue, item_profit, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                allocation.sale_id,
                allocation.sale_item_id,
                int(allocation.batch_id),
                int(allocation.product_id),
                int(allocation.quantity_sold),
                to_db(allocation.batch_purchase_price),
                to_db(allocation.batch_selling_price),
                to_db(allocation.item_cogs),
                to_db(allocation.item_revenue),
                to_db(allocation.item_profit),
                created_at,
            ),
        )
        return int(cur.lastrowid)

    def write_sale_totals(
        self,
        sale_id: int,
        total_revenue: Decimal,
        total_cogs: Decimal,
        gross_profit: Decimal,
        profit_margin_percentage: Decimal,
    ) -> None:
        self.cur.execute(
            """
            UPDATE sales
            SET total_revenue=?, total_cogs=?, gross_profit=?, profit_margin_percentage=?
            WHERE id=?
            """,
            (
                to_db(total_revenue),
                to_db(total_cogs),
                to_db(gross_profit),
                to_db(profit_margin_percentage),
                int(sale_id),
            ),
        )
