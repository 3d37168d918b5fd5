from __future__ import annotations

import shutil
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

from pbl.domain.models import (
    BATCH_ACTIVE,
    Batch,
    BatchAdjustment,
    CurrentBatchPrice,
    PriceHistoryEntry,
    Product,
    SaleHeader,
    SaleItem,
    SaleProfitDetail,
)
from pbl.domain.numbers import ZERO, from_db, to_db

PRODUCT_COLUMNS = (
    "id", "generic_name", "brand_name", "current_price", "cost_price", "total_stock",
    "reorder_level", "expiry_date", "supplier", "created_at", "is_active",
)
BATCH_COLUMNS = (
    "id", "product_id", "batch_number", "original_quantity", "remaining_quantity", "expiry_date",
    "purchase_price", "selling_price", "markup_percentage", "supplier_name", "notes", "status", "created_at",
)
SALE_COLUMNS = (
    "id", "created_at", "user_id", "payment_method", "customer_name", "notes", "discount_type",
    "discount_percentage", "discount_amount", "subtotal_before_discount", "total_amount",
    "total_revenue", "total_cogs", "gross_profit", "profit_margin_percentage", "status",
)


def columns(names: tuple[str, ...], alias: str = "") -> str:
    prefix = f"{alias}." if alias else ""
    return ", ".join(f"{prefix}{n}" for n in names)


def fifo_order(alias: str = "") -> str:
    """Oldest intake first, soonest expiry on ties (undated last), then insertion id."""
    p = f"{alias}." if alias else ""
    return f"{p}created_at ASC, {p}expiry_date IS NULL, {p}expiry_date ASC, {p}id ASC"


def timestamp(dt: datetime) -> str:
    return dt.isoformat(sep=" ", timespec="microseconds")


def _date(value: object) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(str(value)[:10])


def product_from_row(r: sqlite3.Row) -> Product:
    return Product(
        id=int(r["id"]),
        generic_name=str(r["generic_name"]),
        brand_name=r["brand_name"],
        current_price=from_db(r["current_price"]),
        cost_price=from_db(r["cost_price"]),
        total_stock=int(r["total_stock"]),
        reorder_level=int(r["reorder_level"]),
        expiry_date=_date(r["expiry_date"]),
        supplier=r["supplier"],
        created_at=str(r["created_at"]),
        is_active=int(r["is_active"]),
    )


def batch_from_row(r: sqlite3.Row) -> Batch:
    return Batch(
        id=int(r["id"]),
        product_id=int(r["product_id"]),
        batch_number=str(r["batch_number"]),
        original_quantity=int(r["original_quantity"]),
        remaining_quantity=int(r["remaining_quantity"]),
        expiry_date=_date(r["expiry_date"]),
        purchase_price=from_db(r["purchase_price"]),
        selling_price=from_db(r["selling_price"]),
        markup_percentage=from_db(r["markup_percentage"]) or ZERO,
        supplier_name=r["supplier_name"],
        notes=r["notes"],
        status=str(r["status"]),
        created_at=str(r["created_at"]),
    )


def sale_from_row(r: sqlite3.Row) -> SaleHeader:
    return SaleHeader(
        id=int(r["id"]),
        created_at=str(r["created_at"]),
        user_id=r["user_id"],
        payment_method=r["payment_method"],
        customer_name=r["customer_name"],
        notes=r["notes"],
        discount_type=str(r["discount_type"]),
        discount_percentage=from_db(r["discount_percentage"]),
        discount_amount=from_db(r["discount_amount"]),
        subtotal_before_discount=from_db(r["subtotal_before_discount"]),
        total_amount=from_db(r["total_amount"]),
        total_revenue=from_db(r["total_revenue"]),
        total_cogs=from_db(r["total_cogs"]),
        gross_profit=from_db(r["gross_profit"]),
        profit_margin_percentage=from_db(r["profit_margin_percentage"]),
        status=str(r["status"]),
    )


class SqliteRepository:
    def __init__(self, db_path: Path | str, busy_timeout: float = 5.0):
        self.db_path = str(db_path)
        self.busy_timeout = float(busy_timeout)

    def _conn(self) -> sqlite3.Connection:
        # autocommit mode: transactions are opened explicitly by the unit of work
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def init_db(self) -> None:
        self.run_migrations()

    def unit_of_work(self):
        from pbl.repositories.unit_of_work import SqliteUnitOfWork

        return SqliteUnitOfWork(self)

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_ledger),
                (2, self._migration_v2_audit_trail),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_ledger(self, cur: sqlite3.Cursor) -> None:
        # money columns are TEXT so Decimal values round-trip exactly
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                generic_name TEXT NOT NULL,
                brand_name TEXT,
                current_price TEXT,
                cost_price TEXT,
                total_stock INTEGER NOT NULL DEFAULT 0 CHECK(total_stock >= 0),
                reorder_level INTEGER NOT NULL DEFAULT 0 CHECK(reorder_level >= 0),
                expiry_date TEXT,
                supplier TEXT,
                is_active INTEGER NOT NULL DEFAULT 1 CHECK(is_active IN (0,1)),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS product_batches (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id INTEGER NOT NULL,
                batch_number TEXT NOT NULL,
                original_quantity INTEGER NOT NULL CHECK(original_quantity > 0),
                remaining_quantity INTEGER NOT NULL
                    CHECK(remaining_quantity >= 0 AND remaining_quantity <= original_quantity),
                expiry_date TEXT,
                purchase_price TEXT,
                selling_price TEXT,
                markup_percentage TEXT NOT NULL DEFAULT '0',
                supplier_name TEXT,
                notes TEXT,
                status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active','depleted')),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY(product_id) REFERENCES products(id),
                UNIQUE(product_id, batch_number)
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_product_batches_fifo ON product_batches(product_id, status, created_at, id)"
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sales (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT NOT NULL,
                user_id TEXT,
                payment_method TEXT,
                customer_name TEXT,
                notes TEXT,
                discount_type TEXT NOT NULL DEFAULT 'none',
                discount_percentage TEXT NOT NULL DEFAULT '0',
                discount_amount TEXT NOT NULL DEFAULT '0',
                subtotal_before_discount TEXT NOT NULL DEFAULT '0',
                total_amount TEXT NOT NULL,
                total_revenue TEXT NOT NULL DEFAULT '0',
                total_cogs TEXT NOT NULL DEFAULT '0',
                gross_profit TEXT NOT NULL DEFAULT '0',
                profit_margin_percentage TEXT NOT NULL DEFAULT '0',
                status TEXT NOT NULL DEFAULT 'completed'
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sale_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sale_id INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                quantity INTEGER NOT NULL CHECK(quantity > 0),
                unit_price TEXT NOT NULL,
                total_price TEXT NOT NULL,
                FOREIGN KEY(sale_id) REFERENCES sales(id) ON DELETE CASCADE,
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sale_batch_allocations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sale_id INTEGER NOT NULL,
                sale_item_id INTEGER NOT NULL,
                batch_id INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                quantity_sold INTEGER NOT NULL CHECK(quantity_sold > 0),
                batch_purchase_price TEXT NOT NULL,
                batch_selling_price TEXT NOT NULL,
                item_cogs TEXT NOT NULL,
                item_revenue TEXT NOT NULL,
                item_profit TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY(sale_id) REFERENCES sales(id) ON DELETE CASCADE,
                FOREIGN KEY(sale_item_id) REFERENCES sale_items(id) ON DELETE CASCADE,
                FOREIGN KEY(batch_id) REFERENCES product_batches(id),
                FOREIGN KEY(product_id) REFERENCES products(id),
                UNIQUE(sale_item_id, batch_id)
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sale_batch_allocations_sale_id ON sale_batch_allocations(sale_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sale_batch_allocations_batch_id ON sale_batch_allocations(batch_id)")

    def _migration_v2_audit_trail(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS price_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id INTEGER NOT NULL,
                old_price TEXT,
                new_price TEXT NOT NULL,
                reason TEXT,
                changed_by TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_price_history_product_id ON price_history(product_id, id)")

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS batch_adjustments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                batch_id INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                old_quantity INTEGER NOT NULL CHECK(old_quantity >= 0),
                new_quantity INTEGER NOT NULL CHECK(new_quantity >= 0),
                reason TEXT NOT NULL,
                user_id TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY(batch_id) REFERENCES product_batches(id),
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )

        # Allocations are the audit trail behind historical profit: never rewritten.
        cur.execute(
            """
            CREATE TRIGGER IF NOT EXISTS trg_sale_batch_allocations_immutable
            BEFORE UPDATE ON sale_batch_allocations
            BEGIN
                SELECT RAISE(ABORT, 'sale_batch_allocations rows are immutable');
            END
            """
        )
        cur.execute(
            """
            CREATE TRIGGER IF NOT EXISTS trg_product_batches_no_delete
            BEFORE DELETE ON product_batches
            BEGIN
                SELECT RAISE(ABORT, 'product_batches rows are never deleted');
            END
            """
        )

    # ---------- Products ----------
    def add_product(
        self,
        generic_name: str,
        brand_name: Optional[str],
        current_price: Optional[Decimal],
        cost_price: Optional[Decimal],
        opening_stock: int,
        reorder_level: int,
        expiry_date: Optional[date],
        supplier: Optional[str],
        created_at: datetime,
    ) -> int:
        conn = self._conn()
        try:
            cur = conn.cursor()
            ts = timestamp(created_at)
            cur.execute(
                """
                INSERT INTO products (
                    generic_name, brand_name, current_price, cost_price, total_stock,
                    reorder_level, expiry_date, supplier, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    generic_name,
                    brand_name,
                    to_db(current_price),
                    to_db(cost_price),
                    int(opening_stock),
                    int(reorder_level),
                    expiry_date.isoformat() if expiry_date else None,
                    supplier,
                    ts,
                    ts,
                ),
            )
            return int(cur.lastrowid)
        finally:
            conn.close()

    def get_product_by_id(self, product_id: int, include_archived: bool = False) -> Optional[Product]:
        conn = self._conn()
        try:
            sql = f"SELECT {columns(PRODUCT_COLUMNS)} FROM products WHERE id=?"
            if not include_archived:
                sql += " AND is_active=1"
            r = conn.execute(sql, (int(product_id),)).fetchone()
            return product_from_row(r) if r else None
        finally:
            conn.close()

    def find_product_by_name(self, generic_name: str, brand_name: Optional[str] = None) -> Optional[Product]:
        conn = self._conn()
        try:
            r = conn.execute(
                f"""
                SELECT {columns(PRODUCT_COLUMNS)} FROM products
                WHERE is_active=1
                  AND lower(generic_name) = lower(?)
                  AND lower(COALESCE(brand_name, '')) = lower(COALESCE(?, ''))
                ORDER BY id LIMIT 1
                """,
                (generic_name.strip(), (brand_name or "").strip()),
            ).fetchone()
            return product_from_row(r) if r else None
        finally:
            conn.close()

    def list_products(self) -> list[Product]:
        conn = self._conn()
        try:
            rows = conn.execute(
                f"SELECT {columns(PRODUCT_COLUMNS)} FROM products WHERE is_active=1 ORDER BY generic_name, id"
            ).fetchall()
            return [product_from_row(r) for r in rows]
        finally:
            conn.close()

    def list_low_stock_products(self, limit: int = 50) -> list[Product]:
        conn = self._conn()
        try:
            rows = conn.execute(
                f"""
                SELECT {columns(PRODUCT_COLUMNS)}
                FROM products
                WHERE is_active=1 AND total_stock <= reorder_level
                ORDER BY (total_stock - reorder_level) ASC, generic_name ASC
                LIMIT ?
                """,
                (int(limit),),
            ).fetchall()
            return [product_from_row(r) for r in rows]
        finally:
            conn.close()

    def archive_product(self, product_id: int) -> bool:
        conn = self._conn()
        try:
            cur = conn.execute(
                "UPDATE products SET is_active=0, updated_at=datetime('now') WHERE id=? AND is_active=1",
                (int(product_id),),
            )
            return cur.rowcount > 0
        finally:
            conn.close()

    def legacy_product_ids(self) -> list[int]:
        """Products carrying stock on their own row with no batch rows yet."""
        conn = self._conn()
        try:
            rows = conn.execute(
                """
                SELECT p.id FROM products p
                WHERE p.is_active=1 AND p.total_stock > 0
                  AND NOT EXISTS (SELECT 1 FROM product_batches pb WHERE pb.product_id = p.id)
                ORDER BY p.id
                """
            ).fetchall()
            return [int(r["id"]) for r in rows]
        finally:
            conn.close()

    # ---------- Batches ----------
    def get_batch(self, batch_id: int) -> Optional[Batch]:
        conn = self._conn()
        try:
            r = conn.execute(
                f"SELECT {columns(BATCH_COLUMNS)} FROM product_batches WHERE id=?", (int(batch_id),)
            ).fetchone()
            return batch_from_row(r) if r else None
        finally:
            conn.close()

    def list_batches_fifo(self, product_id: int) -> list[Batch]:
        conn = self._conn()
        try:
            rows = conn.execute(
                f"""
                SELECT {columns(BATCH_COLUMNS)}
                FROM product_batches
                WHERE product_id=?
                ORDER BY {fifo_order()}
                """,
                (int(product_id),),
            ).fetchall()
            return [batch_from_row(r) for r in rows]
        finally:
            conn.close()

    def list_all_batches(self) -> list[Batch]:
        conn = self._conn()
        try:
            rows = conn.execute(
                f"SELECT {columns(BATCH_COLUMNS)} FROM product_batches ORDER BY product_id, {fifo_order()}"
            ).fetchall()
            return [batch_from_row(r) for r in rows]
        finally:
            conn.close()

    def list_expiring_batches(self, today: date, until: date) -> list[Batch]:
        conn = self._conn()
        try:
            rows = conn.execute(
                f"""
                SELECT {columns(BATCH_COLUMNS)}
                FROM product_batches
                WHERE status=? AND remaining_quantity > 0
                  AND expiry_date IS NOT NULL AND expiry_date >= ? AND expiry_date <= ?
                ORDER BY expiry_date ASC, id ASC
                """,
                (BATCH_ACTIVE, today.isoformat(), until.isoformat()),
            ).fetchall()
            return [batch_from_row(r) for r in rows]
        finally:
            conn.close()

    def available_quantity(self, product_id: int) -> int:
        conn = self._conn()
        try:
            r = conn.execute(
                """
                SELECT COALESCE(SUM(remaining_quantity), 0)
                FROM product_batches
                WHERE product_id=? AND status=? AND remaining_quantity > 0
                """,
                (int(product_id), BATCH_ACTIVE),
            ).fetchone()
            return int(r[0])
        finally:
            conn.close()

    def current_batch_price(self, product_id: int, today: date) -> Optional[CurrentBatchPrice]:
        conn = self._conn()
        try:
            r = conn.execute(
                f"""
                SELECT pb.id, pb.batch_number, pb.remaining_quantity, pb.expiry_date,
                       COALESCE(pb.selling_price, p.current_price) AS selling_price,
                       COALESCE(pb.purchase_price, '0') AS purchase_price
                FROM product_batches pb
                JOIN products p ON p.id = pb.product_id
                WHERE pb.product_id = ?
                  AND pb.remaining_quantity > 0
                  AND pb.status = ?
                  AND (pb.expiry_date IS NULL OR pb.expiry_date > ?)
                ORDER BY {fifo_order("pb")}
                LIMIT 1
                """,
                (int(product_id), BATCH_ACTIVE, today.isoformat()),
            ).fetchone()
            if not r:
                return None
            return CurrentBatchPrice(
                batch_id=int(r["id"]),
                selling_price=from_db(r["selling_price"]),
                purchase_price=from_db(r["purchase_price"]),
                available_quantity=int(r["remaining_quantity"]),
                expiry_date=_date(r["expiry_date"]),
                batch_number=str(r["batch_number"]),
            )
        finally:
            conn.close()

    def product_ids_with_active_stock(self) -> list[int]:
        conn = self._conn()
        try:
            rows = conn.execute(
                """
                SELECT DISTINCT product_id FROM product_batches
                WHERE remaining_quantity > 0 AND status=?
                ORDER BY product_id
                """,
                (BATCH_ACTIVE,),
            ).fetchall()
            return [int(r["product_id"]) for r in rows]
        finally:
            conn.close()

    def stock_drift(self) -> list[tuple[int, int, int]]:
        """(product_id, cached total_stock, sum of active remaining) where they disagree."""
        conn = self._conn()
        try:
            rows = conn.execute(
                """
                SELECT p.id, p.total_stock,
                       COALESCE((SELECT SUM(pb.remaining_quantity) FROM product_batches pb
                                 WHERE pb.product_id = p.id AND pb.status = 'active'), 0) AS batch_total
                FROM products p
                WHERE EXISTS (SELECT 1 FROM product_batches pb WHERE pb.product_id = p.id)
                ORDER BY p.id
                """
            ).fetchall()
            return [
                (int(r["id"]), int(r["total_stock"]), int(r["batch_total"]))
                for r in rows
                if int(r["total_stock"]) != int(r["batch_total"])
            ]
        finally:
            conn.close()

    def batch_adjustments(self, batch_id: int) -> list[BatchAdjustment]:
        conn = self._conn()
        try:
            rows = conn.execute(
                """
                SELECT id, batch_id, product_id, old_quantity, new_quantity, reason, user_id, created_at
                FROM batch_adjustments WHERE batch_id=? ORDER BY id
                """,
                (int(batch_id),),
            ).fetchall()
            return [
                BatchAdjustment(
                    id=int(r["id"]),
                    batch_id=int(r["batch_id"]),
                    product_id=int(r["product_id"]),
                    old_quantity=int(r["old_quantity"]),
                    new_quantity=int(r["new_quantity"]),
                    reason=str(r["reason"]),
                    user_id=r["user_id"],
                    created_at=str(r["created_at"]),
                )
                for r in rows
            ]
        finally:
            conn.close()

    def price_history(self, product_id: int) -> list[PriceHistoryEntry]:
        conn = self._conn()
        try:
            rows = conn.execute(
                """
                SELECT id, product_id, old_price, new_price, reason, changed_by, created_at
                FROM price_history WHERE product_id=? ORDER BY id
                """,
                (int(product_id),),
            ).fetchall()
            return [
                PriceHistoryEntry(
                    id=int(r["id"]),
                    product_id=int(r["product_id"]),
                    old_price=from_db(r["old_price"]),
                    new_price=from_db(r["new_price"]),
                    reason=r["reason"],
                    changed_by=r["changed_by"],
                    created_at=str(r["created_at"]),
                )
                for r in rows
            ]
        finally:
            conn.close()

    # ---------- Sales ----------
    def get_sale_header(self, sale_id: int) -> Optional[SaleHeader]:
        conn = self._conn()
        try:
            r = conn.execute(f"SELECT {columns(SALE_COLUMNS)} FROM sales WHERE id=?", (int(sale_id),)).fetchone()
            return sale_from_row(r) if r else None
        finally:
            conn.close()

    def list_sales_between(self, start_iso: str, end_iso: str) -> list[SaleHeader]:
        conn = self._conn()
        try:
            rows = conn.execute(
                f"""
                SELECT {columns(SALE_COLUMNS)}
                FROM sales
                WHERE created_at >= ? AND created_at < ?
                ORDER BY created_at DESC, id DESC
                """,
                (start_iso, end_iso),
            ).fetchall()
            return [sale_from_row(r) for r in rows]
        finally:
            conn.close()

    def sale_items_for_sale(self, sale_id: int) -> list[SaleItem]:
        conn = self._conn()
        try:
            rows = conn.execute(
                """
                SELECT id, sale_id, product_id, quantity, unit_price, total_price
                FROM sale_items WHERE sale_id=? ORDER BY id
                """,
                (int(sale_id),),
            ).fetchall()
            return [
                SaleItem(
                    id=int(r["id"]),
                    sale_id=int(r["sale_id"]),
                    product_id=int(r["product_id"]),
                    quantity=int(r["quantity"]),
                    unit_price=from_db(r["unit_price"]),
                    total_price=from_db(r["total_price"]),
                )
                for r in rows
            ]
        finally:
            conn.close()

    def count_allocations(self, sale_id: Optional[int] = None) -> int:
        conn = self._conn()
        try:
            if sale_id is None:
                r = conn.execute("SELECT COUNT(*) FROM sale_batch_allocations").fetchone()
            else:
                r = conn.execute(
                    "SELECT COUNT(*) FROM sale_batch_allocations WHERE sale_id=?", (int(sale_id),)
                ).fetchone()
            return int(r[0])
        finally:
            conn.close()

    def sale_profit_details(self, sale_id: int) -> list[SaleProfitDetail]:
        conn = self._conn()
        try:
            rows = conn.execute(
                """
                SELECT p.generic_name, p.brand_name, pb.batch_number, sba.quantity_sold,
                       sba.batch_purchase_price, sba.batch_selling_price,
                       sba.item_cogs, sba.item_revenue, sba.item_profit
                FROM sale_batch_allocations sba
                JOIN products p ON p.id = sba.product_id
                JOIN product_batches pb ON pb.id = sba.batch_id
                WHERE sba.sale_id = ?
                ORDER BY sba.created_at, sba.id
                """,
                (int(sale_id),),
            ).fetchall()
            return [
                SaleProfitDetail(
                    product_name=(
                        f"{r['generic_name']} ({r['brand_name']})" if r["brand_name"] else str(r["generic_name"])
                    ),
                    batch_number=str(r["batch_number"]),
                    quantity_sold=int(r["quantity_sold"]),
                    purchase_price=from_db(r["batch_purchase_price"]),
                    selling_price=from_db(r["batch_selling_price"]),
                    item_cogs=from_db(r["item_cogs"]),
                    item_revenue=from_db(r["item_revenue"]),
                    item_profit=from_db(r["item_profit"]),
                )
                for r in rows
            ]
        finally:
            conn.close()

    def integrity_check(self) -> str:
        conn = self._conn()
        try:
            row = conn.execute("PRAGMA integrity_check").fetchone()
            return str(row[0]) if row else "unknown"
        finally:
            conn.close()
