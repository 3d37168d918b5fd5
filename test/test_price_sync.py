from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import pytest
from conftest import FakeClock, make_ledger

from pbl.domain.errors import NotFoundError


def test_first_batch_sets_price_and_records_history(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    pid = ledger.inventory.add_product("Ascorbic Acid")

    ledger.batches.add_batch(pid, 10, purchase_price="3", selling_price="5")

    assert ledger.inventory.get_product(pid).current_price == Decimal("5")
    history = ledger.pricing.price_history(pid)
    assert [(h.old_price, h.new_price, h.reason) for h in history] == [(None, Decimal("5"), "batch_added")]


def test_newer_batch_does_not_move_price_while_older_has_stock(tmp_path: Path):
    clock = FakeClock()
    ledger = make_ledger(tmp_path, clock)
    pid = ledger.inventory.add_product("Ferrous Sulfate")
    ledger.batches.add_batch(pid, 10, purchase_price="3", selling_price="5")
    clock.advance(hours=2)
    ledger.batches.add_batch(pid, 10, purchase_price="4", selling_price="6")

    assert ledger.inventory.get_product(pid).current_price == Decimal("5")
    current = ledger.pricing.get_current_batch_price(pid)
    assert current.selling_price == Decimal("5")
    assert current.available_quantity == 10
    assert current.batch_number.endswith("-001")


def test_refresh_is_idempotent(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    a = ledger.inventory.add_product("Folic Acid")
    b = ledger.inventory.add_product("Calcium")
    ledger.inventory.add_product("Empty Shelf")
    ledger.batches.add_batch(a, 3, selling_price="2")
    ledger.batches.add_batch(b, 3, selling_price="9")

    first = ledger.pricing.refresh_all_product_prices()
    history_count = len(ledger.pricing.price_history(a))
    second = ledger.pricing.refresh_all_product_prices()

    assert first.products_updated == 2
    assert first.prices_changed == 0
    assert second.prices_changed == 0
    assert len(ledger.pricing.price_history(a)) == history_count


def test_refresh_repairs_a_drifted_price(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    pid = ledger.inventory.add_product("Multivitamins")
    ledger.batches.add_batch(pid, 3, selling_price="12.50")
    conn = ledger.repo._conn()
    conn.execute("UPDATE products SET current_price='1' WHERE id=?", (pid,))
    conn.close()

    result = ledger.pricing.refresh_all_product_prices(changed_by="admin")

    assert result.prices_changed == 1
    assert ledger.inventory.get_product(pid).current_price == Decimal("12.50")
    last = ledger.pricing.price_history(pid)[-1]
    assert (last.old_price, last.new_price, last.reason, last.changed_by) == (
        Decimal("1"),
        Decimal("12.50"),
        "refresh_all",
        "admin",
    )


def test_expired_batches_are_not_a_price_source(tmp_path: Path):
    clock = FakeClock(datetime(2024, 3, 5, 9, 0, 0))
    ledger = make_ledger(tmp_path, clock)
    pid = ledger.inventory.add_product("Cough Syrup")
    ledger.batches.add_batch(pid, 5, expiry_date="2024-03-01", selling_price="50")
    clock.advance(minutes=1)
    ledger.batches.add_batch(pid, 5, expiry_date=date(2024, 3, 5), selling_price="55")
    clock.advance(minutes=1)
    ledger.batches.add_batch(pid, 5, selling_price="60")

    # expiring today counts as expired
    assert ledger.inventory.get_product(pid).current_price == Decimal("60")
    assert ledger.pricing.get_current_batch_price(pid).selling_price == Decimal("60")


def test_price_is_kept_when_last_batch_is_sold_out(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    pid = ledger.inventory.add_product("Loperamide")
    ledger.batches.add_batch(pid, 5, purchase_price="2", selling_price="20")

    outcome = ledger.sales.create_sale_with_items({}, [{"product_id": pid, "quantity": 5}])

    assert outcome.success
    assert ledger.inventory.get_product(pid).current_price == Decimal("20")
    assert ledger.pricing.get_current_batch_price(pid) is None


def test_batch_without_selling_price_leaves_price_alone(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    pid = ledger.inventory.add_product("Hydrocortisone", price="30")
    ledger.batches.add_batch(pid, 5, purchase_price="10")

    assert ledger.inventory.get_product(pid).current_price == Decimal("30")
    current = ledger.pricing.get_current_batch_price(pid)
    assert current.selling_price == Decimal("30")
    assert current.purchase_price == Decimal("10")


def test_fifo_ties_prefer_dated_batches_then_insertion_order(tmp_path: Path):
    ledger = make_ledger(tmp_path)  # clock never advances: identical created_at
    pid = ledger.inventory.add_product("Insulin")
    undated = ledger.batches.add_batch(pid, 5, selling_price="11")
    later = ledger.batches.add_batch(pid, 5, expiry_date="2025-06-01", selling_price="12")
    sooner = ledger.batches.add_batch(pid, 5, expiry_date="2025-01-01", selling_price="13")

    order = [b.batch_number for b in ledger.batches.get_product_batches_fifo(pid)]

    assert order == [sooner.batch_number, later.batch_number, undated.batch_number]
    assert ledger.inventory.get_product(pid).current_price == Decimal("13")


def test_unknown_product_is_not_found(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    with pytest.raises(NotFoundError):
        ledger.pricing.get_current_batch_price(42)
    with pytest.raises(NotFoundError):
        ledger.batches.get_product_batches_fifo(42)


def test_manual_sync_of_one_product(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    pid = ledger.inventory.add_product("Tramadol")
    ledger.batches.add_batch(pid, 4, selling_price="18")
    conn = ledger.repo._conn()
    conn.execute("UPDATE products SET current_price='17' WHERE id=?", (pid,))
    conn.close()

    assert ledger.pricing.sync_product_price(pid, changed_by="owner") is True
    assert ledger.pricing.sync_product_price(pid) is False
    assert ledger.inventory.get_product(pid).current_price == Decimal("18")
