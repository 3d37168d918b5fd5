from decimal import Decimal
from pathlib import Path

import pytest
from conftest import FakeClock, active_batch_total, batch_rows, make_ledger

from pbl.domain.errors import InsufficientStockError, ValidationError
from pbl.services.allocation import FifoAllocator


def _two_batch_product(ledger, clock, first=(5, "10", "15"), second=(5, "12", "18")):
    pid = ledger.inventory.add_product("Losartan", "Cozaar")
    a = ledger.batches.add_batch(pid, first[0], purchase_price=first[1], selling_price=first[2])
    clock.advance(minutes=1)
    b = ledger.batches.add_batch(pid, second[0], purchase_price=second[1], selling_price=second[2])
    clock.advance(minutes=1)
    return pid, a, b


def test_sale_drains_oldest_batch_first(tmp_path: Path):
    clock = FakeClock()
    ledger = make_ledger(tmp_path, clock)
    pid, a, b = _two_batch_product(ledger, clock)

    outcome = ledger.sales.create_sale_with_items({"user_id": "cashier-1"}, [{"product_id": pid, "quantity": 7}])

    assert outcome.success
    assert [(x.batch_number, x.quantity_sold) for x in outcome.items[0].allocations] == [
        (a.batch_number, 5),
        (b.batch_number, 2),
    ]
    assert batch_rows(ledger.repo, pid) == [
        (a.batch_number, 0, "depleted"),
        (b.batch_number, 3, "active"),
    ]
    assert outcome.total_cogs == Decimal("74")
    assert outcome.gross_profit == Decimal("37")
    assert ledger.inventory.get_product(pid).total_stock == 3


def test_restock_and_sale_scenario_profit_and_price(tmp_path: Path):
    clock = FakeClock()
    ledger = make_ledger(tmp_path, clock)
    pid, a, b = _two_batch_product(ledger, clock, first=(10, "80", "100"), second=(10, "85", "105"))
    assert ledger.inventory.get_product(pid).current_price == Decimal("100")

    outcome = ledger.sales.create_sale_with_items({}, [{"product_id": pid, "quantity": 15}])

    assert outcome.success
    assert outcome.total_cogs == Decimal("1225")
    assert outcome.gross_profit == Decimal("300")
    assert outcome.profit_margin == Decimal("19.67")

    sale = ledger.sales.get_sale(outcome.sale_id)
    assert sale.total_revenue == Decimal("1525")
    assert sale.total_cogs == Decimal("1225")
    assert sale.gross_profit == Decimal("300")
    assert sale.profit_margin_percentage == Decimal("19.67")
    # charged at the shelf price of the time, 15 x 100
    assert sale.total_amount == Decimal("1500")

    product = ledger.inventory.get_product(pid)
    assert product.current_price == Decimal("105")
    assert product.total_stock == 5

    details = ledger.sales.get_sale_profit_details(outcome.sale_id)
    assert [(d.product_name, d.batch_number, d.quantity_sold, d.item_profit) for d in details] == [
        ("Losartan (Cozaar)", a.batch_number, 10, Decimal("200")),
        ("Losartan (Cozaar)", b.batch_number, 5, Decimal("100")),
    ]


def test_historical_profit_survives_later_batch_changes(tmp_path: Path):
    clock = FakeClock()
    ledger = make_ledger(tmp_path, clock)
    pid, a, b = _two_batch_product(ledger, clock, first=(10, "80", "100"), second=(10, "85", "105"))
    sale_id = ledger.sales.create_sale_with_items({}, [{"product_id": pid, "quantity": 12}]).sale_id
    before = ledger.sales.get_sale_profit_details(sale_id)

    conn = ledger.repo._conn()
    conn.execute("UPDATE product_batches SET purchase_price='999', selling_price='1999' WHERE product_id=?", (pid,))
    conn.close()
    ledger.batches.add_batch(pid, 50, purchase_price="1", selling_price="2")
    ledger.pricing.refresh_all_product_prices()

    assert ledger.sales.get_sale_profit_details(sale_id) == before
    assert ledger.sales.get_sale(sale_id).gross_profit == Decimal("240")


def test_stock_invariant_holds_across_operations(tmp_path: Path):
    clock = FakeClock()
    ledger = make_ledger(tmp_path, clock)
    pid, a, b = _two_batch_product(ledger, clock)

    ledger.sales.create_sale_with_items({}, [{"product_id": pid, "quantity": 4}])
    ledger.batches.add_batch(pid, 8, purchase_price="11", selling_price="16")
    ledger.sales.create_sale_with_items({}, [{"product_id": pid, "quantity": 3}])
    ledger.batches.adjust_batch_quantity(b.batch_id, 2, "damaged blister")
    ledger.sales.create_sale_with_items({}, [{"product_id": pid, "quantity": 100}])

    product = ledger.inventory.get_product(pid)
    assert product.total_stock == active_batch_total(ledger.repo, pid)
    for batch in ledger.batches.get_product_batches_fifo(pid):
        assert 0 <= batch.remaining_quantity <= batch.original_quantity
        assert (batch.status == "depleted") == (batch.remaining_quantity == 0)


def test_missing_batch_prices_fall_back(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    pid = ledger.inventory.add_product("Vitamin C", price="7")
    ledger.batches.add_batch(pid, 10)

    outcome = ledger.sales.create_sale_with_items({}, [{"product_id": pid, "quantity": 2}])

    alloc = outcome.items[0].allocations[0]
    assert alloc.batch_purchase_price == Decimal("0")
    assert alloc.batch_selling_price == Decimal("7")
    assert outcome.total_cogs == Decimal("0")
    assert outcome.profit_margin == Decimal("100.00")


def test_legacy_stock_is_attributed_before_allocation(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    pid = ledger.inventory.add_product("Salbutamol", price="30", cost_price="20", opening_stock=10)

    outcome = ledger.sales.create_sale_with_items({}, [{"product_id": pid, "quantity": 4}])

    assert outcome.success
    assert outcome.total_cogs == Decimal("80")
    assert batch_rows(ledger.repo, pid) == [("BT-030524-093015-001", 6, "active")]
    assert ledger.inventory.get_product(pid).total_stock == 6


def test_allocator_raises_on_shortfall_inside_unit_of_work(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    pid = ledger.inventory.add_product("Metformin")
    ledger.batches.add_batch(pid, 3, purchase_price="5", selling_price="6")
    allocator = FifoAllocator()

    with pytest.raises(InsufficientStockError) as exc:
        with ledger.repo.unit_of_work() as uow:
            allocator.allocate(uow, pid, 5)

    assert (exc.value.requested, exc.value.available, exc.value.shortfall) == (5, 3, 2)
    assert batch_rows(ledger.repo, pid)[0][1] == 3

    with pytest.raises(ValidationError):
        with ledger.repo.unit_of_work() as uow:
            allocator.allocate(uow, pid, 0)


def test_check_availability(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    pid = ledger.inventory.add_product("Omeprazole")
    ledger.batches.add_batch(pid, 4)
    legacy = ledger.inventory.add_product("Ranitidine", opening_stock=9)

    ok = ledger.sales.check_availability(pid, 4)
    short = ledger.sales.check_availability(pid, 6)

    assert ok.sufficient and ok.shortfall == 0
    assert not short.sufficient and short.shortfall == 2
    assert ledger.sales.check_availability(legacy, 9).sufficient
