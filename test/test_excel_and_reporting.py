from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest
from conftest import FakeClock, batch_rows, make_ledger
from openpyxl import Workbook, load_workbook

from pbl.domain.errors import ValidationError


def test_excel_import_adds_batches_and_reports_bad_rows(tmp_path: Path):
    clock = FakeClock(datetime(2024, 3, 5, 9, 0, 0))
    ledger = make_ledger(tmp_path, clock)

    wb = Workbook()
    ws = wb.active
    ws.append(["Generic_Name", "Brand_Name", "Quantity", "Expiry_Date", "Purchase_Price", "Selling_Price", "Supplier_Name"])
    ws.append(["Paracetamol", "Biogesic", 100, datetime(2025, 12, 31), 2.5, 4.0, "Unilab"])
    ws.append(["Paracetamol", "Biogesic", 50.0, "2026-01-31", 2.75, 4.25, "Unilab"])
    ws.append(["Paracetamol", "Biogesic", "abc", None, 2.5, 4.0, None])
    ws.append(["Paracetamol", "Biogesic", 0, None, 2.5, 4.0, None])
    ws.append([None, None, None, None, None, None, None])
    path = tmp_path / "batches.xlsx"
    wb.save(path)

    report = ledger.excel.import_batches(str(path))

    assert (report.ok, report.skipped) == (2, 2)
    assert [row for row, _ in report.errors] == [4, 5]

    [product] = ledger.inventory.list_products()
    assert product.display_name == "Paracetamol (Biogesic)"
    assert product.total_stock == 150
    assert product.current_price == Decimal("4.0")
    batches = ledger.batches.get_product_batches_fifo(product.id)
    assert [b.sequence for b in batches] == [1, 2]
    assert batches[0].expiry_date.isoformat() == "2025-12-31"
    assert batches[0].supplier_name == "Unilab"
    assert batches[1].purchase_price == Decimal("2.75")


def test_csv_import_by_product_id(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    pid = ledger.inventory.add_product("Ibuprofen", "Advil")

    path = tmp_path / "restock.csv"
    path.write_text(
        "product_id,quantity,purchase_price,selling_price,notes\n"
        f"{pid},12,5,8,PO-1001\n"
        "999,3,5,8,\n",
        encoding="utf-8",
    )

    report = ledger.excel.import_batches(path)

    assert (report.ok, report.skipped) == (1, 1)
    assert report.errors[0][0] == 3
    assert [(qty, status) for _, qty, status in batch_rows(ledger.repo, pid)] == [(12, "active")]
    assert ledger.batches.get_product_batches_fifo(pid)[0].notes == "PO-1001"


def test_csv_import_skips_unusable_product_ids_and_continues(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    pid = ledger.inventory.add_product("Metformin")

    path = tmp_path / "ids.csv"
    path.write_text(
        f"product_id,quantity\n{pid},5\ninf,3\n1.5,4\n{10**20},2\n{pid},7\n",
        encoding="utf-8",
    )

    report = ledger.excel.import_batches(path)

    assert (report.ok, report.skipped) == (2, 3)
    assert [row for row, _ in report.errors] == [3, 4, 5]
    assert "Product id must be a whole number." in report.errors[0][1]
    assert [qty for _, qty, _ in batch_rows(ledger.repo, pid)] == [5, 7]
    assert ledger.inventory.get_product(pid).total_stock == 12


def test_rejected_row_for_new_name_creates_no_product(tmp_path: Path):
    ledger = make_ledger(tmp_path)

    path = tmp_path / "new.csv"
    path.write_text(
        "generic_name,quantity,selling_price\nNew Drug,-5,12\nOther Drug,3,abc\nGood Drug,4,9\n",
        encoding="utf-8",
    )

    report = ledger.excel.import_batches(path)

    assert (report.ok, report.skipped) == (1, 2)
    [product] = ledger.inventory.list_products()
    assert product.generic_name == "Good Drug"
    assert product.current_price == Decimal("9")
    history = ledger.pricing.price_history(product.id)
    assert [(h.old_price, h.new_price, h.reason) for h in history] == [(None, Decimal("9"), "batch_added")]


def test_import_requires_quantity_header(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    wb = Workbook()
    wb.active.append(["generic_name", "selling_price"])
    path = tmp_path / "bad.xlsx"
    wb.save(path)

    with pytest.raises(ValidationError, match="quantity"):
        ledger.excel.import_batches(path)


def test_profit_report_has_summary_detail_and_batches(tmp_path: Path):
    clock = FakeClock(datetime(2024, 3, 5, 9, 0, 0))
    ledger = make_ledger(tmp_path, clock)
    pid = ledger.inventory.add_product("Amoxicillin", "Amoxil")
    ledger.batches.add_batch(pid, 10, purchase_price="80", selling_price="100")
    clock.advance(minutes=1)
    ledger.batches.add_batch(pid, 10, purchase_price="85", selling_price="105")
    clock.advance(minutes=1)
    ledger.sales.create_sale_with_items({}, [{"product_id": pid, "quantity": 15}])

    out = tmp_path / "profit.xlsx"
    ledger.reporting.export_profit_report_excel(str(out), "2024-03-01", "2024-04-01")

    wb = load_workbook(out)
    assert wb.sheetnames == ["Summary", "Profit Detail", "Batches"]

    summary = wb["Summary"]
    assert summary["B5"].value == 1
    assert summary["B8"].value == pytest.approx(1225.0)
    assert summary["B9"].value == pytest.approx(300.0)

    detail = wb["Profit Detail"]
    assert detail.max_row == 3
    assert [detail.cell(row=r, column=5).value for r in (2, 3)] == [10, 5]
    assert detail["C2"].value == "Amoxicillin (Amoxil)"

    assert wb["Batches"].max_row == 3
