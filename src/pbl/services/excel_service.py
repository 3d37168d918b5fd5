from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from openpyxl import load_workbook

from pbl.domain.errors import AppError, ValidationError
from pbl.domain.numbers import to_quantity
from pbl.services.batch_service import validate_batch_fields

log = logging.getLogger(__name__)

REQUIRED_HEADERS = ("quantity",)
PRODUCT_HEADERS = ("product_id", "generic_name")


@dataclass(frozen=True)
class ImportReport:
    ok: int
    skipped: int
    errors: tuple[tuple[int, str], ...] = ()


class ExcelService:
    def __init__(self, repo, batch_service, inventory_service):
        self.repo = repo
        self.batches = batch_service
        self.inventory = inventory_service

    def import_batches(self, path: str | Path) -> ImportReport:
        """
        Every row is one incoming batch, added through the normal restock path.
        Headers (row 1, case-insensitive):
          product_id | generic_name | brand_name | quantity | expiry_date |
          purchase_price | selling_price | supplier_name | notes
        A row needs quantity and either product_id or generic_name. Unknown
        names are registered as new products once the row validates. Bad rows
        are reported and skipped; the rest still import.
        """
        path = Path(path)
        if path.suffix.lower() == ".csv":
            headers, rows = self._read_csv(path)
        else:
            headers, rows = self._read_xlsx(path)

        for h in REQUIRED_HEADERS:
            if h not in headers:
                raise ValidationError(f"Missing column header: {h}")
        if not any(h in headers for h in PRODUCT_HEADERS):
            raise ValidationError("Missing column header: product_id or generic_name")

        ok = 0
        skipped = 0
        errors: list[tuple[int, str]] = []

        for row_number, row in rows:
            if all(v is None or str(v).strip() == "" for v in row.values()):
                continue
            try:
                fields = validate_batch_fields(
                    row.get("quantity"),
                    row.get("expiry_date"),
                    row.get("purchase_price"),
                    row.get("selling_price"),
                    _text(row.get("supplier_name")),
                    _text(row.get("notes")) or f"Imported from {path.name}",
                )
                product_id = self._resolve_product(row)
                result = self.batches.add_batch(
                    product_id,
                    fields.quantity,
                    expiry_date=fields.expiry_date,
                    purchase_price=fields.purchase_price,
                    selling_price=fields.selling_price,
                    supplier_name=fields.supplier_name,
                    notes=fields.notes,
                )
                log.info("import_row_ok row=%s product_id=%s batch=%s", row_number, product_id, result.batch_number)
                ok += 1
            except (AppError, ValueError, TypeError, OverflowError) as e:
                log.warning("Batch import skipped row %s: %s", row_number, e)
                errors.append((row_number, str(e)))
                skipped += 1

        log.info("batch_import_finished path=%s ok=%s skipped=%s", path.name, ok, skipped)
        return ImportReport(ok=ok, skipped=skipped, errors=tuple(errors))

    def _resolve_product(self, row: dict) -> int:
        raw_id = row.get("product_id")
        if raw_id is not None and str(raw_id).strip() != "":
            product_id = to_quantity(raw_id, "Product id")
            if product_id <= 0:
                raise ValidationError("Product id must be >= 1.")
            return product_id

        generic_name = _text(row.get("generic_name"))
        if not generic_name:
            raise ValidationError("Row needs a product_id or generic_name.")
        brand_name = _text(row.get("brand_name"))
        existing = self.repo.find_product_by_name(generic_name, brand_name)
        if existing:
            return existing.id
        # price is set by the batch's price sync
        return self.inventory.add_product(generic_name, brand_name)

    def _read_xlsx(self, path: Path) -> tuple[set[str], Iterator[tuple[int, dict]]]:
        wb = load_workbook(path, data_only=True)
        ws = wb.active

        headers = {}
        for col in range(1, ws.max_column + 1):
            v = ws.cell(row=1, column=col).value
            if isinstance(v, str):
                headers[v.strip().lower()] = col

        def rows() -> Iterator[tuple[int, dict]]:
            for row in range(2, ws.max_row + 1):
                yield row, {name: ws.cell(row=row, column=col).value for name, col in headers.items()}

        return set(headers), rows()

    def _read_csv(self, path: Path) -> tuple[set[str], Iterator[tuple[int, dict]]]:
        with path.open(newline="", encoding="utf-8-sig") as f:
            reader = csv.DictReader(f)
            fieldnames = {(name or "").strip().lower() for name in (reader.fieldnames or [])}
            records = [
                (reader.line_num, {k.strip().lower(): v for k, v in raw.items() if k is not None})
                for raw in reader
            ]
        return fieldnames, iter(records)


def _text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
