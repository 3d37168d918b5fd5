from __future__ import annotations

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from pbl.domain.numbers import ZERO


class ReportingService:
    def __init__(self, repo, sales_service):
        self.repo = repo
        self.sales = sales_service

    def export_profit_report_excel(self, path: str, start_iso: str, end_iso: str) -> None:
        """Summary, per-batch profit lines and current batch stock for the window."""
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def pct(cell):
            cell.number_format = "0.00%"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, start_col: int, end_row: int, end_col: int):
            ref = f"{get_column_letter(start_col)}{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        summary = self.sales.sales_summary_between(start_iso, end_iso)
        sales_rows = self.sales.list_sales_between(start_iso, end_iso)

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Profit Summary"
        ws["A1"].font = Font(bold=True, size=14)

        ws["A3"] = "Window"
        ws["B3"] = f"{start_iso}  ->  {end_iso}"

        rows = [
            ("Sales count", summary.sales_count, "int"),
            ("Amount charged", float(summary.total_amount), "money"),
            ("Revenue (batch prices)", float(summary.total_revenue), "money"),
            ("COGS", float(summary.total_cogs), "money"),
            ("Gross profit", float(summary.gross_profit), "money"),
            ("Profit margin", float(summary.profit_margin_percentage) / 100, "pct"),
        ]

        start_row = 5
        for i, (label, val, kind) in enumerate(rows):
            r = start_row + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = val
            if kind == "money":
                money(ws[f"B{r}"])
            elif kind == "pct":
                pct(ws[f"B{r}"])

        set_widths(ws, {"A": 28, "B": 34})

        # -------- 2) Profit Detail --------
        ws2 = wb.create_sheet("Profit Detail")
        ws2.append([
            "Sale ID", "Datetime", "Product", "Batch",
            "Qty", "Purchase Price", "Selling Price",
            "COGS", "Revenue", "Profit", "Margin %",
        ])
        bold_row(ws2, 1)

        out_row = 2
        for s in sales_rows:
            for d in self.repo.sale_profit_details(int(s.id)):
                margin = (d.item_profit / d.item_revenue) if d.item_revenue != ZERO else ZERO
                ws2.append([
                    int(s.id), s.created_at[:19], d.product_name, d.batch_number,
                    int(d.quantity_sold), float(d.purchase_price), float(d.selling_price),
                    float(d.item_cogs), float(d.item_revenue), float(d.item_profit), float(margin),
                ])
                for col in "FGHIJ":
                    money(ws2[f"{col}{out_row}"])
                pct(ws2[f"K{out_row}"])
                out_row += 1

        ws2.freeze_panes = "A2"
        set_widths(ws2, {
            "A": 10, "B": 22, "C": 34, "D": 26,
            "E": 6, "F": 16, "G": 16,
            "H": 14, "I": 14, "J": 14, "K": 10,
        })
        if ws2.max_row >= 2:
            add_table(ws2, "ProfitDetail", 1, 1, ws2.max_row, 11)

        # -------- 3) Batches --------
        ws3 = wb.create_sheet("Batches")
        ws3.append([
            "Product ID", "Batch", "Original Qty", "Remaining Qty", "Expiry",
            "Purchase Price", "Selling Price", "Markup %", "Status", "Received",
        ])
        bold_row(ws3, 1)

        out_row = 2
        for b in self.repo.list_all_batches():
            ws3.append([
                int(b.product_id), b.batch_number, int(b.original_quantity), int(b.remaining_quantity),
                b.expiry_date.isoformat() if b.expiry_date else "",
                float(b.purchase_price) if b.purchase_price is not None else None,
                float(b.selling_price) if b.selling_price is not None else None,
                float(b.markup_percentage) / 100, b.status, b.created_at[:19],
            ])
            money(ws3[f"F{out_row}"])
            money(ws3[f"G{out_row}"])
            pct(ws3[f"H{out_row}"])
            out_row += 1

        ws3.freeze_panes = "A2"
        set_widths(ws3, {
            "A": 10, "B": 26, "C": 12, "D": 14, "E": 12,
            "F": 16, "G": 16, "H": 10, "I": 10, "J": 22,
        })
        if ws3.max_row >= 2:
            add_table(ws3, "BatchStock", 1, 1, ws3.max_row, 10)

        wb.save(path)
