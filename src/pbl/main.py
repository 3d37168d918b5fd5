from __future__ import annotations

import argparse
import logging
import sys
from datetime import date, timedelta

from pbl.application.container import build_container
from pbl.config import LedgerSettings, get_app_paths
from pbl.domain.errors import AppError
from pbl.logging_config import setup_logging

log = logging.getLogger("pbl.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pbl", description="Pharmacy batch ledger admin utilities")
    parser.add_argument("--db", help="Path to the ledger database (defaults to the app data directory)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create or migrate the ledger database")

    p_import = sub.add_parser("import-batches", help="Import incoming batches from .xlsx or .csv")
    p_import.add_argument("path")

    sub.add_parser("refresh-prices", help="Re-sync every product price with its FIFO batch")
    sub.add_parser("backfill", help="Attribute pre-batch product stock to batch 001")

    p_report = sub.add_parser("export-report", help="Write the profit report workbook")
    p_report.add_argument("path")
    p_report.add_argument("--start", type=date.fromisoformat, help="First day, YYYY-MM-DD (default: 30 days ago)")
    p_report.add_argument("--end", type=date.fromisoformat, help="Last day, YYYY-MM-DD (default: today)")

    sub.add_parser("check", help="Run the ledger health check")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)
    container = build_container(args.db or paths.db_path, LedgerSettings.from_env(), logs_dir=paths.logs_dir)

    try:
        if args.command == "init":
            print(f"Ledger ready at {container.repo.db_path}")
        elif args.command == "import-batches":
            report = container.excel.import_batches(args.path)
            print(f"Imported {report.ok} batch(es), skipped {report.skipped}.")
            for row, message in report.errors:
                print(f"  row {row}: {message}")
        elif args.command == "refresh-prices":
            result = container.pricing.refresh_all_product_prices()
            print(f"Products checked: {result.products_updated}, prices changed: {result.prices_changed}")
        elif args.command == "backfill":
            print(f"Legacy batches created: {container.batches.backfill_legacy_stock()}")
        elif args.command == "export-report":
            end = args.end or date.today()
            start = args.start or end - timedelta(days=30)
            container.reporting.export_profit_report_excel(
                args.path, start.isoformat(), (end + timedelta(days=1)).isoformat()
            )
            print(f"Report written to {args.path}")
        elif args.command == "check":
            report = container.operations.run_ledger_check()
            print(f"SQLite integrity: {report.sqlite_integrity}")
            for product_id, cached, expected in report.stock_drift:
                print(f"  stock drift product {product_id}: total_stock={cached} batches={expected}")
            for product_id, current, expected in report.price_drift:
                print(f"  price drift product {product_id}: current_price={current} fifo={expected}")
            print(f"Products with unattributed legacy stock: {report.legacy_products}")
            return 0 if report.healthy else 1
    except AppError as e:
        log.error("cli_command_failed command=%s error=%s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
