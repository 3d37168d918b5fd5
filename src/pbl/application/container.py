from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from pbl.config import LedgerSettings
from pbl.repositories.sqlite_repo import SqliteRepository
from pbl.services.allocation import FifoAllocator
from pbl.services.batch_numbering import BatchNumberGenerator
from pbl.services.batch_service import BatchService
from pbl.services.excel_service import ExcelService
from pbl.services.inventory_service import InventoryService
from pbl.services.operations_service import OperationsService
from pbl.services.pricing_service import PriceSynchronizer, PricingService
from pbl.services.reporting_service import ReportingService
from pbl.services.sales_service import SalesService


@dataclass(frozen=True)
class AppContainer:
    repo: SqliteRepository
    settings: LedgerSettings
    inventory: InventoryService
    batches: BatchService
    pricing: PricingService
    sales: SalesService
    excel: ExcelService
    reporting: ReportingService
    operations: OperationsService


def build_container(
    db_path: Path | str,
    settings: LedgerSettings | None = None,
    clock: Callable[[], datetime] | None = None,
    logs_dir: Path | str | None = None,
) -> AppContainer:
    settings = settings or LedgerSettings()
    clock = clock or datetime.now

    repo = SqliteRepository(db_path, busy_timeout=settings.busy_timeout_seconds)
    repo.init_db()

    synchronizer = PriceSynchronizer(clock)
    numbering = BatchNumberGenerator(clock, settings.batch_number_retries)

    inventory = InventoryService(repo, clock=clock)
    batches = BatchService(repo, numbering, synchronizer, settings=settings, clock=clock)
    pricing = PricingService(repo, synchronizer, settings=settings, clock=clock)
    sales = SalesService(repo, FifoAllocator(synchronizer, clock), settings=settings, clock=clock)
    excel = ExcelService(repo, batches, inventory)
    reporting = ReportingService(repo, sales)
    operations = OperationsService(
        repo,
        db_path=db_path,
        logs_dir=logs_dir or Path(db_path).parent / "logs",
        clock=clock,
    )

    return AppContainer(
        repo=repo,
        settings=settings,
        inventory=inventory,
        batches=batches,
        pricing=pricing,
        sales=sales,
        excel=excel,
        reporting=reporting,
        operations=operations,
    )
