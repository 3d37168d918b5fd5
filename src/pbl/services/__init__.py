from .batch_numbering import BatchNumberGenerator
from .pricing_service import PriceSynchronizer, PricingService
from .batch_service import BatchService
from .allocation import FifoAllocator
from .sales_service import SalesService
from .inventory_service import InventoryService
from .excel_service import ExcelService
from .reporting_service import ReportingService
from .operations_service import OperationsService

__all__ = [
    "BatchNumberGenerator",
    "PriceSynchronizer",
    "PricingService",
    "BatchService",
    "FifoAllocator",
    "SalesService",
    "InventoryService",
    "ExcelService",
    "ReportingService",
    "OperationsService",
]
