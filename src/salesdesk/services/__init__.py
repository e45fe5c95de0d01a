from .auth_service import AuthService
from .catalog_service import CatalogService
from .export_service import ExportService
from .receipt_service import ReceiptNumberGenerator
from .reporting_service import ReportingService
from .sales_service import SalesService
from .workflow_service import WorkflowService

__all__ = [
    "AuthService",
    "CatalogService",
    "ExportService",
    "ReceiptNumberGenerator",
    "ReportingService",
    "SalesService",
    "WorkflowService",
]
