from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from salesdesk import __version__
from salesdesk.config import SalesPolicy
from salesdesk.repositories.sqlite_repo import SqliteRepository
from salesdesk.services.auth_service import AuthService
from salesdesk.services.catalog_service import CatalogService
from salesdesk.services.export_service import ExportService
from salesdesk.services.receipt_service import ReceiptNumberGenerator
from salesdesk.services.reporting_service import ReportingService
from salesdesk.services.sales_service import SalesService
from salesdesk.services.workflow_service import WorkflowService


@dataclass(frozen=True)
class AppContainer:
    repo: SqliteRepository
    catalog: CatalogService
    sales: SalesService
    reporting: ReportingService
    exports: ExportService
    auth: AuthService
    workflow: WorkflowService
    version: str


def build_container(db_path: Path | str, policy: SalesPolicy | None = None) -> AppContainer:
    policy = policy or SalesPolicy()

    repo = SqliteRepository(db_path)
    repo.init_db()

    catalog = CatalogService(repo)
    sales = SalesService(repo, ReceiptNumberGenerator(), policy=policy)
    reporting = ReportingService(repo)
    exports = ExportService(sales, reporting)
    auth = AuthService(repo)
    workflow = WorkflowService(auth, catalog, sales, reporting, exports, policy=policy)

    return AppContainer(
        repo=repo,
        catalog=catalog,
        sales=sales,
        reporting=reporting,
        exports=exports,
        auth=auth,
        workflow=workflow,
        version=__version__,
    )
