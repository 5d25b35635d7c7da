from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from rms.repositories.sqlite_repo import SqliteRepository
from rms.services.analytics_service import AnalyticsService
from rms.services.catalog_service import CatalogService
from rms.services.receipt_service import ReceiptService
from rms.services.reporting_service import ReportingService
from rms.services.sales_service import SalesService
from rms.services.settings_service import SettingsService
from rms.services.snapshot_service import SnapshotService


@dataclass(frozen=True)
class AppContainer:
    repo: SqliteRepository
    catalog: CatalogService
    settings: SettingsService
    sales: SalesService
    analytics: AnalyticsService
    snapshots: SnapshotService
    receipts: ReceiptService
    reporting: ReportingService


def build_container(db_path: Path | str, clock: Callable[[], datetime] | None = None) -> AppContainer:
    """Create the one store for this process and hand it to every service."""
    clock = clock or datetime.now
    repo = SqliteRepository(db_path, clock=clock)
    repo.init_db()

    catalog = CatalogService(repo)
    settings = SettingsService(repo)
    sales = SalesService(repo)
    analytics = AnalyticsService(repo, today=lambda: clock().date())
    snapshots = SnapshotService(repo)
    receipts = ReceiptService(settings, sales, clock=clock)
    reporting = ReportingService(analytics, sales)

    return AppContainer(
        repo=repo,
        catalog=catalog,
        settings=settings,
        sales=sales,
        analytics=analytics,
        snapshots=snapshots,
        receipts=receipts,
        reporting=reporting,
    )
