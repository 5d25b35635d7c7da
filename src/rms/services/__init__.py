from .catalog_service import CatalogService
from .settings_service import SettingsService
from .sales_service import SalesService
from .analytics_service import AnalyticsService
from .snapshot_service import SnapshotService
from .receipt_service import ReceiptService
from .reporting_service import ReportingService

__all__ = [
    "CatalogService",
    "SettingsService",
    "SalesService",
    "AnalyticsService",
    "SnapshotService",
    "ReceiptService",
    "ReportingService",
]
