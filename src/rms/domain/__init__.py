from .models import (
    AnalyticsSnapshot,
    AnalyticsSummary,
    DailyRevenue,
    DateRange,
    Product,
    ProductShare,
    SaleLineInput,
    Settings,
    TopProduct,
    Transaction,
    TransactionLine,
)
from .errors import AppError, IntegrityError, NotFoundError, StorageError, ValidationError

__all__ = [
    "AnalyticsSnapshot",
    "AnalyticsSummary",
    "DailyRevenue",
    "DateRange",
    "Product",
    "ProductShare",
    "SaleLineInput",
    "Settings",
    "TopProduct",
    "Transaction",
    "TransactionLine",
    "AppError",
    "IntegrityError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
]
