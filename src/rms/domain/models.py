from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

DEFAULT_RESTAURANT_NAME = "Restaurant Management System"
DEFAULT_CURRENCY = "PKR"
DEFAULT_FOOTER = "Thank you for your business!"
DEFAULT_UNIT = "item"


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    price: Decimal
    unit: str = DEFAULT_UNIT


@dataclass(frozen=True)
class Settings:
    restaurant_name: str = DEFAULT_RESTAURANT_NAME
    address: str = ""
    phone: str = ""
    email: str = ""
    tax_rate: Optional[Decimal] = None
    currency: str = DEFAULT_CURRENCY
    opening_time: Optional[str] = None
    closing_time: Optional[str] = None
    receipt_footer: str = DEFAULT_FOOTER
    logo: Optional[bytes] = field(default=None, repr=False)


@dataclass(frozen=True)
class SaleLineInput:
    name: str
    unit_price: Decimal
    quantity: Decimal
    unit: str = DEFAULT_UNIT


@dataclass(frozen=True)
class TransactionLine:
    name: str
    price: Decimal
    quantity: Decimal
    unit: str
    subtotal: Decimal


@dataclass(frozen=True)
class Transaction:
    id: int
    lines: tuple[TransactionLine, ...]
    total_amount: Decimal
    currency: str
    date: str
    time: str


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-date window; either end may be open."""

    start: Optional[date] = None
    end: Optional[date] = None

    def __post_init__(self):
        if self.start and self.end and self.start > self.end:
            raise ValueError("Range start must not be after its end.")

    @classmethod
    def last_days(cls, days: int, today: Optional[date] = None) -> "DateRange":
        today = today or date.today()
        return cls(start=today - timedelta(days=days - 1), end=today)

    def contains(self, d: date) -> bool:
        if self.start and d < self.start:
            return False
        if self.end and d > self.end:
            return False
        return True


@dataclass(frozen=True)
class DailyRevenue:
    date: str
    revenue: Decimal
    orders: int


@dataclass(frozen=True)
class TopProduct:
    name: str
    sales: Decimal
    revenue: Decimal


@dataclass(frozen=True)
class ProductShare:
    name: str
    value: Decimal


@dataclass(frozen=True)
class AnalyticsSummary:
    total_orders: int
    total_revenue: Decimal
    average_order_value: Decimal


@dataclass(frozen=True)
class AnalyticsSnapshot:
    daily_revenue: list[DailyRevenue]
    top_products: list[TopProduct]
    product_distribution: list[ProductShare]
    summary: AnalyticsSummary
