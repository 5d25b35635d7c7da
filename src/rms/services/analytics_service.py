from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Callable, Optional, Sequence

from rms.domain.models import (
    AnalyticsSnapshot,
    AnalyticsSummary,
    DailyRevenue,
    DateRange,
    ProductShare,
    TopProduct,
)
from rms.domain.money import to_decimal, to_money

DEFAULT_DAILY_WINDOW_DAYS = 7
TOP_PRODUCTS_LIMIT = 5


class AnalyticsService:
    def __init__(self, repo, today: Callable[[], date] | None = None):
        self.repo = repo
        self.today = today or date.today

    def get_analytics(self, date_range: Optional[DateRange] = None) -> AnalyticsSnapshot:
        """Aggregates over the sale history.

        Without a range the daily series covers the last seven calendar days
        and the product/summary figures cover all history. With a range every
        figure uses it.
        """
        if date_range is None:
            daily_range = DateRange.last_days(DEFAULT_DAILY_WINDOW_DAYS, today=self.today())
            totals_range = DateRange()
        else:
            daily_range = totals_range = date_range

        product_rows = self.repo.product_totals(totals_range.start, totals_range.end)
        return AnalyticsSnapshot(
            daily_revenue=self.daily_revenue(daily_range),
            top_products=[
                TopProduct(name=name, sales=to_decimal(qty), revenue=to_money(revenue))
                for name, qty, revenue in product_rows[:TOP_PRODUCTS_LIMIT]
            ],
            product_distribution=[
                ProductShare(name=name, value=to_decimal(qty)) for name, qty, _revenue in product_rows
            ],
            summary=self.summary(totals_range),
        )

    def daily_revenue(self, date_range: DateRange) -> list[DailyRevenue]:
        # Only observed dates; callers chart gaps as zero.
        return [
            DailyRevenue(date=d, revenue=to_money(revenue), orders=orders)
            for d, revenue, orders in self.repo.daily_revenue(date_range.start, date_range.end)
        ]

    def summary(self, date_range: Optional[DateRange] = None) -> AnalyticsSummary:
        date_range = date_range or DateRange()
        orders, revenue = self.repo.sales_summary(date_range.start, date_range.end)
        revenue = to_money(revenue)
        average = to_money(revenue / orders) if orders else to_money(0)
        return AnalyticsSummary(total_orders=orders, total_revenue=revenue, average_order_value=average)

    def product_stats(self) -> list[tuple[str, Decimal, Decimal]]:
        """(name, quantity sold, amount) per product name over all history."""
        return [(name, to_decimal(qty), to_money(amount)) for name, qty, amount in self.repo.product_totals()]


def growth_rate(daily_revenue: Sequence[DailyRevenue]) -> Decimal:
    """Percent change from the first to the last bucket, 0 when undefined."""
    if len(daily_revenue) < 2:
        return Decimal(0)
    first = daily_revenue[0].revenue
    last = daily_revenue[-1].revenue
    if first == 0:
        return Decimal(0)
    return ((last - first) / first * 100).quantize(Decimal("0.1"))
