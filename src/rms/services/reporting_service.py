from __future__ import annotations

from pathlib import Path
from typing import Optional

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from rms.domain.models import DateRange
from rms.services.analytics_service import growth_rate


class ReportingService:
    def __init__(self, analytics_service, sales_service):
        self.analytics = analytics_service
        self.sales = sales_service

    def export_sales_report_excel(self, path: Path | str, date_range: Optional[DateRange] = None) -> Path:
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, end_row: int, end_col: int):
            ref = f"A1:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        snapshot = self.analytics.get_analytics(date_range)
        transactions = self.sales.get_transactions(date_range)
        summary = snapshot.summary

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Summary"
        ws["A1"].font = Font(bold=True, size=14)

        ws["A3"] = "Window"
        if date_range is None:
            ws["B3"] = "All time (daily series: last 7 days)"
        else:
            start = date_range.start.isoformat() if date_range.start else "..."
            end = date_range.end.isoformat() if date_range.end else "..."
            ws["B3"] = f"{start}  ->  {end}"

        rows = [
            ("Total orders", summary.total_orders, "int"),
            ("Total revenue", float(summary.total_revenue), "money"),
            ("Average order value", float(summary.average_order_value), "money"),
            ("Growth % (first to last day)", float(growth_rate(snapshot.daily_revenue)), "pct"),
        ]
        start_row = 5
        for i, (label, val, kind) in enumerate(rows):
            r = start_row + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = val
            if kind == "money":
                money(ws[f"B{r}"])
        set_widths(ws, {"A": 30, "B": 34})

        # -------- 2) Daily Revenue --------
        ws2 = wb.create_sheet("Daily Revenue")
        ws2.append(["Date", "Revenue", "Orders"])
        bold_row(ws2, 1)
        for d in snapshot.daily_revenue:
            ws2.append([d.date, float(d.revenue), d.orders])
            money(ws2.cell(row=ws2.max_row, column=2))
        set_widths(ws2, {"A": 14, "B": 16, "C": 10})
        if ws2.max_row >= 2:
            add_table(ws2, "DailyRevenue", ws2.max_row, 3)

        # -------- 3) Top Products --------
        ws3 = wb.create_sheet("Top Products")
        ws3.append(["Product", "Quantity Sold", "Revenue"])
        bold_row(ws3, 1)
        for p in snapshot.top_products:
            ws3.append([p.name, float(p.sales), float(p.revenue)])
            money(ws3.cell(row=ws3.max_row, column=3))
        set_widths(ws3, {"A": 34, "B": 16, "C": 16})
        if ws3.max_row >= 2:
            add_table(ws3, "TopProducts", ws3.max_row, 3)

        # -------- 4) Transactions --------
        ws4 = wb.create_sheet("Transactions")
        ws4.append(["Sale ID", "Date", "Time", "Currency", "Product", "Qty", "Unit", "Unit Price", "Subtotal", "Sale Total"])
        bold_row(ws4, 1)
        for t in transactions:
            for line in t.lines:
                ws4.append([
                    t.id, t.date, t.time, t.currency,
                    line.name, float(line.quantity), line.unit,
                    float(line.price), float(line.subtotal), float(t.total_amount),
                ])
                r = ws4.max_row
                for col in (8, 9, 10):
                    money(ws4.cell(row=r, column=col))
        ws4.freeze_panes = "A2"
        set_widths(ws4, {
            "A": 10, "B": 12, "C": 10, "D": 10, "E": 34,
            "F": 8, "G": 10, "H": 14, "I": 14, "J": 14,
        })
        if ws4.max_row >= 2:
            add_table(ws4, "Transactions", ws4.max_row, 10)

        path = Path(path)
        wb.save(path)
        return path
