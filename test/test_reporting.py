from datetime import date, datetime
from pathlib import Path

from conftest import FixedClock
from openpyxl import load_workbook

from rms.application.container import build_container
from rms.domain.models import DateRange


def test_excel_report_has_all_sheets(tmp_path: Path):
    clock = FixedClock(datetime(2026, 4, 2, 12, 0))
    c = build_container(tmp_path / "rep.db", clock=clock)
    c.sales.record_sale([{"name": "Tea", "unit_price": 2, "quantity": 3}], "PKR")
    c.sales.record_sale([{"name": "Rice", "unit_price": 4.5, "quantity": 1.5, "unit": "kg"}], "PKR")

    out = c.reporting.export_sales_report_excel(tmp_path / "report.xlsx")

    wb = load_workbook(out)
    assert wb.sheetnames == ["Summary", "Daily Revenue", "Top Products", "Transactions"]
    summary = wb["Summary"]
    assert summary["A5"].value == "Total orders"
    assert summary["B5"].value == 2
    assert summary["B6"].value == 12.75
    tx = wb["Transactions"]
    assert tx.max_row == 3
    assert {tx.cell(row=r, column=5).value for r in (2, 3)} == {"Tea", "Rice"}


def test_excel_report_for_empty_window(tmp_path: Path):
    c = build_container(tmp_path / "empty.db", clock=FixedClock(datetime(2026, 4, 2, 12, 0)))

    out = c.reporting.export_sales_report_excel(
        tmp_path / "empty.xlsx", DateRange(start=date(2025, 1, 1), end=date(2025, 1, 31))
    )

    wb = load_workbook(out)
    assert wb["Summary"]["B5"].value == 0
    assert wb["Transactions"].max_row == 1
