from __future__ import annotations

from datetime import date
from decimal import Decimal

import openpyxl

from trade_ledger import exporter


def test_export_rows_writes_title_headers_and_values(tmp_path):
    """Row reports get a title, headers and values."""
    rows = [
        {"customer_id": "C1", "total_sales": Decimal("1000.00"), "last_seen": date(2024, 3, 20)},
        {"customer_id": "C2", "total_sales": Decimal("12.50"), "last_seen": None},
    ]

    output = exporter.export_rows(rows, tmp_path / "out" / "summary.xlsx", sheet_title="Summary", title="Test Traders")

    sheet = openpyxl.load_workbook(output)["Summary"]
    assert sheet["A1"].value == "Test Traders"
    assert [cell.value for cell in sheet[3]] == ["Customer Id", "Total Sales", "Last Seen"]
    assert [cell.value for cell in sheet[4]] == ["C1", 1000.0, "2024-03-20"]
    assert sheet["B5"].value == 12.5
    assert sheet["C5"].value is None


def test_export_summary_mapping_becomes_metric_rows(tmp_path):
    """Summary mappings become metric and value rows."""
    output = exporter.export_rows({"total_profit": Decimal("200.00"), "total_sales_units": 10}, tmp_path / "pl.xlsx")

    sheet = openpyxl.load_workbook(output).active
    assert [cell.value for cell in sheet[1]] == ["Metric", "Value"]
    assert [cell.value for cell in sheet[2]] == ["total_profit", 200.0]
    assert [cell.value for cell in sheet[3]] == ["total_sales_units", 10]


def test_export_empty_report_writes_empty_sheet(tmp_path):
    """An empty report still writes its sheet."""
    output = exporter.export_rows([], tmp_path / "empty.xlsx")

    sheet = openpyxl.load_workbook(output).active
    assert sheet.max_row == 1
    assert sheet["A1"].value is None
