"""Write already-computed report rows to a standalone ``.xlsx`` file.

The exporter only ever receives plain data produced by
:mod:`trade_ledger.projections`; it has no access to the ledger workbook and
no way to write back into it.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import openpyxl
from openpyxl.styles import Font

from . import log


Rows = Union[Sequence[Mapping[str, Any]], Mapping[str, Any]]


def _header_label(key: str) -> str:
    return key.replace("_", " ").title()


def normalise_rows(rows: Rows) -> List[Dict[str, Any]]:
    """Turn a single summary mapping into ``metric``/``value`` rows."""

    if isinstance(rows, Mapping):
        return [{"metric": key, "value": value} for key, value in rows.items()]
    return [dict(row) for row in rows]


def _cell_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def export_rows(
    rows: Rows,
    destination: Path,
    *,
    sheet_title: str = "Report",
    title: Optional[str] = None,
) -> Path:
    """Write ``rows`` to ``destination`` as a single-sheet workbook.

    Args:
        rows: Report rows sharing the same keys, or one summary mapping.
        destination (Path): Target ``.xlsx`` path; parent folders are created.
        sheet_title (str): Worksheet name.
        title (str | None): Optional caption written above the header row.

    Returns:
        Path: The resolved destination.
    """

    records = normalise_rows(rows)
    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    worksheet = workbook.active
    worksheet.title = sheet_title[:31]
    bold_font = Font(bold=True)

    row_index = 1
    if title:
        worksheet.cell(row=row_index, column=1, value=title).font = bold_font
        row_index += 2

    headers: List[str] = []
    for record in records:
        for key in record:
            if key not in headers:
                headers.append(key)

    for column_index, key in enumerate(headers, start=1):
        cell = worksheet.cell(row=row_index, column=column_index, value=_header_label(key))
        cell.font = bold_font
    for record in records:
        row_index += 1
        for column_index, key in enumerate(headers, start=1):
            worksheet.cell(row=row_index, column=column_index, value=_cell_value(record.get(key)))

    workbook.save(destination)
    log.info("Exported %d rows to '%s'", len(records), destination)
    return destination
