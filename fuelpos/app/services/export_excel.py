"""Excel export functions for station reports using openpyxl."""
from __future__ import annotations

import io
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from fuelpos.app.models.transaction import Transaction
from fuelpos.app.schemas.reports import ShiftReportResponse
from fuelpos.app.services.export_i18n import payment_type_label, t

# ── Shared styling constants ────────────────────────────────────────────────

_HEADER_FONT = Font(name="Calibri", bold=True, color="FFFFFF", size=11)
_HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
_TOTAL_FONT = Font(name="Calibri", bold=True, size=11)
_TOTAL_BORDER = Border(
    top=Side(style="thin"),
    bottom=Side(style="double"),
)
_CURRENCY_FMT = '#,##0.00'
_RIGHT = Alignment(horizontal="right")
_LEFT = Alignment(horizontal="left")

# Severity fills match the alert colours
_SEVERITY_FILLS = {
    "GREEN": PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid"),
    "YELLOW": PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid"),
    "RED": PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid"),
}


def _auto_width(ws: Any) -> None:
    """Auto-fit column widths based on content."""
    for col_idx in range(1, ws.max_column + 1):
        max_len = 0
        col_letter = get_column_letter(col_idx)
        for row in ws.iter_rows(min_col=col_idx, max_col=col_idx, values_only=False):
            cell = row[0]
            if cell.value is not None:
                max_len = max(max_len, len(str(cell.value)))
        ws.column_dimensions[col_letter].width = min(max_len + 4, 40)


def _write_header_row(ws: Any, row: int, values: list[str]) -> None:
    for col, val in enumerate(values, 1):
        cell = ws.cell(row=row, column=col, value=val)
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL
        cell.alignment = _RIGHT if col > 1 else _LEFT


def _write_title(ws: Any, title: str, subtitle: str) -> int:
    """Write report title and subtitle, return next available row."""
    ws.cell(row=1, column=1, value=title).font = Font(name="Calibri", bold=True, size=14)
    ws.cell(row=2, column=1, value=subtitle).font = Font(name="Calibri", size=10, italic=True)
    return 4


def _money_cell(ws: Any, row: int, col: int, value: Any, total: bool = False) -> None:
    c = ws.cell(row=row, column=col, value=float(Decimal(str(value))))
    c.number_format = _CURRENCY_FMT
    c.alignment = _RIGHT
    if total:
        c.font = _TOTAL_FONT
        c.border = _TOTAL_BORDER


def _to_workbook(ws: Any, wb: Workbook) -> io.BytesIO:
    _auto_width(ws)
    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf


# ── Shift reconciliation report ─────────────────────────────────────────────

_SHIFT_MONEY_KEYS = (
    "total_liters",
    "expected_amount",
    "cash_received",
    "credit_received",
    "card_received",
    "transfer_received",
    "total_received",
    "variance",
)


def export_shift_report_excel(
    report: ShiftReportResponse, station_name: str, lang: str = "th"
) -> io.BytesIO:
    wb = Workbook()
    ws = wb.active
    ws.title = t(lang, "shift_report")[:31]

    row = _write_title(
        ws,
        f"{t(lang, 'shift_report')} - {station_name}",
        f"{t(lang, 'period')}: {report.from_date.isoformat()} - {report.to_date.isoformat()}",
    )
    headers = [t(lang, "date"), t(lang, "shift")] + [t(lang, k) for k in _SHIFT_MONEY_KEYS] + [
        t(lang, "variance_status"),
        t(lang, "severity"),
    ]
    _write_header_row(ws, row, headers)
    row += 1

    for r in report.rows:
        ws.cell(row=row, column=1, value=r.record_date.isoformat())
        ws.cell(row=row, column=2, value=r.shift_number)
        for offset, key in enumerate(_SHIFT_MONEY_KEYS, 3):
            _money_cell(ws, row, offset, getattr(r, key))
        status_col = 3 + len(_SHIFT_MONEY_KEYS)
        ws.cell(row=row, column=status_col, value=t(lang, f"vs_{r.variance_status}"))
        sev = ws.cell(row=row, column=status_col + 1, value=r.severity)
        sev.fill = _SEVERITY_FILLS[r.severity]
        row += 1

    ws.cell(row=row, column=1, value=t(lang, "totals")).font = _TOTAL_FONT
    for offset, key in enumerate(_SHIFT_MONEY_KEYS, 3):
        _money_cell(ws, row, offset, report.totals[key], total=True)

    return _to_workbook(ws, wb)


# ── Transactions ────────────────────────────────────────────────────────────


def export_transactions_excel(
    transactions: Sequence[Transaction], title_suffix: str, lang: str = "th"
) -> io.BytesIO:
    wb = Workbook()
    ws = wb.active
    ws.title = t(lang, "transactions")[:31]

    row = _write_title(ws, t(lang, "transactions"), title_suffix)
    _write_header_row(
        ws,
        row,
        [
            t(lang, "date"),
            t(lang, "license_plate"),
            t(lang, "customer"),
            t(lang, "payment_type"),
            t(lang, "liters"),
            t(lang, "price_per_liter"),
            t(lang, "amount"),
            t(lang, "bill"),
        ],
    )
    row += 1

    total_liters = Decimal("0")
    total_amount = Decimal("0")
    for txn in transactions:
        ws.cell(row=row, column=1, value=txn.txn_date.isoformat())
        ws.cell(row=row, column=2, value=txn.license_plate or "")
        ws.cell(row=row, column=3, value=txn.owner_name or "")
        ws.cell(row=row, column=4, value=payment_type_label(lang, txn.payment_type.value))
        _money_cell(ws, row, 5, txn.liters)
        _money_cell(ws, row, 6, txn.price_per_liter)
        _money_cell(ws, row, 7, txn.amount)
        if txn.bill_book_no or txn.bill_no:
            ws.cell(row=row, column=8, value=f"{txn.bill_book_no or ''}/{txn.bill_no or ''}")
        total_liters += Decimal(str(txn.liters))
        total_amount += Decimal(str(txn.amount))
        row += 1

    ws.cell(row=row, column=1, value=t(lang, "totals")).font = _TOTAL_FONT
    _money_cell(ws, row, 5, total_liters, total=True)
    _money_cell(ws, row, 7, total_amount, total=True)

    return _to_workbook(ws, wb)
