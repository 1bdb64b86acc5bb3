"""CSV exports: UTF-8 with BOM, comma-delimited, every field quoted."""
from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Sequence
from datetime import date
from decimal import Decimal
from typing import Any

from fuelpos.app.models.transaction import PaymentType, Transaction
from fuelpos.app.schemas.reports import ShiftReportRow
from fuelpos.app.services.export_i18n import payment_type_from_label, payment_type_label, t

BOM = "\ufeff"

_TXN_COLUMNS = (
    "date",
    "station",
    "license_plate",
    "customer",
    "customer_code",
    "payment_type",
    "product_type",
    "liters",
    "price_per_liter",
    "amount",
    "bill",
)

_SHIFT_COLUMNS = (
    "date",
    "shift",
    "status",
    "total_liters",
    "price_per_liter",
    "expected_amount",
    "cash_received",
    "credit_received",
    "card_received",
    "transfer_received",
    "total_received",
    "variance",
    "variance_status",
    "severity",
)


def _money(value: Any) -> str:
    return f"{Decimal(str(value)):.2f}"


def _write(rows: Iterable[Sequence[str]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\r\n")
    writer.writerows(rows)
    return BOM + buf.getvalue()


def _bill(book: str | None, number: str | None) -> str:
    if not book and not number:
        return ""
    return f"{book or ''}/{number or ''}"


def export_transactions_csv(transactions: Sequence[Transaction], lang: str = "th") -> str:
    """One row per sale plus a trailing totals row."""
    rows: list[list[str]] = [[t(lang, c) for c in _TXN_COLUMNS]]
    total_liters = Decimal("0")
    total_amount = Decimal("0")
    for txn in transactions:
        liters = Decimal(str(txn.liters))
        amount = Decimal(str(txn.amount))
        total_liters += liters
        total_amount += amount
        rows.append(
            [
                txn.txn_date.isoformat(),
                txn.station.name if txn.station is not None else "",
                txn.license_plate or "",
                txn.owner_name or "",
                (txn.owner.code or "") if txn.owner is not None else "",
                payment_type_label(lang, txn.payment_type.value),
                txn.product_type or "",
                _money(liters),
                _money(txn.price_per_liter),
                _money(amount),
                _bill(txn.bill_book_no, txn.bill_no),
            ]
        )
    totals = [""] * len(_TXN_COLUMNS)
    totals[0] = t(lang, "total")
    totals[_TXN_COLUMNS.index("liters")] = _money(total_liters)
    totals[_TXN_COLUMNS.index("amount")] = _money(total_amount)
    rows.append(totals)
    return _write(rows)


def parse_transactions_csv(text: str) -> list[dict[str, Any]]:
    """Read back a file written by :func:`export_transactions_csv`.

    Returns dicts with ``txn_date``, ``payment_type``, ``liters``,
    ``price_per_liter``, ``amount``, ``license_plate``, ``owner_name``,
    ``bill_book_no`` and ``bill_no``. The totals row is skipped.
    """
    reader = csv.reader(io.StringIO(text.lstrip(BOM)))
    header = next(reader, None)
    if header is None:
        return []
    out: list[dict[str, Any]] = []
    for row in reader:
        if not row or not row[0]:
            continue
        try:
            txn_date = date.fromisoformat(row[0])
        except ValueError:
            # totals row
            continue
        book, _, number = row[10].partition("/")
        out.append(
            {
                "txn_date": txn_date,
                "station": row[1],
                "license_plate": row[2] or None,
                "owner_name": row[3] or None,
                "payment_type": PaymentType(payment_type_from_label(row[5])),
                "product_type": row[6] or None,
                "liters": Decimal(row[7].replace(",", "")),
                "price_per_liter": Decimal(row[8].replace(",", "")),
                "amount": Decimal(row[9].replace(",", "")),
                "bill_book_no": book or None,
                "bill_no": number or None,
            }
        )
    return out


def export_shift_report_csv(
    rows: Sequence[ShiftReportRow], totals: dict[str, str], lang: str = "th"
) -> str:
    out: list[list[str]] = [[t(lang, c) for c in _SHIFT_COLUMNS]]
    for r in rows:
        out.append(
            [
                r.record_date.isoformat(),
                str(r.shift_number),
                r.status,
                r.total_liters,
                r.price_per_liter,
                r.expected_amount,
                r.cash_received,
                r.credit_received,
                r.card_received,
                r.transfer_received,
                r.total_received,
                r.variance,
                t(lang, f"vs_{r.variance_status}"),
                r.severity,
            ]
        )
    total_row = [""] * len(_SHIFT_COLUMNS)
    total_row[0] = t(lang, "total")
    for key, value in totals.items():
        if key in _SHIFT_COLUMNS:
            total_row[_SHIFT_COLUMNS.index(key)] = value
    out.append(total_row)
    return _write(out)
