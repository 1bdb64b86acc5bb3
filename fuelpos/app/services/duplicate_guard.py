"""Duplicate-transaction guard applied when a sale is recorded.

The rule is a business heuristic: same station, date, plate, amount and
payment type counts as a double entry unless both sales carry bill
identifiers and those differ.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from fuelpos.app.core.timeutils import ensure_utc
from fuelpos.app.models.transaction import PaymentType, Transaction

logger = logging.getLogger(__name__)

PLACEHOLDER_PLATES = frozenset({"", "-", "ไม่ระบุ", "N/A", "NONE", "0"})

_PLATE_STRIP = re.compile(r"[\s\-]+")


def normalize_plate(plate: str | None) -> str:
    """Trim, drop spaces and dashes, upper-case."""
    if not plate:
        return ""
    return _PLATE_STRIP.sub("", plate.strip()).upper()


def is_placeholder_plate(plate: str | None) -> bool:
    if plate is None:
        return True
    stripped = plate.strip()
    return stripped in PLACEHOLDER_PLATES or stripped.upper() in PLACEHOLDER_PLATES


def _has_bill(book: str | None, number: str | None) -> bool:
    return bool((book or "").strip() or (number or "").strip())


def _bill_key(book: str | None, number: str | None) -> tuple[str, str]:
    return ((book or "").strip(), (number or "").strip())


def find_duplicate(
    db: Session,
    *,
    station_id: UUID,
    txn_date: date,
    license_plate: str | None,
    amount: Decimal,
    payment_type: PaymentType,
    bill_book_no: str | None = None,
    bill_no: str | None = None,
    exclude_id: UUID | None = None,
) -> Transaction | None:
    """Return the existing sale this one duplicates, or None."""
    if is_placeholder_plate(license_plate):
        return None
    plate = normalize_plate(license_plate)

    q = db.query(Transaction).filter(
        Transaction.station_id == station_id,
        Transaction.txn_date == txn_date,
        Transaction.amount == amount,
        Transaction.payment_type == payment_type,
        Transaction.deleted_at.is_(None),
        Transaction.is_voided.is_(False),
    )
    if exclude_id is not None:
        q = q.filter(Transaction.id != exclude_id)

    new_has_bill = _has_bill(bill_book_no, bill_no)
    for candidate in q.order_by(Transaction.created_at).all():
        if normalize_plate(candidate.license_plate) != plate:
            continue
        if (
            new_has_bill
            and _has_bill(candidate.bill_book_no, candidate.bill_no)
            and _bill_key(candidate.bill_book_no, candidate.bill_no)
            != _bill_key(bill_book_no, bill_no)
        ):
            continue
        return candidate
    return None


def find_bill_collisions(
    db: Session,
    *,
    station_id: UUID,
    bill_book_no: str | None,
    bill_no: str | None,
    license_plate: str | None = None,
) -> list[Transaction]:
    """Active sales already using this bill book and number.

    When *license_plate* is given only sales for other plates are returned.
    Collisions are informational; a shared paper bill book is normal.
    """
    if not (bill_no or "").strip():
        return []
    q = db.query(Transaction).filter(
        Transaction.station_id == station_id,
        Transaction.bill_no == bill_no.strip(),
        Transaction.deleted_at.is_(None),
        Transaction.is_voided.is_(False),
    )
    if (bill_book_no or "").strip():
        q = q.filter(Transaction.bill_book_no == bill_book_no.strip())
    rows = q.order_by(Transaction.created_at).all()
    if license_plate is not None:
        plate = normalize_plate(license_plate)
        rows = [r for r in rows if normalize_plate(r.license_plate) != plate]
    return rows


def find_duplicate_total(
    db: Session,
    *,
    station_id: UUID,
    txn_date: date,
    license_plate: str | None,
    total: Decimal,
    payment_type: PaymentType,
    bill_book_no: str | None = None,
    bill_no: str | None = None,
) -> list[Transaction]:
    """Return the lines of an earlier multi-line sale whose combined amount is *total*.

    Lines of one sale share the plate, bill and recording timestamp, so
    active rows are grouped on those and each group's amounts summed.
    """
    if is_placeholder_plate(license_plate):
        return []
    plate = normalize_plate(license_plate)

    rows = (
        db.query(Transaction)
        .filter(
            Transaction.station_id == station_id,
            Transaction.txn_date == txn_date,
            Transaction.payment_type == payment_type,
            Transaction.deleted_at.is_(None),
            Transaction.is_voided.is_(False),
        )
        .order_by(Transaction.created_at)
        .all()
    )

    new_has_bill = _has_bill(bill_book_no, bill_no)
    groups: dict[tuple, list[Transaction]] = defaultdict(list)
    for row in rows:
        if normalize_plate(row.license_plate) != plate:
            continue
        if (
            new_has_bill
            and _has_bill(row.bill_book_no, row.bill_no)
            and _bill_key(row.bill_book_no, row.bill_no) != _bill_key(bill_book_no, bill_no)
        ):
            continue
        key = (_bill_key(row.bill_book_no, row.bill_no), ensure_utc(row.created_at))
        groups[key].append(row)

    for lines in groups.values():
        if sum((Decimal(str(r.amount)) for r in lines), Decimal("0")) == total:
            return lines
    return []
