"""Service layer for station reports."""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from fuelpos.app.models.shift import Shift, ShiftReconciliation
from fuelpos.app.models.station import DailyRecord
from fuelpos.app.models.transaction import PaymentType, Transaction
from fuelpos.app.schemas.reports import (
    DailySummaryResponse,
    PaymentTypeTotal,
    ShiftLine,
    ShiftReportResponse,
    ShiftReportRow,
)
from fuelpos.app.services.stations import get_daily_record, get_station

ZERO = Decimal("0")

_TOTAL_KEYS = (
    "total_liters",
    "expected_amount",
    "cash_received",
    "credit_received",
    "card_received",
    "transfer_received",
    "total_received",
    "variance",
)


# ── Daily summary ────────────────────────────────────────────────────────────


def daily_summary(db: Session, station_id: UUID, record_date: date) -> DailySummaryResponse:
    """Sales by payment type and the day's shifts with their reconciliation."""
    station = get_station(db, station_id)
    record = get_daily_record(db, station.id, record_date)

    rows = (
        db.query(
            Transaction.payment_type,
            func.count(Transaction.id),
            func.coalesce(func.sum(Transaction.liters), 0),
            func.coalesce(func.sum(Transaction.amount), 0),
        )
        .filter(
            Transaction.station_id == station.id,
            Transaction.txn_date == record_date,
            Transaction.deleted_at.is_(None),
            Transaction.is_voided.is_(False),
        )
        .group_by(Transaction.payment_type)
        .all()
    )
    totals = {pt: (count, Decimal(str(liters)), Decimal(str(amount))) for pt, count, liters, amount in rows}
    by_type = [
        PaymentTypeTotal(
            payment_type=pt.value,
            count=totals[pt][0],
            liters=str(totals[pt][1]),
            amount=str(totals[pt][2]),
        )
        for pt in PaymentType
        if pt in totals
    ]

    shifts: list[ShiftLine] = []
    if record is not None:
        for shift in (
            db.query(Shift)
            .filter(Shift.daily_record_id == record.id)
            .order_by(Shift.shift_number)
            .all()
        ):
            rec = shift.reconciliation
            shifts.append(
                ShiftLine(
                    shift_id=shift.id,
                    shift_number=shift.shift_number,
                    status=shift.status.value,
                    total_liters=str(rec.total_liters) if rec else None,
                    expected_amount=str(rec.total_expected) if rec else None,
                    total_received=str(rec.total_received) if rec else None,
                    variance=str(rec.variance) if rec else None,
                    variance_status=rec.variance_status.value if rec else None,
                    severity=rec.severity.value if rec else None,
                )
            )

    return DailySummaryResponse(
        station_id=station.id,
        station_name=station.name,
        record_date=record_date,
        fuel_price=str(record.fuel_price) if record is not None else None,
        transaction_count=sum(v[0] for v in totals.values()),
        total_liters=str(sum((v[1] for v in totals.values()), ZERO)),
        total_amount=str(sum((v[2] for v in totals.values()), ZERO)),
        by_payment_type=by_type,
        shifts=shifts,
    )


# ── Shift report ─────────────────────────────────────────────────────────────


def shift_report(
    db: Session, station_id: UUID, from_date: date, to_date: date
) -> ShiftReportResponse:
    """Reconciled shifts in a date range, one row each, with a totals dict."""
    station = get_station(db, station_id)
    results = (
        db.query(Shift, ShiftReconciliation, DailyRecord.record_date)
        .join(ShiftReconciliation, ShiftReconciliation.shift_id == Shift.id)
        .join(DailyRecord, DailyRecord.id == Shift.daily_record_id)
        .filter(
            Shift.station_id == station.id,
            DailyRecord.record_date >= from_date,
            DailyRecord.record_date <= to_date,
        )
        .order_by(DailyRecord.record_date, Shift.shift_number)
        .all()
    )

    rows: list[ShiftReportRow] = []
    sums = {k: ZERO for k in _TOTAL_KEYS}
    for shift, rec, record_date in results:
        values = {
            "total_liters": Decimal(str(rec.total_liters)),
            "expected_amount": Decimal(str(rec.total_expected)),
            "cash_received": Decimal(str(rec.cash_received)),
            "credit_received": Decimal(str(rec.credit_received)),
            "card_received": Decimal(str(rec.card_received)),
            "transfer_received": Decimal(str(rec.transfer_received)),
            "total_received": Decimal(str(rec.total_received)),
            "variance": Decimal(str(rec.variance)),
        }
        for k, v in values.items():
            sums[k] += v
        rows.append(
            ShiftReportRow(
                shift_id=shift.id,
                record_date=record_date,
                shift_number=shift.shift_number,
                status=shift.status.value,
                price_per_liter=str(rec.price_per_liter),
                variance_status=rec.variance_status.value,
                severity=rec.severity.value,
                **{k: str(v) for k, v in values.items()},
            )
        )

    return ShiftReportResponse(
        station_id=station.id,
        from_date=from_date,
        to_date=to_date,
        rows=rows,
        totals={k: str(v) for k, v in sums.items()},
    )
