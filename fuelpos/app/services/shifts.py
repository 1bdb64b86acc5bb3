"""Shift workflow: open, record readings, close with reconciliation, lock.

The currently open shift is always looked up from the database
(:func:`find_open_shift`); nothing is cached between requests.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fuelpos.app.core.config import settings
from fuelpos.app.core.exceptions import ConflictError, NotFoundError, ValidationError
from fuelpos.app.core.timeutils import ensure_utc, utc_now
from fuelpos.app.models.shift import (
    GaugePhase,
    GaugeReading,
    MeterReading,
    Shift,
    ShiftReconciliation,
    ShiftStatus,
    VarianceSeverity,
)
from fuelpos.app.models.station import DailyRecord, Station
from fuelpos.app.models.transaction import Transaction
from fuelpos.app.models.user import User
from fuelpos.app.schemas.shift import (
    GaugeIn,
    GaugeOut,
    MeterEndIn,
    MeterOut,
    MeterStartIn,
    ReceivedIn,
    ReconciliationOut,
    ShiftOut,
    ShiftSummaryOut,
)
from fuelpos.app.services.anomalies import (
    end_readings,
    find_continuity_gaps,
    previous_shift,
    record_continuity_gaps,
    record_sales_deviations,
)
from fuelpos.app.services.audit import log_action
from fuelpos.app.services.reconciliation import (
    MeterDelta,
    ReceivedAmounts,
    TankLevel,
    VariancePolicy,
    calculate_received_by_category,
    gauge_level,
    percentage_to_liters,
    quantize,
    reconcile,
    sold_quantity,
    total_liters,
)
from fuelpos.app.services.stations import get_or_create_daily_record, get_station

logger = logging.getLogger(__name__)


# ─── Lookups ─────────────────────────────────────────────────────────────────


def find_open_shift(db: Session, station_id: UUID) -> Shift | None:
    return (
        db.query(Shift)
        .filter(Shift.station_id == station_id, Shift.status == ShiftStatus.OPEN)
        .first()
    )


def get_shift(db: Session, shift_id: UUID) -> Shift:
    shift = db.query(Shift).filter(Shift.id == shift_id).first()
    if not shift:
        raise NotFoundError("Shift not found")
    return shift


def list_shifts(
    db: Session,
    station_id: UUID,
    date_from: date | None = None,
    date_to: date | None = None,
    status: ShiftStatus | None = None,
) -> list[Shift]:
    q = (
        db.query(Shift)
        .join(DailyRecord, DailyRecord.id == Shift.daily_record_id)
        .filter(Shift.station_id == station_id)
    )
    if date_from is not None:
        q = q.filter(DailyRecord.record_date >= date_from)
    if date_to is not None:
        q = q.filter(DailyRecord.record_date <= date_to)
    if status is not None:
        q = q.filter(Shift.status == status)
    return q.order_by(DailyRecord.record_date.desc(), Shift.shift_number.desc()).all()


def shift_transactions(db: Session, shift_id: UUID) -> list[Transaction]:
    """Active sales recorded while the shift was open."""
    return (
        db.query(Transaction)
        .filter(
            Transaction.shift_id == shift_id,
            Transaction.deleted_at.is_(None),
            Transaction.is_voided.is_(False),
        )
        .order_by(Transaction.created_at)
        .all()
    )


# ─── Serialisation ───────────────────────────────────────────────────────────


def meter_to_out(m: MeterReading) -> MeterOut:
    start = Decimal(str(m.start_reading))
    end = Decimal(str(m.end_reading)) if m.end_reading is not None else None
    return MeterOut(
        nozzle_number=m.nozzle_number,
        start_reading=str(start),
        end_reading=str(end) if end is not None else None,
        sold_qty=str(sold_quantity(start, end)) if end is not None else None,
    )


def _gauge_out(g: GaugeReading) -> GaugeOut:
    pct = Decimal(str(g.percentage))
    return GaugeOut(
        tank_number=g.tank_number,
        phase=g.phase.value,
        percentage=str(pct),
        liters=str(percentage_to_liters(pct, settings.TANK_CAPACITY_LITERS)),
        level=gauge_level(pct, settings),
    )


def _reconciliation_out(r: ShiftReconciliation) -> ReconciliationOut:
    return ReconciliationOut(
        total_liters=str(r.total_liters),
        price_per_liter=str(r.price_per_liter),
        expected_fuel_amount=str(r.expected_fuel_amount),
        expected_other_amount=str(r.expected_other_amount),
        expected_amount=str(r.total_expected),
        cash_received=str(r.cash_received),
        credit_received=str(r.credit_received),
        card_received=str(r.card_received),
        transfer_received=str(r.transfer_received),
        total_received=str(r.total_received),
        variance=str(r.variance),
        variance_status=r.variance_status.value,
        severity=r.severity.value,
    )


def shift_to_out(shift: Shift) -> ShiftOut:
    return ShiftOut(
        id=shift.id,
        station_id=shift.station_id,
        daily_record_id=shift.daily_record_id,
        record_date=shift.daily_record.record_date,
        shift_number=shift.shift_number,
        status=shift.status.value,
        staff_id=shift.staff_id,
        opened_at=ensure_utc(shift.opened_at),
        closed_at=ensure_utc(shift.closed_at),
        locked_at=ensure_utc(shift.locked_at),
        variance_note=shift.variance_note,
        version=shift.version,
        meters=[meter_to_out(m) for m in shift.meters],
        gauges=[_gauge_out(g) for g in shift.gauges],
        reconciliation=(
            _reconciliation_out(shift.reconciliation) if shift.reconciliation else None
        ),
    )


# ─── Engine inputs ───────────────────────────────────────────────────────────


def _meter_deltas(shift: Shift) -> list[MeterDelta]:
    return [
        MeterDelta(
            nozzle_number=m.nozzle_number,
            start_reading=Decimal(str(m.start_reading)),
            end_reading=Decimal(str(m.end_reading)) if m.end_reading is not None else None,
        )
        for m in shift.meters
    ]


def _end_tank_levels(shift: Shift, tank_count: int) -> list[TankLevel]:
    ends = {
        g.tank_number: Decimal(str(g.percentage))
        for g in shift.gauges
        if g.phase == GaugePhase.END
    }
    return [TankLevel(tank_number=n, end_percentage=ends.get(n)) for n in range(1, tank_count + 1)]


def _require_open(shift: Shift) -> None:
    if shift.status != ShiftStatus.OPEN:
        raise ConflictError(
            f"Shift is {shift.status.value.lower()}",
            details={
                "shift_id": str(shift.id),
                "status": shift.status.value,
                "closed_at": (
                    ensure_utc(shift.closed_at).isoformat() if shift.closed_at else None
                ),
            },
        )


def _check_numbers(numbers: Sequence[int], expected: int, label: str) -> None:
    seen = set()
    for n in numbers:
        if n < 1 or n > expected:
            raise ValidationError(f"{label} {n} does not exist at this station (1-{expected})")
        if n in seen:
            raise ValidationError(f"{label} {n} given more than once")
        seen.add(n)


# ─── Open ────────────────────────────────────────────────────────────────────


def open_shift(
    db: Session,
    station_id: UUID,
    user: User,
    *,
    shift_number: int,
    record_date: date,
    meters: Sequence[MeterStartIn],
    gauges: Sequence[GaugeIn],
    ip_address: str | None = None,
) -> Shift:
    """Open a shift with start readings for every nozzle and tank.

    A nozzle left out takes the end reading of the previous finished shift.
    Given start readings that differ from that end reading are recorded as
    continuity anomalies for review.
    """
    station = get_station(db, station_id)
    if shift_number not in (1, 2):
        raise ValidationError("Shift number must be 1 or 2")

    _check_numbers([m.nozzle_number for m in meters], station.nozzle_count, "Nozzle")
    _check_numbers([g.tank_number for g in gauges], station.tank_count, "Tank")
    previous = previous_shift(db, station.id, record_date, shift_number)
    previous_ends = end_readings(previous)
    starts = {m.nozzle_number: Decimal(str(m.start_reading)) for m in meters}
    carried = {
        n: end
        for n, end in previous_ends.items()
        if n not in starts and n <= station.nozzle_count
    }
    missing_nozzles = sorted(
        set(range(1, station.nozzle_count + 1)) - set(starts) - set(carried)
    )
    missing_tanks = sorted(
        set(range(1, station.tank_count + 1)) - {g.tank_number for g in gauges}
    )
    if missing_nozzles or missing_tanks:
        raise ValidationError(
            "Start readings required for every nozzle and tank",
            details={"missing_nozzles": missing_nozzles, "missing_tanks": missing_tanks},
        )
    for g in gauges:
        if g.percentage < 0 or g.percentage > 100:
            raise ValidationError(f"Tank {g.tank_number}: gauge percentage must be between 0 and 100")

    existing = find_open_shift(db, station.id)
    if existing is not None:
        raise ConflictError(
            "Station already has an open shift. Close it before opening a new one.",
            details={
                "shift_id": str(existing.id),
                "shift_number": existing.shift_number,
                "record_date": existing.daily_record.record_date.isoformat(),
            },
        )

    record = get_or_create_daily_record(db, station, record_date)
    taken = (
        db.query(Shift)
        .filter(Shift.daily_record_id == record.id, Shift.shift_number == shift_number)
        .first()
    )
    if taken is not None:
        raise ConflictError(
            f"Shift {shift_number} already exists for {record_date.isoformat()}",
            details={
                "shift_id": str(taken.id),
                "shift_number": shift_number,
                "record_date": record_date.isoformat(),
                "status": taken.status.value,
            },
        )

    shift = Shift(
        station_id=station.id,
        daily_record_id=record.id,
        shift_number=shift_number,
        status=ShiftStatus.OPEN,
        staff_id=user.id,
        opened_at=utc_now(),
        version=1,
    )
    db.add(shift)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Another shift was opened for this station at the same time")

    for nozzle, start in sorted({**starts, **carried}.items()):
        db.add(MeterReading(shift_id=shift.id, nozzle_number=nozzle, start_reading=start))
    for g in gauges:
        db.add(
            GaugeReading(
                shift_id=shift.id,
                tank_number=g.tank_number,
                phase=GaugePhase.START,
                percentage=g.percentage,
                recorded_at=utc_now(),
            )
        )

    log_action(
        db,
        user_id=user.id,
        action="SHIFT_OPENED",
        resource_type="shifts",
        resource_id=str(shift.id),
        changes={
            "station_id": str(station.id),
            "record_date": record_date.isoformat(),
            "shift_number": shift_number,
            "meters": {str(n): str(v) for n, v in sorted({**starts, **carried}.items())},
            "carried_forward": sorted(carried),
            "gauges": {str(g.tank_number): str(g.percentage) for g in gauges},
        },
        ip_address=ip_address,
    )
    gaps = find_continuity_gaps(previous_ends, starts)
    if gaps:
        record_continuity_gaps(db, shift, previous, gaps, user, ip_address)
    db.commit()
    db.refresh(shift)
    logger.info("Shift %s opened at station %s by %s", shift.id, station.code, user.username)
    return shift


# ─── Readings while open ─────────────────────────────────────────────────────


def _apply_end_meters(db: Session, shift: Shift, readings: Sequence[MeterEndIn]) -> dict[str, str]:
    by_nozzle = {m.nozzle_number: m for m in shift.meters}
    applied: dict[str, str] = {}
    for r in readings:
        meter = by_nozzle.get(r.nozzle_number)
        if meter is None:
            raise ValidationError(f"Nozzle {r.nozzle_number} has no start reading in this shift")
        start = Decimal(str(meter.start_reading))
        if r.end_reading < start:
            raise ValidationError(
                f"Nozzle {r.nozzle_number}: end reading {r.end_reading} is below start reading {start}"
            )
        meter.end_reading = r.end_reading
        applied[str(r.nozzle_number)] = str(r.end_reading)
    db.flush()
    return applied


def _apply_gauges(
    db: Session, shift: Shift, phase: GaugePhase, readings: Sequence[GaugeIn], tank_count: int
) -> dict[str, str]:
    _check_numbers([r.tank_number for r in readings], tank_count, "Tank")
    current = {(g.tank_number, g.phase): g for g in shift.gauges}
    applied: dict[str, str] = {}
    for r in readings:
        if r.percentage < 0 or r.percentage > 100:
            raise ValidationError(f"Tank {r.tank_number}: gauge percentage must be between 0 and 100")
        gauge = current.get((r.tank_number, phase))
        if gauge is None:
            gauge = GaugeReading(shift_id=shift.id, tank_number=r.tank_number, phase=phase)
            db.add(gauge)
            shift.gauges.append(gauge)
        gauge.percentage = r.percentage
        gauge.recorded_at = utc_now()
        applied[str(r.tank_number)] = str(r.percentage)
    db.flush()
    return applied


def record_end_meters(
    db: Session,
    shift_id: UUID,
    readings: Sequence[MeterEndIn],
    user: User,
    ip_address: str | None = None,
) -> Shift:
    shift = get_shift(db, shift_id)
    _require_open(shift)
    applied = _apply_end_meters(db, shift, readings)
    log_action(
        db,
        user_id=user.id,
        action="END_METERS_RECORDED",
        resource_type="shifts",
        resource_id=str(shift.id),
        changes={"end_readings": applied},
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(shift)
    return shift


def record_gauges(
    db: Session,
    shift_id: UUID,
    phase: GaugePhase,
    readings: Sequence[GaugeIn],
    user: User,
    ip_address: str | None = None,
) -> Shift:
    shift = get_shift(db, shift_id)
    _require_open(shift)
    station = get_station(db, shift.station_id)
    applied = _apply_gauges(db, shift, phase, readings, station.tank_count)
    log_action(
        db,
        user_id=user.id,
        action="GAUGES_RECORDED",
        resource_type="shifts",
        resource_id=str(shift.id),
        changes={"phase": phase.value, "gauges": applied},
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(shift)
    return shift


def get_shift_summary(db: Session, shift_id: UUID) -> ShiftSummaryOut:
    """Figures the close form needs: liters so far and the ledger pre-fill."""
    shift = get_shift(db, shift_id)
    station = get_station(db, shift.station_id)
    deltas = _meter_deltas(shift)
    liters = total_liters(deltas)
    price = Decimal(str(shift.daily_record.fuel_price))
    txns = shift_transactions(db, shift.id)
    prefill = calculate_received_by_category(txns)
    missing_nozzles = sorted(d.nozzle_number for d in deltas if d.end_reading is None)
    missing_tanks = sorted(
        t.tank_number
        for t in _end_tank_levels(shift, station.tank_count)
        if t.end_percentage is None
    )
    return ShiftSummaryOut(
        shift=shift_to_out(shift),
        total_liters=str(liters),
        price_per_liter=str(price),
        expected_fuel_amount=str(quantize(liters * price)),
        received_prefill=ReceivedIn(
            cash=prefill.cash,
            credit=prefill.credit,
            card=prefill.card,
            transfer=prefill.transfer,
        ),
        transaction_count=len(txns),
        missing_end_nozzles=missing_nozzles,
        missing_end_tanks=missing_tanks,
        ready_to_close=(
            shift.status == ShiftStatus.OPEN
            and bool(deltas)
            and not missing_nozzles
            and not missing_tanks
        ),
    )


# ─── Close ───────────────────────────────────────────────────────────────────


def close_shift(
    db: Session,
    shift_id: UUID,
    user: User,
    *,
    received: ReceivedAmounts | None = None,
    expected_other: Decimal = Decimal("0"),
    variance_note: str | None = None,
    end_meters: Sequence[MeterEndIn] | None = None,
    end_gauges: Sequence[GaugeIn] | None = None,
    ip_address: str | None = None,
) -> Shift:
    """Reconcile and close an open shift.

    The OPEN -> CLOSED transition is a single UPDATE conditioned on the
    status and version read here; when another request closed the shift
    first, no row matches and this call fails with ConflictError.
    """
    shift = get_shift(db, shift_id)
    _require_open(shift)
    version = shift.version
    station = get_station(db, shift.station_id)

    try:
        if end_meters:
            _apply_end_meters(db, shift, end_meters)
        if end_gauges:
            _apply_gauges(db, shift, GaugePhase.END, end_gauges, station.tank_count)

        if received is None:
            received = calculate_received_by_category(shift_transactions(db, shift.id))

        result = reconcile(
            _meter_deltas(shift),
            Decimal(str(shift.daily_record.fuel_price)),
            received,
            expected_other=expected_other,
            tank_levels=_end_tank_levels(shift, station.tank_count),
            policy=VariancePolicy.from_settings(settings),
        )

        note = (variance_note or "").strip() or None
        if (
            settings.REQUIRE_VARIANCE_NOTE
            and result.severity != VarianceSeverity.GREEN
            and note is None
        ):
            raise ValidationError(
                f"A variance note is required: variance {result.variance} is {result.severity.value}",
                details={
                    "variance": str(result.variance),
                    "variance_status": result.variance_status.value,
                    "severity": result.severity.value,
                },
            )

        now = utc_now()
        updated = db.execute(
            update(Shift)
            .where(
                Shift.id == shift.id,
                Shift.status == ShiftStatus.OPEN,
                Shift.version == version,
            )
            .values(
                status=ShiftStatus.CLOSED,
                closed_at=now,
                closed_by=user.id,
                variance_note=note,
                version=version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if updated.rowcount != 1:
            logger.warning("Lost close race for shift %s (version %s)", shift.id, version)
            raise ConflictError(
                "Shift was closed by another request",
                details={"shift_id": str(shift.id), "version": version},
            )

        db.add(
            ShiftReconciliation(
                shift_id=shift.id,
                total_liters=result.total_liters,
                price_per_liter=result.price_per_liter,
                expected_fuel_amount=result.expected_fuel_amount,
                expected_other_amount=result.expected_other_amount,
                total_expected=result.expected_amount,
                cash_received=quantize(received.cash),
                credit_received=quantize(received.credit),
                card_received=quantize(received.card),
                transfer_received=quantize(received.transfer),
                total_received=result.total_received,
                variance=result.variance,
                variance_status=result.variance_status,
                severity=result.severity,
                created_by=user.id,
                created_at=now,
            )
        )
        flags = record_sales_deviations(db, shift)
        log_action(
            db,
            user_id=user.id,
            action="SHIFT_CLOSED",
            resource_type="shifts",
            resource_id=str(shift.id),
            changes={
                **{k: str(v) for k, v in result.as_dict().items()},
                "cash_received": str(received.cash),
                "credit_received": str(received.credit),
                "card_received": str(received.card),
                "transfer_received": str(received.transfer),
                "variance_note": note,
                "anomalies": len(flags),
            },
            ip_address=ip_address,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(shift)
    logger.info(
        "Shift %s closed: expected=%s received=%s variance=%s (%s/%s)",
        shift.id,
        result.expected_amount,
        result.total_received,
        result.variance,
        result.variance_status.value,
        result.severity.value,
    )
    return shift


# ─── Admin actions ───────────────────────────────────────────────────────────


def lock_shift(
    db: Session, shift_id: UUID, admin: User, ip_address: str | None = None
) -> Shift:
    """Freeze a reviewed shift so no further corrections are possible."""
    shift = get_shift(db, shift_id)
    if shift.status != ShiftStatus.CLOSED:
        raise ConflictError(
            f"Only closed shifts can be locked (shift is {shift.status.value})",
            details={"shift_id": str(shift.id), "status": shift.status.value},
        )
    version = shift.version
    now = utc_now()
    updated = db.execute(
        update(Shift)
        .where(Shift.id == shift.id, Shift.status == ShiftStatus.CLOSED, Shift.version == version)
        .values(status=ShiftStatus.LOCKED, locked_at=now, locked_by=admin.id, version=version + 1)
        .execution_options(synchronize_session=False)
    )
    if updated.rowcount != 1:
        db.rollback()
        raise ConflictError("Shift was changed by another request", details={"shift_id": str(shift.id)})

    log_action(
        db,
        user_id=admin.id,
        action="SHIFT_LOCKED",
        resource_type="shifts",
        resource_id=str(shift.id),
        old_values={"status": ShiftStatus.CLOSED.value},
        changes={"status": ShiftStatus.LOCKED.value},
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(shift)
    return shift


def correct_meter_reading(
    db: Session,
    shift_id: UUID,
    nozzle_number: int,
    admin: User,
    *,
    reason: str,
    start_reading: Decimal | None = None,
    end_reading: Decimal | None = None,
    ip_address: str | None = None,
) -> MeterReading:
    """Admin correction of a closed shift's meter reading.

    The stored reconciliation row is left as it was at close; the audit
    entry carries the before and after values.
    """
    shift = get_shift(db, shift_id)
    if shift.status == ShiftStatus.LOCKED:
        raise ConflictError("Shift is locked and cannot be corrected", details={"shift_id": str(shift.id)})
    if shift.status != ShiftStatus.CLOSED:
        raise ConflictError(
            "Shift is still open; record readings through the shift instead",
            details={"shift_id": str(shift.id), "status": shift.status.value},
        )
    if not reason or not reason.strip():
        raise ValidationError("A reason is required for meter corrections")

    meter = next((m for m in shift.meters if m.nozzle_number == nozzle_number), None)
    if meter is None:
        raise NotFoundError(f"Nozzle {nozzle_number} not found in this shift")

    old = {
        "start_reading": str(meter.start_reading),
        "end_reading": str(meter.end_reading) if meter.end_reading is not None else None,
    }
    new_start = start_reading if start_reading is not None else Decimal(str(meter.start_reading))
    new_end = end_reading if end_reading is not None else meter.end_reading
    if new_start < 0 or (new_end is not None and Decimal(str(new_end)) < 0):
        raise ValidationError("Meter readings cannot be negative")
    if new_end is not None and Decimal(str(new_end)) < new_start:
        raise ValidationError(
            f"Nozzle {nozzle_number}: end reading {new_end} is below start reading {new_start}"
        )

    meter.start_reading = new_start
    meter.end_reading = new_end
    log_action(
        db,
        user_id=admin.id,
        action="METER_CORRECTED",
        resource_type="meter_readings",
        resource_id=str(meter.id),
        old_values={"shift_id": str(shift.id), "nozzle_number": nozzle_number, **old},
        changes={
            "shift_id": str(shift.id),
            "nozzle_number": nozzle_number,
            "start_reading": str(new_start),
            "end_reading": str(new_end) if new_end is not None else None,
            "reason": reason.strip(),
        },
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(meter)
    return meter
