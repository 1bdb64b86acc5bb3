"""Meter anomaly checks: reading continuity between shifts and unusual sold litres.

Anomalies are recorded for admin review; they never block a shift.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from fuelpos.app.core.config import settings
from fuelpos.app.core.exceptions import ConflictError, NotFoundError
from fuelpos.app.core.timeutils import ensure_utc, utc_now
from fuelpos.app.models.shift import (
    AnomalyKind,
    AnomalySeverity,
    MeterAnomaly,
    MeterReading,
    Shift,
    ShiftStatus,
)
from fuelpos.app.models.station import DailyRecord, Station
from fuelpos.app.models.user import User
from fuelpos.app.schemas.reports import AnomalyAlert
from fuelpos.app.services.audit import log_action
from fuelpos.app.services.reconciliation import quantize

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
FINISHED = (ShiftStatus.CLOSED, ShiftStatus.LOCKED)


@dataclass(frozen=True)
class ContinuityGap:
    nozzle_number: int
    previous_end: Decimal
    start_reading: Decimal

    @property
    def gap(self) -> Decimal:
        return self.start_reading - self.previous_end


# ─── Continuity ──────────────────────────────────────────────────────────────


def previous_shift(
    db: Session, station_id: UUID, record_date: date, shift_number: int
) -> Shift | None:
    """Latest finished shift at the station that comes before the given slot."""
    return (
        db.query(Shift)
        .join(DailyRecord, DailyRecord.id == Shift.daily_record_id)
        .filter(
            Shift.station_id == station_id,
            Shift.status.in_(list(FINISHED)),
            or_(
                DailyRecord.record_date < record_date,
                and_(
                    DailyRecord.record_date == record_date,
                    Shift.shift_number < shift_number,
                ),
            ),
        )
        .order_by(DailyRecord.record_date.desc(), Shift.shift_number.desc())
        .first()
    )


def end_readings(shift: Shift | None) -> dict[int, Decimal]:
    if shift is None:
        return {}
    return {
        m.nozzle_number: Decimal(str(m.end_reading))
        for m in shift.meters
        if m.end_reading is not None
    }


def find_continuity_gaps(
    previous_ends: dict[int, Decimal], starts: dict[int, Decimal]
) -> list[ContinuityGap]:
    """Nozzles whose start reading differs from the previous end by more than the tolerance."""
    gaps = []
    for nozzle, start in sorted(starts.items()):
        previous = previous_ends.get(nozzle)
        if previous is None:
            continue
        if abs(start - previous) > settings.METER_CONTINUITY_TOLERANCE:
            gaps.append(ContinuityGap(nozzle, previous, start))
    return gaps


def record_continuity_gaps(
    db: Session,
    shift: Shift,
    previous: Shift,
    gaps: list[ContinuityGap],
    user: User,
    ip_address: str | None = None,
) -> list[MeterAnomaly]:
    """Add anomaly rows and one audit entry; the caller commits."""
    rows = []
    for gap in gaps:
        row = MeterAnomaly(
            shift_id=shift.id,
            nozzle_number=gap.nozzle_number,
            kind=AnomalyKind.CONTINUITY_GAP,
            severity=AnomalySeverity.WARNING,
            expected_value=gap.previous_end,
            actual_value=gap.start_reading,
            message=(
                f"Nozzle {gap.nozzle_number} starts at {gap.start_reading}, "
                f"previous shift ended at {gap.previous_end} (gap {gap.gap})"
            ),
            created_at=utc_now(),
        )
        db.add(row)
        rows.append(row)
        logger.warning(
            "Meter gap on nozzle %s for shift %s: previous end %s, start %s",
            gap.nozzle_number,
            shift.id,
            gap.previous_end,
            gap.start_reading,
        )
    log_action(
        db,
        user_id=user.id,
        action="METER_GAP",
        resource_type="shifts",
        resource_id=str(shift.id),
        changes={
            "previous_shift_id": str(previous.id),
            "gaps": {
                str(g.nozzle_number): {
                    "previous_end": str(g.previous_end),
                    "start_reading": str(g.start_reading),
                    "gap": str(g.gap),
                }
                for g in gaps
            },
        },
        ip_address=ip_address,
    )
    return rows


# ─── Sales deviation ─────────────────────────────────────────────────────────


def average_sold_by_nozzle(db: Session, shift: Shift) -> dict[int, Decimal]:
    """Mean litres sold per nozzle over the station's recent finished shifts."""
    record_date = shift.daily_record.record_date
    since = record_date - timedelta(days=settings.ANOMALY_LOOKBACK_DAYS)
    rows = (
        db.query(MeterReading)
        .join(Shift, Shift.id == MeterReading.shift_id)
        .join(DailyRecord, DailyRecord.id == Shift.daily_record_id)
        .filter(
            Shift.station_id == shift.station_id,
            Shift.id != shift.id,
            Shift.status.in_(list(FINISHED)),
            DailyRecord.record_date >= since,
            DailyRecord.record_date <= record_date,
            MeterReading.end_reading.isnot(None),
        )
        .all()
    )
    sold: dict[int, list[Decimal]] = defaultdict(list)
    for m in rows:
        sold[m.nozzle_number].append(Decimal(str(m.end_reading)) - Decimal(str(m.start_reading)))
    return {n: sum(v, ZERO) / len(v) for n, v in sold.items()}


def classify_deviation(sold: Decimal, average: Decimal) -> tuple[Decimal, AnomalySeverity] | None:
    """Percent deviation and severity, or None when *sold* is within the normal band."""
    if average <= 0:
        return None
    percent = quantize((sold - average) / average * 100)
    if abs(percent) <= settings.ANOMALY_WARNING_PERCENT:
        return None
    if abs(percent) >= settings.ANOMALY_CRITICAL_PERCENT:
        return percent, AnomalySeverity.CRITICAL
    return percent, AnomalySeverity.WARNING


def record_sales_deviations(db: Session, shift: Shift) -> list[MeterAnomaly]:
    """Flag nozzles whose sold litres stray from the recent average; the caller commits."""
    averages = average_sold_by_nozzle(db, shift)
    rows = []
    for m in shift.meters:
        if m.end_reading is None or m.nozzle_number not in averages:
            continue
        sold = Decimal(str(m.end_reading)) - Decimal(str(m.start_reading))
        average = averages[m.nozzle_number]
        result = classify_deviation(sold, average)
        if result is None:
            continue
        percent, severity = result
        row = MeterAnomaly(
            shift_id=shift.id,
            nozzle_number=m.nozzle_number,
            kind=AnomalyKind.SALES_DEVIATION,
            severity=severity,
            expected_value=quantize(average),
            actual_value=quantize(sold),
            deviation_percent=percent,
            message=(
                f"Nozzle {m.nozzle_number} sold {quantize(sold)} L against an average "
                f"of {quantize(average)} L ({percent}%)"
            ),
            created_at=utc_now(),
        )
        db.add(row)
        rows.append(row)
        logger.warning(
            "Sales deviation on nozzle %s for shift %s: %s%% (%s)",
            m.nozzle_number,
            shift.id,
            percent,
            severity.value,
        )
    return rows


# ─── Review ──────────────────────────────────────────────────────────────────


def anomaly_to_alert(a: MeterAnomaly, station: Station) -> AnomalyAlert:
    shift = a.shift
    return AnomalyAlert(
        id=a.id,
        shift_id=shift.id,
        station_id=station.id,
        station_name=station.name,
        record_date=shift.daily_record.record_date,
        shift_number=shift.shift_number,
        nozzle_number=a.nozzle_number,
        kind=a.kind.value,
        severity=a.severity.value,
        expected_value=str(a.expected_value),
        actual_value=str(a.actual_value),
        deviation_percent=(
            str(a.deviation_percent) if a.deviation_percent is not None else None
        ),
        message=a.message,
        is_reviewed=a.is_reviewed,
        created_at=ensure_utc(a.created_at),
    )


def anomaly_alerts(
    db: Session, since: datetime, include_reviewed: bool = False
) -> list[AnomalyAlert]:
    q = (
        db.query(MeterAnomaly, Station)
        .join(Shift, Shift.id == MeterAnomaly.shift_id)
        .join(Station, Station.id == Shift.station_id)
        .filter(MeterAnomaly.created_at >= since)
    )
    if not include_reviewed:
        q = q.filter(MeterAnomaly.is_reviewed.is_(False))
    return [
        anomaly_to_alert(a, station)
        for a, station in q.order_by(MeterAnomaly.created_at.desc()).all()
    ]


def review_anomaly(
    db: Session,
    anomaly_id: UUID,
    user: User,
    note: str | None = None,
    ip_address: str | None = None,
) -> MeterAnomaly:
    anomaly = db.query(MeterAnomaly).filter(MeterAnomaly.id == anomaly_id).first()
    if not anomaly:
        raise NotFoundError("Anomaly not found")
    if anomaly.is_reviewed:
        raise ConflictError(
            "Anomaly has already been reviewed",
            details={"anomaly_id": str(anomaly.id)},
        )
    anomaly.is_reviewed = True
    anomaly.reviewed_by = user.id
    anomaly.reviewed_at = utc_now()
    anomaly.review_note = (note or "").strip() or None
    log_action(
        db,
        user_id=user.id,
        action="ANOMALY_REVIEWED",
        resource_type="meter_anomalies",
        resource_id=str(anomaly.id),
        changes={"kind": anomaly.kind.value, "review_note": anomaly.review_note},
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(anomaly)
    return anomaly
