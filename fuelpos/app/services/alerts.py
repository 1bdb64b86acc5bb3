"""Admin alert feed: large variances, unlocked shifts, recent edits and meter anomalies."""
from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from fuelpos.app.core.config import settings
from fuelpos.app.core.timeutils import ensure_utc, utc_now
from fuelpos.app.models.audit import AuditLog
from fuelpos.app.models.shift import Shift, ShiftReconciliation, ShiftStatus, VarianceSeverity
from fuelpos.app.models.station import DailyRecord, Station
from fuelpos.app.schemas.reports import (
    AlertsResponse,
    AuditAlert,
    UnlockedShiftAlert,
    VarianceAlert,
)
from fuelpos.app.services.anomalies import anomaly_alerts

# Audit actions worth a second look by an admin
EDIT_ACTIONS = ("VOID", "DELETE", "TRANSACTION_UPDATED", "METER_CORRECTED", "OWNER_MERGED")


def get_alerts(db: Session, days: int = 7, now: datetime | None = None) -> AlertsResponse:
    now = now or utc_now()
    since = now - timedelta(days=days)

    variances = [
        VarianceAlert(
            shift_id=shift.id,
            station_id=station.id,
            station_name=station.name,
            record_date=record_date,
            shift_number=shift.shift_number,
            variance=str(rec.variance),
            variance_status=rec.variance_status.value,
            severity=rec.severity.value,
            variance_note=shift.variance_note,
        )
        for rec, shift, station, record_date in (
            db.query(ShiftReconciliation, Shift, Station, DailyRecord.record_date)
            .join(Shift, Shift.id == ShiftReconciliation.shift_id)
            .join(Station, Station.id == Shift.station_id)
            .join(DailyRecord, DailyRecord.id == Shift.daily_record_id)
            .filter(
                ShiftReconciliation.severity.in_(
                    [VarianceSeverity.YELLOW, VarianceSeverity.RED]
                ),
                ShiftReconciliation.created_at >= since,
            )
            .order_by(ShiftReconciliation.created_at.desc())
            .all()
        )
    ]

    cutoff = now - timedelta(hours=settings.UNLOCKED_SHIFT_ALERT_HOURS)
    unlocked: list[UnlockedShiftAlert] = []
    for shift, station, record_date in (
        db.query(Shift, Station, DailyRecord.record_date)
        .join(Station, Station.id == Shift.station_id)
        .join(DailyRecord, DailyRecord.id == Shift.daily_record_id)
        .filter(Shift.status == ShiftStatus.CLOSED, Shift.closed_at <= cutoff)
        .order_by(Shift.closed_at)
        .all()
    ):
        closed_at = ensure_utc(shift.closed_at)
        unlocked.append(
            UnlockedShiftAlert(
                shift_id=shift.id,
                station_id=station.id,
                station_name=station.name,
                record_date=record_date,
                shift_number=shift.shift_number,
                closed_at=closed_at,
                hours_since_close=round((now - closed_at).total_seconds() / 3600, 1),
            )
        )

    edits = [
        AuditAlert(
            id=log.id,
            action=log.action,
            resource_type=log.table_name,
            resource_id=log.record_id,
            changed_by=log.changed_by,
            created_at=ensure_utc(log.created_at),
        )
        for log in (
            db.query(AuditLog)
            .filter(AuditLog.action.in_(EDIT_ACTIONS), AuditLog.created_at >= since)
            .order_by(AuditLog.created_at.desc())
            .limit(100)
            .all()
        )
    ]

    anomalies = anomaly_alerts(db, since)

    return AlertsResponse(
        days=days,
        variances=variances,
        unlocked_shifts=unlocked,
        recent_edits=edits,
        anomalies=anomalies,
        summary={
            "red": sum(1 for v in variances if v.severity == VarianceSeverity.RED.value),
            "yellow": sum(1 for v in variances if v.severity == VarianceSeverity.YELLOW.value),
            "unlocked_shifts": len(unlocked),
            "recent_edits": len(edits),
            "anomalies": len(anomalies),
            "critical_anomalies": sum(1 for a in anomalies if a.severity == "CRITICAL"),
        },
    )
