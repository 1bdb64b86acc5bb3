from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from fuelpos.app.api.errors import client_ip, to_http
from fuelpos.app.api.permission_deps import require_permission
from fuelpos.app.core.database import get_db
from fuelpos.app.models.station import Station
from fuelpos.app.models.user import User
from fuelpos.app.schemas.reports import AlertsResponse, AnomalyAlert, AnomalyReviewRequest
from fuelpos.app.services.alerts import get_alerts
from fuelpos.app.services.anomalies import anomaly_to_alert, review_anomaly

router = APIRouter()


@router.get("", response_model=AlertsResponse)
def read_alerts(
    days: int = Query(7, ge=1, le=90),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_permission("report:read")),
) -> AlertsResponse:
    return get_alerts(db, days=days)


@router.post("/anomalies/{anomaly_id}/review", response_model=AnomalyAlert)
def mark_anomaly_reviewed(
    anomaly_id: UUID,
    request: Request,
    body: AnomalyReviewRequest | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("shift:admin")),
) -> AnomalyAlert:
    try:
        anomaly = review_anomaly(
            db,
            anomaly_id,
            current_user,
            note=body.note if body is not None else None,
            ip_address=client_ip(request),
        )
    except ValueError as e:
        raise to_http(e)
    station = db.get(Station, anomaly.shift.station_id)
    return anomaly_to_alert(anomaly, station)
