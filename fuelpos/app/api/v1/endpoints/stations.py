from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from fuelpos.app.api.deps import ensure_station_access
from fuelpos.app.api.errors import client_ip, to_http
from fuelpos.app.api.permission_deps import require_permission
from fuelpos.app.core.database import get_db
from fuelpos.app.core.timeutils import local_today
from fuelpos.app.models.user import User
from fuelpos.app.schemas.station import (
    DailyRecordOut,
    StationCreate,
    StationOut,
    StationPriceUpdate,
)
from fuelpos.app.services.stations import (
    create_station,
    daily_record_to_out,
    delete_daily_record,
    get_daily_record,
    get_or_create_daily_record,
    get_station,
    list_stations,
    station_to_out,
    update_station_price,
)

router = APIRouter()


@router.get("", response_model=list[StationOut])
def list_all_stations(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("station:read")),
) -> list[StationOut]:
    """Admins see every station; staff see only their own."""
    return [station_to_out(s) for s in list_stations(db, current_user.station_id)]


@router.post("", response_model=StationOut, status_code=status.HTTP_201_CREATED)
def create_new_station(
    body: StationCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("station:manage")),
) -> StationOut:
    try:
        station = create_station(db, body, current_user, client_ip(request))
    except ValueError as e:
        raise to_http(e)
    return station_to_out(station)


@router.get("/{station_id}", response_model=StationOut)
def read_station(
    station_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("station:read")),
) -> StationOut:
    ensure_station_access(current_user, station_id)
    try:
        return station_to_out(get_station(db, station_id))
    except ValueError as e:
        raise to_http(e)


@router.put("/{station_id}/price", response_model=StationOut)
def change_price(
    station_id: UUID,
    body: StationPriceUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("station:manage")),
) -> StationOut:
    try:
        station = update_station_price(
            db,
            station_id,
            body.fuel_price,
            current_user,
            record_date=local_today() if body.apply_to_today else None,
            ip_address=client_ip(request),
        )
    except ValueError as e:
        raise to_http(e)
    return station_to_out(station)


# ─── Daily records ───────────────────────────────────────────────────────────


@router.get("/{station_id}/daily-records/{record_date}", response_model=DailyRecordOut)
def read_daily_record(
    station_id: UUID,
    record_date: date,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("station:read")),
) -> DailyRecordOut:
    ensure_station_access(current_user, station_id)
    record = get_daily_record(db, station_id, record_date)
    if record is None:
        raise HTTPException(status_code=404, detail="No daily record for this date")
    return daily_record_to_out(db, record)


@router.post(
    "/{station_id}/daily-records/{record_date}",
    response_model=DailyRecordOut,
)
def ensure_daily_record(
    station_id: UUID,
    record_date: date,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("shift:operate")),
) -> DailyRecordOut:
    """Return the day's record, creating it at the current price if needed."""
    ensure_station_access(current_user, station_id)
    try:
        station = get_station(db, station_id)
        record = get_or_create_daily_record(db, station, record_date)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise to_http(e)
    return daily_record_to_out(db, record)


@router.delete("/daily-records/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_daily_record(
    record_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("station:manage")),
) -> None:
    try:
        delete_daily_record(db, record_id, current_user, client_ip(request))
    except ValueError as e:
        raise to_http(e)
