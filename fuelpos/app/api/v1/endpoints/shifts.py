from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from fuelpos.app.api.deps import ensure_station_access
from fuelpos.app.api.errors import client_ip, to_http
from fuelpos.app.api.permission_deps import require_permission
from fuelpos.app.core.database import get_db
from fuelpos.app.core.timeutils import local_today
from fuelpos.app.models.shift import GaugePhase, Shift, ShiftStatus
from fuelpos.app.models.user import User
from fuelpos.app.schemas.shift import (
    EndMetersRequest,
    GaugesRequest,
    MeterCorrectionRequest,
    MeterOut,
    ShiftCloseRequest,
    ShiftOpenRequest,
    ShiftOut,
    ShiftSummaryOut,
)
from fuelpos.app.services.reconciliation import ReceivedAmounts
from fuelpos.app.services.shifts import (
    close_shift,
    correct_meter_reading,
    find_open_shift,
    get_shift,
    get_shift_summary,
    list_shifts,
    lock_shift,
    meter_to_out,
    open_shift,
    record_end_meters,
    record_gauges,
    shift_to_out,
)

router = APIRouter()


def _load_shift(db: Session, shift_id: UUID, user: User) -> Shift:
    try:
        shift = get_shift(db, shift_id)
    except ValueError as e:
        raise to_http(e)
    ensure_station_access(user, shift.station_id)
    return shift


# ─── Station-scoped ──────────────────────────────────────────────────────────


@router.post(
    "/stations/{station_id}/shifts",
    response_model=ShiftOut,
    status_code=status.HTTP_201_CREATED,
)
def open_new_shift(
    station_id: UUID,
    body: ShiftOpenRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("shift:operate")),
) -> ShiftOut:
    ensure_station_access(current_user, station_id)
    try:
        shift = open_shift(
            db,
            station_id,
            current_user,
            shift_number=body.shift_number,
            record_date=body.record_date or local_today(),
            meters=body.meters,
            gauges=body.gauges,
            ip_address=client_ip(request),
        )
    except ValueError as e:
        raise to_http(e)
    return shift_to_out(shift)


@router.get("/stations/{station_id}/shifts/current", response_model=ShiftOut)
def read_current_shift(
    station_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("shift:operate")),
) -> ShiftOut:
    ensure_station_access(current_user, station_id)
    shift = find_open_shift(db, station_id)
    if shift is None:
        raise HTTPException(status_code=404, detail="No open shift for this station")
    return shift_to_out(shift)


@router.get("/stations/{station_id}/shifts", response_model=list[ShiftOut])
def list_station_shifts(
    station_id: UUID,
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    shift_status: ShiftStatus | None = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("shift:list")),
) -> list[ShiftOut]:
    ensure_station_access(current_user, station_id)
    shifts = list_shifts(
        db, station_id, date_from=date_from, date_to=date_to, status=shift_status
    )
    return [shift_to_out(s) for s in shifts]


# ─── Shift operations ────────────────────────────────────────────────────────


@router.get("/shifts/{shift_id}", response_model=ShiftOut)
def read_shift(
    shift_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("shift:list")),
) -> ShiftOut:
    return shift_to_out(_load_shift(db, shift_id, current_user))


@router.get("/shifts/{shift_id}/summary", response_model=ShiftSummaryOut)
def read_shift_summary(
    shift_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("shift:operate")),
) -> ShiftSummaryOut:
    _load_shift(db, shift_id, current_user)
    try:
        return get_shift_summary(db, shift_id)
    except ValueError as e:
        raise to_http(e)


@router.put("/shifts/{shift_id}/end-meters", response_model=ShiftOut)
def save_end_meters(
    shift_id: UUID,
    body: EndMetersRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("shift:operate")),
) -> ShiftOut:
    _load_shift(db, shift_id, current_user)
    try:
        shift = record_end_meters(
            db, shift_id, body.meters, current_user, ip_address=client_ip(request)
        )
    except ValueError as e:
        raise to_http(e)
    return shift_to_out(shift)


@router.put("/shifts/{shift_id}/gauges", response_model=ShiftOut)
def save_gauges(
    shift_id: UUID,
    body: GaugesRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("shift:operate")),
) -> ShiftOut:
    _load_shift(db, shift_id, current_user)
    try:
        shift = record_gauges(
            db,
            shift_id,
            GaugePhase(body.phase),
            body.gauges,
            current_user,
            ip_address=client_ip(request),
        )
    except ValueError as e:
        raise to_http(e)
    return shift_to_out(shift)


@router.post("/shifts/{shift_id}/close", response_model=ShiftOut)
def close_open_shift(
    shift_id: UUID,
    body: ShiftCloseRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("shift:operate")),
) -> ShiftOut:
    _load_shift(db, shift_id, current_user)
    try:
        received = None
        if body.received is not None:
            received = ReceivedAmounts(**body.received.model_dump())
        shift = close_shift(
            db,
            shift_id,
            current_user,
            received=received,
            expected_other=body.expected_other,
            variance_note=body.variance_note,
            end_meters=body.meters,
            end_gauges=body.gauges,
            ip_address=client_ip(request),
        )
    except ValueError as e:
        raise to_http(e)
    return shift_to_out(shift)


@router.post("/shifts/{shift_id}/lock", response_model=ShiftOut)
def lock_closed_shift(
    shift_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("shift:admin")),
) -> ShiftOut:
    try:
        shift = lock_shift(db, shift_id, current_user, client_ip(request))
    except ValueError as e:
        raise to_http(e)
    return shift_to_out(shift)


@router.post("/shifts/{shift_id}/meter-corrections", response_model=MeterOut)
def correct_meter(
    shift_id: UUID,
    body: MeterCorrectionRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("shift:admin")),
) -> MeterOut:
    try:
        meter = correct_meter_reading(
            db,
            shift_id,
            body.nozzle_number,
            current_user,
            reason=body.reason,
            start_reading=body.start_reading,
            end_reading=body.end_reading,
            ip_address=client_ip(request),
        )
    except ValueError as e:
        raise to_http(e)
    return meter_to_out(meter)
