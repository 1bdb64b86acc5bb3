from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from fuelpos.app.api.deps import ensure_station_access
from fuelpos.app.api.errors import client_ip, to_http
from fuelpos.app.api.permission_deps import require_permission
from fuelpos.app.core.database import get_db
from fuelpos.app.core.timeutils import local_today
from fuelpos.app.models.user import User
from fuelpos.app.schemas.reports import DailySummaryResponse, ShiftReportResponse
from fuelpos.app.services.audit import log_action
from fuelpos.app.services.export_csv import (
    export_shift_report_csv,
    export_transactions_csv,
)
from fuelpos.app.services.export_excel import (
    export_shift_report_excel,
    export_transactions_excel,
)
from fuelpos.app.services.reports import daily_summary, shift_report
from fuelpos.app.services.stations import get_station
from fuelpos.app.services.transactions import list_transactions

router = APIRouter()

_XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
_CSV_MIME = "text/csv; charset=utf-8"


def _default_dates(
    from_date: date | None, to_date: date | None,
) -> tuple[date, date]:
    today = local_today()
    if from_date is None:
        from_date = today.replace(day=1)
    if to_date is None:
        to_date = today
    if from_date > to_date:
        raise HTTPException(status_code=400, detail="from_date must not be after to_date")
    return from_date, to_date


def _language(request: Request, lang: str | None) -> str:
    if lang in ("th", "en"):
        return lang
    return getattr(request.state, "language", "th")


def _export_response(
    buf: object, media_type: str, filename: str,
) -> StreamingResponse:
    return StreamingResponse(
        buf,  # type: ignore[arg-type]
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _log_export(
    db: Session, request: Request, user: User, report_name: str, fmt: str,
    station_id: UUID, from_date: date, to_date: date,
) -> None:
    log_action(
        db,
        user_id=user.id,
        action="REPORT_EXPORTED",
        resource_type="reports",
        resource_id=report_name,
        ip_address=client_ip(request),
        changes={
            "format": fmt,
            "station_id": str(station_id),
            "from_date": from_date.isoformat(),
            "to_date": to_date.isoformat(),
        },
    )
    db.commit()


def _filename(kind: str, code: str, from_date: date, to_date: date, ext: str) -> str:
    return f"report_{kind}_{code}_{from_date.isoformat()}_{to_date.isoformat()}.{ext}"


# ── JSON reports ─────────────────────────────────────────────────────────────


@router.get("/daily", response_model=DailySummaryResponse)
def read_daily_summary(
    station_id: UUID = Query(...),
    record_date: date | None = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("report:read")),
) -> DailySummaryResponse:
    ensure_station_access(current_user, station_id)
    try:
        return daily_summary(db, station_id, record_date or local_today())
    except ValueError as e:
        raise to_http(e)


@router.get("/shifts", response_model=ShiftReportResponse)
def read_shift_report(
    station_id: UUID = Query(...),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("report:read")),
) -> ShiftReportResponse:
    ensure_station_access(current_user, station_id)
    fd, td = _default_dates(from_date, to_date)
    try:
        return shift_report(db, station_id, fd, td)
    except ValueError as e:
        raise to_http(e)


# ── Shift report exports ─────────────────────────────────────────────────────


@router.get("/shifts/export/csv")
def export_shift_report_as_csv(
    request: Request,
    station_id: UUID = Query(...),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    lang: str | None = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("report:export")),
) -> StreamingResponse:
    ensure_station_access(current_user, station_id)
    fd, td = _default_dates(from_date, to_date)
    try:
        station = get_station(db, station_id)
        report = shift_report(db, station_id, fd, td)
    except ValueError as e:
        raise to_http(e)
    text = export_shift_report_csv(report.rows, report.totals, _language(request, lang))
    _log_export(db, request, current_user, "shift-report", "csv", station_id, fd, td)
    return _export_response(
        iter([text.encode("utf-8")]), _CSV_MIME, _filename("shifts", station.code, fd, td, "csv")
    )


@router.get("/shifts/export/excel")
def export_shift_report_as_excel(
    request: Request,
    station_id: UUID = Query(...),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    lang: str | None = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("report:export")),
) -> StreamingResponse:
    ensure_station_access(current_user, station_id)
    fd, td = _default_dates(from_date, to_date)
    try:
        station = get_station(db, station_id)
        report = shift_report(db, station_id, fd, td)
    except ValueError as e:
        raise to_http(e)
    buf = export_shift_report_excel(report, station.name, _language(request, lang))
    _log_export(db, request, current_user, "shift-report", "excel", station_id, fd, td)
    return _export_response(buf, _XLSX_MIME, _filename("shifts", station.code, fd, td, "xlsx"))


# ── Transaction exports ──────────────────────────────────────────────────────


@router.get("/transactions/export/csv")
def export_transactions_as_csv(
    request: Request,
    station_id: UUID = Query(...),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    lang: str | None = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("report:export")),
) -> StreamingResponse:
    ensure_station_access(current_user, station_id)
    fd, td = _default_dates(from_date, to_date)
    try:
        station = get_station(db, station_id)
    except ValueError as e:
        raise to_http(e)
    txns = list_transactions(db, station_id=station_id, date_from=fd, date_to=td)
    text = export_transactions_csv(txns, _language(request, lang))
    _log_export(db, request, current_user, "transactions", "csv", station_id, fd, td)
    return _export_response(
        iter([text.encode("utf-8")]),
        _CSV_MIME,
        _filename("transactions", station.code, fd, td, "csv"),
    )


@router.get("/transactions/export/excel")
def export_transactions_as_excel(
    request: Request,
    station_id: UUID = Query(...),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    lang: str | None = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("report:export")),
) -> StreamingResponse:
    ensure_station_access(current_user, station_id)
    fd, td = _default_dates(from_date, to_date)
    try:
        station = get_station(db, station_id)
    except ValueError as e:
        raise to_http(e)
    txns = list_transactions(db, station_id=station_id, date_from=fd, date_to=td)
    buf = export_transactions_excel(
        txns, f"{station.name} {fd.isoformat()} - {td.isoformat()}", _language(request, lang)
    )
    _log_export(db, request, current_user, "transactions", "excel", station_id, fd, td)
    return _export_response(
        buf, _XLSX_MIME, _filename("transactions", station.code, fd, td, "xlsx")
    )
