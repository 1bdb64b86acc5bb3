from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func as sa_func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fuelpos.app.core.config import settings
from fuelpos.app.core.exceptions import ConflictError, NotFoundError
from fuelpos.app.models.shift import Shift
from fuelpos.app.models.station import DailyRecord, Station
from fuelpos.app.models.transaction import Transaction
from fuelpos.app.models.user import User
from fuelpos.app.schemas.station import DailyRecordOut, StationCreate, StationOut
from fuelpos.app.services.audit import log_action, snapshot

logger = logging.getLogger(__name__)

_DAILY_RECORD_FIELDS = ("station_id", "record_date", "fuel_price", "status")


# ─── Stations ────────────────────────────────────────────────────────────────


def station_to_out(station: Station) -> StationOut:
    return StationOut(
        id=station.id,
        code=station.code,
        name=station.name,
        station_type=station.station_type.value,
        nozzle_count=station.nozzle_count,
        tank_count=station.tank_count,
        fuel_price=str(station.fuel_price),
        is_active=station.is_active,
    )


def list_stations(db: Session, station_id: UUID | None = None) -> list[Station]:
    """Active stations, or just the one a staff user is bound to."""
    q = db.query(Station).filter(Station.is_active.is_(True))
    if station_id is not None:
        q = q.filter(Station.id == station_id)
    return q.order_by(Station.code).all()


def get_station(db: Session, station_id: UUID) -> Station:
    station = db.query(Station).filter(Station.id == station_id).first()
    if not station:
        raise NotFoundError("Station not found")
    return station


def create_station(
    db: Session, body: StationCreate, user: User, ip_address: str | None = None
) -> Station:
    if db.query(Station).filter(Station.code == body.code).first():
        raise ConflictError(
            f"Station code '{body.code}' already exists", details={"code": body.code}
        )
    station = Station(
        code=body.code,
        name=body.name,
        station_type=body.station_type,
        nozzle_count=body.nozzle_count or settings.DEFAULT_NOZZLE_COUNT,
        tank_count=body.tank_count or settings.DEFAULT_TANK_COUNT,
        fuel_price=body.fuel_price or settings.DEFAULT_FUEL_PRICE,
    )
    db.add(station)
    db.flush()
    log_action(
        db,
        user_id=user.id,
        action="STATION_CREATED",
        resource_type="stations",
        resource_id=str(station.id),
        changes=snapshot(station, ("code", "name", "station_type", "fuel_price")),
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(station)
    return station


def update_station_price(
    db: Session,
    station_id: UUID,
    fuel_price: Decimal,
    user: User,
    *,
    record_date: date | None = None,
    ip_address: str | None = None,
) -> Station:
    """Change the station's price of record.

    When *record_date* is given and that day's record exists without any
    sales, its captured price is updated too. Days that already have sales
    keep the price they were opened with.
    """
    station = get_station(db, station_id)
    old_price = station.fuel_price
    station.fuel_price = fuel_price

    repriced_day = None
    if record_date is not None:
        record = get_daily_record(db, station_id, record_date)
        if record is not None and _transaction_count(db, record.id) == 0:
            record.fuel_price = fuel_price
            repriced_day = record_date.isoformat()

    log_action(
        db,
        user_id=user.id,
        action="PRICE_CHANGED",
        resource_type="stations",
        resource_id=str(station.id),
        old_values={"fuel_price": str(old_price)},
        changes={"fuel_price": str(fuel_price), "daily_record": repriced_day},
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(station)
    logger.info("Fuel price for station %s changed %s -> %s", station.code, old_price, fuel_price)
    return station


# ─── Daily records ───────────────────────────────────────────────────────────


def _transaction_count(db: Session, daily_record_id: UUID) -> int:
    return (
        db.query(sa_func.count(Transaction.id))
        .filter(Transaction.daily_record_id == daily_record_id)
        .scalar()
    ) or 0


def _shift_count(db: Session, daily_record_id: UUID) -> int:
    return (
        db.query(sa_func.count(Shift.id))
        .filter(Shift.daily_record_id == daily_record_id)
        .scalar()
    ) or 0


def daily_record_to_out(db: Session, record: DailyRecord) -> DailyRecordOut:
    return DailyRecordOut(
        id=record.id,
        station_id=record.station_id,
        record_date=record.record_date,
        fuel_price=str(record.fuel_price),
        status=record.status.value,
        created_at=record.created_at,
        transaction_count=_transaction_count(db, record.id),
        shift_count=_shift_count(db, record.id),
    )


def get_daily_record(db: Session, station_id: UUID, record_date: date) -> DailyRecord | None:
    return (
        db.query(DailyRecord)
        .filter(DailyRecord.station_id == station_id, DailyRecord.record_date == record_date)
        .first()
    )


def get_or_create_daily_record(db: Session, station: Station, record_date: date) -> DailyRecord:
    """Return the station's record for *record_date*, creating it if needed.

    A new record captures the station's current fuel price. Two requests
    racing to create the same day are settled by the unique constraint.
    Flushes but does not commit.
    """
    record = get_daily_record(db, station.id, record_date)
    if record is not None:
        return record

    record = DailyRecord(
        station_id=station.id,
        record_date=record_date,
        fuel_price=station.fuel_price,
    )
    try:
        with db.begin_nested():
            db.add(record)
            db.flush()
    except IntegrityError:
        logger.info("Daily record for %s on %s created concurrently", station.code, record_date)
        record = get_daily_record(db, station.id, record_date)
        if record is None:
            raise
    return record


def delete_daily_record(
    db: Session, record_id: UUID, user: User, ip_address: str | None = None
) -> None:
    """Delete an empty daily record. Refuses while sales or shifts reference it."""
    record = db.query(DailyRecord).filter(DailyRecord.id == record_id).first()
    if not record:
        raise NotFoundError("Daily record not found")

    txn_count = _transaction_count(db, record.id)
    shift_count = _shift_count(db, record.id)
    if txn_count or shift_count:
        raise ConflictError(
            f"Daily record for {record.record_date.isoformat()} still has "
            f"{txn_count} transactions and {shift_count} shifts",
            details={
                "record_date": record.record_date.isoformat(),
                "transaction_count": txn_count,
                "shift_count": shift_count,
            },
        )

    log_action(
        db,
        user_id=user.id,
        action="DAILY_RECORD_DELETED",
        resource_type="daily_records",
        resource_id=str(record.id),
        old_values=snapshot(record, _DAILY_RECORD_FIELDS),
        ip_address=ip_address,
    )
    db.delete(record)
    db.commit()
