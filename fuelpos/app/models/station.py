from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fuelpos.app.core.database import Base


class StationType(str, enum.Enum):
    FULL = "FULL"        # oil station with credit customers
    SIMPLE = "SIMPLE"    # cash-only station without meters
    GAS = "GAS"          # LPG station with nozzles and tanks


class DailyRecordStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class Station(Base):
    __tablename__ = "stations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    station_type: Mapped[StationType] = mapped_column(
        Enum(StationType), nullable=False, default=StationType.GAS
    )
    nozzle_count: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    tank_count: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    fuel_price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    daily_records: Mapped[list[DailyRecord]] = relationship(back_populates="station")


class DailyRecord(Base):
    """One business day at one station; carries the day's fuel price of record."""

    __tablename__ = "daily_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    station_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stations.id"), nullable=False
    )
    record_date: Mapped[date] = mapped_column(Date, nullable=False)
    fuel_price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2), nullable=False
    )
    status: Mapped[DailyRecordStatus] = mapped_column(
        Enum(DailyRecordStatus), nullable=False, default=DailyRecordStatus.OPEN
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    station: Mapped[Station] = relationship(back_populates="daily_records")

    __table_args__ = (
        UniqueConstraint("station_id", "record_date", name="uq_daily_record_station_date"),
        Index("ix_daily_records_date", "record_date"),
    )
