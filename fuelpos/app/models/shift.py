from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fuelpos.app.core.database import Base


class ShiftStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    LOCKED = "LOCKED"


class GaugePhase(str, enum.Enum):
    START = "START"
    END = "END"


class VarianceStatus(str, enum.Enum):
    OVER = "OVER"
    SHORT = "SHORT"
    BALANCED = "BALANCED"


class VarianceSeverity(str, enum.Enum):
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"


class AnomalyKind(str, enum.Enum):
    CONTINUITY_GAP = "CONTINUITY_GAP"
    SALES_DEVIATION = "SALES_DEVIATION"


class AnomalySeverity(str, enum.Enum):
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class Shift(Base):
    __tablename__ = "shifts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    station_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stations.id"), nullable=False
    )
    daily_record_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("daily_records.id"), nullable=False
    )
    shift_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ShiftStatus] = mapped_column(
        Enum(ShiftStatus), nullable=False, default=ShiftStatus.OPEN
    )
    staff_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    opened_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    closed_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    locked_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    variance_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Bumped on every status transition; close/lock update WHERE version matches
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    daily_record: Mapped["DailyRecord"] = relationship()  # noqa: F821
    meters: Mapped[list[MeterReading]] = relationship(
        back_populates="shift", order_by="MeterReading.nozzle_number"
    )
    gauges: Mapped[list[GaugeReading]] = relationship(
        back_populates="shift", order_by="GaugeReading.tank_number"
    )
    reconciliation: Mapped[ShiftReconciliation | None] = relationship(
        back_populates="shift", uselist=False
    )

    __table_args__ = (
        CheckConstraint("shift_number IN (1, 2)", name="ck_shift_number"),
        UniqueConstraint("daily_record_id", "shift_number", name="uq_shift_day_number"),
        # At most one OPEN shift per station
        Index(
            "uq_shifts_station_open",
            "station_id",
            unique=True,
            postgresql_where=text("status = 'OPEN'"),
            sqlite_where=text("status = 'OPEN'"),
        ),
        Index("ix_shifts_station", "station_id"),
        Index("ix_shifts_status", "status"),
        Index("ix_shifts_opened_at", "opened_at"),
    )


class MeterReading(Base):
    __tablename__ = "meter_readings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    shift_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("shifts.id"), nullable=False
    )
    nozzle_number: Mapped[int] = mapped_column(Integer, nullable=False)
    start_reading: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    end_reading: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=14, scale=2), nullable=True
    )

    shift: Mapped[Shift] = relationship(back_populates="meters")

    __table_args__ = (
        UniqueConstraint("shift_id", "nozzle_number", name="uq_meter_shift_nozzle"),
        CheckConstraint("start_reading >= 0", name="ck_meter_start_non_negative"),
        CheckConstraint(
            "end_reading IS NULL OR end_reading >= start_reading",
            name="ck_meter_end_not_below_start",
        ),
    )


class GaugeReading(Base):
    __tablename__ = "gauge_readings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    shift_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("shifts.id"), nullable=False
    )
    tank_number: Mapped[int] = mapped_column(Integer, nullable=False)
    phase: Mapped[GaugePhase] = mapped_column(Enum(GaugePhase), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2), nullable=False
    )
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    shift: Mapped[Shift] = relationship(back_populates="gauges")

    __table_args__ = (
        UniqueConstraint("shift_id", "tank_number", "phase", name="uq_gauge_shift_tank_phase"),
        CheckConstraint(
            "percentage >= 0 AND percentage <= 100", name="ck_gauge_percentage_range"
        ),
    )


class ShiftReconciliation(Base):
    """Expected-vs-received snapshot written once when a shift closes."""

    __tablename__ = "shift_reconciliations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    shift_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("shifts.id"), nullable=False, unique=True
    )
    total_liters: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    price_per_liter: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2), nullable=False
    )
    expected_fuel_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    expected_other_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False, default=Decimal("0")
    )
    total_expected: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    cash_received: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    credit_received: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    card_received: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    transfer_received: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    total_received: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    variance: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    variance_status: Mapped[VarianceStatus] = mapped_column(
        Enum(VarianceStatus), nullable=False
    )
    severity: Mapped[VarianceSeverity] = mapped_column(
        Enum(VarianceSeverity), nullable=False
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    shift: Mapped[Shift] = relationship(back_populates="reconciliation")

    __table_args__ = (
        Index("ix_reconciliations_severity", "severity"),
        Index("ix_reconciliations_created_at", "created_at"),
    )


class MeterAnomaly(Base):
    """A per-nozzle reading that looks wrong and waits for an admin to review it."""

    __tablename__ = "meter_anomalies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    shift_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("shifts.id"), nullable=False
    )
    nozzle_number: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[AnomalyKind] = mapped_column(Enum(AnomalyKind), nullable=False)
    severity: Mapped[AnomalySeverity] = mapped_column(
        Enum(AnomalySeverity), nullable=False
    )
    # CONTINUITY_GAP: previous end vs this start. SALES_DEVIATION: average vs sold.
    expected_value: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    actual_value: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    deviation_percent: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=8, scale=2), nullable=True
    )
    message: Mapped[str] = mapped_column(String(255), nullable=False)
    is_reviewed: Mapped[bool] = mapped_column(default=False)
    reviewed_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    review_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    shift: Mapped[Shift] = relationship()

    __table_args__ = (
        Index("ix_meter_anomalies_shift", "shift_id"),
        Index("ix_meter_anomalies_reviewed", "is_reviewed"),
    )
