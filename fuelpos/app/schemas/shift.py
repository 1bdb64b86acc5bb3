from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


# ─── Readings ────────────────────────────────────────────────────────────────


class MeterStartIn(BaseModel):
    nozzle_number: int = Field(..., ge=1)
    start_reading: Decimal

    @field_validator("start_reading")
    @classmethod
    def non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Meter reading cannot be negative")
        return v


class MeterEndIn(BaseModel):
    nozzle_number: int = Field(..., ge=1)
    end_reading: Decimal

    @field_validator("end_reading")
    @classmethod
    def non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Meter reading cannot be negative")
        return v


class GaugeIn(BaseModel):
    tank_number: int = Field(..., ge=1)
    percentage: Decimal

    @field_validator("percentage")
    @classmethod
    def in_range(cls, v: Decimal) -> Decimal:
        if v < 0 or v > 100:
            raise ValueError("Gauge percentage must be between 0 and 100")
        return v


# ─── Requests ────────────────────────────────────────────────────────────────


class ShiftOpenRequest(BaseModel):
    shift_number: int = Field(..., ge=1, le=2)
    record_date: date | None = None
    # Nozzles left out continue from the previous shift's end readings
    meters: list[MeterStartIn] = Field(default_factory=list)
    gauges: list[GaugeIn]


class EndMetersRequest(BaseModel):
    meters: list[MeterEndIn]

    @field_validator("meters")
    @classmethod
    def at_least_one(cls, v: list[MeterEndIn]) -> list[MeterEndIn]:
        if not v:
            raise ValueError("At least one meter reading is required")
        return v


class GaugesRequest(BaseModel):
    phase: str = "END"
    gauges: list[GaugeIn]

    @field_validator("phase")
    @classmethod
    def known_phase(cls, v: str) -> str:
        v = v.upper()
        if v not in ("START", "END"):
            raise ValueError("phase must be START or END")
        return v


class ReceivedIn(BaseModel):
    cash: Decimal = Decimal("0")
    credit: Decimal = Decimal("0")
    card: Decimal = Decimal("0")
    transfer: Decimal = Decimal("0")

    @model_validator(mode="after")
    def non_negative(self) -> "ReceivedIn":
        for name in ("cash", "credit", "card", "transfer"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} received cannot be negative")
        return self


class ShiftCloseRequest(BaseModel):
    # Omitted amounts fall back to the recorded sales for the shift
    received: ReceivedIn | None = None
    expected_other: Decimal = Decimal("0")
    variance_note: str | None = Field(None, max_length=2000)
    # Convenience: end readings and end gauges submitted with the close
    meters: list[MeterEndIn] | None = None
    gauges: list[GaugeIn] | None = None


class MeterCorrectionRequest(BaseModel):
    nozzle_number: int = Field(..., ge=1)
    start_reading: Decimal | None = None
    end_reading: Decimal | None = None
    reason: str = Field(..., min_length=3, max_length=500)

    @model_validator(mode="after")
    def something_to_change(self) -> "MeterCorrectionRequest":
        if self.start_reading is None and self.end_reading is None:
            raise ValueError("Provide start_reading and/or end_reading")
        return self


# ─── Responses ───────────────────────────────────────────────────────────────


class MeterOut(BaseModel):
    nozzle_number: int
    start_reading: str
    end_reading: str | None
    sold_qty: str | None


class GaugeOut(BaseModel):
    tank_number: int
    phase: str
    percentage: str
    liters: str
    level: str


class ReconciliationOut(BaseModel):
    total_liters: str
    price_per_liter: str
    expected_fuel_amount: str
    expected_other_amount: str
    expected_amount: str
    cash_received: str
    credit_received: str
    card_received: str
    transfer_received: str
    total_received: str
    variance: str
    variance_status: str
    severity: str


class ShiftOut(BaseModel):
    id: UUID
    station_id: UUID
    daily_record_id: UUID
    record_date: date
    shift_number: int
    status: str
    staff_id: UUID | None
    opened_at: datetime | None
    closed_at: datetime | None
    locked_at: datetime | None
    variance_note: str | None
    version: int
    meters: list[MeterOut] = []
    gauges: list[GaugeOut] = []
    reconciliation: ReconciliationOut | None = None


class ShiftSummaryOut(BaseModel):
    shift: ShiftOut
    total_liters: str
    price_per_liter: str
    expected_fuel_amount: str
    received_prefill: ReceivedIn
    transaction_count: int
    missing_end_nozzles: list[int]
    missing_end_tanks: list[int]
    ready_to_close: bool
