from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from fuelpos.app.models.station import StationType


class StationCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    station_type: StationType = StationType.GAS
    nozzle_count: int | None = Field(None, ge=1, le=16)
    tank_count: int | None = Field(None, ge=1, le=16)
    fuel_price: Decimal | None = None

    @field_validator("fuel_price")
    @classmethod
    def price_positive(cls, v: Decimal | None) -> Decimal | None:
        if v is not None and v <= 0:
            raise ValueError("Fuel price must be greater than zero")
        return v


class StationPriceUpdate(BaseModel):
    fuel_price: Decimal
    # Also reprice today's daily record when it has no sales yet
    apply_to_today: bool = True

    @field_validator("fuel_price")
    @classmethod
    def price_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Fuel price must be greater than zero")
        return v


class StationOut(BaseModel):
    id: UUID
    code: str
    name: str
    station_type: str
    nozzle_count: int
    tank_count: int
    fuel_price: str
    is_active: bool


class DailyRecordOut(BaseModel):
    id: UUID
    station_id: UUID
    record_date: date
    fuel_price: str
    status: str
    created_at: datetime | None
    transaction_count: int = 0
    shift_count: int = 0
