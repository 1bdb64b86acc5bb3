from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from fuelpos.app.models.transaction import PaymentType


class TransactionCreate(BaseModel):
    payment_type: PaymentType
    txn_date: date | None = None
    liters: Decimal = Decimal("0")
    price_per_liter: Decimal | None = None
    # Derived from liters x price when omitted
    amount: Decimal | None = None
    license_plate: str | None = Field(None, max_length=50)
    owner_name: str | None = Field(None, max_length=255)
    owner_id: UUID | None = None
    bill_book_no: str | None = Field(None, max_length=50)
    bill_no: str | None = Field(None, max_length=50)
    product_type: str | None = Field(None, max_length=50)
    nozzle_number: int | None = Field(None, ge=1)

    @field_validator("liters")
    @classmethod
    def liters_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Liters cannot be negative")
        return v

    @field_validator("amount", "price_per_liter")
    @classmethod
    def positive(cls, v: Decimal | None) -> Decimal | None:
        if v is not None and v <= 0:
            raise ValueError("Value must be greater than zero")
        return v

    @model_validator(mode="after")
    def amount_or_liters(self) -> "TransactionCreate":
        if self.amount is None and self.liters <= 0:
            raise ValueError("Provide amount or liters")
        return self


class BulkLine(BaseModel):
    liters: Decimal = Decimal("0")
    price_per_liter: Decimal | None = None
    amount: Decimal | None = None
    product_type: str | None = Field(None, max_length=50)
    nozzle_number: int | None = Field(None, ge=1)

    @model_validator(mode="after")
    def amount_or_liters(self) -> "BulkLine":
        if self.liters < 0:
            raise ValueError("Liters cannot be negative")
        if self.amount is not None and self.amount <= 0:
            raise ValueError("Amount must be greater than zero")
        if self.amount is None and self.liters <= 0:
            raise ValueError("Provide amount or liters")
        return self


class BulkTransactionCreate(BaseModel):
    payment_type: PaymentType
    txn_date: date | None = None
    license_plate: str | None = Field(None, max_length=50)
    owner_name: str | None = Field(None, max_length=255)
    owner_id: UUID | None = None
    bill_book_no: str | None = Field(None, max_length=50)
    bill_no: str | None = Field(None, max_length=50)
    lines: list[BulkLine]

    @field_validator("lines")
    @classmethod
    def at_least_one(cls, v: list[BulkLine]) -> list[BulkLine]:
        if not v:
            raise ValueError("At least one fuel line is required")
        return v


class TransactionUpdate(BaseModel):
    # Date, station and shift are fixed once recorded
    model_config = ConfigDict(extra="forbid")

    payment_type: PaymentType | None = None
    liters: Decimal | None = None
    price_per_liter: Decimal | None = None
    amount: Decimal | None = None
    license_plate: str | None = None
    owner_name: str | None = None
    owner_id: UUID | None = None
    bill_book_no: str | None = None
    bill_no: str | None = None
    product_type: str | None = None
    reason: str | None = Field(None, max_length=500)


class VoidRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)


class TransactionOut(BaseModel):
    id: UUID
    station_id: UUID
    daily_record_id: UUID | None
    txn_date: date
    created_at: datetime | None
    payment_type: str
    liters: str
    price_per_liter: str
    amount: str
    license_plate: str | None
    owner_name: str | None
    owner_id: UUID | None
    truck_id: UUID | None
    bill_book_no: str | None
    bill_no: str | None
    product_type: str | None
    nozzle_number: int | None
    is_voided: bool
    void_reason: str | None
    deleted: bool


class BillCheckOut(BaseModel):
    exists: bool
    transactions: list[TransactionOut]
