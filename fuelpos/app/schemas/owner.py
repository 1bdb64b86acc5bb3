from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


# ─── Owners ──────────────────────────────────────────────────────────────────


class OwnerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    code: str | None = Field(None, max_length=50)
    phone: str | None = Field(None, max_length=50)
    group_name: str | None = Field(None, max_length=100)
    credit_limit: Decimal | None = None


class OwnerUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    code: str | None = Field(None, max_length=50)
    phone: str | None = Field(None, max_length=50)
    group_name: str | None = Field(None, max_length=100)
    credit_limit: Decimal | None = None


class OwnerOut(BaseModel):
    id: UUID
    name: str
    code: str | None
    phone: str | None
    group_name: str | None
    credit_limit: str | None
    truck_count: int = 0


class OwnerMergeRequest(BaseModel):
    source_owner_id: UUID
    target_owner_id: UUID


class OwnerMergeOut(BaseModel):
    trucks_moved: int
    transactions_moved: int
    deleted_owner: str
    target_owner: str


class DuplicateOwnerOut(BaseModel):
    exists: bool
    owners: list[OwnerOut]


class CreditSummaryOut(BaseModel):
    owner_id: UUID
    owner_name: str
    transaction_count: int
    total_liters: str
    total_amount: str
    by_payment_type: dict[str, str]
    credit_limit: str | None
    over_limit: bool


# ─── Trucks ──────────────────────────────────────────────────────────────────


class TruckCreate(BaseModel):
    license_plate: str = Field(..., min_length=1, max_length=50)
    code: str | None = Field(None, max_length=50)
    owner_id: UUID | None = None


class TruckUpdate(BaseModel):
    license_plate: str | None = Field(None, min_length=1, max_length=50)
    code: str | None = Field(None, max_length=50)
    owner_id: UUID | None = None


class TruckOut(BaseModel):
    id: UUID
    license_plate: str
    code: str | None
    owner_id: UUID | None
    owner_name: str | None = None
