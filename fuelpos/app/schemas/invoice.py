from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


# ─── Invoices ────────────────────────────────────────────────────────────────


class InvoiceCreate(BaseModel):
    owner_ids: list[UUID] = Field(..., min_length=1)
    date_from: date | None = None
    date_to: date | None = None
    # One invoice for all owners, addressed to the first one
    combine_owners: bool = False
    notes: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def _check_period(self) -> InvoiceCreate:
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self


class MonthlyInvoiceRequest(BaseModel):
    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)


class InvoiceOut(BaseModel):
    id: UUID
    invoice_number: str
    owner_id: UUID
    owner_name: str
    invoice_date: date
    due_date: date
    period_start: date | None
    period_end: date | None
    total_amount: str
    amount_paid: str
    remaining: str
    status: str
    transaction_count: int
    notes: str | None
    created_at: datetime


class InvoicePaymentIn(BaseModel):
    amount: Decimal = Field(..., gt=0)
    payment_method: str = Field(..., min_length=1, max_length=50)
    payment_date: date | None = None
    notes: str | None = Field(None, max_length=500)


class InvoicePaymentOut(BaseModel):
    id: UUID
    invoice_id: UUID
    amount: str
    payment_method: str
    payment_date: date
    notes: str | None
    recorded_by: UUID | None
    created_at: datetime


class InvoiceLineOut(BaseModel):
    transaction_id: UUID
    txn_date: date
    license_plate: str | None
    payment_type: str
    liters: str
    amount: str
    bill_book_no: str | None
    bill_no: str | None


class InvoiceDetailOut(InvoiceOut):
    lines: list[InvoiceLineOut]
    payments: list[InvoicePaymentOut]


class InvoiceBatchOut(BaseModel):
    total: int
    created: list[InvoiceOut]
    skipped: list[str]


class PendingCreditOut(BaseModel):
    owner_id: UUID
    owner_name: str
    owner_code: str | None
    phone: str | None
    transaction_count: int
    total_amount: str


# ─── Aging ───────────────────────────────────────────────────────────────────


class AgingBucketRow(BaseModel):
    name: str
    current: str  # not yet due
    days_1_30: str
    days_31_60: str
    days_61_90: str
    over_90: str
    total: str


class AgingKPI(BaseModel):
    total_receivable: str
    total_overdue: str
    uninvoiced_credit: str


class AgingResponse(BaseModel):
    as_of_date: str
    kpi: AgingKPI
    owners: list[AgingBucketRow]
    totals: AgingBucketRow
