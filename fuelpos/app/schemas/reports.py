"""Pydantic response schemas for station reports and alerts."""
from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field


# ── Daily summary ────────────────────────────────────────────────────────────

class PaymentTypeTotal(BaseModel):
    payment_type: str
    count: int
    liters: str
    amount: str


class ShiftLine(BaseModel):
    shift_id: UUID
    shift_number: int
    status: str
    total_liters: str | None
    expected_amount: str | None
    total_received: str | None
    variance: str | None
    variance_status: str | None
    severity: str | None


class DailySummaryResponse(BaseModel):
    station_id: UUID
    station_name: str
    record_date: date
    fuel_price: str | None
    transaction_count: int
    total_liters: str
    total_amount: str
    by_payment_type: list[PaymentTypeTotal]
    shifts: list[ShiftLine]


# ── Shift report ─────────────────────────────────────────────────────────────

class ShiftReportRow(BaseModel):
    shift_id: UUID
    record_date: date
    shift_number: int
    status: str
    total_liters: str
    price_per_liter: str
    expected_amount: str
    cash_received: str
    credit_received: str
    card_received: str
    transfer_received: str
    total_received: str
    variance: str
    variance_status: str
    severity: str


class ShiftReportResponse(BaseModel):
    station_id: UUID
    from_date: date
    to_date: date
    rows: list[ShiftReportRow]
    totals: dict[str, str]


# ── Alerts ───────────────────────────────────────────────────────────────────

class VarianceAlert(BaseModel):
    shift_id: UUID
    station_id: UUID
    station_name: str
    record_date: date
    shift_number: int
    variance: str
    variance_status: str
    severity: str
    variance_note: str | None


class UnlockedShiftAlert(BaseModel):
    shift_id: UUID
    station_id: UUID
    station_name: str
    record_date: date
    shift_number: int
    closed_at: datetime | None
    hours_since_close: float


class AuditAlert(BaseModel):
    id: UUID
    action: str
    resource_type: str
    resource_id: str
    changed_by: UUID | None
    created_at: datetime | None


class AnomalyAlert(BaseModel):
    id: UUID
    shift_id: UUID
    station_id: UUID
    station_name: str
    record_date: date
    shift_number: int
    nozzle_number: int
    kind: str
    severity: str
    expected_value: str
    actual_value: str
    deviation_percent: str | None
    message: str
    is_reviewed: bool
    created_at: datetime | None


class AnomalyReviewRequest(BaseModel):
    note: str | None = Field(None, max_length=500)


class AlertsResponse(BaseModel):
    days: int
    variances: list[VarianceAlert]
    unlocked_shifts: list[UnlockedShiftAlert]
    recent_edits: list[AuditAlert]
    anomalies: list[AnomalyAlert]
    summary: dict[str, int]
