from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fuelpos.app.core.database import Base


class PaymentType(str, enum.Enum):
    CASH = "CASH"
    CREDIT = "CREDIT"
    TRANSFER = "TRANSFER"
    CARD = "CARD"
    BOX_TRUCK = "BOX_TRUCK"
    OIL_TRUCK_SUPACHAI = "OIL_TRUCK_SUPACHAI"


# Billed to an owner account; these must carry an owner
CREDIT_PAYMENT_TYPES: frozenset[PaymentType] = frozenset(
    {PaymentType.CREDIT, PaymentType.BOX_TRUCK, PaymentType.OIL_TRUCK_SUPACHAI}
)


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    station_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stations.id"), nullable=False
    )
    daily_record_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("daily_records.id"), nullable=True
    )
    # The open shift of the sale's business day when it was recorded
    shift_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("shifts.id"), nullable=True
    )
    txn_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    payment_type: Mapped[PaymentType] = mapped_column(
        Enum(PaymentType), nullable=False
    )
    liters: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False, default=Decimal("0")
    )
    price_per_liter: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2), nullable=False, default=Decimal("0")
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    license_plate: Mapped[str | None] = mapped_column(String(50), nullable=True)
    owner_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("owners.id"), nullable=True
    )
    truck_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("trucks.id"), nullable=True
    )
    bill_book_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    bill_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    product_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    nozzle_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    recorded_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    # Set once the sale is billed to its owner
    invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("credit_invoices.id"), nullable=True
    )

    is_voided: Mapped[bool] = mapped_column(default=False)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    voided_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    station = relationship("Station")
    owner = relationship("Owner", back_populates="transactions")
    truck = relationship("Truck")
    invoice = relationship("CreditInvoice", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
        CheckConstraint("liters >= 0", name="ck_transaction_liters_non_negative"),
        Index("ix_transactions_station_date", "station_id", "txn_date"),
        Index("ix_transactions_owner", "owner_id"),
        Index("ix_transactions_shift", "shift_id"),
        Index("ix_transactions_plate", "license_plate"),
        Index("ix_transactions_bill", "bill_book_no", "bill_no"),
        Index("ix_transactions_invoice", "invoice_id"),
    )

    @property
    def is_active(self) -> bool:
        return not self.is_voided and self.deleted_at is None
