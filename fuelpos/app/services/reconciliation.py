"""Shift reconciliation engine.

Turns meter deltas, tank levels and received payments for one shift into an
expected-vs-received judgment. Everything here is a pure function of its
arguments: no database access, no settings lookups. Thresholds arrive via
:class:`VariancePolicy`, which the shift workflow builds from settings.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Protocol

from fuelpos.app.core.exceptions import IncompleteShiftError, ValidationError
from fuelpos.app.models.shift import VarianceSeverity, VarianceStatus
from fuelpos.app.models.transaction import CREDIT_PAYMENT_TYPES, PaymentType

Q = Decimal("0.01")
ZERO = Decimal("0")


def quantize(value: Decimal) -> Decimal:
    return value.quantize(Q, rounding=ROUND_HALF_UP)


# ─── Inputs ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MeterDelta:
    nozzle_number: int
    start_reading: Decimal
    end_reading: Decimal | None


@dataclass(frozen=True)
class TankLevel:
    tank_number: int
    end_percentage: Decimal | None


@dataclass(frozen=True)
class ReceivedAmounts:
    cash: Decimal = ZERO
    credit: Decimal = ZERO
    card: Decimal = ZERO
    transfer: Decimal = ZERO

    def __post_init__(self) -> None:
        for name in ("cash", "credit", "card", "transfer"):
            if getattr(self, name) < 0:
                raise ValidationError(f"{name} received cannot be negative")

    @property
    def total(self) -> Decimal:
        return self.cash + self.credit + self.card + self.transfer


@dataclass(frozen=True)
class VariancePolicy:
    balanced_tolerance: Decimal = ZERO
    warning_threshold: Decimal = Decimal("200")
    critical_threshold: Decimal = Decimal("500")

    @classmethod
    def from_settings(cls, settings: Any) -> VariancePolicy:
        return cls(
            balanced_tolerance=Decimal(str(settings.VARIANCE_BALANCED_TOLERANCE)),
            warning_threshold=Decimal(str(settings.VARIANCE_WARNING_THRESHOLD)),
            critical_threshold=Decimal(str(settings.VARIANCE_CRITICAL_THRESHOLD)),
        )


# ─── Result ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ReconciliationResult:
    total_liters: Decimal
    price_per_liter: Decimal
    expected_fuel_amount: Decimal
    expected_other_amount: Decimal
    expected_amount: Decimal
    received: ReceivedAmounts
    total_received: Decimal
    variance: Decimal
    variance_status: VarianceStatus
    severity: VarianceSeverity

    def as_dict(self) -> dict[str, Any]:
        return {
            "expected_amount": self.expected_amount,
            "total_received": self.total_received,
            "variance": self.variance,
            "variance_status": self.variance_status.value,
            "severity": self.severity.value,
            "total_liters": self.total_liters,
            "price_per_liter": self.price_per_liter,
            "expected_fuel_amount": self.expected_fuel_amount,
            "expected_other_amount": self.expected_other_amount,
        }


# ─── Validation ──────────────────────────────────────────────────────────────


def validate_meter_deltas(deltas: Sequence[MeterDelta]) -> None:
    """Reject incomplete or inconsistent meter data before any arithmetic.

    A missing end reading means the shift is not ready to close; an end
    reading below its start is a data-entry error. Neither is floored to zero.
    """
    if not deltas:
        raise IncompleteShiftError("No meter readings recorded for this shift")

    missing = sorted(d.nozzle_number for d in deltas if d.end_reading is None)
    if missing:
        raise IncompleteShiftError(
            f"Shift not ready to close: missing end readings for nozzles {missing}",
            missing_nozzles=missing,
        )

    for d in deltas:
        if d.start_reading < 0 or (d.end_reading is not None and d.end_reading < 0):
            raise ValidationError(f"Nozzle {d.nozzle_number}: meter readings cannot be negative")
        if d.end_reading is not None and d.end_reading < d.start_reading:
            raise ValidationError(
                f"Nozzle {d.nozzle_number}: end reading {d.end_reading} "
                f"is below start reading {d.start_reading}"
            )


def validate_tank_levels(levels: Sequence[TankLevel]) -> None:
    missing = sorted(t.tank_number for t in levels if t.end_percentage is None)
    if missing:
        raise IncompleteShiftError(
            f"Shift not ready to close: missing end gauge for tanks {missing}",
            missing_tanks=missing,
        )
    for t in levels:
        if t.end_percentage is not None and not (0 <= t.end_percentage <= 100):
            raise ValidationError(
                f"Tank {t.tank_number}: gauge percentage must be between 0 and 100"
            )


# ─── Computation ─────────────────────────────────────────────────────────────


def sold_quantity(start: Decimal, end: Decimal | None) -> Decimal:
    """Liters sold on one nozzle, floored at zero. For display only."""
    if end is None:
        return ZERO
    return max(ZERO, end - start)


def total_liters(deltas: Iterable[MeterDelta]) -> Decimal:
    return sum(
        (sold_quantity(d.start_reading, d.end_reading) for d in deltas if d.end_reading is not None),
        ZERO,
    )


def classify_variance(variance: Decimal, policy: VariancePolicy) -> VarianceStatus:
    if abs(variance) <= policy.balanced_tolerance:
        return VarianceStatus.BALANCED
    return VarianceStatus.OVER if variance > 0 else VarianceStatus.SHORT


def classify_severity(variance: Decimal, policy: VariancePolicy) -> VarianceSeverity:
    magnitude = abs(variance)
    if magnitude <= policy.warning_threshold:
        return VarianceSeverity.GREEN
    if magnitude <= policy.critical_threshold:
        return VarianceSeverity.YELLOW
    return VarianceSeverity.RED


def reconcile(
    deltas: Sequence[MeterDelta],
    price_per_liter: Decimal,
    received: ReceivedAmounts,
    *,
    expected_other: Decimal = ZERO,
    tank_levels: Sequence[TankLevel] = (),
    policy: VariancePolicy = VariancePolicy(),
) -> ReconciliationResult:
    validate_meter_deltas(deltas)
    validate_tank_levels(tank_levels)
    if price_per_liter <= 0:
        raise ValidationError("Price per liter must be positive")
    if expected_other < 0:
        raise ValidationError("Expected non-fuel amount cannot be negative")

    liters = total_liters(deltas)
    expected_fuel = quantize(liters * price_per_liter)
    expected = expected_fuel + quantize(expected_other)
    total_received = quantize(received.total)
    variance = total_received - expected

    return ReconciliationResult(
        total_liters=liters,
        price_per_liter=price_per_liter,
        expected_fuel_amount=expected_fuel,
        expected_other_amount=quantize(expected_other),
        expected_amount=expected,
        received=received,
        total_received=total_received,
        variance=variance,
        variance_status=classify_variance(variance, policy),
        severity=classify_severity(variance, policy),
    )


# ─── Ledger pre-fill ─────────────────────────────────────────────────────────


class _LedgerRow(Protocol):
    payment_type: PaymentType
    amount: Decimal
    is_voided: bool
    deleted_at: Any


def calculate_received_by_category(transactions: Iterable[_LedgerRow]) -> ReceivedAmounts:
    """Sum recorded sales per payment category.

    Staff see this as a starting point on the close form and may override it.
    """
    cash = credit = card = transfer = ZERO
    for txn in transactions:
        if txn.is_voided or txn.deleted_at is not None:
            continue
        amount = Decimal(str(txn.amount))
        if txn.payment_type == PaymentType.CASH:
            cash += amount
        elif txn.payment_type in CREDIT_PAYMENT_TYPES:
            credit += amount
        elif txn.payment_type == PaymentType.CARD:
            card += amount
        elif txn.payment_type == PaymentType.TRANSFER:
            transfer += amount
    return ReceivedAmounts(cash=cash, credit=credit, card=card, transfer=transfer)


# ─── Gauges ──────────────────────────────────────────────────────────────────


def gauge_level(percentage: Decimal, settings: Any) -> str:
    """Colour band for a tank gauge: green, yellow, orange or red."""
    if percentage >= Decimal(str(settings.GAUGE_HIGH_PERCENT)):
        return "green"
    if percentage >= Decimal(str(settings.GAUGE_MEDIUM_PERCENT)):
        return "yellow"
    if percentage >= Decimal(str(settings.GAUGE_LOW_PERCENT)):
        return "orange"
    return "red"


def percentage_to_liters(percentage: Decimal, capacity_liters: int) -> Decimal:
    return quantize(percentage / Decimal("100") * Decimal(capacity_liters))
