from fuelpos.app.models.audit import AuditLog
from fuelpos.app.models.invoice import CreditInvoice, InvoicePayment, InvoiceStatus
from fuelpos.app.models.owner import Owner, Truck
from fuelpos.app.models.permission import Permission, Role, RolePermission
from fuelpos.app.models.shift import (
    AnomalyKind,
    AnomalySeverity,
    GaugePhase,
    GaugeReading,
    MeterAnomaly,
    MeterReading,
    Shift,
    ShiftReconciliation,
    ShiftStatus,
    VarianceSeverity,
    VarianceStatus,
)
from fuelpos.app.models.station import DailyRecord, DailyRecordStatus, Station, StationType
from fuelpos.app.models.transaction import CREDIT_PAYMENT_TYPES, PaymentType, Transaction
from fuelpos.app.models.user import RoleEnum, User

__all__ = [
    "AnomalyKind",
    "AnomalySeverity",
    "AuditLog",
    "CREDIT_PAYMENT_TYPES",
    "CreditInvoice",
    "DailyRecord",
    "DailyRecordStatus",
    "GaugePhase",
    "GaugeReading",
    "InvoicePayment",
    "InvoiceStatus",
    "MeterAnomaly",
    "MeterReading",
    "Owner",
    "PaymentType",
    "Permission",
    "Role",
    "RoleEnum",
    "RolePermission",
    "Shift",
    "ShiftReconciliation",
    "ShiftStatus",
    "Station",
    "StationType",
    "Transaction",
    "Truck",
    "User",
    "VarianceSeverity",
    "VarianceStatus",
]
