from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func as sa_func
from sqlalchemy.orm import Session

from fuelpos.app.core.config import settings
from fuelpos.app.core.exceptions import ConflictError, NotFoundError, ValidationError
from fuelpos.app.core.timeutils import ensure_utc, local_today, utc_now
from fuelpos.app.models.owner import Owner, Truck
from fuelpos.app.models.station import DailyRecord, Station
from fuelpos.app.models.transaction import CREDIT_PAYMENT_TYPES, PaymentType, Transaction
from fuelpos.app.models.user import User
from fuelpos.app.schemas.transaction import (
    BulkTransactionCreate,
    TransactionCreate,
    TransactionOut,
    TransactionUpdate,
)
from fuelpos.app.services.audit import log_action, snapshot
from fuelpos.app.services.billing import check_credit_limit, ensure_not_invoiced
from fuelpos.app.services.duplicate_guard import (
    find_bill_collisions,
    find_duplicate,
    find_duplicate_total,
    is_placeholder_plate,
    normalize_plate,
)
from fuelpos.app.services.reconciliation import quantize
from fuelpos.app.services.shifts import find_open_shift
from fuelpos.app.services.stations import get_or_create_daily_record, get_station

logger = logging.getLogger(__name__)

_AUDIT_FIELDS = (
    "station_id",
    "txn_date",
    "payment_type",
    "liters",
    "price_per_liter",
    "amount",
    "license_plate",
    "owner_name",
    "owner_id",
    "truck_id",
    "bill_book_no",
    "bill_no",
    "product_type",
    "is_voided",
    "void_reason",
    "deleted_at",
)


def transaction_to_out(txn: Transaction) -> TransactionOut:
    return TransactionOut(
        id=txn.id,
        station_id=txn.station_id,
        daily_record_id=txn.daily_record_id,
        txn_date=txn.txn_date,
        created_at=ensure_utc(txn.created_at),
        payment_type=txn.payment_type.value,
        liters=str(txn.liters),
        price_per_liter=str(txn.price_per_liter),
        amount=str(txn.amount),
        license_plate=txn.license_plate,
        owner_name=txn.owner_name,
        owner_id=txn.owner_id,
        truck_id=txn.truck_id,
        bill_book_no=txn.bill_book_no,
        bill_no=txn.bill_no,
        product_type=txn.product_type,
        nozzle_number=txn.nozzle_number,
        is_voided=txn.is_voided,
        void_reason=txn.void_reason,
        deleted=txn.deleted_at is not None,
    )


def _duplicate_details(txn: Transaction) -> dict[str, str | None]:
    return {
        "transaction_id": str(txn.id),
        "txn_date": txn.txn_date.isoformat(),
        "license_plate": txn.license_plate,
        "amount": str(txn.amount),
        "payment_type": txn.payment_type.value,
        "bill_book_no": txn.bill_book_no,
        "bill_no": txn.bill_no,
    }


# ─── Helpers ─────────────────────────────────────────────────────────────────


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _resolve_owner(
    db: Session, owner_id: UUID | None, owner_name: str | None
) -> Owner | None:
    if owner_id is not None:
        owner = (
            db.query(Owner)
            .filter(Owner.id == owner_id, Owner.deleted_at.is_(None))
            .first()
        )
        if not owner:
            raise NotFoundError("Owner not found")
        return owner
    if not owner_name:
        return None
    base = db.query(Owner).filter(Owner.deleted_at.is_(None))
    exact = base.filter(sa_func.lower(Owner.name) == owner_name.lower()).first()
    if exact:
        return exact
    return base.filter(Owner.name.ilike(f"%{owner_name}%")).order_by(Owner.name).first()


def _resolve_truck(db: Session, plate: str | None, owner: Owner | None) -> Truck | None:
    """Find the truck for *plate*, registering it under *owner* when unknown."""
    if plate is None:
        return None
    truck = db.query(Truck).filter(Truck.license_plate == plate).first()
    if truck is None and owner is not None:
        truck = Truck(license_plate=plate, owner_id=owner.id)
        db.add(truck)
        db.flush()
        logger.info("Auto-created truck %s for owner %s", plate, owner.name)
    return truck


def _check_limits(amount: Decimal, liters: Decimal) -> None:
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    if amount > settings.MAX_TRANSACTION_AMOUNT:
        raise ValidationError(
            f"Amount {amount} exceeds the per-sale limit of {settings.MAX_TRANSACTION_AMOUNT}"
        )
    if liters < 0:
        raise ValidationError("Liters cannot be negative")
    if liters > settings.MAX_TRANSACTION_LITERS:
        raise ValidationError(
            f"Liters {liters} exceeds the per-sale limit of {settings.MAX_TRANSACTION_LITERS}"
        )


def _line_amount(
    amount: Decimal | None, liters: Decimal, price: Decimal
) -> Decimal:
    if amount is not None:
        return quantize(amount)
    return quantize(liters * price)


class _SaleContext:
    """Fields shared by every line of one sale, resolved once."""

    def __init__(
        self,
        db: Session,
        station: Station,
        *,
        payment_type: PaymentType,
        txn_date: date,
        license_plate: str | None,
        owner_id: UUID | None,
        owner_name: str | None,
        bill_book_no: str | None,
        bill_no: str | None,
    ) -> None:
        owner_name = _clean(owner_name)
        if payment_type in CREDIT_PAYMENT_TYPES and owner_id is None and owner_name is None:
            raise ValidationError(
                f"{payment_type.value} sales require an owner",
                details={"field": "owner_name"},
            )
        self.station = station
        self.payment_type = payment_type
        self.txn_date = txn_date
        self.plate = None if is_placeholder_plate(license_plate) else normalize_plate(license_plate)
        self.owner = _resolve_owner(db, owner_id, owner_name)
        self.owner_name = self.owner.name if self.owner is not None and owner_name is None else owner_name
        self.bill_book_no = _clean(bill_book_no)
        self.bill_no = _clean(bill_no)
        self.record: DailyRecord = get_or_create_daily_record(db, station, txn_date)
        # Back-dated sales stay out of the shift running today
        open_shift = find_open_shift(db, station.id)
        self.shift_id = (
            open_shift.id
            if open_shift is not None and open_shift.daily_record_id == self.record.id
            else None
        )
        self.created_at = utc_now()
        self.truck = _resolve_truck(db, self.plate, self.owner)

    @property
    def price(self) -> Decimal:
        return Decimal(str(self.record.fuel_price))

    def guard(self, db: Session, amount: Decimal) -> None:
        duplicate = find_duplicate(
            db,
            station_id=self.station.id,
            txn_date=self.txn_date,
            license_plate=self.plate,
            amount=amount,
            payment_type=self.payment_type,
            bill_book_no=self.bill_book_no,
            bill_no=self.bill_no,
        )
        if duplicate is not None:
            raise ConflictError(
                f"Duplicate sale: {self.payment_type.value} for plate {self.plate} "
                f"amount {amount} already recorded on {self.txn_date.isoformat()}",
                details=_duplicate_details(duplicate),
            )
        for other in find_bill_collisions(
            db,
            station_id=self.station.id,
            bill_book_no=self.bill_book_no,
            bill_no=self.bill_no,
            license_plate=self.plate,
        ):
            logger.info(
                "Bill %s/%s already used by transaction %s (plate %s); allowing",
                self.bill_book_no,
                self.bill_no,
                other.id,
                other.license_plate,
            )

    def guard_total(self, db: Session, total: Decimal) -> None:
        """Duplicate check for a multi-line sale against earlier sales of the same shape."""
        self.guard(db, total)
        lines = find_duplicate_total(
            db,
            station_id=self.station.id,
            txn_date=self.txn_date,
            license_plate=self.plate,
            total=total,
            payment_type=self.payment_type,
            bill_book_no=self.bill_book_no,
            bill_no=self.bill_no,
        )
        if lines:
            raise ConflictError(
                f"Duplicate sale: {self.payment_type.value} for plate {self.plate} "
                f"totalling {total} already recorded on {self.txn_date.isoformat()}",
                details={
                    **_duplicate_details(lines[0]),
                    "amount": str(total),
                    "transaction_ids": [str(t.id) for t in lines],
                },
            )

    def check_credit(self, db: Session, amount: Decimal) -> None:
        if self.payment_type in CREDIT_PAYMENT_TYPES and self.owner is not None:
            check_credit_limit(db, self.owner, amount)

    def build(
        self,
        user: User,
        *,
        liters: Decimal,
        price: Decimal,
        amount: Decimal,
        product_type: str | None,
        nozzle_number: int | None,
    ) -> Transaction:
        return Transaction(
            station_id=self.station.id,
            daily_record_id=self.record.id,
            shift_id=self.shift_id,
            txn_date=self.txn_date,
            created_at=self.created_at,
            payment_type=self.payment_type,
            liters=quantize(liters),
            price_per_liter=price,
            amount=amount,
            license_plate=self.plate,
            owner_name=self.owner_name,
            owner_id=self.owner.id if self.owner is not None else None,
            truck_id=self.truck.id if self.truck is not None else None,
            bill_book_no=self.bill_book_no,
            bill_no=self.bill_no,
            product_type=_clean(product_type),
            nozzle_number=nozzle_number,
            recorded_by=user.id,
        )


# ─── Create ──────────────────────────────────────────────────────────────────


def create_transaction(
    db: Session,
    station_id: UUID,
    body: TransactionCreate,
    user: User,
    ip_address: str | None = None,
) -> Transaction:
    station = get_station(db, station_id)
    try:
        ctx = _SaleContext(
            db,
            station,
            payment_type=body.payment_type,
            txn_date=body.txn_date or local_today(),
            license_plate=body.license_plate,
            owner_id=body.owner_id,
            owner_name=body.owner_name,
            bill_book_no=body.bill_book_no,
            bill_no=body.bill_no,
        )
        price = body.price_per_liter or ctx.price
        amount = _line_amount(body.amount, body.liters, price)
        _check_limits(amount, body.liters)
        ctx.guard(db, amount)
        ctx.check_credit(db, amount)

        txn = ctx.build(
            user,
            liters=body.liters,
            price=price,
            amount=amount,
            product_type=body.product_type,
            nozzle_number=body.nozzle_number,
        )
        db.add(txn)
        db.flush()
        log_action(
            db,
            user_id=user.id,
            action="TRANSACTION_CREATED",
            resource_type="transactions",
            resource_id=str(txn.id),
            changes=snapshot(txn, _AUDIT_FIELDS),
            ip_address=ip_address,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(txn)
    return txn


def create_bulk_transactions(
    db: Session,
    station_id: UUID,
    body: BulkTransactionCreate,
    user: User,
    ip_address: str | None = None,
) -> list[Transaction]:
    """Record several fuel lines of one sale; all lines are saved or none.

    The duplicate rule is applied to the combined amount of the lines,
    both against single earlier sales and against earlier multi-line sales.
    """
    station = get_station(db, station_id)
    try:
        ctx = _SaleContext(
            db,
            station,
            payment_type=body.payment_type,
            txn_date=body.txn_date or local_today(),
            license_plate=body.license_plate,
            owner_id=body.owner_id,
            owner_name=body.owner_name,
            bill_book_no=body.bill_book_no,
            bill_no=body.bill_no,
        )
        priced = []
        for line in body.lines:
            price = line.price_per_liter or ctx.price
            amount = _line_amount(line.amount, line.liters, price)
            _check_limits(amount, line.liters)
            priced.append((line, price, amount))
        total = sum((amount for _, _, amount in priced), Decimal("0"))
        ctx.guard_total(db, total)
        ctx.check_credit(db, total)

        created: list[Transaction] = []
        for line, price, amount in priced:
            txn = ctx.build(
                user,
                liters=line.liters,
                price=price,
                amount=amount,
                product_type=line.product_type,
                nozzle_number=line.nozzle_number,
            )
            db.add(txn)
            created.append(txn)
        db.flush()
        for txn in created:
            log_action(
                db,
                user_id=user.id,
                action="TRANSACTION_CREATED",
                resource_type="transactions",
                resource_id=str(txn.id),
                changes={**snapshot(txn, _AUDIT_FIELDS), "bulk_total": str(total)},
                ip_address=ip_address,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise
    for txn in created:
        db.refresh(txn)
    return created


# ─── Read ────────────────────────────────────────────────────────────────────


def get_transaction(db: Session, transaction_id: UUID) -> Transaction:
    txn = db.query(Transaction).filter(Transaction.id == transaction_id).first()
    if not txn:
        raise NotFoundError("Transaction not found")
    return txn


def list_transactions(
    db: Session,
    *,
    station_id: UUID | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    payment_type: PaymentType | None = None,
    owner_id: UUID | None = None,
    license_plate: str | None = None,
    include_voided: bool = False,
    include_deleted: bool = False,
    limit: int | None = None,
    offset: int = 0,
) -> list[Transaction]:
    q = db.query(Transaction)
    if station_id is not None:
        q = q.filter(Transaction.station_id == station_id)
    if date_from is not None:
        q = q.filter(Transaction.txn_date >= date_from)
    if date_to is not None:
        q = q.filter(Transaction.txn_date <= date_to)
    if payment_type is not None:
        q = q.filter(Transaction.payment_type == payment_type)
    if owner_id is not None:
        q = q.filter(Transaction.owner_id == owner_id)
    if license_plate:
        q = q.filter(Transaction.license_plate == normalize_plate(license_plate))
    if not include_voided:
        q = q.filter(Transaction.is_voided.is_(False))
    if not include_deleted:
        q = q.filter(Transaction.deleted_at.is_(None))
    q = q.order_by(Transaction.txn_date, Transaction.created_at).offset(offset)
    if limit is not None:
        q = q.limit(limit)
    return q.all()


# ─── Admin corrections ───────────────────────────────────────────────────────


def update_transaction(
    db: Session,
    transaction_id: UUID,
    body: TransactionUpdate,
    admin: User,
    ip_address: str | None = None,
) -> Transaction:
    txn = get_transaction(db, transaction_id)
    if txn.deleted_at is not None:
        raise ConflictError("Transaction has been deleted", details={"transaction_id": str(txn.id)})
    ensure_not_invoiced(txn)
    before = snapshot(txn, _AUDIT_FIELDS)

    try:
        changes = body.model_dump(exclude_unset=True)
        reason = changes.pop("reason", None)
        if "license_plate" in changes:
            plate = changes["license_plate"]
            changes["license_plate"] = None if is_placeholder_plate(plate) else normalize_plate(plate)
        if "owner_id" in changes or "owner_name" in changes:
            owner = _resolve_owner(db, changes.get("owner_id"), _clean(changes.get("owner_name")))
            changes["owner_id"] = owner.id if owner is not None else None
            changes["owner_name"] = _clean(changes.get("owner_name")) or (owner.name if owner else None)
        for field in ("bill_book_no", "bill_no", "product_type"):
            if field in changes:
                changes[field] = _clean(changes[field])
        for field, value in changes.items():
            setattr(txn, field, value)

        if ("liters" in changes or "price_per_liter" in changes) and "amount" not in changes:
            txn.amount = quantize(Decimal(str(txn.liters)) * Decimal(str(txn.price_per_liter)))
        txn.amount = quantize(Decimal(str(txn.amount)))
        _check_limits(Decimal(str(txn.amount)), Decimal(str(txn.liters)))
        if txn.payment_type in CREDIT_PAYMENT_TYPES and txn.owner_id is None and not txn.owner_name:
            raise ValidationError(f"{txn.payment_type.value} sales require an owner")

        duplicate = find_duplicate(
            db,
            station_id=txn.station_id,
            txn_date=txn.txn_date,
            license_plate=txn.license_plate,
            amount=Decimal(str(txn.amount)),
            payment_type=txn.payment_type,
            bill_book_no=txn.bill_book_no,
            bill_no=txn.bill_no,
            exclude_id=txn.id,
        )
        if duplicate is not None:
            raise ConflictError(
                "Edit would duplicate an existing sale", details=_duplicate_details(duplicate)
            )
        if txn.payment_type in CREDIT_PAYMENT_TYPES and txn.owner_id is not None:
            owner = db.get(Owner, txn.owner_id)
            check_credit_limit(
                db, owner, Decimal(str(txn.amount)), exclude_transaction_id=txn.id
            )
        log_action(
            db,
            user_id=admin.id,
            action="TRANSACTION_UPDATED",
            resource_type="transactions",
            resource_id=str(txn.id),
            old_values=before,
            changes={**snapshot(txn, _AUDIT_FIELDS), "reason": reason},
            ip_address=ip_address,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(txn)
    return txn


def void_transaction(
    db: Session,
    transaction_id: UUID,
    reason: str,
    admin: User,
    ip_address: str | None = None,
) -> Transaction:
    txn = get_transaction(db, transaction_id)
    if not reason or not reason.strip():
        raise ValidationError("A reason is required to void a transaction")
    if txn.deleted_at is not None:
        raise ConflictError("Transaction has been deleted", details={"transaction_id": str(txn.id)})
    if txn.is_voided:
        raise ConflictError("Transaction is already voided", details={"transaction_id": str(txn.id)})
    ensure_not_invoiced(txn)

    before = snapshot(txn, _AUDIT_FIELDS)
    txn.is_voided = True
    txn.void_reason = reason.strip()
    txn.voided_at = utc_now()
    txn.voided_by = admin.id
    log_action(
        db,
        user_id=admin.id,
        action="VOID",
        resource_type="transactions",
        resource_id=str(txn.id),
        old_values=before,
        changes={"is_voided": True, "void_reason": txn.void_reason},
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(txn)
    return txn


def delete_transaction(
    db: Session,
    transaction_id: UUID,
    admin: User,
    ip_address: str | None = None,
) -> Transaction:
    """Soft delete: the row stays for the audit trail but drops out of totals."""
    txn = get_transaction(db, transaction_id)
    if txn.deleted_at is not None:
        raise ConflictError("Transaction is already deleted", details={"transaction_id": str(txn.id)})
    ensure_not_invoiced(txn)
    before = snapshot(txn, _AUDIT_FIELDS)
    txn.deleted_at = utc_now()
    log_action(
        db,
        user_id=admin.id,
        action="DELETE",
        resource_type="transactions",
        resource_id=str(txn.id),
        old_values=before,
        changes={"deleted_at": txn.deleted_at.isoformat()},
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(txn)
    return txn
