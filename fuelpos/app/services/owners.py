from __future__ import annotations

import logging
import re
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import delete, or_, select, update
from sqlalchemy import func as sa_func
from sqlalchemy.orm import Session

from fuelpos.app.core.exceptions import ConflictError, NotFoundError, ValidationError
from fuelpos.app.models.owner import Owner, Truck
from fuelpos.app.models.transaction import CREDIT_PAYMENT_TYPES, Transaction
from fuelpos.app.models.user import User
from fuelpos.app.schemas.owner import (
    CreditSummaryOut,
    OwnerCreate,
    OwnerOut,
    OwnerUpdate,
    TruckCreate,
    TruckOut,
    TruckUpdate,
)
from fuelpos.app.services.audit import log_action, snapshot
from fuelpos.app.services.duplicate_guard import is_placeholder_plate, normalize_plate

logger = logging.getLogger(__name__)

_OWNER_FIELDS = ("name", "code", "phone", "group_name", "credit_limit")
_TRUCK_FIELDS = ("license_plate", "code", "owner_id")


def normalize_owner_name(name: str) -> str:
    return re.sub(r"\s+", " ", name).strip().lower()


def owner_to_out(db: Session, owner: Owner) -> OwnerOut:
    truck_count = (
        db.query(sa_func.count(Truck.id)).filter(Truck.owner_id == owner.id).scalar()
    ) or 0
    return OwnerOut(
        id=owner.id,
        name=owner.name,
        code=owner.code,
        phone=owner.phone,
        group_name=owner.group_name,
        credit_limit=str(owner.credit_limit) if owner.credit_limit is not None else None,
        truck_count=truck_count,
    )


def truck_to_out(truck: Truck) -> TruckOut:
    return TruckOut(
        id=truck.id,
        license_plate=truck.license_plate,
        code=truck.code,
        owner_id=truck.owner_id,
        owner_name=truck.owner.name if truck.owner is not None else None,
    )


# ─── Owners ──────────────────────────────────────────────────────────────────


def get_owner(db: Session, owner_id: UUID) -> Owner:
    owner = (
        db.query(Owner)
        .filter(Owner.id == owner_id, Owner.deleted_at.is_(None))
        .first()
    )
    if not owner:
        raise NotFoundError("Owner not found")
    return owner


def search_owners(
    db: Session,
    q: str | None = None,
    group_name: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Owner]:
    """Match by name, code or the plate of one of the owner's trucks."""
    query = db.query(Owner).filter(Owner.deleted_at.is_(None))
    if q:
        plate_owner_ids = select(Truck.owner_id).where(
            Truck.license_plate.ilike(f"%{normalize_plate(q)}%")
        )
        query = query.filter(
            or_(
                Owner.name.ilike(f"%{q.strip()}%"),
                Owner.code.ilike(f"%{q.strip()}%"),
                Owner.id.in_(plate_owner_ids),
            )
        )
    if group_name:
        query = query.filter(Owner.group_name == group_name)
    return query.order_by(Owner.name).offset(offset).limit(limit).all()


def check_duplicate_owner(
    db: Session, name: str, exclude_id: UUID | None = None
) -> list[Owner]:
    """Owners whose name matches *name* ignoring case and spacing."""
    wanted = normalize_owner_name(name)
    if not wanted:
        return []
    first_word = wanted.split(" ")[0]
    candidates = (
        db.query(Owner)
        .filter(Owner.deleted_at.is_(None), Owner.name.ilike(f"%{first_word}%"))
        .all()
    )
    return [
        o
        for o in candidates
        if normalize_owner_name(o.name) == wanted and o.id != exclude_id
    ]


def create_owner(
    db: Session, body: OwnerCreate, user: User, ip_address: str | None = None
) -> Owner:
    name = body.name.strip()
    if not name:
        raise ValidationError("Owner name is required")
    dupes = check_duplicate_owner(db, name)
    if dupes:
        raise ConflictError(
            f"Owner '{dupes[0].name}' already exists",
            details={"owner_id": str(dupes[0].id), "name": dupes[0].name, "code": dupes[0].code},
        )
    code = (body.code or "").strip() or None
    if code and db.query(Owner).filter(Owner.code == code).first():
        raise ConflictError(f"Owner code '{code}' already exists", details={"code": code})

    owner = Owner(
        name=name,
        code=code,
        phone=body.phone,
        group_name=body.group_name,
        credit_limit=body.credit_limit,
    )
    db.add(owner)
    db.flush()
    log_action(
        db,
        user_id=user.id,
        action="OWNER_CREATED",
        resource_type="owners",
        resource_id=str(owner.id),
        changes=snapshot(owner, _OWNER_FIELDS),
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(owner)
    return owner


def update_owner(
    db: Session,
    owner_id: UUID,
    body: OwnerUpdate,
    user: User,
    ip_address: str | None = None,
) -> Owner:
    owner = get_owner(db, owner_id)
    before = snapshot(owner, _OWNER_FIELDS)
    changes = body.model_dump(exclude_unset=True)

    if "name" in changes and changes["name"] is not None:
        changes["name"] = changes["name"].strip()
        dupes = check_duplicate_owner(db, changes["name"], exclude_id=owner.id)
        if dupes:
            raise ConflictError(
                f"Owner '{dupes[0].name}' already exists",
                details={"owner_id": str(dupes[0].id), "name": dupes[0].name},
            )
    if changes.get("code"):
        clash = (
            db.query(Owner)
            .filter(Owner.code == changes["code"], Owner.id != owner.id)
            .first()
        )
        if clash:
            raise ConflictError(
                f"Owner code '{changes['code']}' already exists",
                details={"owner_id": str(clash.id), "code": clash.code},
            )

    for field, value in changes.items():
        setattr(owner, field, value)
    log_action(
        db,
        user_id=user.id,
        action="OWNER_UPDATED",
        resource_type="owners",
        resource_id=str(owner.id),
        old_values=before,
        changes=snapshot(owner, _OWNER_FIELDS),
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(owner)
    return owner


# ─── Merge ───────────────────────────────────────────────────────────────────


def _move_trucks(db: Session, source: Owner, target: Owner) -> int:
    result = db.execute(
        update(Truck)
        .where(Truck.owner_id == source.id)
        .values(owner_id=target.id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def _move_transactions(db: Session, source: Owner, target: Owner) -> int:
    result = db.execute(
        update(Transaction)
        .where(Transaction.owner_id == source.id)
        .values(owner_id=target.id, owner_name=target.name)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def merge_owners(
    db: Session,
    source_id: UUID,
    target_id: UUID,
    admin: User,
    ip_address: str | None = None,
) -> dict[str, Any]:
    """Fold *source* into *target* and delete *source*, atomically.

    Trucks move first, then transactions (their ``owner_name`` is rewritten
    to the target's name). Any failure rolls the whole merge back.
    """
    if source_id == target_id:
        raise ValidationError("Cannot merge an owner into itself")
    source = get_owner(db, source_id)
    target = get_owner(db, target_id)
    source_snapshot = {"id": str(source.id), **snapshot(source, _OWNER_FIELDS)}
    source_name, target_name = source.name, target.name

    try:
        trucks_moved = _move_trucks(db, source, target)
        transactions_moved = _move_transactions(db, source, target)
        db.execute(delete(Owner).where(Owner.id == source.id))
        log_action(
            db,
            user_id=admin.id,
            action="OWNER_MERGED",
            resource_type="owners",
            resource_id=str(target.id),
            old_values=source_snapshot,
            changes={
                "source_owner_id": str(source_id),
                "target_owner_id": str(target_id),
                "trucks_moved": trucks_moved,
                "transactions_moved": transactions_moved,
            },
            ip_address=ip_address,
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Owner merge %s -> %s failed; rolled back", source_id, target_id)
        raise

    db.expire_all()
    logger.info(
        "Merged owner %s into %s: %d trucks, %d transactions",
        source_name,
        target_name,
        trucks_moved,
        transactions_moved,
    )
    return {
        "trucks_moved": trucks_moved,
        "transactions_moved": transactions_moved,
        "deleted_owner": source_name,
        "target_owner": target_name,
    }


# ─── Credit summary ──────────────────────────────────────────────────────────


def owner_credit_summary(
    db: Session,
    owner_id: UUID,
    date_from: date | None = None,
    date_to: date | None = None,
) -> CreditSummaryOut:
    """Credit-type sales billed to an owner over a date range."""
    owner = get_owner(db, owner_id)
    q = db.query(Transaction).filter(
        Transaction.owner_id == owner.id,
        Transaction.payment_type.in_(list(CREDIT_PAYMENT_TYPES)),
        Transaction.deleted_at.is_(None),
        Transaction.is_voided.is_(False),
    )
    if date_from is not None:
        q = q.filter(Transaction.txn_date >= date_from)
    if date_to is not None:
        q = q.filter(Transaction.txn_date <= date_to)
    rows = q.all()

    total_amount = Decimal("0")
    total_liters = Decimal("0")
    by_type: dict[str, Decimal] = {}
    for txn in rows:
        amount = Decimal(str(txn.amount))
        total_amount += amount
        total_liters += Decimal(str(txn.liters))
        by_type[txn.payment_type.value] = by_type.get(txn.payment_type.value, Decimal("0")) + amount

    limit = Decimal(str(owner.credit_limit)) if owner.credit_limit is not None else None
    return CreditSummaryOut(
        owner_id=owner.id,
        owner_name=owner.name,
        transaction_count=len(rows),
        total_liters=str(total_liters),
        total_amount=str(total_amount),
        by_payment_type={k: str(v) for k, v in sorted(by_type.items())},
        credit_limit=str(limit) if limit is not None else None,
        over_limit=limit is not None and total_amount > limit,
    )


# ─── Trucks ──────────────────────────────────────────────────────────────────


def get_truck(db: Session, truck_id: UUID) -> Truck:
    truck = db.query(Truck).filter(Truck.id == truck_id).first()
    if not truck:
        raise NotFoundError("Truck not found")
    return truck


def _plate_or_error(plate: str) -> str:
    if is_placeholder_plate(plate):
        raise ValidationError("A real license plate is required")
    return normalize_plate(plate)


def search_trucks(
    db: Session,
    q: str | None = None,
    owner_id: UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Truck]:
    query = db.query(Truck)
    if q:
        query = query.filter(
            or_(
                Truck.license_plate.ilike(f"%{normalize_plate(q)}%"),
                Truck.code.ilike(f"%{q.strip()}%"),
            )
        )
    if owner_id is not None:
        query = query.filter(Truck.owner_id == owner_id)
    return query.order_by(Truck.license_plate).offset(offset).limit(limit).all()


def create_truck(
    db: Session, body: TruckCreate, user: User, ip_address: str | None = None
) -> Truck:
    plate = _plate_or_error(body.license_plate)
    existing = db.query(Truck).filter(Truck.license_plate == plate).first()
    if existing:
        raise ConflictError(
            f"Truck {plate} already exists",
            details={"truck_id": str(existing.id), "license_plate": plate},
        )
    if body.owner_id is not None:
        get_owner(db, body.owner_id)

    truck = Truck(license_plate=plate, code=body.code, owner_id=body.owner_id)
    db.add(truck)
    db.flush()
    log_action(
        db,
        user_id=user.id,
        action="TRUCK_CREATED",
        resource_type="trucks",
        resource_id=str(truck.id),
        changes=snapshot(truck, _TRUCK_FIELDS),
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(truck)
    return truck


def update_truck(
    db: Session,
    truck_id: UUID,
    body: TruckUpdate,
    user: User,
    ip_address: str | None = None,
) -> Truck:
    truck = get_truck(db, truck_id)
    before = snapshot(truck, _TRUCK_FIELDS)
    changes = body.model_dump(exclude_unset=True)

    if changes.get("license_plate") is not None:
        plate = _plate_or_error(changes["license_plate"])
        clash = (
            db.query(Truck)
            .filter(Truck.license_plate == plate, Truck.id != truck.id)
            .first()
        )
        if clash:
            raise ConflictError(
                f"Truck {plate} already exists",
                details={"truck_id": str(clash.id), "license_plate": plate},
            )
        changes["license_plate"] = plate
    if changes.get("owner_id") is not None:
        get_owner(db, changes["owner_id"])

    for field, value in changes.items():
        setattr(truck, field, value)
    log_action(
        db,
        user_id=user.id,
        action="TRUCK_UPDATED",
        resource_type="trucks",
        resource_id=str(truck.id),
        old_values=before,
        changes=snapshot(truck, _TRUCK_FIELDS),
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(truck)
    return truck
