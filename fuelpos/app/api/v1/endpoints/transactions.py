from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from fuelpos.app.api.deps import ensure_station_access
from fuelpos.app.api.errors import client_ip, to_http
from fuelpos.app.api.permission_deps import require_permission
from fuelpos.app.core.database import get_db
from fuelpos.app.models.transaction import PaymentType
from fuelpos.app.models.user import User
from fuelpos.app.schemas.transaction import (
    BillCheckOut,
    BulkTransactionCreate,
    TransactionCreate,
    TransactionOut,
    TransactionUpdate,
    VoidRequest,
)
from fuelpos.app.services.duplicate_guard import find_bill_collisions
from fuelpos.app.services.transactions import (
    create_bulk_transactions,
    create_transaction,
    delete_transaction,
    get_transaction,
    list_transactions,
    transaction_to_out,
    update_transaction,
    void_transaction,
)

router = APIRouter()


# ─── Station-scoped ──────────────────────────────────────────────────────────


@router.post(
    "/stations/{station_id}/transactions",
    response_model=TransactionOut,
    status_code=status.HTTP_201_CREATED,
)
def record_sale(
    station_id: UUID,
    body: TransactionCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("transaction:write")),
) -> TransactionOut:
    ensure_station_access(current_user, station_id)
    try:
        txn = create_transaction(db, station_id, body, current_user, client_ip(request))
    except ValueError as e:
        raise to_http(e)
    return transaction_to_out(txn)


@router.post(
    "/stations/{station_id}/transactions/bulk",
    response_model=list[TransactionOut],
    status_code=status.HTTP_201_CREATED,
)
def record_bulk_sale(
    station_id: UUID,
    body: BulkTransactionCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("transaction:write")),
) -> list[TransactionOut]:
    ensure_station_access(current_user, station_id)
    try:
        txns = create_bulk_transactions(db, station_id, body, current_user, client_ip(request))
    except ValueError as e:
        raise to_http(e)
    return [transaction_to_out(t) for t in txns]


@router.get("/stations/{station_id}/transactions", response_model=list[TransactionOut])
def list_station_transactions(
    station_id: UUID,
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    payment_type: PaymentType | None = Query(None),
    owner_id: UUID | None = Query(None),
    license_plate: str | None = Query(None),
    include_voided: bool = Query(False),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("transaction:read")),
) -> list[TransactionOut]:
    ensure_station_access(current_user, station_id)
    txns = list_transactions(
        db,
        station_id=station_id,
        date_from=date_from,
        date_to=date_to,
        payment_type=payment_type,
        owner_id=owner_id,
        license_plate=license_plate,
        include_voided=include_voided,
        limit=limit,
        offset=offset,
    )
    return [transaction_to_out(t) for t in txns]


@router.get("/stations/{station_id}/transactions/check-bill", response_model=BillCheckOut)
def check_bill(
    station_id: UUID,
    bill_book_no: str = Query(..., min_length=1),
    bill_no: str = Query(..., min_length=1),
    license_plate: str | None = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("transaction:write")),
) -> BillCheckOut:
    """Warn-only lookup: is this bill book/number already on another sale?"""
    ensure_station_access(current_user, station_id)
    rows = find_bill_collisions(
        db,
        station_id=station_id,
        bill_book_no=bill_book_no,
        bill_no=bill_no,
        license_plate=license_plate,
    )
    return BillCheckOut(exists=bool(rows), transactions=[transaction_to_out(t) for t in rows])


# ─── Single transaction ──────────────────────────────────────────────────────


@router.get("/transactions/{transaction_id}", response_model=TransactionOut)
def read_transaction(
    transaction_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("transaction:read")),
) -> TransactionOut:
    try:
        txn = get_transaction(db, transaction_id)
    except ValueError as e:
        raise to_http(e)
    ensure_station_access(current_user, txn.station_id)
    return transaction_to_out(txn)


@router.patch("/transactions/{transaction_id}", response_model=TransactionOut)
def correct_transaction(
    transaction_id: UUID,
    body: TransactionUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("transaction:admin")),
) -> TransactionOut:
    try:
        txn = update_transaction(db, transaction_id, body, current_user, client_ip(request))
    except ValueError as e:
        raise to_http(e)
    return transaction_to_out(txn)


@router.post("/transactions/{transaction_id}/void", response_model=TransactionOut)
def void_sale(
    transaction_id: UUID,
    body: VoidRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("transaction:admin")),
) -> TransactionOut:
    try:
        txn = void_transaction(db, transaction_id, body.reason, current_user, client_ip(request))
    except ValueError as e:
        raise to_http(e)
    return transaction_to_out(txn)


@router.delete("/transactions/{transaction_id}", response_model=TransactionOut)
def delete_sale(
    transaction_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("transaction:admin")),
) -> TransactionOut:
    try:
        txn = delete_transaction(db, transaction_id, current_user, client_ip(request))
    except ValueError as e:
        raise to_http(e)
    return transaction_to_out(txn)
