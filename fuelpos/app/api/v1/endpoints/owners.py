from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from fuelpos.app.api.errors import client_ip, to_http
from fuelpos.app.api.permission_deps import require_permission
from fuelpos.app.core.database import get_db
from fuelpos.app.models.user import User
from fuelpos.app.schemas.owner import (
    CreditSummaryOut,
    DuplicateOwnerOut,
    OwnerCreate,
    OwnerMergeOut,
    OwnerMergeRequest,
    OwnerOut,
    OwnerUpdate,
    TruckOut,
)
from fuelpos.app.services.owners import (
    check_duplicate_owner,
    create_owner,
    get_owner,
    merge_owners,
    owner_credit_summary,
    owner_to_out,
    search_owners,
    search_trucks,
    truck_to_out,
    update_owner,
)

router = APIRouter()


@router.get("", response_model=list[OwnerOut])
def list_owners(
    q: str | None = Query(None, description="Name, code or truck plate"),
    group_name: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("owner:read")),
) -> list[OwnerOut]:
    owners = search_owners(db, q=q, group_name=group_name, limit=limit, offset=offset)
    return [owner_to_out(db, o) for o in owners]


@router.get("/check-duplicate", response_model=DuplicateOwnerOut)
def check_duplicate(
    name: str = Query(..., min_length=1),
    exclude_id: UUID | None = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("owner:read")),
) -> DuplicateOwnerOut:
    matches = check_duplicate_owner(db, name, exclude_id)
    return DuplicateOwnerOut(
        exists=bool(matches), owners=[owner_to_out(db, o) for o in matches]
    )


@router.post("", response_model=OwnerOut, status_code=status.HTTP_201_CREATED)
def create_new_owner(
    body: OwnerCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("owner:write")),
) -> OwnerOut:
    try:
        owner = create_owner(db, body, current_user, client_ip(request))
    except ValueError as e:
        raise to_http(e)
    return owner_to_out(db, owner)


@router.post("/merge", response_model=OwnerMergeOut)
def merge_duplicate_owners(
    body: OwnerMergeRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("owner:merge")),
) -> OwnerMergeOut:
    """Fold the source owner's trucks and sales into the target owner."""
    try:
        result = merge_owners(
            db,
            body.source_owner_id,
            body.target_owner_id,
            current_user,
            client_ip(request),
        )
    except ValueError as e:
        raise to_http(e)
    return OwnerMergeOut(**result)


@router.get("/{owner_id}", response_model=OwnerOut)
def read_owner(
    owner_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("owner:read")),
) -> OwnerOut:
    try:
        return owner_to_out(db, get_owner(db, owner_id))
    except ValueError as e:
        raise to_http(e)


@router.patch("/{owner_id}", response_model=OwnerOut)
def update_existing_owner(
    owner_id: UUID,
    body: OwnerUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("owner:write")),
) -> OwnerOut:
    try:
        owner = update_owner(db, owner_id, body, current_user, client_ip(request))
    except ValueError as e:
        raise to_http(e)
    return owner_to_out(db, owner)


@router.get("/{owner_id}/trucks", response_model=list[TruckOut])
def list_owner_trucks(
    owner_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("owner:read")),
) -> list[TruckOut]:
    return [truck_to_out(t) for t in search_trucks(db, owner_id=owner_id, limit=500)]


@router.get("/{owner_id}/credit-summary", response_model=CreditSummaryOut)
def read_credit_summary(
    owner_id: UUID,
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("report:read")),
) -> CreditSummaryOut:
    try:
        return owner_credit_summary(db, owner_id, date_from, date_to)
    except ValueError as e:
        raise to_http(e)
