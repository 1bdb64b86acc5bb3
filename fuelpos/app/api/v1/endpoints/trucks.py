from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from fuelpos.app.api.errors import client_ip, to_http
from fuelpos.app.api.permission_deps import require_permission
from fuelpos.app.core.database import get_db
from fuelpos.app.models.user import User
from fuelpos.app.schemas.owner import TruckCreate, TruckOut, TruckUpdate
from fuelpos.app.services.owners import (
    create_truck,
    get_truck,
    search_trucks,
    truck_to_out,
    update_truck,
)

router = APIRouter()


@router.get("", response_model=list[TruckOut])
def list_trucks(
    q: str | None = Query(None, description="Plate or truck code"),
    owner_id: UUID | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("owner:read")),
) -> list[TruckOut]:
    trucks = search_trucks(db, q=q, owner_id=owner_id, limit=limit, offset=offset)
    return [truck_to_out(t) for t in trucks]


@router.post("", response_model=TruckOut, status_code=status.HTTP_201_CREATED)
def create_new_truck(
    body: TruckCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("owner:write")),
) -> TruckOut:
    try:
        truck = create_truck(db, body, current_user, client_ip(request))
    except ValueError as e:
        raise to_http(e)
    return truck_to_out(truck)


@router.get("/{truck_id}", response_model=TruckOut)
def read_truck(
    truck_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("owner:read")),
) -> TruckOut:
    try:
        return truck_to_out(get_truck(db, truck_id))
    except ValueError as e:
        raise to_http(e)


@router.patch("/{truck_id}", response_model=TruckOut)
def update_existing_truck(
    truck_id: UUID,
    body: TruckUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("owner:write")),
) -> TruckOut:
    try:
        truck = update_truck(db, truck_id, body, current_user, client_ip(request))
    except ValueError as e:
        raise to_http(e)
    return truck_to_out(truck)
