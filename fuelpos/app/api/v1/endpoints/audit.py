from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from fuelpos.app.api.permission_deps import require_permission
from fuelpos.app.core.database import get_db
from fuelpos.app.core.timeutils import day_bounds_utc
from fuelpos.app.models.audit import AuditLog
from fuelpos.app.models.user import User

router = APIRouter()


class AuditLogOut(BaseModel):
    id: UUID
    user_id: UUID | None
    action: str
    resource_type: str
    resource_id: str
    old_values: dict[str, Any] | None
    changes: dict[str, Any] | None
    ip_address: str | None
    timestamp: datetime


@router.get("/", response_model=list[AuditLogOut])
def list_audit_logs(
    user_id: UUID | None = Query(None, description="Filter by user ID"),
    action: str | None = Query(None, description="Filter by action (e.g. SHIFT_CLOSED, VOID)"),
    resource_type: str | None = Query(None, description="Filter by resource (e.g. shifts, transactions)"),
    resource_id: str | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_permission("audit:read")),
) -> list[AuditLogOut]:
    query = db.query(AuditLog)

    if user_id is not None:
        query = query.filter(AuditLog.changed_by == user_id)
    if action is not None:
        query = query.filter(AuditLog.action == action)
    if resource_type is not None:
        query = query.filter(AuditLog.table_name == resource_type)
    if resource_id is not None:
        query = query.filter(AuditLog.record_id == resource_id)
    if date_from is not None:
        query = query.filter(AuditLog.created_at >= day_bounds_utc(date_from)[0])
    if date_to is not None:
        query = query.filter(AuditLog.created_at < day_bounds_utc(date_to)[1])

    rows = (
        query.order_by(AuditLog.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )

    return [
        AuditLogOut(
            id=r.id,
            user_id=r.changed_by,
            action=r.action,
            resource_type=r.table_name,
            resource_id=r.record_id,
            old_values=r.old_values,
            changes=r.new_values,
            ip_address=r.ip_address,
            timestamp=r.created_at,
        )
        for r in rows
    ]
