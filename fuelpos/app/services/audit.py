from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from fuelpos.app.core.timeutils import utc_now
from fuelpos.app.models.audit import AuditLog


def log_action(
    db: Session,
    *,
    user_id: UUID | None,
    action: str,
    resource_type: str,
    resource_id: str,
    changes: dict[str, Any] | None = None,
    old_values: dict[str, Any] | None = None,
    ip_address: str | None = None,
) -> None:
    """Write a single row to the audit_logs table.

    Does not commit: the row lands in the caller's transaction, so it is
    persisted or rolled back together with the mutation it describes.
    """
    db.add(
        AuditLog(
            table_name=resource_type,
            record_id=resource_id,
            action=action,
            changed_by=user_id,
            old_values=old_values,
            new_values=changes,
            ip_address=ip_address,
            created_at=utc_now(),
        )
    )


def snapshot(obj: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    """JSON-safe dict of selected attributes for old/new audit values."""
    out: dict[str, Any] = {}
    for name in fields:
        value = getattr(obj, name)
        if isinstance(value, enum.Enum):
            out[name] = value.value
        elif value is None or isinstance(value, (bool, int, str)):
            out[name] = value
        elif isinstance(value, (date, datetime)):
            out[name] = value.isoformat()
        else:
            out[name] = str(value)
    return out
