"""Granular permission dependencies.

Usage in endpoints::

    @router.post("/{shift_id}/close")
    def close(
        shift_id: UUID,
        db: Session = Depends(get_db),
        current_user: User = Depends(require_permission("shift:operate")),
    ):
        ...
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from fuelpos.app.core.database import get_db
from fuelpos.app.models.permission import Permission, RolePermission
from fuelpos.app.models.user import User

from fuelpos.app.api.deps import get_current_user


def load_user_permissions(db: Session, user: User) -> set[str]:
    """Return the set of permission codes assigned to *user* via their role."""
    if user.role_id is None:
        return set()
    rows = (
        db.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .filter(RolePermission.role_id == user.role_id)
        .all()
    )
    return {r[0] for r in rows}


def require_permission(*permission_codes: str):
    """FastAPI dependency factory: checks the user has **all** listed permissions.

    Returns the authenticated ``User`` so the endpoint can use it.
    """

    def _checker(
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> User:
        user_perms = load_user_permissions(db, current_user)
        missing = set(permission_codes) - user_perms
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(sorted(missing))}",
            )
        return current_user

    return _checker
