"""User management service: accounts for admins and station staff.

All mutations are audit-logged. This module does NOT call db.commit();
the caller (endpoint) is responsible for committing.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from fuelpos.app.core.exceptions import ConflictError, NotFoundError, ValidationError
from fuelpos.app.core.security import get_password_hash, verify_password
from fuelpos.app.models.permission import Role
from fuelpos.app.models.station import Station
from fuelpos.app.models.user import RoleEnum, User
from fuelpos.app.services.audit import log_action


def list_users(db: Session, station_id: UUID | None = None) -> list[User]:
    """Return users ordered by creation date descending."""
    q = db.query(User)
    if station_id is not None:
        q = q.filter(User.station_id == station_id)
    return q.order_by(User.created_at.desc()).all()


def get_user(db: Session, user_id: UUID) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    return user


def _check_station(db: Session, role: RoleEnum, station_id: UUID | None) -> None:
    if role == RoleEnum.STAFF and station_id is None:
        raise ValidationError("Staff accounts must be assigned to a station")
    if station_id is not None and not db.query(Station.id).filter(Station.id == station_id).first():
        raise NotFoundError("Station not found")


def create_user(
    db: Session,
    *,
    username: str,
    password: str,
    role: RoleEnum,
    admin_id: UUID,
    full_name: str | None = None,
    station_id: UUID | None = None,
) -> User:
    """Create a new user account. Raises ConflictError if username taken."""
    existing = db.query(User).filter(
        func.lower(User.username) == username.lower()
    ).first()
    if existing:
        raise ConflictError("Username already exists", details={"username": existing.username})
    _check_station(db, role, station_id)

    # Look up granular Role record matching the enum name
    role_record = db.query(Role).filter(Role.name == role.value).first()

    user = User(
        username=username,
        full_name=full_name,
        hashed_password=get_password_hash(password),
        role=role,
        role_id=role_record.id if role_record else None,
        station_id=station_id,
    )
    db.add(user)
    db.flush()

    log_action(
        db,
        user_id=admin_id,
        action="USER_CREATED",
        resource_type="users",
        resource_id=str(user.id),
        changes={
            "username": username,
            "role": role.value,
            "station_id": str(station_id) if station_id else None,
        },
    )
    return user


def update_user(
    db: Session,
    *,
    user_id: UUID,
    admin_id: UUID,
    username: str | None = None,
    full_name: str | None = None,
    role: RoleEnum | None = None,
    station_id: UUID | None = None,
) -> User:
    """Update username, name, role and/or station."""
    user = get_user(db, user_id)
    changes: dict[str, object] = {}

    if username is not None and username != user.username:
        existing = db.query(User).filter(
            func.lower(User.username) == username.lower(),
            User.id != user_id,
        ).first()
        if existing:
            raise ConflictError("Username already exists", details={"username": existing.username})
        changes["username"] = {"old": user.username, "new": username}
        user.username = username

    if full_name is not None and full_name != user.full_name:
        changes["full_name"] = {"old": user.full_name, "new": full_name}
        user.full_name = full_name

    if role is not None and role != user.role:
        changes["role"] = {"old": user.role.value, "new": role.value}
        user.role = role
        role_record = db.query(Role).filter(Role.name == role.value).first()
        user.role_id = role_record.id if role_record else None

    if station_id is not None and station_id != user.station_id:
        changes["station_id"] = {
            "old": str(user.station_id) if user.station_id else None,
            "new": str(station_id),
        }
        user.station_id = station_id

    _check_station(db, user.role, user.station_id)

    if changes:
        db.flush()
        log_action(
            db,
            user_id=admin_id,
            action="USER_UPDATED",
            resource_type="users",
            resource_id=str(user.id),
            changes=changes,
        )

    return user


def toggle_user_active(
    db: Session,
    *,
    user_id: UUID,
    admin_id: UUID,
) -> User:
    """Toggle a user's is_active flag. Admins cannot deactivate themselves."""
    user = get_user(db, user_id)

    if user_id == admin_id and user.is_active:
        raise ValidationError("Cannot deactivate yourself")

    user.is_active = not user.is_active
    db.flush()

    log_action(
        db,
        user_id=admin_id,
        action="USER_TOGGLED_ACTIVE",
        resource_type="users",
        resource_id=str(user.id),
        changes={"is_active": user.is_active},
    )
    return user


def reset_password(
    db: Session,
    *,
    user_id: UUID,
    new_password: str,
    admin_id: UUID,
) -> User:
    user = get_user(db, user_id)
    user.hashed_password = get_password_hash(new_password)
    user.failed_login_attempts = 0
    user.locked_until = None
    db.flush()

    log_action(
        db,
        user_id=admin_id,
        action="USER_PASSWORD_RESET",
        resource_type="users",
        resource_id=str(user.id),
        changes={"reset_by": str(admin_id)},
    )
    return user


def change_own_password(
    db: Session,
    *,
    user_id: UUID,
    current_password: str,
    new_password: str,
) -> User:
    """User changes their own password. Raises ValidationError if current is wrong."""
    user = get_user(db, user_id)

    if not verify_password(current_password, user.hashed_password):
        raise ValidationError("Current password is incorrect")

    user.hashed_password = get_password_hash(new_password)
    db.flush()

    log_action(
        db,
        user_id=user_id,
        action="USER_PASSWORD_CHANGED",
        resource_type="users",
        resource_id=str(user_id),
    )
    return user
