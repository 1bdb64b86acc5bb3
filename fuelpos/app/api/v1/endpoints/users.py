from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.orm import Session

from fuelpos.app.api.deps import get_current_user
from fuelpos.app.api.errors import to_http
from fuelpos.app.api.permission_deps import load_user_permissions, require_permission
from fuelpos.app.core.database import get_db
from fuelpos.app.core.security import validate_password_strength
from fuelpos.app.models.user import RoleEnum, User
from fuelpos.app.services.user_management import (
    change_own_password,
    create_user,
    list_users,
    reset_password,
    toggle_user_active,
    update_user,
)

router = APIRouter()


# ─── Schemas ─────────────────────────────────────────────────────────────────


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    username: str
    full_name: str | None = None
    role: str
    station_id: UUID | None = None
    is_active: bool
    permissions: list[str] = []


def _validate_pw(v: str) -> str:
    error = validate_password_strength(v)
    if error:
        raise ValueError(error)
    return v


class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=150)
    password: str = Field(..., min_length=8, max_length=128)
    full_name: str | None = Field(None, max_length=255)
    role: RoleEnum
    station_id: UUID | None = None

    @field_validator("password")
    @classmethod
    def check_password_strength(cls, v: str) -> str:
        return _validate_pw(v)


class UserUpdate(BaseModel):
    username: str | None = Field(None, min_length=3, max_length=150)
    full_name: str | None = Field(None, max_length=255)
    role: RoleEnum | None = None
    station_id: UUID | None = None


class ResetPasswordIn(BaseModel):
    new_password: str = Field(..., min_length=8, max_length=128)

    @field_validator("new_password")
    @classmethod
    def check_password_strength(cls, v: str) -> str:
        return _validate_pw(v)


class ChangePasswordIn(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=128)

    @field_validator("new_password")
    @classmethod
    def check_password_strength(cls, v: str) -> str:
        return _validate_pw(v)


class MessageOut(BaseModel):
    detail: str


def _user_out(user: User, permissions: list[str] | None = None) -> UserOut:
    return UserOut(
        id=user.id,
        username=user.username,
        full_name=user.full_name,
        role=user.role.value,
        station_id=user.station_id,
        is_active=user.is_active,
        permissions=permissions or [],
    )


# ─── Endpoints ───────────────────────────────────────────────────────────────


@router.get("/me", response_model=UserOut)
def read_current_user(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserOut:
    perms = sorted(load_user_permissions(db, current_user))
    return _user_out(current_user, perms)


@router.get("", response_model=list[UserOut])
def list_all_users(
    station_id: UUID | None = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("user:manage")),
) -> list[UserOut]:
    """List users, optionally for one station. Admin only."""
    return [_user_out(u) for u in list_users(db, station_id)]


@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def create_new_user(
    body: UserCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("user:manage")),
) -> UserOut:
    """Create a new user account. Admin only."""
    try:
        user = create_user(
            db,
            username=body.username,
            password=body.password,
            role=body.role,
            admin_id=current_user.id,
            full_name=body.full_name,
            station_id=body.station_id,
        )
        db.commit()
        return _user_out(user)
    except ValueError as e:
        db.rollback()
        raise to_http(e)


@router.patch("/{user_id}", response_model=UserOut)
def update_existing_user(
    user_id: UUID,
    body: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("user:manage")),
) -> UserOut:
    """Update a user's name, role and/or station. Admin only."""
    try:
        user = update_user(
            db,
            user_id=user_id,
            admin_id=current_user.id,
            username=body.username,
            full_name=body.full_name,
            role=body.role,
            station_id=body.station_id,
        )
        db.commit()
        return _user_out(user)
    except ValueError as e:
        db.rollback()
        raise to_http(e)


@router.patch("/{user_id}/toggle-active", response_model=UserOut)
def toggle_active(
    user_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("user:manage")),
) -> UserOut:
    """Toggle a user's active status. Admin only."""
    try:
        user = toggle_user_active(db, user_id=user_id, admin_id=current_user.id)
        db.commit()
        return _user_out(user)
    except ValueError as e:
        db.rollback()
        raise to_http(e)


@router.post("/{user_id}/reset-password", response_model=MessageOut)
def admin_reset_password(
    user_id: UUID,
    body: ResetPasswordIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("user:manage")),
) -> dict[str, str]:
    """Admin resets a user's password and clears any lockout."""
    try:
        reset_password(
            db,
            user_id=user_id,
            new_password=body.new_password,
            admin_id=current_user.id,
        )
        db.commit()
        return {"detail": "Password reset successfully"}
    except ValueError as e:
        db.rollback()
        raise to_http(e)


@router.post("/change-password", response_model=MessageOut)
def change_my_password(
    body: ChangePasswordIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, str]:
    """Change own password. Any authenticated user."""
    try:
        change_own_password(
            db,
            user_id=current_user.id,
            current_password=body.current_password,
            new_password=body.new_password,
        )
        db.commit()
        return {"detail": "Password changed successfully"}
    except ValueError as e:
        db.rollback()
        raise to_http(e)
