from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fuelpos.app.core.database import Base


class Permission(Base):
    __tablename__ = "permissions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)

    role_permissions: Mapped[list[RolePermission]] = relationship(back_populates="permission")


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_system: Mapped[bool] = mapped_column(default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    role_permissions: Mapped[list[RolePermission]] = relationship(back_populates="role")
    users: Mapped[list["User"]] = relationship(back_populates="assigned_role")  # noqa: F821


class RolePermission(Base):
    __tablename__ = "role_permissions"

    role_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("roles.id"), primary_key=True
    )
    permission_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("permissions.id"), primary_key=True
    )

    role: Mapped[Role] = relationship(back_populates="role_permissions")
    permission: Mapped[Permission] = relationship(back_populates="role_permissions")


# Permission catalogue shared by the seed script, the migration and tests.
ALL_PERMISSION_CODES: list[tuple[str, str, str]] = [
    ("station:read", "View stations and daily records", "stations"),
    ("station:manage", "Create stations, change prices, delete daily records", "stations"),
    ("shift:operate", "Open shifts, record meters and gauges, close shifts", "shifts"),
    ("shift:list", "View shift history", "shifts"),
    ("shift:admin", "Lock shifts and correct readings", "shifts"),
    ("transaction:write", "Record sales", "transactions"),
    ("transaction:read", "View sales", "transactions"),
    ("transaction:admin", "Edit, void and delete sales", "transactions"),
    ("owner:read", "View owners and trucks", "owners"),
    ("owner:write", "Create and update owners and trucks", "owners"),
    ("owner:merge", "Merge duplicate owners", "owners"),
    ("report:read", "View reports and alerts", "reports"),
    ("report:export", "Export reports to CSV/Excel", "reports"),
    ("user:manage", "Create and list users", "admin"),
    ("audit:read", "View audit logs", "admin"),
    ("billing:read", "View credit invoices, pending credit and aging", "billing"),
    ("billing:manage", "Issue invoices and record invoice payments", "billing"),
]

ALL_CODES: list[str] = [code for code, _, _ in ALL_PERMISSION_CODES]

ROLE_PERMISSIONS: dict[str, list[str]] = {
    "ADMIN": ALL_CODES,
    "STAFF": [
        "station:read",
        "shift:operate",
        "shift:list",
        "transaction:write",
        "transaction:read",
        "owner:read",
        "owner:write",
    ],
}
