"""Seed the database with roles, an admin user and the stations.

Usage:
    python -m fuelpos.scripts.seed

The admin password is taken from ``FUELPOS_ADMIN_PASSWORD`` when set.
"""

from __future__ import annotations

import os
from decimal import Decimal

from fuelpos.app.core.config import settings
from fuelpos.app.core.database import SessionLocal
from fuelpos.app.core.security import get_password_hash
import fuelpos.app.models.registry  # noqa: F401
from fuelpos.app.models.permission import (
    ALL_PERMISSION_CODES,
    ROLE_PERMISSIONS,
    Permission,
    Role,
    RolePermission,
)
from fuelpos.app.models.station import Station, StationType
from fuelpos.app.models.user import RoleEnum, User

# (code, name, type); gas stations carry nozzles and tanks
STATIONS: list[tuple[str, str, StationType]] = [
    ("ST1", "แท๊งลอยวัชรเกียรติ", StationType.FULL),
    ("ST2", "วัชรเกียรติออยล์", StationType.SIMPLE),
    ("ST3", "พงษ์อนันต์ปิโตรเลียม", StationType.SIMPLE),
    ("ST4", "ศุภชัยบริการ", StationType.SIMPLE),
    ("ST5", "ปั๊มแก๊สพงษ์อนันต์", StationType.GAS),
    ("ST6", "ปั๊มแก๊สศุภชัย", StationType.GAS),
]

DEFAULT_ADMIN_PASSWORD = "ChangeMe2026"


def seed() -> None:
    db = SessionLocal()
    try:
        # ── Permissions ────────────────────────────────────────────────
        perm_map: dict[str, Permission] = {}
        for code, desc, cat in ALL_PERMISSION_CODES:
            existing = db.query(Permission).filter_by(code=code).first()
            if existing:
                perm_map[code] = existing
            else:
                p = Permission(code=code, description=desc, category=cat)
                db.add(p)
                perm_map[code] = p
                print(f"Created permission: {code}")
        db.flush()

        # ── Roles ──────────────────────────────────────────────────────
        roles: dict[str, Role] = {}
        for role_name, perm_codes in ROLE_PERMISSIONS.items():
            role = db.query(Role).filter_by(name=role_name).first()
            if role is None:
                role = Role(name=role_name, description=f"{role_name} role", is_system=True)
                db.add(role)
                db.flush()
                print(f"Created role: {role_name}")
            for code in perm_codes:
                exists = (
                    db.query(RolePermission)
                    .filter(
                        RolePermission.role_id == role.id,
                        RolePermission.permission_id == perm_map[code].id,
                    )
                    .first()
                )
                if not exists:
                    db.add(RolePermission(role_id=role.id, permission_id=perm_map[code].id))
            roles[role_name] = role
        db.flush()

        # ── Admin user ─────────────────────────────────────────────────
        password = os.environ.get("FUELPOS_ADMIN_PASSWORD", DEFAULT_ADMIN_PASSWORD)
        admin = db.query(User).filter_by(username="admin").first()
        if admin:
            if admin.role_id is None:
                admin.role_id = roles["ADMIN"].id
                print("Assigned ADMIN role to admin user.")
        else:
            db.add(
                User(
                    username="admin",
                    full_name="Admin",
                    hashed_password=get_password_hash(password),
                    role=RoleEnum.ADMIN,
                    role_id=roles["ADMIN"].id,
                )
            )
            print("Created admin user.")

        # ── Stations ───────────────────────────────────────────────────
        for code, name, station_type in STATIONS:
            if db.query(Station).filter_by(code=code).first():
                continue
            gas = station_type == StationType.GAS
            db.add(
                Station(
                    code=code,
                    name=name,
                    station_type=station_type,
                    nozzle_count=settings.DEFAULT_NOZZLE_COUNT if gas else 1,
                    tank_count=settings.DEFAULT_TANK_COUNT if gas else 1,
                    fuel_price=Decimal(str(settings.DEFAULT_FUEL_PRICE)),
                )
            )
            print(f"Created station {code} - {name}")

        db.commit()
        print("Seed complete.")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
