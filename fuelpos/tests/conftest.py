"""Shared test fixtures.

Each test gets its own in-memory SQLite database. Services commit and roll
back on their own, so fixtures commit what they create; nothing leaks
between tests because the engine is thrown away afterwards.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import fuelpos.app.models.registry  # noqa: F401  (registers every table)
from fuelpos.app.api.v1.endpoints import auth as auth_endpoints
from fuelpos.app.core import security
from fuelpos.app.core.database import Base, configure_sqlite, get_db
from fuelpos.app.core.security import create_access_token, get_password_hash
from fuelpos.app.main import app
from fuelpos.app.models.owner import Owner, Truck
from fuelpos.app.models.permission import (
    ALL_PERMISSION_CODES,
    ROLE_PERMISSIONS,
    Permission,
    Role,
    RolePermission,
)
from fuelpos.app.models.station import Station, StationType
from fuelpos.app.models.user import RoleEnum, User

TEST_DATE = date(2026, 3, 14)
ADMIN_PASSWORD = "AdminPass123"
STAFF_PASSWORD = "StaffPass123"


# ─── Database ────────────────────────────────────────────────────────────────


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(eng)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def db(engine: Engine) -> Generator[Session, None, None]:
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()


@pytest.fixture()
def client(db: Session) -> Generator[TestClient, None, None]:
    """FastAPI TestClient wired to the test session."""

    def _override_get_db() -> Generator[Session, None, None]:
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _reset_in_memory_state() -> Generator[None, None, None]:
    auth_endpoints.login_limiter.reset()
    security._revoked_tokens.clear()
    yield
    auth_endpoints.login_limiter.reset()
    security._revoked_tokens.clear()


# ─── Roles & permissions ─────────────────────────────────────────────────────


@pytest.fixture()
def seed_roles(db: Session) -> dict[str, Role]:
    """Create Permission, Role, and RolePermission records.

    Returns a dict mapping role name to Role instance.
    """
    perm_map: dict[str, Permission] = {}
    for code, desc, cat in ALL_PERMISSION_CODES:
        p = Permission(code=code, description=desc, category=cat)
        db.add(p)
        perm_map[code] = p
    db.flush()

    roles: dict[str, Role] = {}
    for role_name, perm_codes in ROLE_PERMISSIONS.items():
        role = Role(name=role_name, description=f"{role_name} role", is_system=True)
        db.add(role)
        db.flush()
        for code in perm_codes:
            db.add(RolePermission(role_id=role.id, permission_id=perm_map[code].id))
        roles[role_name] = role
    db.commit()
    return roles


# ─── Stations ────────────────────────────────────────────────────────────────


@pytest.fixture()
def station(db: Session) -> Station:
    s = Station(
        code="ST1",
        name="ปั๊มแก๊สสาขา 1",
        station_type=StationType.GAS,
        nozzle_count=4,
        tank_count=3,
        fuel_price=Decimal("16.09"),
    )
    db.add(s)
    db.commit()
    return s


@pytest.fixture()
def other_station(db: Session) -> Station:
    s = Station(
        code="ST2",
        name="ปั๊มน้ำมันสาขา 2",
        station_type=StationType.FULL,
        nozzle_count=1,
        tank_count=1,
        fuel_price=Decimal("30.50"),
    )
    db.add(s)
    db.commit()
    return s


# ─── Users & auth helpers ────────────────────────────────────────────────────


@pytest.fixture()
def admin_user(db: Session, seed_roles: dict[str, Role]) -> User:
    user = User(
        username="test_admin",
        full_name="Test Admin",
        hashed_password=get_password_hash(ADMIN_PASSWORD),
        role=RoleEnum.ADMIN,
        role_id=seed_roles["ADMIN"].id,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def staff_user(db: Session, seed_roles: dict[str, Role], station: Station) -> User:
    user = User(
        username="test_staff",
        full_name="Test Staff",
        hashed_password=get_password_hash(STAFF_PASSWORD),
        role=RoleEnum.STAFF,
        role_id=seed_roles["STAFF"].id,
        station_id=station.id,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def admin_token(admin_user: User) -> str:
    return create_access_token(subject=str(admin_user.id))


@pytest.fixture()
def staff_token(staff_user: User) -> str:
    return create_access_token(subject=str(staff_user.id))


def auth(token: str) -> dict[str, str]:
    """Return Authorization header dict."""
    return {"Authorization": f"Bearer {token}"}


# ─── Owners & trucks ─────────────────────────────────────────────────────────


@pytest.fixture()
def owner(db: Session) -> Owner:
    o = Owner(name="บริษัท ขนส่งสมชาย จำกัด", code="C001", credit_limit=Decimal("5000.00"))
    db.add(o)
    db.commit()
    return o


@pytest.fixture()
def owner_truck(db: Session, owner: Owner) -> Truck:
    t = Truck(license_plate="701234", owner_id=owner.id)
    db.add(t)
    db.commit()
    return t


# ─── Shift helpers ───────────────────────────────────────────────────────────


def open_payload(
    shift_number: int = 1,
    record_date: date = TEST_DATE,
    starts: tuple[str, ...] = ("1000.00", "2000.00", "3000.00", "4000.00"),
    gauges: tuple[str, ...] = ("80", "60", "40"),
) -> dict[str, object]:
    return {
        "shift_number": shift_number,
        "record_date": record_date.isoformat(),
        "meters": [
            {"nozzle_number": i, "start_reading": v} for i, v in enumerate(starts, 1)
        ],
        "gauges": [
            {"tank_number": i, "percentage": v} for i, v in enumerate(gauges, 1)
        ],
    }


def end_meters_payload(ends: tuple[str, ...]) -> dict[str, object]:
    return {
        "meters": [
            {"nozzle_number": i, "end_reading": v} for i, v in enumerate(ends, 1)
        ]
    }


def end_gauges_payload(levels: tuple[str, ...] = ("70", "50", "30")) -> dict[str, object]:
    return {
        "phase": "END",
        "gauges": [
            {"tank_number": i, "percentage": v} for i, v in enumerate(levels, 1)
        ],
    }


# 160 liters at 16.09 = 2574.40 expected
SHIFT_ENDS = ("1100.00", "2050.00", "3000.00", "4010.00")


def run_shift(
    client: TestClient,
    station: Station,
    token: str,
    *,
    shift_number: int = 1,
    record_date: date = TEST_DATE,
    received: dict[str, str] | None = None,
    variance_note: str | None = None,
) -> dict:
    """Open, read and close a shift through the API; return the closed shift."""
    resp = client.post(
        f"/api/v1/stations/{station.id}/shifts",
        json=open_payload(shift_number=shift_number, record_date=record_date),
        headers=auth(token),
    )
    assert resp.status_code == 201, resp.text
    shift_id = resp.json()["id"]
    for path, body in (
        ("end-meters", end_meters_payload(SHIFT_ENDS)),
        ("gauges", end_gauges_payload()),
    ):
        resp = client.put(f"/api/v1/shifts/{shift_id}/{path}", json=body, headers=auth(token))
        assert resp.status_code == 200, resp.text
    resp = client.post(
        f"/api/v1/shifts/{shift_id}/close",
        json={
            "received": received or {"cash": "2574.40"},
            "variance_note": variance_note,
        },
        headers=auth(token),
    )
    assert resp.status_code == 200, resp.text
    return resp.json()
