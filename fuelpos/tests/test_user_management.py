"""Tests for user management endpoints."""

from __future__ import annotations

from uuid import uuid4

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from fuelpos.app.models.audit import AuditLog
from fuelpos.app.models.station import Station
from fuelpos.app.models.user import RoleEnum, User
from fuelpos.tests.conftest import STAFF_PASSWORD, auth

NEW_PASSWORD = "NewPass1234"


class TestListUsers:
    def test_admin_can_list_users(
        self, client: TestClient, admin_token: str, admin_user: User
    ) -> None:
        resp = client.get("/api/v1/users", headers=auth(admin_token))
        assert resp.status_code == 200
        data = resp.json()
        assert isinstance(data, list)
        assert any(u["id"] == str(admin_user.id) for u in data)

    def test_filter_by_station(
        self,
        client: TestClient,
        admin_token: str,
        staff_user: User,
        station: Station,
    ) -> None:
        resp = client.get(
            "/api/v1/users", params={"station_id": str(station.id)}, headers=auth(admin_token)
        )
        assert [u["username"] for u in resp.json()] == ["test_staff"]

    def test_staff_cannot_list_users(self, client: TestClient, staff_token: str) -> None:
        resp = client.get("/api/v1/users", headers=auth(staff_token))
        assert resp.status_code == 403


class TestCreateUser:
    def test_admin_creates_staff_for_station(
        self, client: TestClient, admin_token: str, station: Station
    ) -> None:
        resp = client.post(
            "/api/v1/users",
            json={
                "username": "new_attendant",
                "password": "Secret1234",
                "role": "STAFF",
                "station_id": str(station.id),
            },
            headers=auth(admin_token),
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["username"] == "new_attendant"
        assert data["role"] == "STAFF"
        assert data["station_id"] == str(station.id)
        assert data["is_active"] is True

    def test_staff_without_station_rejected(
        self, client: TestClient, admin_token: str
    ) -> None:
        resp = client.post(
            "/api/v1/users",
            json={"username": "floating", "password": "Secret1234", "role": "STAFF"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 400
        assert "station" in resp.json()["detail"].lower()

    def test_unknown_station_returns_404(
        self, client: TestClient, admin_token: str
    ) -> None:
        resp = client.post(
            "/api/v1/users",
            json={
                "username": "lost_staff",
                "password": "Secret1234",
                "role": "STAFF",
                "station_id": str(uuid4()),
            },
            headers=auth(admin_token),
        )
        assert resp.status_code == 404

    def test_admin_needs_no_station(self, client: TestClient, admin_token: str) -> None:
        resp = client.post(
            "/api/v1/users",
            json={"username": "second_admin", "password": "Secret1234", "role": "ADMIN"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 201
        assert resp.json()["station_id"] is None

    def test_duplicate_username_case_insensitive(
        self, client: TestClient, admin_token: str, admin_user: User
    ) -> None:
        resp = client.post(
            "/api/v1/users",
            json={"username": "TEST_ADMIN", "password": "Secret1234", "role": "ADMIN"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 409

    def test_short_username_rejected(self, client: TestClient, admin_token: str) -> None:
        resp = client.post(
            "/api/v1/users",
            json={"username": "ab", "password": "Secret1234", "role": "ADMIN"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 422

    def test_weak_password_rejected(self, client: TestClient, admin_token: str) -> None:
        resp = client.post(
            "/api/v1/users",
            json={"username": "validuser", "password": "lettersonly", "role": "ADMIN"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 422

    def test_create_user_audit_logged(
        self, client: TestClient, admin_token: str, station: Station, db: Session
    ) -> None:
        client.post(
            "/api/v1/users",
            json={
                "username": "audited_user",
                "password": "Secret1234",
                "role": "STAFF",
                "station_id": str(station.id),
            },
            headers=auth(admin_token),
        )
        log = db.query(AuditLog).filter(AuditLog.action == "USER_CREATED").one()
        assert log.new_values["username"] == "audited_user"
        assert log.new_values["station_id"] == str(station.id)

    def test_staff_cannot_create_user(self, client: TestClient, staff_token: str) -> None:
        resp = client.post(
            "/api/v1/users",
            json={"username": "sneaky", "password": "Secret1234", "role": "ADMIN"},
            headers=auth(staff_token),
        )
        assert resp.status_code == 403


class TestUpdateUser:
    def test_move_staff_to_another_station(
        self,
        client: TestClient,
        admin_token: str,
        staff_user: User,
        other_station: Station,
    ) -> None:
        resp = client.patch(
            f"/api/v1/users/{staff_user.id}",
            json={"station_id": str(other_station.id)},
            headers=auth(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["station_id"] == str(other_station.id)

    def test_promote_staff_to_admin(
        self, client: TestClient, admin_token: str, staff_user: User
    ) -> None:
        resp = client.patch(
            f"/api/v1/users/{staff_user.id}",
            json={"role": "ADMIN"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["role"] == "ADMIN"

    def test_demote_admin_without_station_rejected(
        self, client: TestClient, admin_token: str, db: Session, seed_roles
    ) -> None:
        other = User(
            username="other_admin",
            hashed_password="x",
            role=RoleEnum.ADMIN,
            role_id=seed_roles["ADMIN"].id,
        )
        db.add(other)
        db.commit()
        resp = client.patch(
            f"/api/v1/users/{other.id}", json={"role": "STAFF"}, headers=auth(admin_token)
        )
        assert resp.status_code == 400

    def test_update_nonexistent_user_returns_404(
        self, client: TestClient, admin_token: str
    ) -> None:
        resp = client.patch(
            f"/api/v1/users/{uuid4()}", json={"username": "ghost"}, headers=auth(admin_token)
        )
        assert resp.status_code == 404

    def test_update_duplicate_username_returns_409(
        self, client: TestClient, admin_token: str, staff_user: User, admin_user: User
    ) -> None:
        resp = client.patch(
            f"/api/v1/users/{staff_user.id}",
            json={"username": "test_admin"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 409


class TestToggleActive:
    def test_admin_deactivates_user(
        self, client: TestClient, admin_token: str, staff_user: User
    ) -> None:
        resp = client.patch(
            f"/api/v1/users/{staff_user.id}/toggle-active", headers=auth(admin_token)
        )
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False

    def test_deactivated_token_stops_working(
        self, client: TestClient, admin_token: str, staff_token: str, staff_user: User
    ) -> None:
        client.patch(f"/api/v1/users/{staff_user.id}/toggle-active", headers=auth(admin_token))
        resp = client.get("/api/v1/users/me", headers=auth(staff_token))
        assert resp.status_code == 403

    def test_admin_cannot_deactivate_self(
        self, client: TestClient, admin_token: str, admin_user: User
    ) -> None:
        resp = client.patch(
            f"/api/v1/users/{admin_user.id}/toggle-active", headers=auth(admin_token)
        )
        assert resp.status_code == 400
        assert "yourself" in resp.json()["detail"].lower()

    def test_toggle_nonexistent_returns_404(
        self, client: TestClient, admin_token: str
    ) -> None:
        resp = client.patch(f"/api/v1/users/{uuid4()}/toggle-active", headers=auth(admin_token))
        assert resp.status_code == 404


class TestResetPassword:
    def test_admin_resets_password_and_clears_lockout(
        self, client: TestClient, admin_token: str, staff_user: User, db: Session
    ) -> None:
        staff_user.failed_login_attempts = 5
        db.commit()
        resp = client.post(
            f"/api/v1/users/{staff_user.id}/reset-password",
            json={"new_password": NEW_PASSWORD},
            headers=auth(admin_token),
        )
        assert resp.status_code == 200
        assert "reset" in resp.json()["detail"].lower()
        db.refresh(staff_user)
        assert staff_user.failed_login_attempts == 0
        assert db.query(AuditLog).filter(AuditLog.action == "USER_PASSWORD_RESET").count() == 1

    def test_reset_nonexistent_returns_404(
        self, client: TestClient, admin_token: str
    ) -> None:
        resp = client.post(
            f"/api/v1/users/{uuid4()}/reset-password",
            json={"new_password": NEW_PASSWORD},
            headers=auth(admin_token),
        )
        assert resp.status_code == 404


class TestChangeOwnPassword:
    def test_user_changes_own_password(
        self, client: TestClient, staff_token: str, db: Session
    ) -> None:
        resp = client.post(
            "/api/v1/users/change-password",
            json={"current_password": STAFF_PASSWORD, "new_password": NEW_PASSWORD},
            headers=auth(staff_token),
        )
        assert resp.status_code == 200
        assert "changed" in resp.json()["detail"].lower()
        assert db.query(AuditLog).filter(AuditLog.action == "USER_PASSWORD_CHANGED").count() == 1

    def test_wrong_current_password_returns_400(
        self, client: TestClient, staff_token: str
    ) -> None:
        resp = client.post(
            "/api/v1/users/change-password",
            json={"current_password": "wrongpass1", "new_password": NEW_PASSWORD},
            headers=auth(staff_token),
        )
        assert resp.status_code == 400
        assert "incorrect" in resp.json()["detail"].lower()


class TestGetMe:
    def test_staff_sees_station_and_permissions(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        resp = client.get("/api/v1/users/me", headers=auth(staff_token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["role"] == "STAFF"
        assert data["station_id"] == str(station.id)
        assert "shift:operate" in data["permissions"]
        assert "owner:merge" not in data["permissions"]

    def test_admin_has_every_permission(
        self, client: TestClient, admin_token: str
    ) -> None:
        perms = client.get("/api/v1/users/me", headers=auth(admin_token)).json()["permissions"]
        assert {"owner:merge", "report:export", "user:manage"} <= set(perms)

    def test_unauthenticated_returns_401(self, client: TestClient) -> None:
        resp = client.get("/api/v1/users/me")
        assert resp.status_code == 401
