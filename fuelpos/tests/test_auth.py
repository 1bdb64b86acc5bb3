"""Tests for login, lockout, rate limiting and logout."""

from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from fuelpos.app.models.audit import AuditLog
from fuelpos.app.models.user import User
from fuelpos.tests.conftest import STAFF_PASSWORD, auth

LOGIN_URL = "/api/v1/auth/login/access-token"


def _login(client: TestClient, username: str, password: str):
    return client.post(LOGIN_URL, data={"username": username, "password": password})


class TestLogin:
    def test_login_returns_bearer_token(
        self, client: TestClient, staff_user: User, db: Session
    ) -> None:
        resp = _login(client, "test_staff", STAFF_PASSWORD)
        assert resp.status_code == 200
        token = resp.json()["access_token"]
        assert resp.json()["token_type"] == "bearer"

        me = client.get("/api/v1/users/me", headers=auth(token))
        assert me.json()["username"] == "test_staff"
        log = db.query(AuditLog).filter(AuditLog.action == "LOGIN_SUCCESS").one()
        assert log.new_values["station_id"] == str(staff_user.station_id)

    def test_username_is_case_insensitive(self, client: TestClient, staff_user: User) -> None:
        assert _login(client, "TEST_Staff", STAFF_PASSWORD).status_code == 200

    def test_wrong_password(self, client: TestClient, staff_user: User, db: Session) -> None:
        resp = _login(client, "test_staff", "WrongPass999")
        assert resp.status_code == 401
        db.refresh(staff_user)
        assert staff_user.failed_login_attempts == 1

    def test_unknown_user(self, client: TestClient, seed_roles) -> None:
        assert _login(client, "nobody", "Whatever123").status_code == 401

    def test_inactive_user_rejected(
        self, client: TestClient, staff_user: User, db: Session
    ) -> None:
        staff_user.is_active = False
        db.commit()
        resp = _login(client, "test_staff", STAFF_PASSWORD)
        assert resp.status_code == 403


class TestLockout:
    def test_account_locks_after_repeated_failures(
        self, client: TestClient, staff_user: User, db: Session
    ) -> None:
        for _ in range(5):
            assert _login(client, "test_staff", "WrongPass999").status_code == 401

        resp = _login(client, "test_staff", STAFF_PASSWORD)
        assert resp.status_code == 423
        assert "locked" in resp.json()["detail"].lower()
        assert db.query(AuditLog).filter(AuditLog.action == "ACCOUNT_LOCKED").count() == 1

    def test_successful_login_resets_counter(
        self, client: TestClient, staff_user: User, db: Session
    ) -> None:
        for _ in range(3):
            _login(client, "test_staff", "WrongPass999")
        assert _login(client, "test_staff", STAFF_PASSWORD).status_code == 200
        db.refresh(staff_user)
        assert staff_user.failed_login_attempts == 0


class TestRateLimit:
    def test_too_many_attempts_from_one_address(
        self, client: TestClient, seed_roles
    ) -> None:
        for _ in range(10):
            _login(client, "nobody", "Whatever123")
        resp = _login(client, "nobody", "Whatever123")
        assert resp.status_code == 429
        assert 1 <= int(resp.headers["Retry-After"]) <= 60


class TestLogout:
    def test_logout_revokes_token(self, client: TestClient, staff_token: str) -> None:
        resp = client.post("/api/v1/auth/logout", headers=auth(staff_token))
        assert resp.status_code == 200
        assert client.get("/api/v1/users/me", headers=auth(staff_token)).status_code == 401

    def test_garbage_token_rejected(self, client: TestClient) -> None:
        resp = client.get("/api/v1/users/me", headers=auth("not-a-jwt"))
        assert resp.status_code == 401
