"""Tests for stations, fuel prices and daily records."""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from fuelpos.app.api.v1.endpoints import stations as station_endpoints
from fuelpos.app.models.audit import AuditLog
from fuelpos.app.models.station import DailyRecord, Station
from fuelpos.tests.conftest import TEST_DATE, auth


def _record_url(station: Station) -> str:
    return f"/api/v1/stations/{station.id}/daily-records/{TEST_DATE.isoformat()}"


class TestStations:
    def test_admin_sees_every_station(
        self,
        client: TestClient,
        admin_token: str,
        station: Station,
        other_station: Station,
    ) -> None:
        resp = client.get("/api/v1/stations", headers=auth(admin_token))
        assert resp.status_code == 200
        assert [s["code"] for s in resp.json()] == ["ST1", "ST2"]

    def test_staff_sees_own_station_only(
        self, client: TestClient, staff_token: str, other_station: Station
    ) -> None:
        resp = client.get("/api/v1/stations", headers=auth(staff_token))
        assert [s["code"] for s in resp.json()] == ["ST1"]

    def test_staff_cannot_read_other_station(
        self, client: TestClient, staff_token: str, other_station: Station
    ) -> None:
        resp = client.get(f"/api/v1/stations/{other_station.id}", headers=auth(staff_token))
        assert resp.status_code == 403

    def test_station_access_denial_names_the_station(
        self, client: TestClient, staff_token: str, other_station: Station
    ) -> None:
        resp = client.get(f"/api/v1/stations/{other_station.id}", headers=auth(staff_token))
        detail = resp.json()["detail"]
        assert detail["message"] == "You do not have access to this station"
        assert detail["station_id"] == str(other_station.id)

    def test_create_station_with_defaults(
        self, client: TestClient, admin_token: str, db: Session
    ) -> None:
        resp = client.post(
            "/api/v1/stations",
            json={"code": "ST9", "name": "ปั๊มใหม่"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["station_type"] == "GAS"
        assert data["nozzle_count"] == 4
        assert data["tank_count"] == 3
        assert Decimal(data["fuel_price"]) == Decimal("16.09")
        assert db.query(AuditLog).filter(AuditLog.action == "STATION_CREATED").count() == 1

    def test_duplicate_code_rejected(
        self, client: TestClient, admin_token: str, station: Station
    ) -> None:
        resp = client.post(
            "/api/v1/stations", json={"code": "ST1", "name": "ซ้ำ"}, headers=auth(admin_token)
        )
        assert resp.status_code == 409

    def test_staff_cannot_create_station(self, client: TestClient, staff_token: str) -> None:
        resp = client.post(
            "/api/v1/stations", json={"code": "ST8", "name": "x"}, headers=auth(staff_token)
        )
        assert resp.status_code == 403


class TestPriceChange:
    @pytest.fixture(autouse=True)
    def _pin_today(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(station_endpoints, "local_today", lambda: TEST_DATE)

    def test_price_change_reprices_empty_day(
        self,
        client: TestClient,
        admin_token: str,
        station: Station,
        db: Session,
    ) -> None:
        client.post(_record_url(station), headers=auth(admin_token))
        resp = client.put(
            f"/api/v1/stations/{station.id}/price",
            json={"fuel_price": "17.50"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 200
        assert Decimal(resp.json()["fuel_price"]) == Decimal("17.50")

        day = client.get(_record_url(station), headers=auth(admin_token)).json()
        assert Decimal(day["fuel_price"]) == Decimal("17.50")
        log = db.query(AuditLog).filter(AuditLog.action == "PRICE_CHANGED").one()
        assert log.old_values["fuel_price"] == "16.09"

    def test_day_with_sales_keeps_its_price(
        self, client: TestClient, admin_token: str, station: Station
    ) -> None:
        client.post(
            f"/api/v1/stations/{station.id}/transactions",
            json={"payment_type": "CASH", "amount": "100", "txn_date": TEST_DATE.isoformat()},
            headers=auth(admin_token),
        )
        client.put(
            f"/api/v1/stations/{station.id}/price",
            json={"fuel_price": "17.50"},
            headers=auth(admin_token),
        )
        day = client.get(_record_url(station), headers=auth(admin_token)).json()
        assert Decimal(day["fuel_price"]) == Decimal("16.09")
        assert day["transaction_count"] == 1

    def test_non_positive_price_rejected(
        self, client: TestClient, admin_token: str, station: Station
    ) -> None:
        resp = client.put(
            f"/api/v1/stations/{station.id}/price",
            json={"fuel_price": "0"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 422


class TestDailyRecords:
    def test_missing_record_404(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        assert client.get(_record_url(station), headers=auth(staff_token)).status_code == 404

    def test_ensure_is_idempotent(
        self, client: TestClient, staff_token: str, station: Station, db: Session
    ) -> None:
        first = client.post(_record_url(station), headers=auth(staff_token))
        second = client.post(_record_url(station), headers=auth(staff_token))
        assert first.status_code == 200
        assert first.json()["id"] == second.json()["id"]
        assert first.json()["status"] == "OPEN"
        assert db.query(DailyRecord).count() == 1

    def test_delete_empty_record(
        self, client: TestClient, admin_token: str, station: Station, db: Session
    ) -> None:
        record_id = client.post(_record_url(station), headers=auth(admin_token)).json()["id"]
        resp = client.delete(f"/api/v1/stations/daily-records/{record_id}", headers=auth(admin_token))
        assert resp.status_code == 204
        assert db.query(DailyRecord).count() == 0

    def test_delete_refused_while_sales_exist(
        self, client: TestClient, admin_token: str, station: Station
    ) -> None:
        sale = client.post(
            f"/api/v1/stations/{station.id}/transactions",
            json={"payment_type": "CASH", "amount": "100", "txn_date": TEST_DATE.isoformat()},
            headers=auth(admin_token),
        ).json()
        resp = client.delete(
            f"/api/v1/stations/daily-records/{sale['daily_record_id']}",
            headers=auth(admin_token),
        )
        assert resp.status_code == 409
        assert resp.json()["detail"]["transaction_count"] == 1

    def test_delete_unknown_record_404(self, client: TestClient, admin_token: str) -> None:
        resp = client.delete(f"/api/v1/stations/daily-records/{uuid4()}", headers=auth(admin_token))
        assert resp.status_code == 404
