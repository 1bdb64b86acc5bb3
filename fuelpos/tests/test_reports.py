"""Tests for daily summaries, shift reports and the admin alert feed."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from uuid import UUID

from fastapi.testclient import TestClient
from sqlalchemy import update
from sqlalchemy.orm import Session

from fuelpos.app.core.timeutils import utc_now
from fuelpos.app.models.shift import Shift
from fuelpos.app.models.station import Station
from fuelpos.tests.conftest import TEST_DATE, auth, run_shift


def _sale(client: TestClient, station: Station, token: str, payment_type: str, amount: str):
    body: dict[str, object] = {
        "payment_type": payment_type,
        "amount": amount,
        "txn_date": TEST_DATE.isoformat(),
    }
    if payment_type != "CASH":
        body["owner_name"] = "บริษัท ขนส่งสมชาย จำกัด"
    resp = client.post(
        f"/api/v1/stations/{station.id}/transactions", json=body, headers=auth(token)
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestDailySummary:
    def test_totals_by_payment_type(
        self,
        client: TestClient,
        staff_token: str,
        admin_token: str,
        station: Station,
        owner,
    ) -> None:
        _sale(client, station, staff_token, "CASH", "300.00")
        _sale(client, station, staff_token, "CREDIT", "450.00")
        voided = _sale(client, station, staff_token, "CASH", "999.00")
        client.post(
            f"/api/v1/transactions/{voided['id']}/void",
            json={"reason": "ลูกค้ายกเลิก"},
            headers=auth(admin_token),
        )
        run_shift(client, station, staff_token)

        resp = client.get(
            "/api/v1/reports/daily",
            params={"station_id": str(station.id), "record_date": TEST_DATE.isoformat()},
            headers=auth(admin_token),
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["transaction_count"] == 2
        assert Decimal(data["total_amount"]) == Decimal("750")
        assert Decimal(data["fuel_price"]) == Decimal("16.09")
        assert [p["payment_type"] for p in data["by_payment_type"]] == ["CASH", "CREDIT"]

        [line] = data["shifts"]
        assert line["status"] == "CLOSED"
        assert Decimal(line["expected_amount"]) == Decimal("2574.40")
        assert line["variance_status"] == "BALANCED"
        assert line["severity"] == "GREEN"

    def test_day_without_activity(
        self, client: TestClient, admin_token: str, station: Station
    ) -> None:
        resp = client.get(
            "/api/v1/reports/daily",
            params={"station_id": str(station.id), "record_date": "2026-01-01"},
            headers=auth(admin_token),
        )
        data = resp.json()
        assert data["transaction_count"] == 0
        assert data["fuel_price"] is None
        assert data["shifts"] == []

    def test_staff_without_report_permission(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        resp = client.get(
            "/api/v1/reports/daily",
            params={"station_id": str(station.id)},
            headers=auth(staff_token),
        )
        assert resp.status_code == 403


class TestShiftReport:
    def test_rows_and_totals(
        self, client: TestClient, staff_token: str, admin_token: str, station: Station
    ) -> None:
        run_shift(client, station, staff_token)
        run_shift(
            client,
            station,
            staff_token,
            shift_number=2,
            received={"cash": "2000.00", "card": "274.40"},
            variance_note="เงินทอนผิด",
        )

        resp = client.get(
            "/api/v1/reports/shifts",
            params={
                "station_id": str(station.id),
                "from_date": TEST_DATE.isoformat(),
                "to_date": TEST_DATE.isoformat(),
            },
            headers=auth(admin_token),
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert [r["shift_number"] for r in data["rows"]] == [1, 2]
        second = data["rows"][1]
        assert Decimal(second["variance"]) == Decimal("-300")
        assert second["variance_status"] == "SHORT"
        assert second["severity"] == "YELLOW"
        assert Decimal(second["card_received"]) == Decimal("274.40")

        totals = data["totals"]
        assert Decimal(totals["total_liters"]) == Decimal("320")
        assert Decimal(totals["expected_amount"]) == Decimal("5148.80")
        assert Decimal(totals["total_received"]) == Decimal("4848.80")
        assert Decimal(totals["variance"]) == Decimal("-300")

    def test_open_shifts_are_left_out(
        self, client: TestClient, staff_token: str, admin_token: str, station: Station
    ) -> None:
        run_shift(client, station, staff_token)
        client.post(
            f"/api/v1/stations/{station.id}/shifts",
            json={
                "shift_number": 2,
                "record_date": TEST_DATE.isoformat(),
                "meters": [{"nozzle_number": n, "start_reading": "0"} for n in range(1, 5)],
                "gauges": [{"tank_number": n, "percentage": "50"} for n in range(1, 4)],
            },
            headers=auth(staff_token),
        )
        resp = client.get(
            "/api/v1/reports/shifts",
            params={
                "station_id": str(station.id),
                "from_date": TEST_DATE.isoformat(),
                "to_date": TEST_DATE.isoformat(),
            },
            headers=auth(admin_token),
        )
        assert [r["shift_number"] for r in resp.json()["rows"]] == [1]

    def test_inverted_range_rejected(
        self, client: TestClient, admin_token: str, station: Station
    ) -> None:
        resp = client.get(
            "/api/v1/reports/shifts",
            params={
                "station_id": str(station.id),
                "from_date": "2026-03-15",
                "to_date": "2026-03-14",
            },
            headers=auth(admin_token),
        )
        assert resp.status_code == 400


class TestAlerts:
    def test_variance_alerts_by_severity(
        self, client: TestClient, staff_token: str, admin_token: str, station: Station
    ) -> None:
        run_shift(
            client,
            station,
            staff_token,
            received={"cash": "1574.40"},
            variance_note="ลูกค้าค้างจ่าย",
        )
        run_shift(
            client,
            station,
            staff_token,
            shift_number=2,
            received={"cash": "2274.40"},
            variance_note="เงินทอนผิด",
        )
        resp = client.get("/api/v1/alerts", headers=auth(admin_token))
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["summary"]["red"] == 1
        assert data["summary"]["yellow"] == 1
        red = next(v for v in data["variances"] if v["severity"] == "RED")
        assert Decimal(red["variance"]) == Decimal("-1000")
        assert red["variance_note"] == "ลูกค้าค้างจ่าย"

    def test_balanced_shift_raises_no_alert(
        self, client: TestClient, staff_token: str, admin_token: str, station: Station
    ) -> None:
        run_shift(client, station, staff_token)
        data = client.get("/api/v1/alerts", headers=auth(admin_token)).json()
        assert data["variances"] == []
        assert data["unlocked_shifts"] == []

    def test_shift_left_unlocked(
        self,
        client: TestClient,
        staff_token: str,
        admin_token: str,
        station: Station,
        db: Session,
    ) -> None:
        shift = run_shift(client, station, staff_token)
        db.execute(
            update(Shift)
            .where(Shift.id == UUID(shift["id"]))
            .values(closed_at=utc_now() - timedelta(hours=30))
        )
        db.commit()

        data = client.get("/api/v1/alerts", headers=auth(admin_token)).json()
        [alert] = data["unlocked_shifts"]
        assert alert["shift_id"] == shift["id"]
        assert alert["hours_since_close"] >= 30

        resp = client.post(f"/api/v1/shifts/{shift['id']}/lock", headers=auth(admin_token))
        assert resp.status_code == 200
        data = client.get("/api/v1/alerts", headers=auth(admin_token)).json()
        assert data["unlocked_shifts"] == []

    def test_recent_edits_listed(
        self, client: TestClient, staff_token: str, admin_token: str, station: Station
    ) -> None:
        sale = _sale(client, station, staff_token, "CASH", "120.00")
        client.post(
            f"/api/v1/transactions/{sale['id']}/void",
            json={"reason": "บันทึกซ้ำ"},
            headers=auth(admin_token),
        )
        data = client.get("/api/v1/alerts", headers=auth(admin_token)).json()
        assert [e["action"] for e in data["recent_edits"]] == ["VOID"]
        assert data["recent_edits"][0]["resource_id"] == sale["id"]

    def test_staff_cannot_read_alerts(self, client: TestClient, staff_token: str) -> None:
        assert client.get("/api/v1/alerts", headers=auth(staff_token)).status_code == 403
