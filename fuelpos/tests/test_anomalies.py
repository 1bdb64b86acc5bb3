"""Tests for meter carry-forward, continuity gaps and sales deviation flags."""

from __future__ import annotations

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from fuelpos.app.models.audit import AuditLog
from fuelpos.app.models.shift import AnomalyKind, AnomalySeverity, MeterAnomaly
from fuelpos.app.models.station import Station
from fuelpos.app.services.anomalies import classify_deviation, find_continuity_gaps
from fuelpos.tests.conftest import (
    SHIFT_ENDS,
    TEST_DATE,
    auth,
    end_gauges_payload,
    end_meters_payload,
    open_payload,
    run_shift,
)


def _open(client: TestClient, station: Station, token: str, payload: dict):
    return client.post(
        f"/api/v1/stations/{station.id}/shifts", json=payload, headers=auth(token)
    )


def _finish(
    client: TestClient, token: str, shift_id: str, ends: tuple[str, ...], cash: str
) -> dict:
    for path, body in (
        ("end-meters", end_meters_payload(ends)),
        ("gauges", end_gauges_payload()),
    ):
        resp = client.put(f"/api/v1/shifts/{shift_id}/{path}", json=body, headers=auth(token))
        assert resp.status_code == 200, resp.text
    resp = client.post(
        f"/api/v1/shifts/{shift_id}/close",
        json={"received": {"cash": cash}},
        headers=auth(token),
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def _meters(shift: dict) -> dict[int, Decimal]:
    return {m["nozzle_number"]: Decimal(m["start_reading"]) for m in shift["meters"]}


class TestCarryForward:
    def test_omitted_meters_continue_from_previous_shift(
        self, client: TestClient, staff_token: str, station: Station, db: Session
    ) -> None:
        run_shift(client, station, staff_token)
        payload = open_payload(shift_number=2)
        payload["meters"] = []

        resp = _open(client, station, staff_token, payload)
        assert resp.status_code == 201, resp.text
        assert _meters(resp.json()) == {
            i: Decimal(v) for i, v in enumerate(SHIFT_ENDS, 1)
        }

        opened = (
            db.query(AuditLog)
            .filter(AuditLog.action == "SHIFT_OPENED", AuditLog.record_id == resp.json()["id"])
            .one()
        )
        assert opened.new_values["carried_forward"] == [1, 2, 3, 4]
        assert db.query(MeterAnomaly).count() == 0

    def test_given_reading_kept_and_rest_carried(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        run_shift(client, station, staff_token)
        payload = open_payload(shift_number=2)
        payload["meters"] = [{"nozzle_number": 1, "start_reading": "1100.00"}]

        resp = _open(client, station, staff_token, payload)
        assert resp.status_code == 201, resp.text
        meters = _meters(resp.json())
        assert meters[1] == Decimal("1100.00")
        assert meters[4] == Decimal("4010.00")

    def test_first_shift_still_needs_every_reading(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        payload = open_payload()
        payload["meters"] = []
        resp = _open(client, station, staff_token, payload)
        assert resp.status_code == 400
        assert resp.json()["detail"]["missing_nozzles"] == [1, 2, 3, 4]

    def test_next_day_continues_from_last_shift(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        run_shift(client, station, staff_token)
        payload = open_payload(record_date=TEST_DATE.replace(day=15))
        payload["meters"] = []
        resp = _open(client, station, staff_token, payload)
        assert resp.status_code == 201, resp.text
        assert _meters(resp.json())[2] == Decimal("2050.00")


class TestContinuityGaps:
    def test_mismatched_start_recorded_not_blocked(
        self, client: TestClient, staff_token: str, station: Station, db: Session
    ) -> None:
        run_shift(client, station, staff_token)
        # Starts back at the shift 1 opening readings
        resp = _open(client, station, staff_token, open_payload(shift_number=2))
        assert resp.status_code == 201, resp.text

        gaps = (
            db.query(MeterAnomaly)
            .filter(MeterAnomaly.kind == AnomalyKind.CONTINUITY_GAP)
            .order_by(MeterAnomaly.nozzle_number)
            .all()
        )
        assert [g.nozzle_number for g in gaps] == [1, 2, 4]
        assert gaps[0].expected_value == Decimal("1100.00")
        assert gaps[0].actual_value == Decimal("1000.00")
        assert all(g.severity == AnomalySeverity.WARNING for g in gaps)

        audit = db.query(AuditLog).filter(AuditLog.action == "METER_GAP").one()
        assert audit.record_id == resp.json()["id"]
        assert audit.new_values["gaps"]["1"]["gap"] == "-100.00"

    def test_matching_start_raises_nothing(
        self, client: TestClient, staff_token: str, station: Station, db: Session
    ) -> None:
        run_shift(client, station, staff_token)
        resp = _open(
            client, station, staff_token, open_payload(shift_number=2, starts=SHIFT_ENDS)
        )
        assert resp.status_code == 201
        assert db.query(MeterAnomaly).count() == 0
        assert db.query(AuditLog).filter(AuditLog.action == "METER_GAP").count() == 0

    def test_gap_within_tolerance_ignored(self) -> None:
        gaps = find_continuity_gaps(
            {1: Decimal("1100.00"), 2: Decimal("2050.00")},
            {1: Decimal("1100.01"), 2: Decimal("2050.50"), 3: Decimal("10")},
        )
        assert [g.nozzle_number for g in gaps] == [2]
        assert gaps[0].gap == Decimal("0.50")


class TestSalesDeviation:
    @pytest.mark.parametrize(
        "sold, average, expected",
        [
            ("100", "100", None),
            ("150", "100", None),
            ("160", "100", ("60.00", AnomalySeverity.WARNING)),
            ("40", "100", ("-60.00", AnomalySeverity.WARNING)),
            ("200", "100", ("100.00", AnomalySeverity.CRITICAL)),
            ("0", "100", ("-100.00", AnomalySeverity.CRITICAL)),
            ("500", "0", None),
        ],
    )
    def test_classify(self, sold: str, average: str, expected) -> None:
        result = classify_deviation(Decimal(sold), Decimal(average))
        if expected is None:
            assert result is None
        else:
            assert result == (Decimal(expected[0]), expected[1])

    def test_double_sales_flagged_on_close(
        self, client: TestClient, staff_token: str, station: Station, db: Session
    ) -> None:
        run_shift(client, station, staff_token)
        resp = _open(
            client, station, staff_token, open_payload(shift_number=2, starts=SHIFT_ENDS)
        )
        # 200 + 50 + 0 + 6 liters at 16.09
        _finish(
            client,
            staff_token,
            resp.json()["id"],
            ("1300.00", "2100.00", "3000.00", "4016.00"),
            cash="4119.04",
        )

        [flag] = db.query(MeterAnomaly).filter(
            MeterAnomaly.kind == AnomalyKind.SALES_DEVIATION
        ).all()
        assert flag.nozzle_number == 1
        assert flag.severity == AnomalySeverity.CRITICAL
        assert flag.expected_value == Decimal("100.00")
        assert flag.actual_value == Decimal("200.00")
        assert flag.deviation_percent == Decimal("100.00")

        closed = (
            db.query(AuditLog)
            .filter(AuditLog.action == "SHIFT_CLOSED", AuditLog.record_id == resp.json()["id"])
            .one()
        )
        assert closed.new_values["anomalies"] == 1

    def test_first_shift_has_no_baseline(
        self, client: TestClient, staff_token: str, station: Station, db: Session
    ) -> None:
        run_shift(client, station, staff_token)
        assert db.query(MeterAnomaly).count() == 0


class TestAnomalyAlerts:
    def _gap_shift(self, client: TestClient, token: str, station: Station) -> None:
        run_shift(client, station, token)
        resp = _open(client, station, token, open_payload(shift_number=2))
        assert resp.status_code == 201

    def test_alerts_list_unreviewed_anomalies(
        self, client: TestClient, staff_token: str, admin_token: str, station: Station
    ) -> None:
        self._gap_shift(client, staff_token, station)
        data = client.get("/api/v1/alerts", headers=auth(admin_token)).json()
        assert data["summary"]["anomalies"] == 3
        assert data["summary"]["critical_anomalies"] == 0
        first = data["anomalies"][0]
        assert first["kind"] == "CONTINUITY_GAP"
        assert first["station_name"] == station.name
        assert first["shift_number"] == 2

    def test_review_clears_the_alert(
        self,
        client: TestClient,
        staff_token: str,
        admin_token: str,
        station: Station,
        db: Session,
    ) -> None:
        self._gap_shift(client, staff_token, station)
        anomaly_id = client.get("/api/v1/alerts", headers=auth(admin_token)).json()[
            "anomalies"
        ][0]["id"]

        resp = client.post(
            f"/api/v1/alerts/anomalies/{anomaly_id}/review",
            json={"note": "มิเตอร์เปลี่ยนหัวจ่าย"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["is_reviewed"] is True

        again = client.post(
            f"/api/v1/alerts/anomalies/{anomaly_id}/review", headers=auth(admin_token)
        )
        assert again.status_code == 409

        data = client.get("/api/v1/alerts", headers=auth(admin_token)).json()
        assert data["summary"]["anomalies"] == 2
        assert anomaly_id not in {a["id"] for a in data["anomalies"]}
        assert db.query(AuditLog).filter(AuditLog.action == "ANOMALY_REVIEWED").count() == 1

    def test_staff_cannot_review(
        self, client: TestClient, staff_token: str, admin_token: str, station: Station
    ) -> None:
        self._gap_shift(client, staff_token, station)
        anomaly_id = client.get("/api/v1/alerts", headers=auth(admin_token)).json()[
            "anomalies"
        ][0]["id"]
        resp = client.post(
            f"/api/v1/alerts/anomalies/{anomaly_id}/review", headers=auth(staff_token)
        )
        assert resp.status_code == 403

    def test_unknown_anomaly_is_404(self, client: TestClient, admin_token: str) -> None:
        resp = client.post(
            "/api/v1/alerts/anomalies/00000000-0000-0000-0000-000000000000/review",
            headers=auth(admin_token),
        )
        assert resp.status_code == 404
