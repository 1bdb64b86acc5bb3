"""Tests for the audit-log listing."""

from __future__ import annotations

from fastapi.testclient import TestClient

from fuelpos.app.models.station import Station
from fuelpos.tests.conftest import TEST_DATE, auth


def _sale_and_void(client: TestClient, station: Station, staff_token: str, admin_token: str) -> str:
    sale = client.post(
        f"/api/v1/stations/{station.id}/transactions",
        json={"payment_type": "CASH", "amount": "250.00", "txn_date": TEST_DATE.isoformat()},
        headers=auth(staff_token),
    ).json()
    client.post(
        f"/api/v1/transactions/{sale['id']}/void",
        json={"reason": "พิมพ์ยอดผิด"},
        headers=auth(admin_token),
    )
    return sale["id"]


def test_filter_by_resource(
    client: TestClient, staff_token: str, admin_token: str, station: Station
) -> None:
    txn_id = _sale_and_void(client, station, staff_token, admin_token)
    resp = client.get(
        "/api/v1/audit-logs/",
        params={"resource_type": "transactions", "resource_id": txn_id},
        headers=auth(admin_token),
    )
    assert resp.status_code == 200
    actions = [r["action"] for r in resp.json()]
    assert sorted(actions) == ["TRANSACTION_CREATED", "VOID"]


def test_void_entry_keeps_old_and_new_values(
    client: TestClient, staff_token: str, admin_token: str, station: Station
) -> None:
    _sale_and_void(client, station, staff_token, admin_token)
    [entry] = client.get(
        "/api/v1/audit-logs/", params={"action": "VOID"}, headers=auth(admin_token)
    ).json()
    assert entry["old_values"]["is_voided"] is False
    assert entry["changes"]["void_reason"] == "พิมพ์ยอดผิด"
    assert entry["ip_address"] == "testclient"


def test_staff_cannot_read_audit_log(client: TestClient, staff_token: str) -> None:
    resp = client.get("/api/v1/audit-logs/", headers=auth(staff_token))
    assert resp.status_code == 403
