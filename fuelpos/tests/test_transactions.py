"""Tests for recording, listing and correcting sales."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from fuelpos.app.models.audit import AuditLog
from fuelpos.app.models.owner import Owner, Truck
from fuelpos.app.models.station import DailyRecord, Station
from fuelpos.app.models.transaction import Transaction
from fuelpos.tests.conftest import TEST_DATE, auth, open_payload

OWNER_NAME = "บริษัท ขนส่งสมชาย จำกัด"


def _post(client: TestClient, station: Station, token: str, **body: object):
    payload = {"txn_date": TEST_DATE.isoformat(), **body}
    return client.post(
        f"/api/v1/stations/{station.id}/transactions", json=payload, headers=auth(token)
    )


class TestRecordSale:
    def test_amount_derived_from_liters_and_day_price(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        resp = _post(client, station, staff_token, payment_type="CASH", liters="10")
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert Decimal(data["amount"]) == Decimal("160.90")
        assert Decimal(data["price_per_liter"]) == Decimal("16.09")

    def test_sale_creates_daily_record_with_station_price(
        self, client: TestClient, staff_token: str, station: Station, db: Session
    ) -> None:
        resp = _post(client, station, staff_token, payment_type="CASH", amount="100")
        record = db.query(DailyRecord).one()
        assert resp.json()["daily_record_id"] == str(record.id)
        assert record.record_date == TEST_DATE
        assert record.fuel_price == Decimal("16.09")

    def test_amount_or_liters_required(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        resp = _post(client, station, staff_token, payment_type="CASH")
        assert resp.status_code == 422

    def test_amount_over_limit_rejected(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        resp = _post(client, station, staff_token, payment_type="CASH", amount="100000.01")
        assert resp.status_code == 400

    def test_credit_sale_needs_owner(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        resp = _post(client, station, staff_token, payment_type="CREDIT", amount="100")
        assert resp.status_code == 400
        assert resp.json()["detail"]["field"] == "owner_name"

    def test_credit_sale_resolves_owner_and_registers_truck(
        self,
        client: TestClient,
        staff_token: str,
        station: Station,
        owner: Owner,
        db: Session,
    ) -> None:
        resp = _post(
            client,
            station,
            staff_token,
            payment_type="BOX_TRUCK",
            amount="1200",
            license_plate="80-5555",
            owner_name=OWNER_NAME,
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["owner_id"] == str(owner.id)
        truck = db.query(Truck).filter(Truck.license_plate == "805555").one()
        assert truck.owner_id == owner.id
        assert data["truck_id"] == str(truck.id)

    def test_unknown_owner_name_kept_as_written(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        resp = _post(
            client,
            station,
            staff_token,
            payment_type="CREDIT",
            amount="300",
            owner_name="  ร้านใหม่  ",
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["owner_id"] is None
        assert data["owner_name"] == "ร้านใหม่"

    def test_staff_cannot_sell_at_other_station(
        self, client: TestClient, staff_token: str, other_station: Station
    ) -> None:
        resp = _post(client, other_station, staff_token, payment_type="CASH", amount="100")
        assert resp.status_code == 403

    def test_sale_linked_to_open_shift(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        shift = client.post(
            f"/api/v1/stations/{station.id}/shifts",
            json=open_payload(),
            headers=auth(staff_token),
        ).json()
        resp = _post(client, station, staff_token, payment_type="CASH", amount="100")
        txn_id = resp.json()["id"]
        summary = client.get(
            f"/api/v1/shifts/{shift['id']}/summary", headers=auth(staff_token)
        ).json()
        assert summary["transaction_count"] == 1
        assert txn_id

    def test_sale_is_audited(
        self, client: TestClient, staff_token: str, station: Station, db: Session
    ) -> None:
        resp = _post(client, station, staff_token, payment_type="CARD", amount="250")
        log = db.query(AuditLog).filter(AuditLog.action == "TRANSACTION_CREATED").one()
        assert log.record_id == resp.json()["id"]
        assert log.new_values["payment_type"] == "CARD"


class TestBulkSale:
    def test_lines_saved_together(
        self, client: TestClient, staff_token: str, station: Station, db: Session
    ) -> None:
        resp = client.post(
            f"/api/v1/stations/{station.id}/transactions/bulk",
            json={
                "payment_type": "CASH",
                "txn_date": TEST_DATE.isoformat(),
                "license_plate": "1กก1234",
                "lines": [
                    {"liters": "20", "product_type": "LPG"},
                    {"amount": "80.00", "product_type": "OIL"},
                ],
            },
            headers=auth(staff_token),
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert len(data) == 2
        assert Decimal(data[0]["amount"]) == Decimal("321.80")
        assert db.query(Transaction).count() == 2

    def test_one_bad_line_saves_nothing(
        self, client: TestClient, staff_token: str, station: Station, db: Session
    ) -> None:
        resp = client.post(
            f"/api/v1/stations/{station.id}/transactions/bulk",
            json={
                "payment_type": "CASH",
                "txn_date": TEST_DATE.isoformat(),
                "lines": [{"amount": "100"}, {"amount": "200000"}],
            },
            headers=auth(staff_token),
        )
        assert resp.status_code == 400
        assert db.query(Transaction).count() == 0

    def test_bulk_total_is_duplicate_checked(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        assert (
            _post(
                client, station, staff_token, payment_type="CASH", amount="300", license_plate="1กก1234"
            ).status_code
            == 201
        )
        resp = client.post(
            f"/api/v1/stations/{station.id}/transactions/bulk",
            json={
                "payment_type": "CASH",
                "txn_date": TEST_DATE.isoformat(),
                "license_plate": "1กก1234",
                "lines": [{"amount": "100"}, {"amount": "200"}],
            },
            headers=auth(staff_token),
        )
        assert resp.status_code == 409


class TestListAndRead:
    def test_list_hides_voided_and_deleted(
        self, client: TestClient, staff_token: str, admin_token: str, station: Station
    ) -> None:
        ids = [
            _post(client, station, staff_token, payment_type="CASH", amount=a).json()["id"]
            for a in ("100", "200", "300")
        ]
        client.post(
            f"/api/v1/transactions/{ids[0]}/void",
            json={"reason": "ลูกค้ายกเลิก"},
            headers=auth(admin_token),
        )
        client.delete(f"/api/v1/transactions/{ids[1]}", headers=auth(admin_token))

        resp = client.get(
            f"/api/v1/stations/{station.id}/transactions", headers=auth(staff_token)
        )
        assert [t["id"] for t in resp.json()] == [ids[2]]

        resp = client.get(
            f"/api/v1/stations/{station.id}/transactions",
            params={"include_voided": True},
            headers=auth(staff_token),
        )
        assert {t["id"] for t in resp.json()} == {ids[0], ids[2]}

        resp = client.get(f"/api/v1/transactions/{ids[1]}", headers=auth(staff_token))
        assert resp.status_code == 200
        assert resp.json()["deleted"] is True

    def test_list_filters_by_payment_type_and_plate(
        self, client: TestClient, staff_token: str, station: Station, owner: Owner
    ) -> None:
        _post(client, station, staff_token, payment_type="CASH", amount="100", license_plate="1กก1234")
        _post(
            client,
            station,
            staff_token,
            payment_type="CREDIT",
            amount="100",
            license_plate="2ขข5678",
            owner_name=OWNER_NAME,
        )
        resp = client.get(
            f"/api/v1/stations/{station.id}/transactions",
            params={"payment_type": "CREDIT"},
            headers=auth(staff_token),
        )
        assert [t["license_plate"] for t in resp.json()] == ["2ขข5678"]

        resp = client.get(
            f"/api/v1/stations/{station.id}/transactions",
            params={"license_plate": "1กก-1234"},
            headers=auth(staff_token),
        )
        assert [t["payment_type"] for t in resp.json()] == ["CASH"]

    def test_staff_cannot_read_other_station_sale(
        self,
        client: TestClient,
        staff_token: str,
        admin_token: str,
        other_station: Station,
    ) -> None:
        txn = _post(client, other_station, admin_token, payment_type="CASH", amount="50").json()
        resp = client.get(f"/api/v1/transactions/{txn['id']}", headers=auth(staff_token))
        assert resp.status_code == 403


class TestAdminCorrections:
    def test_staff_cannot_void(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        txn = _post(client, station, staff_token, payment_type="CASH", amount="100").json()
        resp = client.post(
            f"/api/v1/transactions/{txn['id']}/void",
            json={"reason": "ขอยกเลิก"},
            headers=auth(staff_token),
        )
        assert resp.status_code == 403

    def test_void_twice_conflicts(
        self, client: TestClient, staff_token: str, admin_token: str, station: Station, db: Session
    ) -> None:
        txn = _post(client, station, staff_token, payment_type="CASH", amount="100").json()
        first = client.post(
            f"/api/v1/transactions/{txn['id']}/void",
            json={"reason": "duplicate"},
            headers=auth(admin_token),
        )
        assert first.status_code == 200
        assert first.json()["is_voided"] is True
        assert first.json()["void_reason"] == "duplicate"

        second = client.post(
            f"/api/v1/transactions/{txn['id']}/void",
            json={"reason": "duplicate"},
            headers=auth(admin_token),
        )
        assert second.status_code == 409

        log = db.query(AuditLog).filter(AuditLog.action == "VOID").one()
        assert log.old_values["is_voided"] is False
        assert log.new_values["void_reason"] == "duplicate"

    def test_edit_recomputes_amount_and_audits(
        self, client: TestClient, staff_token: str, admin_token: str, station: Station, db: Session
    ) -> None:
        txn = _post(client, station, staff_token, payment_type="CASH", liters="10").json()
        resp = client.patch(
            f"/api/v1/transactions/{txn['id']}",
            json={"liters": "12", "reason": "แก้ลิตร"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 200, resp.text
        assert Decimal(resp.json()["amount"]) == Decimal("193.08")

        log = db.query(AuditLog).filter(AuditLog.action == "TRANSACTION_UPDATED").one()
        assert Decimal(log.old_values["amount"]) == Decimal("160.90")
        assert Decimal(log.new_values["amount"]) == Decimal("193.08")
        assert log.new_values["reason"] == "แก้ลิตร"

    def test_edit_into_duplicate_rejected(
        self, client: TestClient, staff_token: str, admin_token: str, station: Station
    ) -> None:
        _post(client, station, staff_token, payment_type="CASH", amount="500", license_plate="1กก1234")
        other = _post(
            client, station, staff_token, payment_type="CASH", amount="400", license_plate="1กก1234"
        ).json()
        resp = client.patch(
            f"/api/v1/transactions/{other['id']}",
            json={"amount": "500"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 409

    def test_delete_is_soft(
        self, client: TestClient, staff_token: str, admin_token: str, station: Station, db: Session
    ) -> None:
        txn = _post(client, station, staff_token, payment_type="CASH", amount="100").json()
        resp = client.delete(f"/api/v1/transactions/{txn['id']}", headers=auth(admin_token))
        assert resp.status_code == 200
        row = db.query(Transaction).filter(Transaction.id == UUID(txn["id"])).one()
        assert row.deleted_at is not None

        again = client.delete(f"/api/v1/transactions/{txn['id']}", headers=auth(admin_token))
        assert again.status_code == 409

    def test_edit_cannot_change_sale_date(
        self, client: TestClient, staff_token: str, admin_token: str, station: Station
    ) -> None:
        txn = _post(client, station, staff_token, payment_type="CASH", amount="100").json()
        resp = client.patch(
            f"/api/v1/transactions/{txn['id']}",
            json={"txn_date": "2026-03-01", "reason": "ย้ายวัน"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 422
        row = client.get(f"/api/v1/transactions/{txn['id']}", headers=auth(admin_token)).json()
        assert row["txn_date"] == TEST_DATE.isoformat()


class TestShiftLinkage:
    def test_back_dated_sale_stays_out_of_open_shift(
        self, client: TestClient, staff_token: str, station: Station, db: Session
    ) -> None:
        shift = client.post(
            f"/api/v1/stations/{station.id}/shifts",
            json=open_payload(),
            headers=auth(staff_token),
        ).json()
        late = _post(
            client, station, staff_token, payment_type="CASH", amount="999", txn_date="2026-03-13"
        )
        assert late.status_code == 201, late.text
        _post(client, station, staff_token, payment_type="CASH", amount="100")

        row = db.query(Transaction).filter(Transaction.id == UUID(late.json()["id"])).one()
        assert row.shift_id is None
        summary = client.get(
            f"/api/v1/shifts/{shift['id']}/summary", headers=auth(staff_token)
        ).json()
        assert summary["transaction_count"] == 1
        assert Decimal(summary["received_prefill"]["cash"]) == Decimal("100")


class TestCreditLimit:
    def test_sale_within_limit_allowed(
        self, client: TestClient, staff_token: str, station: Station, owner: Owner
    ) -> None:
        first = _post(
            client, station, staff_token, payment_type="CREDIT", amount="4000", owner_id=str(owner.id)
        )
        assert first.status_code == 201, first.text
        rest = _post(
            client, station, staff_token, payment_type="BOX_TRUCK", amount="1000", owner_id=str(owner.id)
        )
        assert rest.status_code == 201, rest.text

    def test_sale_over_limit_blocked_with_remaining_credit(
        self, client: TestClient, staff_token: str, station: Station, owner: Owner, db: Session
    ) -> None:
        _post(client, station, staff_token, payment_type="CREDIT", amount="4000", owner_id=str(owner.id))
        resp = _post(
            client, station, staff_token, payment_type="CREDIT", amount="1500", owner_id=str(owner.id)
        )
        assert resp.status_code == 409
        detail = resp.json()["detail"]
        assert Decimal(detail["credit_limit"]) == Decimal("5000")
        assert Decimal(detail["current_credit"]) == Decimal("4000")
        assert Decimal(detail["remaining_credit"]) == Decimal("1000")
        assert Decimal(detail["requested_amount"]) == Decimal("1500")
        assert db.query(Transaction).count() == 1

    def test_small_limit_blocks_large_sale(
        self, client: TestClient, staff_token: str, station: Station, owner: Owner, db: Session
    ) -> None:
        owner.credit_limit = Decimal("100")
        db.commit()
        resp = _post(
            client, station, staff_token, payment_type="CREDIT", amount="5000", owner_name=OWNER_NAME
        )
        assert resp.status_code == 409
        assert Decimal(resp.json()["detail"]["remaining_credit"]) == Decimal("100")

    def test_cash_sale_ignores_limit(
        self, client: TestClient, staff_token: str, station: Station, owner: Owner, db: Session
    ) -> None:
        owner.credit_limit = Decimal("100")
        db.commit()
        resp = _post(
            client, station, staff_token, payment_type="CASH", amount="5000", owner_id=str(owner.id)
        )
        assert resp.status_code == 201

    def test_owner_without_limit_never_blocked(
        self, client: TestClient, staff_token: str, station: Station, owner: Owner, db: Session
    ) -> None:
        owner.credit_limit = None
        db.commit()
        resp = _post(
            client, station, staff_token, payment_type="CREDIT", amount="90000", owner_id=str(owner.id)
        )
        assert resp.status_code == 201

    def test_bulk_total_counts_against_limit(
        self, client: TestClient, staff_token: str, station: Station, owner: Owner, db: Session
    ) -> None:
        resp = client.post(
            f"/api/v1/stations/{station.id}/transactions/bulk",
            json={
                "payment_type": "CREDIT",
                "txn_date": TEST_DATE.isoformat(),
                "owner_id": str(owner.id),
                "lines": [{"amount": "3000"}, {"amount": "2500"}],
            },
            headers=auth(staff_token),
        )
        assert resp.status_code == 409
        assert db.query(Transaction).count() == 0

    def test_edit_over_limit_blocked(
        self, client: TestClient, staff_token: str, admin_token: str, station: Station, owner: Owner
    ) -> None:
        txn = _post(
            client, station, staff_token, payment_type="CREDIT", amount="4000", owner_id=str(owner.id)
        ).json()
        ok = client.patch(
            f"/api/v1/transactions/{txn['id']}",
            json={"amount": "5000", "reason": "แก้ยอด"},
            headers=auth(admin_token),
        )
        assert ok.status_code == 200, ok.text
        over = client.patch(
            f"/api/v1/transactions/{txn['id']}",
            json={"amount": "5000.01", "reason": "แก้ยอด"},
            headers=auth(admin_token),
        )
        assert over.status_code == 409


class TestBulkResubmission:
    BODY = {
        "payment_type": "CASH",
        "txn_date": TEST_DATE.isoformat(),
        "license_plate": "1กก1234",
        "lines": [{"amount": "100"}, {"amount": "200"}],
    }

    def test_same_bulk_posted_twice_is_duplicate(
        self, client: TestClient, staff_token: str, station: Station, db: Session
    ) -> None:
        url = f"/api/v1/stations/{station.id}/transactions/bulk"
        first = client.post(url, json=self.BODY, headers=auth(staff_token))
        assert first.status_code == 201, first.text

        again = client.post(url, json=self.BODY, headers=auth(staff_token))
        assert again.status_code == 409
        detail = again.json()["detail"]
        assert Decimal(detail["amount"]) == Decimal("300")
        assert sorted(detail["transaction_ids"]) == sorted(t["id"] for t in first.json())
        assert db.query(Transaction).count() == 2

    def test_different_total_is_not_duplicate(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        url = f"/api/v1/stations/{station.id}/transactions/bulk"
        assert client.post(url, json=self.BODY, headers=auth(staff_token)).status_code == 201
        other = {**self.BODY, "lines": [{"amount": "100"}, {"amount": "250"}]}
        assert client.post(url, json=other, headers=auth(staff_token)).status_code == 201

    def test_other_bill_is_not_duplicate(
        self, client: TestClient, staff_token: str, station: Station
    ) -> None:
        url = f"/api/v1/stations/{station.id}/transactions/bulk"
        first = {**self.BODY, "bill_book_no": "7", "bill_no": "001"}
        second = {**self.BODY, "bill_book_no": "7", "bill_no": "002"}
        assert client.post(url, json=first, headers=auth(staff_token)).status_code == 201
        assert client.post(url, json=second, headers=auth(staff_token)).status_code == 201
