"""initial fuel station schema

Revision ID: a1f0c2d3e4b5
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from typing import Sequence, Union
import uuid

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from fuelpos.app.models.permission import ALL_PERMISSION_CODES, ROLE_PERMISSIONS


# revision identifiers, used by Alembic.
revision: str = "a1f0c2d3e4b5"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(precision: int = 14) -> sa.Numeric:
    return sa.Numeric(precision=precision, scale=2)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def upgrade() -> None:
    # 1. Permissions and roles
    op.create_table(
        "permissions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("code", sa.String(100), unique=True, nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), unique=True, nullable=False),
        sa.Column("description", sa.String(255), nullable=False, server_default=""),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Uuid(), sa.ForeignKey("roles.id"), primary_key=True),
        sa.Column("permission_id", sa.Uuid(), sa.ForeignKey("permissions.id"), primary_key=True),
    )

    # 2. Stations and users
    op.create_table(
        "stations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("code", sa.String(50), unique=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "station_type",
            sa.Enum("FULL", "SIMPLE", "GAS", name="stationtype"),
            nullable=False,
        ),
        sa.Column("nozzle_count", sa.Integer(), nullable=False),
        sa.Column("tank_count", sa.Integer(), nullable=False),
        sa.Column("fuel_price", _money(10), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("username", sa.String(150), unique=True, nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("role", sa.Enum("ADMIN", "STAFF", name="roleenum"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.Column("station_id", sa.Uuid(), sa.ForeignKey("stations.id"), nullable=True),
        sa.Column("failed_login_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("role_id", sa.Uuid(), sa.ForeignKey("roles.id"), nullable=True),
    )

    # 3. Daily records
    op.create_table(
        "daily_records",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("station_id", sa.Uuid(), sa.ForeignKey("stations.id"), nullable=False),
        sa.Column("record_date", sa.Date(), nullable=False),
        sa.Column("fuel_price", _money(10), nullable=False),
        sa.Column(
            "status",
            sa.Enum("OPEN", "CLOSED", name="dailyrecordstatus"),
            nullable=False,
        ),
        _created_at(),
        sa.UniqueConstraint("station_id", "record_date", name="uq_daily_record_station_date"),
    )
    op.create_index("ix_daily_records_date", "daily_records", ["record_date"])

    # 4. Owners and trucks
    op.create_table(
        "owners",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(50), unique=True, nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("group_name", sa.String(100), nullable=True),
        sa.Column("credit_limit", _money(), nullable=True),
        _created_at(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_owners_name", "owners", ["name"])
    op.create_table(
        "trucks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("license_plate", sa.String(50), unique=True, nullable=False),
        sa.Column("code", sa.String(50), nullable=True),
        sa.Column("owner_id", sa.Uuid(), sa.ForeignKey("owners.id"), nullable=True),
        _created_at(),
    )
    op.create_index("ix_trucks_owner", "trucks", ["owner_id"])

    # 5. Shifts, readings and reconciliations
    op.create_table(
        "shifts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("station_id", sa.Uuid(), sa.ForeignKey("stations.id"), nullable=False),
        sa.Column("daily_record_id", sa.Uuid(), sa.ForeignKey("daily_records.id"), nullable=False),
        sa.Column("shift_number", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("OPEN", "CLOSED", "LOCKED", name="shiftstatus"),
            nullable=False,
        ),
        sa.Column("staff_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("variance_note", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("shift_number IN (1, 2)", name="ck_shift_number"),
        sa.UniqueConstraint("daily_record_id", "shift_number", name="uq_shift_day_number"),
    )
    op.create_index(
        "uq_shifts_station_open",
        "shifts",
        ["station_id"],
        unique=True,
        postgresql_where=sa.text("status = 'OPEN'"),
        sqlite_where=sa.text("status = 'OPEN'"),
    )
    op.create_index("ix_shifts_station", "shifts", ["station_id"])
    op.create_index("ix_shifts_status", "shifts", ["status"])
    op.create_index("ix_shifts_opened_at", "shifts", ["opened_at"])

    op.create_table(
        "meter_readings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("shift_id", sa.Uuid(), sa.ForeignKey("shifts.id"), nullable=False),
        sa.Column("nozzle_number", sa.Integer(), nullable=False),
        sa.Column("start_reading", _money(), nullable=False),
        sa.Column("end_reading", _money(), nullable=True),
        sa.UniqueConstraint("shift_id", "nozzle_number", name="uq_meter_shift_nozzle"),
        sa.CheckConstraint("start_reading >= 0", name="ck_meter_start_non_negative"),
        sa.CheckConstraint(
            "end_reading IS NULL OR end_reading >= start_reading",
            name="ck_meter_end_not_below_start",
        ),
    )
    op.create_table(
        "gauge_readings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("shift_id", sa.Uuid(), sa.ForeignKey("shifts.id"), nullable=False),
        sa.Column("tank_number", sa.Integer(), nullable=False),
        sa.Column("phase", sa.Enum("START", "END", name="gaugephase"), nullable=False),
        sa.Column("percentage", sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("shift_id", "tank_number", "phase", name="uq_gauge_shift_tank_phase"),
        sa.CheckConstraint(
            "percentage >= 0 AND percentage <= 100", name="ck_gauge_percentage_range"
        ),
    )
    op.create_table(
        "shift_reconciliations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("shift_id", sa.Uuid(), sa.ForeignKey("shifts.id"), nullable=False, unique=True),
        sa.Column("total_liters", _money(), nullable=False),
        sa.Column("price_per_liter", _money(10), nullable=False),
        sa.Column("expected_fuel_amount", _money(), nullable=False),
        sa.Column("expected_other_amount", _money(), nullable=False, server_default="0"),
        sa.Column("total_expected", _money(), nullable=False),
        sa.Column("cash_received", _money(), nullable=False),
        sa.Column("credit_received", _money(), nullable=False),
        sa.Column("card_received", _money(), nullable=False),
        sa.Column("transfer_received", _money(), nullable=False),
        sa.Column("total_received", _money(), nullable=False),
        sa.Column("variance", _money(), nullable=False),
        sa.Column(
            "variance_status",
            sa.Enum("OVER", "SHORT", "BALANCED", name="variancestatus"),
            nullable=False,
        ),
        sa.Column(
            "severity",
            sa.Enum("GREEN", "YELLOW", "RED", name="varianceseverity"),
            nullable=False,
        ),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        _created_at(),
    )
    op.create_index("ix_reconciliations_severity", "shift_reconciliations", ["severity"])
    op.create_index("ix_reconciliations_created_at", "shift_reconciliations", ["created_at"])

    # 6. Sales
    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("station_id", sa.Uuid(), sa.ForeignKey("stations.id"), nullable=False),
        sa.Column("daily_record_id", sa.Uuid(), sa.ForeignKey("daily_records.id"), nullable=True),
        sa.Column("shift_id", sa.Uuid(), sa.ForeignKey("shifts.id"), nullable=True),
        sa.Column("txn_date", sa.Date(), nullable=False),
        _created_at(),
        sa.Column(
            "payment_type",
            sa.Enum(
                "CASH", "CREDIT", "TRANSFER", "CARD", "BOX_TRUCK", "OIL_TRUCK_SUPACHAI",
                name="paymenttype",
            ),
            nullable=False,
        ),
        sa.Column("liters", _money(), nullable=False, server_default="0"),
        sa.Column("price_per_liter", _money(10), nullable=False, server_default="0"),
        sa.Column("amount", _money(), nullable=False),
        sa.Column("license_plate", sa.String(50), nullable=True),
        sa.Column("owner_name", sa.String(255), nullable=True),
        sa.Column("owner_id", sa.Uuid(), sa.ForeignKey("owners.id"), nullable=True),
        sa.Column("truck_id", sa.Uuid(), sa.ForeignKey("trucks.id"), nullable=True),
        sa.Column("bill_book_no", sa.String(50), nullable=True),
        sa.Column("bill_no", sa.String(50), nullable=True),
        sa.Column("product_type", sa.String(50), nullable=True),
        sa.Column("nozzle_number", sa.Integer(), nullable=True),
        sa.Column("recorded_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_voided", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
        sa.CheckConstraint("liters >= 0", name="ck_transaction_liters_non_negative"),
    )
    op.create_index("ix_transactions_station_date", "transactions", ["station_id", "txn_date"])
    op.create_index("ix_transactions_owner", "transactions", ["owner_id"])
    op.create_index("ix_transactions_shift", "transactions", ["shift_id"])
    op.create_index("ix_transactions_plate", "transactions", ["license_plate"])
    op.create_index("ix_transactions_bill", "transactions", ["bill_book_no", "bill_no"])

    # 7. Audit trail
    json_type = sa.JSON().with_variant(JSONB(), "postgresql")
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("table_name", sa.String(100), nullable=False),
        sa.Column("record_id", sa.String(255), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("changed_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("old_values", json_type, nullable=True),
        sa.Column("new_values", json_type, nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        _created_at(),
    )
    op.create_index("ix_audit_table_record", "audit_logs", ["table_name", "record_id"])
    op.create_index("ix_audit_created_at", "audit_logs", ["created_at"])
    op.create_index("ix_audit_action", "audit_logs", ["action"])
    op.create_index("ix_audit_changed_by", "audit_logs", ["changed_by"])

    # 8. Seed permissions, roles and role-permission mappings
    permissions_table = sa.table(
        "permissions",
        sa.column("id", sa.Uuid()),
        sa.column("code", sa.String()),
        sa.column("description", sa.String()),
        sa.column("category", sa.String()),
    )
    roles_table = sa.table(
        "roles",
        sa.column("id", sa.Uuid()),
        sa.column("name", sa.String()),
        sa.column("description", sa.String()),
        sa.column("is_system", sa.Boolean()),
    )
    role_permissions_table = sa.table(
        "role_permissions",
        sa.column("role_id", sa.Uuid()),
        sa.column("permission_id", sa.Uuid()),
    )

    perm_ids = {code: uuid.uuid4() for code, _, _ in ALL_PERMISSION_CODES}
    op.bulk_insert(
        permissions_table,
        [
            {"id": perm_ids[code], "code": code, "description": desc, "category": cat}
            for code, desc, cat in ALL_PERMISSION_CODES
        ],
    )

    role_ids = {name: uuid.uuid4() for name in ROLE_PERMISSIONS}
    descriptions = {
        "ADMIN": "Owner/manager: every station and admin tools",
        "STAFF": "Station staff: shifts and sales at one station",
    }
    op.bulk_insert(
        roles_table,
        [
            {"id": rid, "name": name, "description": descriptions.get(name, ""), "is_system": True}
            for name, rid in role_ids.items()
        ],
    )
    op.bulk_insert(
        role_permissions_table,
        [
            {"role_id": role_ids[name], "permission_id": perm_ids[code]}
            for name, codes in ROLE_PERMISSIONS.items()
            for code in codes
        ],
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("transactions")
    op.drop_table("shift_reconciliations")
    op.drop_table("gauge_readings")
    op.drop_table("meter_readings")
    op.drop_index("uq_shifts_station_open", table_name="shifts")
    op.drop_table("shifts")
    op.drop_table("trucks")
    op.drop_table("owners")
    op.drop_table("daily_records")
    op.drop_table("users")
    op.drop_table("stations")
    op.drop_table("role_permissions")
    op.drop_table("roles")
    op.drop_table("permissions")
    for enum_name in (
        "paymenttype",
        "varianceseverity",
        "variancestatus",
        "gaugephase",
        "shiftstatus",
        "dailyrecordstatus",
        "roleenum",
        "stationtype",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
