"""credit billing and meter anomalies

Revision ID: b7c3d9e1f2a4
Revises: a1f0c2d3e4b5
Create Date: 2026-10-17 15:00:00.000000

"""

from typing import Sequence, Union
import uuid

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "b7c3d9e1f2a4"
down_revision: Union[str, None] = "a1f0c2d3e4b5"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BILLING_PERMISSIONS = [
    ("billing:read", "View credit invoices, pending credit and aging", "billing"),
    ("billing:manage", "Issue invoices and record invoice payments", "billing"),
]


def _money(precision: int = 14) -> sa.Numeric:
    return sa.Numeric(precision=precision, scale=2)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def upgrade() -> None:
    # 1. Invoices and payments
    op.create_table(
        "credit_invoices",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("owner_id", sa.Uuid(), sa.ForeignKey("owners.id"), nullable=False),
        sa.Column("invoice_number", sa.String(50), unique=True, nullable=False),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column("total_amount", _money(), nullable=False),
        sa.Column("amount_paid", _money(), nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum("PENDING", "PARTIAL", "PAID", name="invoicestatus"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        _created_at(),
    )
    op.create_index("ix_credit_invoices_owner", "credit_invoices", ["owner_id"])
    op.create_index("ix_credit_invoices_status", "credit_invoices", ["status"])
    op.create_index("ix_credit_invoices_due_date", "credit_invoices", ["due_date"])

    op.create_table(
        "invoice_payments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("invoice_id", sa.Uuid(), sa.ForeignKey("credit_invoices.id"), nullable=False),
        sa.Column("amount", _money(), nullable=False),
        sa.Column("payment_method", sa.String(50), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("recorded_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        _created_at(),
    )
    op.create_index("ix_invoice_payments_invoice", "invoice_payments", ["invoice_id"])

    # 2. Link sales to the invoice that bills them (batch mode for SQLite)
    with op.batch_alter_table("transactions") as batch_op:
        batch_op.add_column(sa.Column("invoice_id", sa.Uuid(), nullable=True))
        batch_op.create_foreign_key(
            "fk_transactions_invoice", "credit_invoices", ["invoice_id"], ["id"]
        )
        batch_op.create_index("ix_transactions_invoice", ["invoice_id"])

    # 3. Meter anomalies
    op.create_table(
        "meter_anomalies",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("shift_id", sa.Uuid(), sa.ForeignKey("shifts.id"), nullable=False),
        sa.Column("nozzle_number", sa.Integer(), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("CONTINUITY_GAP", "SALES_DEVIATION", name="anomalykind"),
            nullable=False,
        ),
        sa.Column(
            "severity",
            sa.Enum("WARNING", "CRITICAL", name="anomalyseverity"),
            nullable=False,
        ),
        sa.Column("expected_value", _money(), nullable=False),
        sa.Column("actual_value", _money(), nullable=False),
        sa.Column("deviation_percent", sa.Numeric(precision=8, scale=2), nullable=True),
        sa.Column("message", sa.String(255), nullable=False),
        sa.Column("is_reviewed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reviewed_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_note", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_meter_anomalies_shift", "meter_anomalies", ["shift_id"])
    op.create_index("ix_meter_anomalies_reviewed", "meter_anomalies", ["is_reviewed"])

    # 4. Billing permissions for ADMIN; databases created from the current
    # catalogue already have them
    bind = op.get_bind()
    existing = {
        code for (code,) in bind.execute(sa.text("SELECT code FROM permissions"))
    }
    permissions_table = sa.table(
        "permissions",
        sa.column("id", sa.Uuid()),
        sa.column("code", sa.String()),
        sa.column("description", sa.String()),
        sa.column("category", sa.String()),
    )
    role_permissions_table = sa.table(
        "role_permissions",
        sa.column("role_id", sa.Uuid()),
        sa.column("permission_id", sa.Uuid()),
    )
    new_perms = [
        {"id": uuid.uuid4(), "code": code, "description": desc, "category": cat}
        for code, desc, cat in BILLING_PERMISSIONS
        if code not in existing
    ]
    if not new_perms:
        return
    op.bulk_insert(permissions_table, new_perms)

    admin_id = bind.execute(
        sa.text("SELECT id FROM roles WHERE name = :name"), {"name": "ADMIN"}
    ).scalar()
    if admin_id is not None:
        op.bulk_insert(
            role_permissions_table,
            [{"role_id": admin_id, "permission_id": p["id"]} for p in new_perms],
        )


def downgrade() -> None:
    bind = op.get_bind()
    for code, _, _ in BILLING_PERMISSIONS:
        bind.execute(
            sa.text(
                "DELETE FROM role_permissions WHERE permission_id IN "
                "(SELECT id FROM permissions WHERE code = :code)"
            ),
            {"code": code},
        )
        bind.execute(sa.text("DELETE FROM permissions WHERE code = :code"), {"code": code})

    op.drop_table("meter_anomalies")
    with op.batch_alter_table("transactions") as batch_op:
        batch_op.drop_index("ix_transactions_invoice")
        batch_op.drop_constraint("fk_transactions_invoice", type_="foreignkey")
        batch_op.drop_column("invoice_id")
    op.drop_table("invoice_payments")
    op.drop_table("credit_invoices")
    for enum_name in ("anomalyseverity", "anomalykind", "invoicestatus"):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
