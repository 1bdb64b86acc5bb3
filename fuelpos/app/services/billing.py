"""Credit billing: owner invoices, invoice payments, credit limits and aging."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func as sa_func
from sqlalchemy.orm import Query, Session

from fuelpos.app.core.config import settings
from fuelpos.app.core.exceptions import ConflictError, NotFoundError, ValidationError
from fuelpos.app.core.timeutils import ensure_utc, local_today
from fuelpos.app.models.invoice import CreditInvoice, InvoicePayment, InvoiceStatus
from fuelpos.app.models.owner import Owner
from fuelpos.app.models.transaction import CREDIT_PAYMENT_TYPES, Transaction
from fuelpos.app.models.user import User
from fuelpos.app.schemas.invoice import (
    AgingBucketRow,
    AgingKPI,
    AgingResponse,
    InvoiceBatchOut,
    InvoiceCreate,
    InvoiceDetailOut,
    InvoiceLineOut,
    InvoiceOut,
    InvoicePaymentIn,
    InvoicePaymentOut,
    PendingCreditOut,
)
from fuelpos.app.services.audit import log_action
from fuelpos.app.services.reconciliation import quantize

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

PAYMENT_METHODS = ("CASH", "TRANSFER", "CHEQUE", "CARD")

OPEN_STATUSES = (InvoiceStatus.PENDING, InvoiceStatus.PARTIAL)


# ─── Serialisation ───────────────────────────────────────────────────────────


def invoice_to_out(db: Session, invoice: CreditInvoice) -> InvoiceOut:
    count = (
        db.query(sa_func.count(Transaction.id))
        .filter(Transaction.invoice_id == invoice.id)
        .scalar()
    ) or 0
    total = Decimal(str(invoice.total_amount))
    paid = Decimal(str(invoice.amount_paid))
    return InvoiceOut(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        owner_id=invoice.owner_id,
        owner_name=invoice.owner.name,
        invoice_date=invoice.invoice_date,
        due_date=invoice.due_date,
        period_start=invoice.period_start,
        period_end=invoice.period_end,
        total_amount=str(total),
        amount_paid=str(paid),
        remaining=str(total - paid),
        status=invoice.status.value,
        transaction_count=count,
        notes=invoice.notes,
        created_at=ensure_utc(invoice.created_at),
    )


def payment_to_out(payment: InvoicePayment) -> InvoicePaymentOut:
    return InvoicePaymentOut(
        id=payment.id,
        invoice_id=payment.invoice_id,
        amount=str(payment.amount),
        payment_method=payment.payment_method,
        payment_date=payment.payment_date,
        notes=payment.notes,
        recorded_by=payment.recorded_by,
        created_at=ensure_utc(payment.created_at),
    )


def invoice_detail(db: Session, invoice: CreditInvoice) -> InvoiceDetailOut:
    lines = (
        db.query(Transaction)
        .filter(Transaction.invoice_id == invoice.id)
        .order_by(Transaction.txn_date, Transaction.created_at)
        .all()
    )
    return InvoiceDetailOut(
        **invoice_to_out(db, invoice).model_dump(),
        lines=[
            InvoiceLineOut(
                transaction_id=t.id,
                txn_date=t.txn_date,
                license_plate=t.license_plate,
                payment_type=t.payment_type.value,
                liters=str(t.liters),
                amount=str(t.amount),
                bill_book_no=t.bill_book_no,
                bill_no=t.bill_no,
            )
            for t in lines
        ],
        payments=[payment_to_out(p) for p in invoice.payments],
    )


# ─── Credit exposure ─────────────────────────────────────────────────────────


def _uninvoiced_credit(db: Session) -> Query:
    return db.query(Transaction).filter(
        Transaction.payment_type.in_(list(CREDIT_PAYMENT_TYPES)),
        Transaction.invoice_id.is_(None),
        Transaction.deleted_at.is_(None),
        Transaction.is_voided.is_(False),
    )


def outstanding_credit(
    db: Session, owner_id: UUID, exclude_transaction_id: UUID | None = None
) -> Decimal:
    """Credit an owner still owes: unbilled credit sales plus unpaid invoice balances."""
    unbilled_q = db.query(sa_func.coalesce(sa_func.sum(Transaction.amount), 0)).filter(
        Transaction.owner_id == owner_id,
        Transaction.payment_type.in_(list(CREDIT_PAYMENT_TYPES)),
        Transaction.invoice_id.is_(None),
        Transaction.deleted_at.is_(None),
        Transaction.is_voided.is_(False),
    )
    if exclude_transaction_id is not None:
        unbilled_q = unbilled_q.filter(Transaction.id != exclude_transaction_id)
    unbilled = Decimal(str(unbilled_q.scalar()))

    billed = Decimal(
        str(
            db.query(
                sa_func.coalesce(
                    sa_func.sum(CreditInvoice.total_amount - CreditInvoice.amount_paid),
                    0,
                )
            )
            .filter(
                CreditInvoice.owner_id == owner_id,
                CreditInvoice.status.in_(list(OPEN_STATUSES)),
            )
            .scalar()
        )
    )
    return quantize(unbilled + billed)


def check_credit_limit(
    db: Session,
    owner: Owner,
    amount: Decimal,
    exclude_transaction_id: UUID | None = None,
) -> None:
    """Reject a credit sale that would take *owner* past their credit limit.

    Owners without a limit are never blocked.
    """
    if owner.credit_limit is None:
        return
    limit = Decimal(str(owner.credit_limit))
    current = outstanding_credit(db, owner.id, exclude_transaction_id)
    remaining = limit - current
    if amount > remaining:
        logger.warning(
            "Credit limit reached for owner %s: limit %s, outstanding %s, requested %s",
            owner.name,
            limit,
            current,
            amount,
        )
        raise ConflictError(
            f"Credit limit exceeded for {owner.name} (remaining {remaining})",
            details={
                "owner_id": str(owner.id),
                "credit_limit": str(limit),
                "current_credit": str(current),
                "remaining_credit": str(remaining),
                "requested_amount": str(amount),
            },
        )


def ensure_not_invoiced(txn: Transaction) -> None:
    if txn.invoice_id is not None:
        raise ConflictError(
            "Transaction is already billed on an invoice; delete the invoice first",
            details={"transaction_id": str(txn.id), "invoice_id": str(txn.invoice_id)},
        )


def pending_credit(db: Session, group_name: str | None = None) -> list[PendingCreditOut]:
    """Owners with credit sales not yet on any invoice, largest balance first."""
    q = (
        db.query(
            Owner,
            sa_func.count(Transaction.id),
            sa_func.coalesce(sa_func.sum(Transaction.amount), 0),
        )
        .join(Transaction, Transaction.owner_id == Owner.id)
        .filter(
            Owner.deleted_at.is_(None),
            Transaction.payment_type.in_(list(CREDIT_PAYMENT_TYPES)),
            Transaction.invoice_id.is_(None),
            Transaction.deleted_at.is_(None),
            Transaction.is_voided.is_(False),
        )
        .group_by(Owner.id)
    )
    if group_name:
        q = q.filter(Owner.group_name == group_name)

    rows = [
        PendingCreditOut(
            owner_id=owner.id,
            owner_name=owner.name,
            owner_code=owner.code,
            phone=owner.phone,
            transaction_count=count,
            total_amount=str(quantize(Decimal(str(total)))),
        )
        for owner, count, total in q.all()
    ]
    rows.sort(key=lambda r: Decimal(r.total_amount), reverse=True)
    return rows


# ─── Issuing invoices ────────────────────────────────────────────────────────


def _next_invoice_number(db: Session, issued: date) -> str:
    """INV-YYYYMMDD-NNNN, numbered per issue date."""
    prefix = f"INV-{issued.strftime('%Y%m%d')}-"
    count = (
        db.query(CreditInvoice)
        .filter(CreditInvoice.invoice_number.like(f"{prefix}%"))
        .count()
    )
    return f"{prefix}{count + 1:04d}"


def _owners_or_error(db: Session, owner_ids: list[UUID]) -> list[Owner]:
    owners: list[Owner] = []
    for owner_id in dict.fromkeys(owner_ids):
        owner = (
            db.query(Owner)
            .filter(Owner.id == owner_id, Owner.deleted_at.is_(None))
            .first()
        )
        if not owner:
            raise NotFoundError("Owner not found", details={"owner_id": str(owner_id)})
        owners.append(owner)
    return owners


def _issue_invoice(
    db: Session,
    owner: Owner,
    sales: list[Transaction],
    user: User,
    *,
    invoice_date: date,
    due_date: date,
    period_start: date | None,
    period_end: date | None,
    notes: str | None,
    ip_address: str | None,
) -> CreditInvoice:
    total = quantize(sum((Decimal(str(t.amount)) for t in sales), ZERO))
    invoice = CreditInvoice(
        owner_id=owner.id,
        invoice_number=_next_invoice_number(db, invoice_date),
        invoice_date=invoice_date,
        due_date=due_date,
        period_start=period_start,
        period_end=period_end,
        total_amount=total,
        amount_paid=ZERO,
        status=InvoiceStatus.PENDING,
        notes=notes,
        created_by=user.id,
    )
    db.add(invoice)
    db.flush()
    for txn in sales:
        txn.invoice_id = invoice.id
    db.flush()

    log_action(
        db,
        user_id=user.id,
        action="INVOICE_CREATED",
        resource_type="credit_invoices",
        resource_id=str(invoice.id),
        changes={
            "invoice_number": invoice.invoice_number,
            "owner": owner.name,
            "total_amount": str(total),
            "due_date": due_date.isoformat(),
            "transaction_count": len(sales),
        },
        ip_address=ip_address,
    )
    logger.info(
        "Issued invoice %s to %s for %s (%d sales)",
        invoice.invoice_number,
        owner.name,
        total,
        len(sales),
    )
    return invoice


def create_invoices(
    db: Session,
    body: InvoiceCreate,
    user: User,
    ip_address: str | None = None,
    today: date | None = None,
) -> list[CreditInvoice]:
    """Bill each owner's uninvoiced credit sales, optionally within a date range."""
    issued = today or local_today()
    due = issued + timedelta(days=settings.INVOICE_PAYMENT_TERMS_DAYS)
    owners = _owners_or_error(db, body.owner_ids)

    def sales_for(owner_ids: list[UUID]) -> list[Transaction]:
        q = _uninvoiced_credit(db).filter(Transaction.owner_id.in_(owner_ids))
        if body.date_from is not None:
            q = q.filter(Transaction.txn_date >= body.date_from)
        if body.date_to is not None:
            q = q.filter(Transaction.txn_date <= body.date_to)
        return q.order_by(Transaction.txn_date, Transaction.created_at).all()

    created: list[CreditInvoice] = []
    try:
        if body.combine_owners and len(owners) > 1:
            sales = sales_for([o.id for o in owners])
            if sales:
                note = body.notes or f"Combined from {len(owners)} owners"
                created.append(
                    _issue_invoice(
                        db,
                        owners[0],
                        sales,
                        user,
                        invoice_date=issued,
                        due_date=due,
                        period_start=body.date_from,
                        period_end=body.date_to,
                        notes=note,
                        ip_address=ip_address,
                    )
                )
        else:
            for owner in owners:
                sales = sales_for([owner.id])
                if not sales:
                    continue
                created.append(
                    _issue_invoice(
                        db,
                        owner,
                        sales,
                        user,
                        invoice_date=issued,
                        due_date=due,
                        period_start=body.date_from,
                        period_end=body.date_to,
                        notes=body.notes,
                        ip_address=ip_address,
                    )
                )
        if not created:
            raise ValidationError("No uninvoiced credit sales for the selected owners")
        db.commit()
    except Exception:
        db.rollback()
        raise
    for invoice in created:
        db.refresh(invoice)
    return created


def generate_monthly_invoices(
    db: Session,
    year: int,
    month: int,
    user: User,
    ip_address: str | None = None,
) -> InvoiceBatchOut:
    """Issue one statement per owner for a calendar month's credit sales.

    Statements are dated the first of the following month and fall due on
    ``INVOICE_DUE_DAY`` of that month. Owners already billed for the month
    are skipped, so the run can be repeated safely.
    """
    period_start = date(year, month, 1)
    next_month = date(year + month // 12, month % 12 + 1, 1)
    period_end = next_month - timedelta(days=1)
    due = next_month.replace(day=settings.INVOICE_DUE_DAY)

    owner_ids = [
        owner_id
        for (owner_id,) in (
            _uninvoiced_credit(db)
            .filter(
                Transaction.owner_id.isnot(None),
                Transaction.txn_date >= period_start,
                Transaction.txn_date <= period_end,
            )
            .with_entities(Transaction.owner_id)
            .distinct()
            .all()
        )
    ]
    owners = (
        db.query(Owner)
        .filter(Owner.id.in_(owner_ids), Owner.deleted_at.is_(None))
        .order_by(Owner.name)
        .all()
    )

    created: list[CreditInvoice] = []
    skipped: list[str] = []
    try:
        for owner in owners:
            already = (
                db.query(CreditInvoice.id)
                .filter(
                    CreditInvoice.owner_id == owner.id,
                    CreditInvoice.period_start == period_start,
                    CreditInvoice.period_end == period_end,
                )
                .first()
            )
            if already is not None:
                skipped.append(owner.name)
                continue
            sales = (
                _uninvoiced_credit(db)
                .filter(
                    Transaction.owner_id == owner.id,
                    Transaction.txn_date >= period_start,
                    Transaction.txn_date <= period_end,
                )
                .order_by(Transaction.txn_date, Transaction.created_at)
                .all()
            )
            created.append(
                _issue_invoice(
                    db,
                    owner,
                    sales,
                    user,
                    invoice_date=next_month,
                    due_date=due,
                    period_start=period_start,
                    period_end=period_end,
                    notes=f"Statement {period_start.strftime('%Y-%m')}",
                    ip_address=ip_address,
                )
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Monthly billing %04d-%02d: %d issued, %d skipped",
        year,
        month,
        len(created),
        len(skipped),
    )
    for invoice in created:
        db.refresh(invoice)
    return InvoiceBatchOut(
        total=len(owners),
        created=[invoice_to_out(db, i) for i in created],
        skipped=skipped,
    )


# ─── Reading ─────────────────────────────────────────────────────────────────


def get_invoice(db: Session, invoice_id: UUID) -> CreditInvoice:
    invoice = db.query(CreditInvoice).filter(CreditInvoice.id == invoice_id).first()
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def list_invoices(
    db: Session,
    owner_id: UUID | None = None,
    status: InvoiceStatus | None = None,
) -> list[CreditInvoice]:
    q = db.query(CreditInvoice)
    if owner_id is not None:
        q = q.filter(CreditInvoice.owner_id == owner_id)
    if status is not None:
        q = q.filter(CreditInvoice.status == status)
    return q.order_by(CreditInvoice.created_at.desc(), CreditInvoice.invoice_number.desc()).all()


# ─── Payments and removal ────────────────────────────────────────────────────


def record_payment(
    db: Session,
    invoice_id: UUID,
    body: InvoicePaymentIn,
    user: User,
    ip_address: str | None = None,
) -> InvoicePayment:
    """Record money received against an invoice and move it to PARTIAL or PAID."""
    invoice = get_invoice(db, invoice_id)
    if invoice.status == InvoiceStatus.PAID:
        raise ConflictError(
            "Invoice is already fully paid",
            details={"invoice_number": invoice.invoice_number},
        )

    method = body.payment_method.strip().upper()
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {body.payment_method}",
            details={"allowed": list(PAYMENT_METHODS)},
        )

    amount = quantize(body.amount)
    remaining = Decimal(str(invoice.total_amount)) - Decimal(str(invoice.amount_paid))
    if amount > remaining:
        raise ValidationError(
            f"Payment amount ({amount}) exceeds remaining balance ({remaining})",
            details={"remaining": str(remaining)},
        )

    try:
        payment = InvoicePayment(
            invoice_id=invoice.id,
            amount=amount,
            payment_method=method,
            payment_date=body.payment_date or local_today(),
            notes=body.notes,
            recorded_by=user.id,
        )
        db.add(payment)

        new_paid = Decimal(str(invoice.amount_paid)) + amount
        invoice.amount_paid = new_paid
        if new_paid >= Decimal(str(invoice.total_amount)):
            invoice.status = InvoiceStatus.PAID
        else:
            invoice.status = InvoiceStatus.PARTIAL
        db.flush()

        log_action(
            db,
            user_id=user.id,
            action="INVOICE_PAYMENT_RECORDED",
            resource_type="credit_invoices",
            resource_id=str(invoice.id),
            changes={
                "invoice_number": invoice.invoice_number,
                "payment_amount": str(amount),
                "new_total_paid": str(new_paid),
                "status": invoice.status.value,
                "payment_method": method,
            },
            ip_address=ip_address,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(payment)
    return payment


def delete_invoice(
    db: Session,
    invoice_id: UUID,
    user: User,
    ip_address: str | None = None,
) -> None:
    """Remove an unpaid invoice; its sales become uninvoiced again."""
    invoice = get_invoice(db, invoice_id)
    if invoice.payments:
        raise ConflictError(
            "Invoice has payments and cannot be deleted",
            details={
                "invoice_number": invoice.invoice_number,
                "payment_count": len(invoice.payments),
            },
        )
    try:
        released = (
            db.query(Transaction)
            .filter(Transaction.invoice_id == invoice.id)
            .update({Transaction.invoice_id: None}, synchronize_session="fetch")
        )
        log_action(
            db,
            user_id=user.id,
            action="INVOICE_DELETED",
            resource_type="credit_invoices",
            resource_id=str(invoice.id),
            old_values={
                "invoice_number": invoice.invoice_number,
                "owner_id": str(invoice.owner_id),
                "total_amount": str(invoice.total_amount),
            },
            changes={"transactions_released": released},
            ip_address=ip_address,
        )
        db.delete(invoice)
        db.commit()
    except Exception:
        db.rollback()
        raise


# ─── Aging ───────────────────────────────────────────────────────────────────


def bucket(days_overdue: int) -> str:
    """Assign an aging bucket from days past the due date."""
    if days_overdue <= 0:
        return "current"
    elif days_overdue <= 30:
        return "days_1_30"
    elif days_overdue <= 60:
        return "days_31_60"
    elif days_overdue <= 90:
        return "days_61_90"
    else:
        return "over_90"


def empty_buckets() -> dict[str, Decimal]:
    return {
        "current": ZERO,
        "days_1_30": ZERO,
        "days_31_60": ZERO,
        "days_61_90": ZERO,
        "over_90": ZERO,
    }


def _row(name: str, buckets: dict[str, Decimal]) -> AgingBucketRow:
    return AgingBucketRow(
        name=name,
        **{k: str(v) for k, v in buckets.items()},
        total=str(sum(buckets.values(), ZERO)),
    )


def aging_report(db: Session, as_of_date: date | None = None) -> AgingResponse:
    """Outstanding invoice balances per owner, bucketed by days past due."""
    as_of = as_of_date or local_today()
    invoices = (
        db.query(CreditInvoice)
        .filter(
            CreditInvoice.status.in_(list(OPEN_STATUSES)),
            CreditInvoice.invoice_date <= as_of,
        )
        .all()
    )

    owner_data: dict[UUID, dict] = {}
    total_receivable = ZERO
    total_overdue = ZERO
    for inv in invoices:
        outstanding = Decimal(str(inv.total_amount)) - Decimal(str(inv.amount_paid))
        if outstanding <= ZERO:
            continue
        days_overdue = (as_of - inv.due_date).days
        data = owner_data.setdefault(
            inv.owner_id, {"name": inv.owner.name, "buckets": empty_buckets()}
        )
        data["buckets"][bucket(days_overdue)] += outstanding
        total_receivable += outstanding
        if days_overdue > 0:
            total_overdue += outstanding

    uninvoiced = Decimal(
        str(
            _uninvoiced_credit(db)
            .with_entities(sa_func.coalesce(sa_func.sum(Transaction.amount), 0))
            .scalar()
        )
    )

    rows = []
    grand = empty_buckets()
    for data in sorted(owner_data.values(), key=lambda d: d["name"]):
        rows.append(_row(data["name"], data["buckets"]))
        for k in grand:
            grand[k] += data["buckets"][k]

    return AgingResponse(
        as_of_date=str(as_of),
        kpi=AgingKPI(
            total_receivable=str(total_receivable),
            total_overdue=str(total_overdue),
            uninvoiced_credit=str(quantize(uninvoiced)),
        ),
        owners=rows,
        totals=_row("Total", grand),
    )
