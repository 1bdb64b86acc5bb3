from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from fuelpos.app.api.errors import client_ip, to_http
from fuelpos.app.api.permission_deps import require_permission
from fuelpos.app.core.database import get_db
from fuelpos.app.models.invoice import InvoiceStatus
from fuelpos.app.models.user import User
from fuelpos.app.schemas.invoice import (
    AgingResponse,
    InvoiceBatchOut,
    InvoiceCreate,
    InvoiceDetailOut,
    InvoiceOut,
    InvoicePaymentIn,
    InvoicePaymentOut,
    MonthlyInvoiceRequest,
    PendingCreditOut,
)
from fuelpos.app.services.billing import (
    aging_report,
    create_invoices,
    delete_invoice,
    generate_monthly_invoices,
    get_invoice,
    invoice_detail,
    invoice_to_out,
    list_invoices,
    payment_to_out,
    pending_credit,
    record_payment,
)

router = APIRouter()


@router.get("", response_model=list[InvoiceOut])
def read_invoices(
    owner_id: UUID | None = Query(None),
    status_filter: InvoiceStatus | None = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("billing:read")),
) -> list[InvoiceOut]:
    return [invoice_to_out(db, i) for i in list_invoices(db, owner_id, status_filter)]


@router.post("", response_model=list[InvoiceOut], status_code=status.HTTP_201_CREATED)
def issue_invoices(
    body: InvoiceCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("billing:manage")),
) -> list[InvoiceOut]:
    """Bill the selected owners' uninvoiced credit sales."""
    try:
        created = create_invoices(db, body, current_user, client_ip(request))
    except ValueError as e:
        raise to_http(e)
    return [invoice_to_out(db, i) for i in created]


@router.get("/pending", response_model=list[PendingCreditOut])
def read_pending_credit(
    group_name: str | None = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("billing:read")),
) -> list[PendingCreditOut]:
    return pending_credit(db, group_name)


@router.post("/generate", response_model=InvoiceBatchOut)
def generate_monthly(
    body: MonthlyInvoiceRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("billing:manage")),
) -> InvoiceBatchOut:
    try:
        return generate_monthly_invoices(
            db, body.year, body.month, current_user, client_ip(request)
        )
    except ValueError as e:
        raise to_http(e)


@router.get("/aging", response_model=AgingResponse)
def read_aging(
    as_of_date: date | None = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("billing:read")),
) -> AgingResponse:
    return aging_report(db, as_of_date)


@router.get("/{invoice_id}", response_model=InvoiceDetailOut)
def read_invoice(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("billing:read")),
) -> InvoiceDetailOut:
    try:
        return invoice_detail(db, get_invoice(db, invoice_id))
    except ValueError as e:
        raise to_http(e)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_invoice(
    invoice_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("billing:manage")),
) -> None:
    """Withdraw an unpaid invoice; its sales return to the pending list."""
    try:
        delete_invoice(db, invoice_id, current_user, client_ip(request))
    except ValueError as e:
        raise to_http(e)


@router.get("/{invoice_id}/payments", response_model=list[InvoicePaymentOut])
def read_payments(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("billing:read")),
) -> list[InvoicePaymentOut]:
    try:
        invoice = get_invoice(db, invoice_id)
    except ValueError as e:
        raise to_http(e)
    return [payment_to_out(p) for p in invoice.payments]


@router.post(
    "/{invoice_id}/payments",
    response_model=InvoicePaymentOut,
    status_code=status.HTTP_201_CREATED,
)
def add_payment(
    invoice_id: UUID,
    body: InvoicePaymentIn,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("billing:manage")),
) -> InvoicePaymentOut:
    try:
        payment = record_payment(db, invoice_id, body, current_user, client_ip(request))
    except ValueError as e:
        raise to_http(e)
    return payment_to_out(payment)
