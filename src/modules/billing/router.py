"""Invoice & Payment API router."""

from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.session import get_db
from src.models.enums import InvoiceStatus
from src.modules.billing.schemas import (
    BulkFromSubscriptionsRequest,
    BulkInvoiceAction,
    BulkPaymentRequest,
    BulkStatusRequest,
    InvoiceCountsResponse,
    InvoiceCreate,
    InvoiceFromSubscriptionRequest,
    InvoiceListResponse,
    InvoiceResponse,
    InvoiceSummaryItem,
    InvoiceUpdate,
    IssueInvoiceRequest,
    LineItemCreate,
    OverdueSweepResponse,
    PaymentResponse,
    ReconciliationResponse,
    RecordPaymentRequest,
)
from src.modules.billing.service import InvoiceService
from src.modules.tenancy.auth import AuthenticatedUser
from src.modules.tenancy.dependencies import require_permission
from src.schemas.responses import BulkOperationResponse, ErrorResponse

# Error envelope documented on every route
_ERRORS = {
    status: {"model": ErrorResponse} for status in (401, 403, 404, 409, 422)
}

router = APIRouter(prefix="/invoices", tags=["invoices"], responses=_ERRORS)
member_router = APIRouter(prefix="/members", tags=["invoices"], responses=_ERRORS)
subscription_router = APIRouter(prefix="/subscriptions", tags=["invoices"], responses=_ERRORS)

_view = require_permission("invoices_view")
_create = require_permission("invoices_create")
_update = require_permission("invoices_update")
_pay = require_permission("invoices_pay")
_refund = require_permission("invoices_refund")
_admin = require_permission("invoices_admin")


def _list_response(items, total: int, limit: int, offset: int) -> InvoiceListResponse:
    return InvoiceListResponse(
        items=[InvoiceSummaryItem.model_validate(i) for i in items],
        total=total,
        limit=limit,
        offset=offset,
    )


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


@router.post("", response_model=InvoiceResponse, status_code=201)
async def create_invoice(
    body: InvoiceCreate,
    user: AuthenticatedUser = Depends(_create),
    db: AsyncSession = Depends(get_db),
):
    """Create a DRAFT invoice from manual line items."""
    svc = InvoiceService(db)
    invoice = await svc.create_invoice(
        organization_id=user.organization_id,
        member_id=body.member_id,
        lines=body.line_items,
        vat_rate=body.vat_rate,
        subscription_id=body.subscription_id,
        notes=body.notes,
    )
    return InvoiceResponse.model_validate(invoice)


@subscription_router.post(
    "/{subscription_id}/invoice", response_model=InvoiceResponse, status_code=201
)
async def create_invoice_from_subscription(
    subscription_id: uuid.UUID,
    body: InvoiceFromSubscriptionRequest | None = None,
    user: AuthenticatedUser = Depends(_create),
    db: AsyncSession = Depends(get_db),
):
    """Create a DRAFT invoice from the subscription's plan fees."""
    svc = InvoiceService(db)
    invoice = await svc.create_invoice_from_subscription(
        organization_id=user.organization_id,
        subscription_id=subscription_id,
        notes=body.notes if body else None,
    )
    return InvoiceResponse.model_validate(invoice)


# ---------------------------------------------------------------------------
# Listing & lookup
# ---------------------------------------------------------------------------


@router.get("", response_model=InvoiceListResponse)
async def list_invoices(
    search: str | None = Query(None, max_length=50),
    status: InvoiceStatus | None = Query(None),
    member_id: uuid.UUID | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: AuthenticatedUser = Depends(_view),
    db: AsyncSession = Depends(get_db),
):
    """List invoices for the calling organization."""
    svc = InvoiceService(db)
    items, total = await svc.list_invoices(
        organization_id=user.organization_id,
        search=search,
        status=status,
        member_id=member_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return _list_response(items, total, limit, offset)


@router.get("/summary", response_model=InvoiceCountsResponse)
async def get_invoice_summary(
    user: AuthenticatedUser = Depends(_view),
    db: AsyncSession = Depends(get_db),
):
    svc = InvoiceService(db)
    return InvoiceCountsResponse(**await svc.get_summary(user.organization_id))


@router.get("/pending", response_model=InvoiceListResponse)
async def list_pending_invoices(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: AuthenticatedUser = Depends(_view),
    db: AsyncSession = Depends(get_db),
):
    """Issued invoices awaiting payment, earliest due first."""
    svc = InvoiceService(db)
    items, total = await svc.list_pending(user.organization_id, limit=limit, offset=offset)
    return _list_response(items, total, limit, offset)


@router.get("/overdue", response_model=InvoiceListResponse)
async def list_overdue_invoices(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: AuthenticatedUser = Depends(_view),
    db: AsyncSession = Depends(get_db),
):
    svc = InvoiceService(db)
    items, total = await svc.list_overdue(user.organization_id, limit=limit, offset=offset)
    return _list_response(items, total, limit, offset)


@router.get("/number/{invoice_number}", response_model=InvoiceResponse)
async def get_invoice_by_number(
    invoice_number: str,
    user: AuthenticatedUser = Depends(_view),
    db: AsyncSession = Depends(get_db),
):
    svc = InvoiceService(db)
    invoice = await svc.get_invoice_by_number(user.organization_id, invoice_number)
    return InvoiceResponse.model_validate(invoice)


@member_router.get("/{member_id}/invoices", response_model=InvoiceListResponse)
async def list_member_invoices(
    member_id: uuid.UUID,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: AuthenticatedUser = Depends(_view),
    db: AsyncSession = Depends(get_db),
):
    svc = InvoiceService(db)
    items, total = await svc.list_member_invoices(
        user.organization_id, member_id, limit=limit, offset=offset
    )
    return _list_response(items, total, limit, offset)


# ---------------------------------------------------------------------------
# Bulk operations & sweep
# ---------------------------------------------------------------------------


@router.post("/bulk/status", response_model=BulkOperationResponse)
async def bulk_update_status(
    body: BulkStatusRequest,
    user: AuthenticatedUser = Depends(_update),
    db: AsyncSession = Depends(get_db),
):
    """Issue or cancel several invoices; each succeeds or fails on its own."""
    svc = InvoiceService(db)
    if body.action == BulkInvoiceAction.ISSUE:
        results = await svc.bulk_issue(
            user.organization_id, body.invoice_ids, payment_due_days=body.payment_due_days
        )
    else:
        results = await svc.bulk_cancel(user.organization_id, body.invoice_ids)
    return BulkOperationResponse.from_results(results)


@router.post("/bulk/pay", response_model=BulkOperationResponse)
async def bulk_record_payments(
    body: BulkPaymentRequest,
    user: AuthenticatedUser = Depends(_pay),
    db: AsyncSession = Depends(get_db),
):
    svc = InvoiceService(db)
    results = await svc.bulk_record_payments(user.organization_id, body.payments)
    return BulkOperationResponse.from_results(results)


@router.post("/bulk/from-subscriptions", response_model=BulkOperationResponse)
async def bulk_create_from_subscriptions(
    body: BulkFromSubscriptionsRequest,
    user: AuthenticatedUser = Depends(_create),
    db: AsyncSession = Depends(get_db),
):
    svc = InvoiceService(db)
    results = await svc.bulk_create_from_subscriptions(
        user.organization_id, body.subscription_ids
    )
    return BulkOperationResponse.from_results(results)


@router.post("/overdue-sweep", response_model=OverdueSweepResponse)
async def run_overdue_sweep(
    user: AuthenticatedUser = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    """Run the overdue sweep for the caller's organization as of today."""
    svc = InvoiceService(db)
    stats = await svc.mark_overdue_invoices(organization_id=user.organization_id)
    return OverdueSweepResponse(**stats)


# ---------------------------------------------------------------------------
# Single invoice
# ---------------------------------------------------------------------------


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: uuid.UUID,
    user: AuthenticatedUser = Depends(_view),
    db: AsyncSession = Depends(get_db),
):
    """Get a single invoice with line items."""
    svc = InvoiceService(db)
    invoice = await svc.get_invoice(user.organization_id, invoice_id)
    return InvoiceResponse.model_validate(invoice)


@router.put("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: uuid.UUID,
    body: InvoiceUpdate,
    user: AuthenticatedUser = Depends(_update),
    db: AsyncSession = Depends(get_db),
):
    svc = InvoiceService(db)
    invoice = await svc.update_invoice(user.organization_id, invoice_id, notes=body.notes)
    return InvoiceResponse.model_validate(invoice)


@router.post("/{invoice_id}/line-items", response_model=InvoiceResponse, status_code=201)
async def add_line_item(
    invoice_id: uuid.UUID,
    body: LineItemCreate,
    user: AuthenticatedUser = Depends(_update),
    db: AsyncSession = Depends(get_db),
):
    """Add a line item to a DRAFT invoice."""
    svc = InvoiceService(db)
    invoice = await svc.add_line_item(user.organization_id, invoice_id, body)
    return InvoiceResponse.model_validate(invoice)


@router.delete("/{invoice_id}/line-items/{item_id}", response_model=InvoiceResponse)
async def remove_line_item(
    invoice_id: uuid.UUID,
    item_id: uuid.UUID,
    user: AuthenticatedUser = Depends(_update),
    db: AsyncSession = Depends(get_db),
):
    """Remove a line item from a DRAFT invoice."""
    svc = InvoiceService(db)
    invoice = await svc.remove_line_item(user.organization_id, invoice_id, item_id)
    return InvoiceResponse.model_validate(invoice)


@router.post("/{invoice_id}/issue", response_model=InvoiceResponse)
async def issue_invoice(
    invoice_id: uuid.UUID,
    body: IssueInvoiceRequest | None = None,
    user: AuthenticatedUser = Depends(_update),
    db: AsyncSession = Depends(get_db),
):
    """Issue a DRAFT invoice and start its payment term."""
    body = body or IssueInvoiceRequest()
    svc = InvoiceService(db)
    invoice = await svc.issue_invoice(
        user.organization_id,
        invoice_id,
        issue_date=body.issue_date,
        payment_due_days=body.payment_due_days,
    )
    return InvoiceResponse.model_validate(invoice)


@router.post("/{invoice_id}/pay", response_model=InvoiceResponse)
async def record_payment(
    invoice_id: uuid.UUID,
    body: RecordPaymentRequest,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key", max_length=200),
    user: AuthenticatedUser = Depends(_pay),
    db: AsyncSession = Depends(get_db),
):
    """Record a full or partial payment.

    Resubmitting with the same ``Idempotency-Key`` header returns the invoice
    without recording a second payment.
    """
    svc = InvoiceService(db)
    invoice = await svc.record_payment(
        user.organization_id,
        invoice_id,
        body.amount,
        body.payment_method,
        body.payment_reference,
        currency=body.currency,
        paid_on=body.paid_on,
        gateway_transaction_id=body.gateway_transaction_id,
        idempotency_key=idempotency_key,
    )
    return InvoiceResponse.model_validate(invoice)


@router.post("/{invoice_id}/cancel", response_model=InvoiceResponse)
async def cancel_invoice(
    invoice_id: uuid.UUID,
    user: AuthenticatedUser = Depends(_update),
    db: AsyncSession = Depends(get_db),
):
    svc = InvoiceService(db)
    invoice = await svc.cancel_invoice(user.organization_id, invoice_id)
    return InvoiceResponse.model_validate(invoice)


@router.post("/{invoice_id}/refund", response_model=InvoiceResponse)
async def refund_invoice(
    invoice_id: uuid.UUID,
    user: AuthenticatedUser = Depends(_refund),
    db: AsyncSession = Depends(get_db),
):
    """Mark a PAID invoice as refunded (administrative)."""
    svc = InvoiceService(db)
    invoice = await svc.refund_invoice(user.organization_id, invoice_id)
    return InvoiceResponse.model_validate(invoice)


@router.get("/{invoice_id}/payments", response_model=list[PaymentResponse])
async def list_payments(
    invoice_id: uuid.UUID,
    user: AuthenticatedUser = Depends(_view),
    db: AsyncSession = Depends(get_db),
):
    """The invoice's payment ledger, oldest first."""
    svc = InvoiceService(db)
    payments = await svc.get_payments(user.organization_id, invoice_id)
    return [PaymentResponse.model_validate(p) for p in payments]


@router.get("/{invoice_id}/reconciliation", response_model=ReconciliationResponse)
async def get_reconciliation(
    invoice_id: uuid.UUID,
    user: AuthenticatedUser = Depends(_view),
    db: AsyncSession = Depends(get_db),
):
    svc = InvoiceService(db)
    return ReconciliationResponse(**await svc.get_reconciliation(user.organization_id, invoice_id))
