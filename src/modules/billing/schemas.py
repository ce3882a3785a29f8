"""Pydantic v2 schemas for the Invoice & Payment API endpoints."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.config import settings
from src.models.enums import InvoiceStatus, LineItemType, PaymentMethod

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class LineItemCreate(BaseModel):
    description_en: str = Field(..., min_length=1, max_length=500)
    description_ar: str | None = Field(None, max_length=500)
    item_type: LineItemType = LineItemType.OTHER
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    currency: str = Field(settings.default_currency, min_length=3, max_length=3)
    tax_rate: Decimal | None = Field(None, ge=0, le=100, decimal_places=2)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class InvoiceCreate(BaseModel):
    member_id: uuid.UUID
    subscription_id: uuid.UUID | None = None
    line_items: list[LineItemCreate] = Field(..., min_length=1)
    vat_rate: Decimal = Field(settings.default_vat_rate, ge=0, le=100, decimal_places=2)
    notes: str | None = Field(None, max_length=2000)

    @model_validator(mode="after")
    def _single_currency(self) -> InvoiceCreate:
        currencies = {item.currency for item in self.line_items}
        if len(currencies) > 1:
            raise ValueError(
                f"All line items must share one currency, got {sorted(currencies)}"
            )
        return self


class InvoiceFromSubscriptionRequest(BaseModel):
    notes: str | None = Field(None, max_length=2000)


class InvoiceUpdate(BaseModel):
    notes: str | None = Field(None, max_length=2000)


class IssueInvoiceRequest(BaseModel):
    issue_date: date | None = None
    payment_due_days: int = Field(settings.invoice_payment_due_days, ge=0, le=365)


class RecordPaymentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    currency: str | None = Field(None, min_length=3, max_length=3)
    payment_method: PaymentMethod
    payment_reference: str | None = Field(None, max_length=200)
    gateway_transaction_id: str | None = Field(None, max_length=200)
    paid_on: date | None = None


class BulkInvoiceAction(str, Enum):
    ISSUE = "ISSUE"
    CANCEL = "CANCEL"


class BulkStatusRequest(BaseModel):
    invoice_ids: list[uuid.UUID] = Field(..., alias="invoiceIds", min_length=1)
    action: BulkInvoiceAction
    payment_due_days: int = Field(
        settings.invoice_payment_due_days, alias="paymentDueDays", ge=0, le=365
    )

    model_config = ConfigDict(populate_by_name=True)


class BulkPaymentItem(BaseModel):
    invoice_id: uuid.UUID = Field(..., alias="invoiceId")
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    payment_method: PaymentMethod = Field(..., alias="paymentMethod")
    payment_reference: str | None = Field(None, alias="paymentReference", max_length=200)
    gateway_transaction_id: str | None = Field(
        None, alias="gatewayTransactionId", max_length=200
    )

    model_config = ConfigDict(populate_by_name=True)


class BulkPaymentRequest(BaseModel):
    payments: list[BulkPaymentItem] = Field(..., min_length=1)


class BulkFromSubscriptionsRequest(BaseModel):
    subscription_ids: list[uuid.UUID] = Field(..., alias="subscriptionIds", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class LineItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    invoice_id: uuid.UUID
    description_en: str
    description_ar: str | None = None
    item_type: LineItemType
    quantity: int
    unit_price: Decimal
    currency: str
    tax_rate: Decimal
    sort_order: int
    line_total_amount: Decimal
    tax_amount: Decimal


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    invoice_id: uuid.UUID
    amount: Decimal
    currency: str
    method: PaymentMethod
    reference: str | None = None
    paid_at: datetime
    gateway_transaction_id: str | None = None
    idempotency_key: str | None = None


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    invoice_number: str
    member_id: uuid.UUID
    subscription_id: uuid.UUID | None = None
    status: InvoiceStatus
    issue_date: date | None = None
    due_date: date | None = None
    paid_date: date | None = None
    currency: str
    subtotal: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal | None = None
    payment_method: PaymentMethod | None = None
    payment_reference: str | None = None
    notes: str | None = None
    version: int
    line_items: list[LineItemResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class InvoiceSummaryItem(BaseModel):
    """Compact row for list views; line items are not loaded."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    invoice_number: str
    member_id: uuid.UUID
    status: InvoiceStatus
    issue_date: date | None = None
    due_date: date | None = None
    currency: str
    total_amount: Decimal
    paid_amount: Decimal | None = None
    created_at: datetime


class InvoiceListResponse(BaseModel):
    items: list[InvoiceSummaryItem]
    total: int
    limit: int
    offset: int


class InvoiceCountsResponse(BaseModel):
    total_invoices: int
    pending_count: int
    overdue_count: int
    paid_count: int


class ReconciliationResponse(BaseModel):
    invoice_id: uuid.UUID
    invoice_number: str
    status: InvoiceStatus
    currency: str
    total_amount: Decimal
    paid_amount: Decimal
    ledger_total: Decimal
    remaining_balance: Decimal
    payment_count: int
    balanced: bool


class OverdueSweepResponse(BaseModel):
    checked: int
    marked: int
    errors: int
