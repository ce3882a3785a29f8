"""Invoice state machine table, status groups and numbering format."""

from __future__ import annotations

from decimal import Decimal

from src.models.enums import InvoiceEvent, InvoiceStatus

# ---------------------------------------------------------------------------
# Valid transitions: from_status -> {event -> to_status}
# ---------------------------------------------------------------------------

INVOICE_TRANSITIONS: dict[InvoiceStatus, dict[InvoiceEvent, InvoiceStatus]] = {
    InvoiceStatus.DRAFT: {
        InvoiceEvent.ISSUE: InvoiceStatus.ISSUED,
        InvoiceEvent.CANCEL: InvoiceStatus.CANCELLED,
    },
    InvoiceStatus.ISSUED: {
        InvoiceEvent.PAY_PARTIAL: InvoiceStatus.PARTIALLY_PAID,
        InvoiceEvent.PAY_FULL: InvoiceStatus.PAID,
        InvoiceEvent.MARK_OVERDUE: InvoiceStatus.OVERDUE,
        InvoiceEvent.CANCEL: InvoiceStatus.CANCELLED,
    },
    InvoiceStatus.OVERDUE: {
        InvoiceEvent.PAY_PARTIAL: InvoiceStatus.PARTIALLY_PAID,
        InvoiceEvent.PAY_FULL: InvoiceStatus.PAID,
        InvoiceEvent.CANCEL: InvoiceStatus.CANCELLED,
    },
    InvoiceStatus.PARTIALLY_PAID: {
        InvoiceEvent.PAY_PARTIAL: InvoiceStatus.PARTIALLY_PAID,
        InvoiceEvent.PAY_FULL: InvoiceStatus.PAID,
    },
    InvoiceStatus.PAID: {
        InvoiceEvent.REFUND: InvoiceStatus.REFUNDED,
    },
}

INVOICE_TERMINAL_STATUSES: set[InvoiceStatus] = {
    InvoiceStatus.CANCELLED,
    InvoiceStatus.REFUNDED,
}

# Statuses that accept a payment
PAYABLE_STATUSES: set[InvoiceStatus] = {
    InvoiceStatus.ISSUED,
    InvoiceStatus.OVERDUE,
    InvoiceStatus.PARTIALLY_PAID,
}

# Line items may only change while the invoice is a draft
EDITABLE_STATUSES: set[InvoiceStatus] = {
    InvoiceStatus.DRAFT,
}

# A subscription with an invoice in one of these cannot be invoiced again
UNPAID_STATUSES: set[InvoiceStatus] = {
    InvoiceStatus.DRAFT,
    InvoiceStatus.ISSUED,
    InvoiceStatus.OVERDUE,
    InvoiceStatus.PARTIALLY_PAID,
}

# ---------------------------------------------------------------------------
# Invoice numbering: INV-{4-digit year}-{5-digit sequence}
# ---------------------------------------------------------------------------

INVOICE_NUMBER_PREFIX = "INV"
INVOICE_SEQUENCE_WIDTH = 5

DEFAULT_VAT_RATE = Decimal("15.00")
