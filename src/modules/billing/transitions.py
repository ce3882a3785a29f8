"""Pure invoice lifecycle transitions, independent of persistence."""

from __future__ import annotations

from src.exceptions import InvalidStateTransitionException
from src.models.enums import InvoiceEvent, InvoiceStatus
from src.modules.billing.constants import INVOICE_TERMINAL_STATUSES, INVOICE_TRANSITIONS


def allowed_events(status: InvoiceStatus) -> set[InvoiceEvent]:
    return set(INVOICE_TRANSITIONS.get(status, {}))


def can_transition(status: InvoiceStatus, event: InvoiceEvent) -> bool:
    return event in INVOICE_TRANSITIONS.get(status, {})


def next_status(status: InvoiceStatus, event: InvoiceEvent) -> InvoiceStatus:
    """Return the status ``event`` leads to from ``status``.

    Raises InvalidStateTransitionException when the table has no entry.
    """
    if status in INVOICE_TERMINAL_STATUSES:
        raise InvalidStateTransitionException(
            f"Cannot {event.value.lower().replace('_', ' ')} an invoice in terminal status "
            f"'{status.value}'"
        )

    allowed = INVOICE_TRANSITIONS.get(status, {})
    if event not in allowed:
        raise InvalidStateTransitionException(
            f"Cannot perform '{event.value}' on an invoice in status '{status.value}'. "
            f"Allowed: {sorted(e.value for e in allowed)}"
        )
    return allowed[event]
