"""Tests for the invoice lifecycle transition table."""

import pytest

from src.exceptions import BusinessRuleException, InvalidStateTransitionException
from src.models.enums import InvoiceEvent, InvoiceStatus
from src.modules.billing.constants import INVOICE_TERMINAL_STATUSES, INVOICE_TRANSITIONS
from src.modules.billing.transitions import allowed_events, can_transition, next_status

EXPECTED = {
    (InvoiceStatus.DRAFT, InvoiceEvent.ISSUE): InvoiceStatus.ISSUED,
    (InvoiceStatus.DRAFT, InvoiceEvent.CANCEL): InvoiceStatus.CANCELLED,
    (InvoiceStatus.ISSUED, InvoiceEvent.PAY_PARTIAL): InvoiceStatus.PARTIALLY_PAID,
    (InvoiceStatus.ISSUED, InvoiceEvent.PAY_FULL): InvoiceStatus.PAID,
    (InvoiceStatus.ISSUED, InvoiceEvent.MARK_OVERDUE): InvoiceStatus.OVERDUE,
    (InvoiceStatus.ISSUED, InvoiceEvent.CANCEL): InvoiceStatus.CANCELLED,
    (InvoiceStatus.OVERDUE, InvoiceEvent.PAY_PARTIAL): InvoiceStatus.PARTIALLY_PAID,
    (InvoiceStatus.OVERDUE, InvoiceEvent.PAY_FULL): InvoiceStatus.PAID,
    (InvoiceStatus.OVERDUE, InvoiceEvent.CANCEL): InvoiceStatus.CANCELLED,
    (InvoiceStatus.PARTIALLY_PAID, InvoiceEvent.PAY_PARTIAL): InvoiceStatus.PARTIALLY_PAID,
    (InvoiceStatus.PARTIALLY_PAID, InvoiceEvent.PAY_FULL): InvoiceStatus.PAID,
    (InvoiceStatus.PAID, InvoiceEvent.REFUND): InvoiceStatus.REFUNDED,
}


@pytest.mark.parametrize("status", list(InvoiceStatus))
@pytest.mark.parametrize("event", list(InvoiceEvent))
def test_every_status_event_pair(status, event):
    expected = EXPECTED.get((status, event))
    if expected is None:
        assert not can_transition(status, event)
        with pytest.raises(InvalidStateTransitionException):
            next_status(status, event)
    else:
        assert can_transition(status, event)
        assert next_status(status, event) == expected


def test_table_matches_expected_pairs():
    flattened = {
        (source, event): target
        for source, events in INVOICE_TRANSITIONS.items()
        for event, target in events.items()
    }
    assert flattened == EXPECTED


@pytest.mark.parametrize("status", sorted(INVOICE_TERMINAL_STATUSES))
def test_terminal_statuses_allow_nothing(status):
    assert allowed_events(status) == set()


def test_paid_only_allows_refund():
    assert allowed_events(InvoiceStatus.PAID) == {InvoiceEvent.REFUND}


def test_invalid_transition_is_a_business_rule_violation():
    with pytest.raises(BusinessRuleException) as exc_info:
        next_status(InvoiceStatus.DRAFT, InvoiceEvent.PAY_FULL)
    assert exc_info.value.code == "INVALID_STATE_TRANSITION"
    assert exc_info.value.status_code == 422
    assert exc_info.value.retryable is False
    assert "DRAFT" in exc_info.value.message
