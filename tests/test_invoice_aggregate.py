"""Unit tests for the Invoice aggregate: totals, lifecycle guards and the payment ledger.

These run entirely in memory; nothing is flushed to a database.
"""

import uuid
from datetime import date
from decimal import Decimal

import pytest

from src.exceptions import (
    BusinessRuleException,
    InvalidStateTransitionException,
    LedgerIntegrityException,
    NotFoundException,
    ValidationException,
)
from src.models.enums import InvoiceStatus, LineItemType, PaymentMethod
from src.models.invoice import Invoice
from src.models.invoice_line_item import InvoiceLineItem
from src.models.invoice_payment import InvoicePayment
from src.modules.billing.money import Money

ORG_ID = uuid.uuid4()
MEMBER_ID = uuid.uuid4()


def _sar(amount: str) -> Money:
    return Money.of(amount, "SAR")


def _line(quantity: int, unit_price: str, tax_rate: str | None, currency: str = "SAR") -> InvoiceLineItem:
    return InvoiceLineItem.build(
        description_en="Item",
        quantity=quantity,
        unit_price=Money.of(unit_price, currency),
        item_type=LineItemType.OTHER,
        tax_rate=Decimal(tax_rate) if tax_rate is not None else None,
    )


def _scenario_invoice() -> Invoice:
    return Invoice.create(
        invoice_number="INV-2025-00001",
        organization_id=ORG_ID,
        member_id=MEMBER_ID,
        line_items=[_line(2, "100.00", "15.00"), _line(1, "50.00", "0")],
    )


def _issued_invoice() -> Invoice:
    invoice = _scenario_invoice()
    invoice.issue(date(2025, 1, 1), 7)
    return invoice


def _snapshot(invoice: Invoice) -> tuple:
    return (
        invoice.status,
        invoice.subtotal,
        invoice.vat_amount,
        invoice.total_amount,
        invoice.paid_amount,
        invoice.issue_date,
        invoice.due_date,
        invoice.paid_date,
        len(invoice.line_items),
        len(invoice.payments),
    )


class TestLineItem:
    def test_line_total_and_tax(self):
        item = _line(2, "100.00", "15.00")
        assert item.line_total() == _sar("200.00")
        assert item.line_tax_amount() == _sar("30.00")
        assert item.line_total_amount == Decimal("200.00")
        assert item.tax_amount == Decimal("30.00")

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_rejects_non_positive_quantity(self, quantity):
        with pytest.raises(ValidationException):
            _line(quantity, "10.00", "15")

    def test_rejects_negative_tax_rate(self):
        with pytest.raises(ValidationException):
            _line(1, "10.00", "-1")

    def test_rejects_blank_description(self):
        with pytest.raises(ValidationException):
            InvoiceLineItem.build(description_en="  ", quantity=1, unit_price=_sar("1.00"))

    def test_rejects_sub_cent_unit_price(self):
        with pytest.raises(ValidationException, match="two decimal places"):
            _line(1, "10.005", "15")

    def test_trailing_zeros_are_not_sub_cent(self):
        item = _line(1, "10.500", "0")
        assert item.line_total() == _sar("10.50")


class TestTotals:
    def test_scenario_totals(self):
        invoice = _scenario_invoice()
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.currency == "SAR"
        assert invoice.subtotal_money == _sar("250.00")
        assert invoice.vat_money == _sar("30.00")
        assert invoice.total_money == _sar("280.00")
        assert invoice.remaining_balance() == _sar("280.00")

    def test_totals_identity(self):
        invoice = Invoice.create(
            invoice_number="INV-2025-00002",
            organization_id=ORG_ID,
            member_id=MEMBER_ID,
            line_items=[
                _line(3, "19.99", "15"),
                _line(1, "7.35", "5"),
                _line(4, "0.33", "15"),
            ],
        )
        subtotal = sum((li.line_total() for li in invoice.line_items), _sar("0"))
        vat = sum((li.line_tax_amount() for li in invoice.line_items), _sar("0"))
        assert invoice.subtotal_money == subtotal
        assert invoice.vat_money == vat
        assert invoice.total_money == invoice.subtotal_money + invoice.vat_money

    def test_lines_without_tax_rate_inherit_invoice_vat_rate(self):
        invoice = Invoice.create(
            invoice_number="INV-2025-00003",
            organization_id=ORG_ID,
            member_id=MEMBER_ID,
            line_items=[_line(1, "100.00", None)],
            vat_rate=Decimal("5.00"),
        )
        assert invoice.line_items[0].tax_rate == Decimal("5.00")
        assert invoice.vat_money == _sar("5.00")

    def test_sort_order_follows_input(self):
        invoice = _scenario_invoice()
        assert [li.sort_order for li in invoice.line_items] == [0, 1]

    def test_requires_line_items(self):
        with pytest.raises(ValidationException):
            Invoice.create(
                invoice_number="INV-2025-00004",
                organization_id=ORG_ID,
                member_id=MEMBER_ID,
                line_items=[],
            )

    def test_rejects_mixed_currencies(self):
        with pytest.raises(ValidationException, match="currency"):
            Invoice.create(
                invoice_number="INV-2025-00005",
                organization_id=ORG_ID,
                member_id=MEMBER_ID,
                line_items=[_line(1, "10.00", "15"), _line(1, "10.00", "15", currency="USD")],
            )

    def test_flat_and_per_line_vat_agree_when_lines_are_exact(self):
        invoice = _scenario_invoice()
        # 15% of 200.00 is exact and the other line is untaxed
        single_rate = Invoice.create(
            invoice_number="INV-2025-00006",
            organization_id=ORG_ID,
            member_id=MEMBER_ID,
            line_items=[_line(2, "100.00", "15.00")],
        )
        assert single_rate.flat_vat_amount() == single_rate.vat_money
        assert invoice.vat_money == _sar("30.00")

    def test_flat_and_per_line_vat_diverge_on_sub_cent_lines(self):
        invoice = Invoice.create(
            invoice_number="INV-2025-00007",
            organization_id=ORG_ID,
            member_id=MEMBER_ID,
            line_items=[_line(1, "0.05", "15"), _line(1, "0.05", "15"), _line(1, "0.05", "15")],
        )
        # Each line rounds 0.0075 up to 0.01; one rounding of 0.0225 gives 0.02.
        assert invoice.vat_money == _sar("0.03")
        assert invoice.flat_vat_amount() == _sar("0.02")
        assert invoice.total_money == _sar("0.18")


class TestDraftEditing:
    def test_add_line_item_recalculates(self):
        invoice = _scenario_invoice()
        invoice.add_line_item(_line(1, "20.00", "15"))
        assert invoice.total_money == _sar("303.00")
        assert invoice.line_items[-1].sort_order == 2

    def test_remove_line_item_recalculates(self):
        invoice = _scenario_invoice()
        locker = invoice.line_items[1]
        locker.id = uuid.uuid4()
        invoice.remove_line_item(locker.id)
        assert invoice.total_money == _sar("230.00")
        assert len(invoice.line_items) == 1

    def test_remove_unknown_line_item(self):
        invoice = _scenario_invoice()
        with pytest.raises(NotFoundException):
            invoice.remove_line_item(uuid.uuid4())

    def test_editing_after_issue_is_rejected_without_mutation(self):
        invoice = _issued_invoice()
        before = _snapshot(invoice)
        with pytest.raises(InvalidStateTransitionException):
            invoice.add_line_item(_line(1, "20.00", "15"))
        with pytest.raises(InvalidStateTransitionException):
            invoice.remove_line_item(uuid.uuid4())
        assert _snapshot(invoice) == before


class TestLifecycle:
    def test_issue_sets_dates(self):
        invoice = _issued_invoice()
        assert invoice.status == InvoiceStatus.ISSUED
        assert invoice.issue_date == date(2025, 1, 1)
        assert invoice.due_date == date(2025, 1, 8)

    def test_issue_twice_is_rejected(self):
        invoice = _issued_invoice()
        before = _snapshot(invoice)
        with pytest.raises(InvalidStateTransitionException):
            invoice.issue(date(2025, 2, 1), 7)
        assert _snapshot(invoice) == before

    def test_issue_rejects_negative_due_days(self):
        invoice = _scenario_invoice()
        with pytest.raises(ValidationException):
            invoice.issue(date(2025, 1, 1), -1)
        assert invoice.status == InvoiceStatus.DRAFT

    def test_full_payment_scenario(self):
        invoice = _issued_invoice()

        invoice.record_payment(_sar("100.00"), PaymentMethod.CASH, paid_on=date(2025, 1, 3))
        assert invoice.status == InvoiceStatus.PARTIALLY_PAID
        assert invoice.paid_money == _sar("100.00")
        assert invoice.remaining_balance() == _sar("180.00")
        assert invoice.paid_date is None

        invoice.record_payment(
            _sar("180.00"), PaymentMethod.MADA, "POS-42", paid_on=date(2025, 1, 5)
        )
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.paid_money == _sar("280.00")
        assert invoice.paid_date == date(2025, 1, 5)
        assert invoice.payment_method == PaymentMethod.MADA
        assert invoice.payment_reference == "POS-42"
        assert [p.amount for p in invoice.payments] == [Decimal("100.00"), Decimal("180.00")]

    def test_exact_single_payment_goes_straight_to_paid(self):
        invoice = _issued_invoice()
        invoice.record_payment(_sar("280.00"), PaymentMethod.CARD, paid_on=date(2025, 1, 2))
        assert invoice.status == InvoiceStatus.PAID

    def test_payment_on_overdue_invoice(self):
        invoice = _issued_invoice()
        invoice.mark_overdue(date(2025, 1, 9))
        invoice.record_payment(_sar("80.00"), PaymentMethod.CASH, paid_on=date(2025, 1, 10))
        assert invoice.status == InvoiceStatus.PARTIALLY_PAID

    def test_overpayment_is_rejected_without_mutation(self):
        invoice = _issued_invoice()
        invoice.record_payment(_sar("200.00"), PaymentMethod.CASH, paid_on=date(2025, 1, 2))
        before = _snapshot(invoice)
        with pytest.raises(BusinessRuleException, match="exceeds"):
            invoice.record_payment(_sar("80.01"), PaymentMethod.CASH, paid_on=date(2025, 1, 3))
        assert _snapshot(invoice) == before

    @pytest.mark.parametrize("amount", ["0", "-5.00"])
    def test_non_positive_payment_is_rejected(self, amount):
        invoice = _issued_invoice()
        with pytest.raises(ValidationException):
            invoice.record_payment(_sar(amount), PaymentMethod.CASH, paid_on=date(2025, 1, 2))
        assert invoice.payments == []

    def test_sub_cent_payment_is_rejected_without_mutation(self):
        invoice = _issued_invoice()
        before = _snapshot(invoice)
        with pytest.raises(ValidationException, match="two decimal places"):
            invoice.record_payment(_sar("279.995"), PaymentMethod.CASH, paid_on=date(2025, 1, 2))
        assert _snapshot(invoice) == before

    def test_last_cent_settles_the_invoice(self):
        invoice = _issued_invoice()
        invoice.record_payment(_sar("279.99"), PaymentMethod.CASH, paid_on=date(2025, 1, 2))
        assert invoice.status == InvoiceStatus.PARTIALLY_PAID

        invoice.record_payment(_sar("0.01"), PaymentMethod.CASH, paid_on=date(2025, 1, 3))
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.paid_money == invoice.total_money
        assert invoice.remaining_balance().is_zero()

    def test_payment_in_other_currency_is_rejected(self):
        invoice = _issued_invoice()
        with pytest.raises(ValidationException, match="currency"):
            invoice.record_payment(
                Money.of("10.00", "USD"), PaymentMethod.CARD, paid_on=date(2025, 1, 2)
            )

    @pytest.mark.parametrize(
        "prepare",
        [
            lambda inv: None,  # DRAFT
            lambda inv: inv.cancel(),
        ],
    )
    def test_payment_outside_payable_statuses(self, prepare):
        invoice = _scenario_invoice()
        prepare(invoice)
        before = _snapshot(invoice)
        with pytest.raises(InvalidStateTransitionException):
            invoice.record_payment(_sar("1.00"), PaymentMethod.CASH, paid_on=date(2025, 1, 2))
        assert _snapshot(invoice) == before

    def test_paid_is_sticky(self):
        invoice = _issued_invoice()
        invoice.record_payment(_sar("280.00"), PaymentMethod.CASH, paid_on=date(2025, 1, 2))
        before = _snapshot(invoice)

        with pytest.raises(InvalidStateTransitionException):
            invoice.record_payment(_sar("1.00"), PaymentMethod.CASH, paid_on=date(2025, 1, 3))
        with pytest.raises(InvalidStateTransitionException):
            invoice.cancel()
        with pytest.raises(InvalidStateTransitionException):
            invoice.mark_overdue(date(2025, 3, 1))
        with pytest.raises(InvalidStateTransitionException):
            invoice.issue(date(2025, 3, 1), 7)
        assert _snapshot(invoice) == before

    def test_payment_monotonicity(self):
        invoice = _issued_invoice()
        previous = invoice.paid_money
        for amount in ["10.00", "0.01", "99.99", "170.00"]:
            invoice.record_payment(_sar(amount), PaymentMethod.CASH, paid_on=date(2025, 1, 2))
            assert invoice.paid_money > previous
            assert invoice.paid_money <= invoice.total_money
            previous = invoice.paid_money
        assert invoice.status == InvoiceStatus.PAID

    def test_cancel_draft_and_issued(self):
        draft = _scenario_invoice()
        draft.cancel()
        assert draft.status == InvoiceStatus.CANCELLED

        issued = _issued_invoice()
        issued.cancel()
        assert issued.status == InvoiceStatus.CANCELLED

    def test_cancel_with_payments_is_rejected(self):
        invoice = _issued_invoice()
        invoice.mark_overdue(date(2025, 1, 9))
        invoice.record_payment(_sar("10.00"), PaymentMethod.CASH, paid_on=date(2025, 1, 10))
        invoice_status = invoice.status
        with pytest.raises(InvalidStateTransitionException):
            invoice.cancel()
        assert invoice.status == invoice_status

    def test_cancelled_is_terminal(self):
        invoice = _scenario_invoice()
        invoice.cancel()
        with pytest.raises(InvalidStateTransitionException):
            invoice.issue(date(2025, 1, 1), 7)
        with pytest.raises(InvalidStateTransitionException):
            invoice.refund()

    def test_mark_overdue_requires_passed_due_date(self):
        invoice = _issued_invoice()
        with pytest.raises(BusinessRuleException):
            invoice.mark_overdue(date(2025, 1, 8))
        assert invoice.status == InvoiceStatus.ISSUED

        invoice.mark_overdue(date(2025, 1, 9))
        assert invoice.status == InvoiceStatus.OVERDUE

    def test_mark_overdue_only_from_issued(self):
        invoice = _scenario_invoice()
        with pytest.raises(InvalidStateTransitionException):
            invoice.mark_overdue(date(2030, 1, 1))

    def test_refund_only_from_paid(self):
        invoice = _issued_invoice()
        with pytest.raises(InvalidStateTransitionException):
            invoice.refund()

        invoice.record_payment(_sar("280.00"), PaymentMethod.CASH, paid_on=date(2025, 1, 2))
        invoice.refund()
        assert invoice.status == InvoiceStatus.REFUNDED


class TestLedgerConsistency:
    def test_entries_sum_to_paid_amount(self):
        invoice = _issued_invoice()
        invoice.record_payment(_sar("100.00"), PaymentMethod.CASH, paid_on=date(2025, 1, 2))
        invoice.record_payment(_sar("50.00"), PaymentMethod.CARD, paid_on=date(2025, 1, 3))
        ledger = sum((Money.of(p.amount, p.currency) for p in invoice.payments), _sar("0"))
        assert ledger == invoice.paid_money
        invoice.assert_ledger_consistent()

    def test_drifted_paid_amount_is_detected(self):
        invoice = _issued_invoice()
        invoice.record_payment(_sar("100.00"), PaymentMethod.CASH, paid_on=date(2025, 1, 2))
        invoice.paid_amount = Decimal("120.00")
        with pytest.raises(LedgerIntegrityException):
            invoice.assert_ledger_consistent()

    def test_paid_above_total_is_detected(self):
        invoice = _issued_invoice()
        invoice.paid_amount = Decimal("300.00")
        invoice.payments.append(
            InvoicePayment(amount=Decimal("300.00"), currency="SAR", method=PaymentMethod.CASH)
        )
        with pytest.raises(LedgerIntegrityException, match="exceeds"):
            invoice.assert_ledger_consistent()
