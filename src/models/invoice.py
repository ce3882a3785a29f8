"""Invoice model: aggregate root of the billing ledger.

Owns the lifecycle state machine and the totals calculation.  Amount columns
are stored as plain decimals next to a single ``currency`` column; every
calculation goes through :class:`~src.modules.billing.money.Money` so that
currencies are checked and rounding happens in exactly one place.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow
from src.exceptions import (
    BusinessRuleException,
    InvalidStateTransitionException,
    LedgerIntegrityException,
    NotFoundException,
    ValidationException,
)
from src.models.enums import InvoiceEvent, InvoiceStatus, PaymentMethod
from src.models.invoice_payment import InvoicePayment
from src.modules.billing.constants import (
    DEFAULT_VAT_RATE,
    EDITABLE_STATUSES,
    PAYABLE_STATUSES,
)
from src.modules.billing.money import Money
from src.modules.billing.transitions import next_status

if TYPE_CHECKING:
    from src.models.invoice_line_item import InvoiceLineItem

logger = logging.getLogger(__name__)


class Invoice(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "invoices"

    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(20), nullable=False)

    # Links
    member_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("members.id", ondelete="RESTRICT"),
        nullable=False,
    )
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("subscriptions.id", ondelete="SET NULL"),
    )

    # Status
    status: Mapped[InvoiceStatus] = mapped_column(
        nullable=False, server_default="DRAFT"
    )

    # Dates
    issue_date: Mapped[date | None] = mapped_column(Date)
    due_date: Mapped[date | None] = mapped_column(Date)
    paid_date: Mapped[date | None] = mapped_column(Date)

    # Amounts
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    vat_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    paid_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2))

    # Latest payment (last write wins; full history lives in ``payments``)
    payment_method: Mapped[PaymentMethod | None] = mapped_column()
    payment_reference: Mapped[str | None] = mapped_column(String(200))

    notes: Mapped[str | None] = mapped_column(Text)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    line_items: Mapped[list[InvoiceLineItem]] = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        order_by="InvoiceLineItem.sort_order",
        lazy="noload",
        cascade="all, delete-orphan",
    )
    payments: Mapped[list[InvoicePayment]] = relationship(
        "InvoicePayment",
        back_populates="invoice",
        order_by="InvoicePayment.paid_at",
        lazy="noload",
        cascade="save-update, merge",
    )

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "invoice_number",
            name="uq_invoices_organization_invoice_number",
        ),
        CheckConstraint(
            "paid_amount IS NULL OR paid_amount <= total_amount",
            name="paid_within_total",
        ),
        Index("ix_invoices_organization_status", "organization_id", "status"),
        Index("ix_invoices_member_id", "member_id"),
        Index("ix_invoices_subscription_id", "subscription_id"),
        Index("ix_invoices_due_date", "due_date"),
    )

    __mapper_args__ = {"version_id_col": version}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        *,
        invoice_number: str,
        organization_id: uuid.UUID,
        member_id: uuid.UUID,
        line_items: list[InvoiceLineItem],
        vat_rate: Decimal = DEFAULT_VAT_RATE,
        subscription_id: uuid.UUID | None = None,
        notes: str | None = None,
    ) -> Invoice:
        """Build a DRAFT invoice with totals derived from ``line_items``.

        Lines without their own tax rate are taxed at ``vat_rate``.  All lines
        must share one currency, which becomes the invoice currency.
        """
        if not line_items:
            raise ValidationException("An invoice requires at least one line item")
        if vat_rate < 0:
            raise ValidationException(f"VAT rate cannot be negative, got {vat_rate}")

        invoice = cls(
            invoice_number=invoice_number,
            organization_id=organization_id,
            member_id=member_id,
            subscription_id=subscription_id,
            status=InvoiceStatus.DRAFT,
            currency=line_items[0].currency,
            vat_rate=vat_rate,
            subtotal=Decimal("0"),
            vat_amount=Decimal("0"),
            total_amount=Decimal("0"),
            notes=notes,
        )
        for position, item in enumerate(line_items):
            invoice._attach(item, sort_order=position)
        invoice.recalculate_totals()
        return invoice

    def _attach(self, item: InvoiceLineItem, sort_order: int) -> None:
        if item.currency != self.currency:
            raise ValidationException(
                f"Line item currency {item.currency} does not match invoice currency {self.currency}"
            )
        if item.tax_rate is None:
            item.tax_rate = self.vat_rate
        item.sort_order = sort_order
        item.refresh_amounts()
        self.line_items.append(item)

    # ------------------------------------------------------------------
    # Money views
    # ------------------------------------------------------------------

    def _money(self, amount: Decimal | None) -> Money:
        return Money.of(amount if amount is not None else Decimal("0"), self.currency)

    @property
    def subtotal_money(self) -> Money:
        return self._money(self.subtotal)

    @property
    def vat_money(self) -> Money:
        return self._money(self.vat_amount)

    @property
    def total_money(self) -> Money:
        return self._money(self.total_amount)

    @property
    def paid_money(self) -> Money:
        return self._money(self.paid_amount)

    def remaining_balance(self) -> Money:
        return self.total_money - self.paid_money

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------

    def recalculate_totals(self) -> None:
        """Re-derive subtotal, VAT and total from the line items.

        VAT is the sum of per-line rounded tax amounts.
        """
        zero = Money.zero(self.currency)
        subtotal = sum((item.line_total() for item in self.line_items), zero)
        vat = sum((item.line_tax_amount() for item in self.line_items), zero)

        self.subtotal = subtotal.amount
        self.vat_amount = vat.amount
        self.total_amount = (subtotal + vat).amount

    def flat_vat_amount(self) -> Money:
        """Single-rate VAT on the whole subtotal (rounded once).

        Kept only to compare with the authoritative per-line figure.
        """
        return self.subtotal_money.percentage(self.vat_rate)

    # ------------------------------------------------------------------
    # Line item mutation (DRAFT only)
    # ------------------------------------------------------------------

    def _require_editable(self, action: str) -> None:
        if self.status not in EDITABLE_STATUSES:
            raise InvalidStateTransitionException(
                f"Cannot {action} on invoice {self.invoice_number} in status "
                f"'{self.status.value}'. Only DRAFT invoices can be edited."
            )

    def add_line_item(self, item: InvoiceLineItem) -> InvoiceLineItem:
        self._require_editable("add a line item")
        next_position = max((li.sort_order for li in self.line_items), default=-1) + 1
        self._attach(item, sort_order=next_position)
        self.recalculate_totals()
        return item

    def remove_line_item(self, item_id: uuid.UUID) -> InvoiceLineItem:
        self._require_editable("remove a line item")
        for item in self.line_items:
            if item.id == item_id:
                self.line_items.remove(item)
                self.recalculate_totals()
                return item
        raise NotFoundException(
            f"Line item {item_id} not found on invoice {self.invoice_number}"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def issue(self, issue_date: date, payment_due_days: int) -> None:
        new_status = next_status(self.status, InvoiceEvent.ISSUE)
        if not self.line_items:
            raise BusinessRuleException(
                f"Invoice {self.invoice_number} has no line items and cannot be issued"
            )
        if payment_due_days < 0:
            raise ValidationException(
                f"Payment due days cannot be negative, got {payment_due_days}"
            )

        self.issue_date = issue_date
        self.due_date = issue_date + timedelta(days=payment_due_days)
        self.status = new_status

    def record_payment(
        self,
        amount: Money,
        method: PaymentMethod,
        reference: str | None = None,
        *,
        paid_on: date,
        paid_at: datetime | None = None,
        gateway_transaction_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> InvoicePayment:
        """Apply a payment and append it to the ledger.

        A payment that would push the paid amount past the total is rejected.
        Reaching the total exactly moves the invoice to PAID.
        """
        if self.status not in PAYABLE_STATUSES:
            raise InvalidStateTransitionException(
                f"Cannot record a payment on invoice {self.invoice_number} in status "
                f"'{self.status.value}'"
            )
        if amount.currency != self.currency:
            raise ValidationException(
                f"Payment currency {amount.currency} does not match invoice currency {self.currency}"
            )
        if not amount.is_positive():
            raise ValidationException(f"Payment amount must be positive, got {amount}")
        if not amount.fits_minor_unit():
            raise ValidationException(
                f"Payment amount {amount} has more than two decimal places"
            )

        new_paid = self.paid_money + amount
        if new_paid > self.total_money:
            raise BusinessRuleException(
                f"Payment of {amount} exceeds the remaining balance "
                f"{self.remaining_balance()} on invoice {self.invoice_number}"
            )

        event = (
            InvoiceEvent.PAY_FULL
            if new_paid.compare_to(self.total_money) == 0
            else InvoiceEvent.PAY_PARTIAL
        )
        new_status = next_status(self.status, event)

        entry = InvoicePayment(
            organization_id=self.organization_id,
            amount=amount.amount,
            currency=amount.currency,
            method=method,
            reference=reference,
            paid_at=paid_at or utcnow(),
            gateway_transaction_id=gateway_transaction_id,
            idempotency_key=idempotency_key,
        )
        self.payments.append(entry)

        self.paid_amount = new_paid.amount
        self.payment_method = method
        self.payment_reference = reference
        self.status = new_status
        if new_status == InvoiceStatus.PAID:
            self.paid_date = paid_on

        self.assert_ledger_consistent()
        return entry

    def cancel(self) -> None:
        new_status = next_status(self.status, InvoiceEvent.CANCEL)
        if self.paid_money.is_positive() or self.payments:
            raise BusinessRuleException(
                f"Invoice {self.invoice_number} has recorded payments and cannot be cancelled"
            )
        self.status = new_status

    def mark_overdue(self, today: date) -> None:
        new_status = next_status(self.status, InvoiceEvent.MARK_OVERDUE)
        if self.due_date is None or not today > self.due_date:
            raise BusinessRuleException(
                f"Invoice {self.invoice_number} is not past its due date ({self.due_date})"
            )
        self.status = new_status

    def refund(self) -> None:
        self.status = next_status(self.status, InvoiceEvent.REFUND)

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------

    def assert_ledger_consistent(self) -> None:
        """Check paid <= total and that ledger entries sum to the paid amount."""
        paid = self.paid_money
        if paid > self.total_money:
            logger.critical(
                "Ledger integrity violation on invoice %s: paid %s exceeds total %s",
                self.invoice_number,
                paid,
                self.total_money,
            )
            raise LedgerIntegrityException(
                f"Invoice {self.invoice_number} paid amount exceeds its total"
            )

        ledger_total = sum(
            (Money.of(entry.amount, entry.currency) for entry in self.payments),
            Money.zero(self.currency),
        )
        if ledger_total.compare_to(paid) != 0:
            logger.critical(
                "Ledger integrity violation on invoice %s: entries sum to %s, paid amount is %s",
                self.invoice_number,
                ledger_total,
                paid,
            )
            raise LedgerIntegrityException(
                f"Invoice {self.invoice_number} payment entries do not reconcile with its paid amount"
            )

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number} status={self.status} total={self.total_amount} {self.currency}>"
