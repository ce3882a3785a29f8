"""InvoiceLineItem model: one billable entry on an invoice."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from src.exceptions import ValidationException
from src.models.enums import LineItemType
from src.modules.billing.money import Money

if TYPE_CHECKING:
    from src.models.invoice import Invoice


class InvoiceLineItem(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "invoice_line_items"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Localized description
    description_en: Mapped[str] = mapped_column(String(500), nullable=False)
    description_ar: Mapped[str | None] = mapped_column(String(500))

    item_type: Mapped[LineItemType] = mapped_column(nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")

    # Snapshot of the derived amounts, kept for reporting queries
    line_total_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    invoice: Mapped[Invoice] = relationship(
        "Invoice", back_populates="line_items", lazy="noload"
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="quantity_positive"),
        CheckConstraint("tax_rate >= 0", name="tax_rate_non_negative"),
        Index("ix_invoice_line_items_invoice_id", "invoice_id"),
    )

    @classmethod
    def build(
        cls,
        *,
        description_en: str,
        quantity: int,
        unit_price: Money,
        item_type: LineItemType = LineItemType.OTHER,
        tax_rate: Decimal | None = None,
        description_ar: str | None = None,
        sort_order: int = 0,
    ) -> InvoiceLineItem:
        """Validate and construct a line item.

        ``tax_rate`` may be left as ``None``; the invoice fills in its own VAT
        rate when the item is attached.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationException(
                f"Line item quantity must be a positive integer, got {quantity!r}"
            )
        if not unit_price.fits_minor_unit():
            raise ValidationException(
                f"Line item unit price {unit_price} has more than two decimal places"
            )
        if tax_rate is not None and tax_rate < 0:
            raise ValidationException(f"Line item tax rate cannot be negative, got {tax_rate}")
        if not description_en or not description_en.strip():
            raise ValidationException("Line item description is required")

        item = cls(
            description_en=description_en,
            description_ar=description_ar,
            item_type=item_type,
            quantity=quantity,
            unit_price=unit_price.amount,
            currency=unit_price.currency,
            tax_rate=tax_rate,
            sort_order=sort_order,
        )
        if tax_rate is not None:
            item.refresh_amounts()
        return item

    @property
    def unit_price_money(self) -> Money:
        return Money.of(self.unit_price, self.currency)

    def line_total(self) -> Money:
        return self.unit_price_money.multiply(self.quantity)

    def line_tax_amount(self) -> Money:
        """Tax for this line alone, rounded half-up before any summation."""
        return self.line_total().percentage(self.tax_rate)

    def refresh_amounts(self) -> None:
        self.line_total_amount = self.line_total().amount
        self.tax_amount = self.line_tax_amount().amount

    def __repr__(self) -> str:
        return (
            f"<InvoiceLineItem {self.quantity} x {self.unit_price} {self.currency} "
            f"@{self.tax_rate}% type={self.item_type}>"
        )
