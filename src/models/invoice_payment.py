"""InvoicePayment model: immutable, append-only payment ledger entry."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from src.models.enums import PaymentMethod

if TYPE_CHECKING:
    from src.models.invoice import Invoice


class InvoicePayment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "invoice_payments"

    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(nullable=False)
    reference: Mapped[str | None] = mapped_column(String(200))
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Double-submission guards, unique per invoice when present
    gateway_transaction_id: Mapped[str | None] = mapped_column(String(200))
    idempotency_key: Mapped[str | None] = mapped_column(String(200))

    invoice: Mapped[Invoice] = relationship(
        "Invoice", back_populates="payments", lazy="noload"
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="amount_positive"),
        Index("ix_invoice_payments_invoice_id", "invoice_id"),
        Index(
            "uq_invoice_payments_invoice_idempotency_key",
            "invoice_id",
            "idempotency_key",
            unique=True,
        ),
        Index(
            "uq_invoice_payments_invoice_gateway_txn",
            "invoice_id",
            "gateway_transaction_id",
            unique=True,
        ),
    )

    def __repr__(self) -> str:
        return f"<InvoicePayment invoice={self.invoice_id} {self.amount} {self.currency} via {self.method}>"
