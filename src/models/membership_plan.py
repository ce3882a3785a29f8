"""MembershipPlan model: plan catalog entry with its fee structure."""

from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


def _fee_column() -> Mapped[Decimal]:
    return mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0"), server_default="0"
    )


def _tax_rate_column() -> Mapped[Decimal]:
    return mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("15"), server_default="15"
    )


class MembershipPlan(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "membership_plans"

    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    name_en: Mapped[str] = mapped_column(String(255), nullable=False)
    name_ar: Mapped[str | None] = mapped_column(String(255))
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="SAR", server_default="SAR"
    )

    # Fees are net of tax; each carries its own tax rate
    membership_fee: Mapped[Decimal] = _fee_column()
    membership_fee_tax_rate: Mapped[Decimal] = _tax_rate_column()
    administration_fee: Mapped[Decimal] = _fee_column()
    administration_fee_tax_rate: Mapped[Decimal] = _tax_rate_column()
    join_fee: Mapped[Decimal] = _fee_column()
    join_fee_tax_rate: Mapped[Decimal] = _tax_rate_column()

    __table_args__ = (Index("ix_membership_plans_organization_id", "organization_id"),)
