"""InvoiceSequence model: per-organization, per-year invoice counter."""

from __future__ import annotations

import uuid

from sqlalchemy import Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin


class InvoiceSequence(TimestampMixin, Base):
    """One row per organization; only ever read under an exclusive lock."""

    __tablename__ = "invoice_sequences"

    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    current_year: Mapped[int] = mapped_column(Integer, nullable=False)
    current_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def claim_next(self, year: int) -> int:
        """Advance the counter for ``year`` and return the claimed value.

        A new year restarts the sequence at 1.
        """
        if year != self.current_year:
            self.current_year = year
            self.current_sequence = 0
        self.current_sequence += 1
        return self.current_sequence

    def __repr__(self) -> str:
        return (
            f"<InvoiceSequence org={self.organization_id} "
            f"year={self.current_year} seq={self.current_sequence}>"
        )
