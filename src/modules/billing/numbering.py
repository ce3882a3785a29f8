"""Invoice number allocation, per organization and year, under a row lock."""

from __future__ import annotations

import logging
import re
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import ValidationException
from src.models.invoice_sequence import InvoiceSequence
from src.modules.billing.constants import INVOICE_NUMBER_PREFIX, INVOICE_SEQUENCE_WIDTH

logger = logging.getLogger(__name__)

_INVOICE_NUMBER_RE = re.compile(
    rf"^{INVOICE_NUMBER_PREFIX}-(\d{{4}})-(\d{{{INVOICE_SEQUENCE_WIDTH},}})$"
)


def format_invoice_number(year: int, sequence: int) -> str:
    """Render ``INV-YYYY-NNNNN``; the format is printed on documents and searched by users."""
    return f"{INVOICE_NUMBER_PREFIX}-{year:04d}-{sequence:0{INVOICE_SEQUENCE_WIDTH}d}"


def parse_invoice_number(invoice_number: str) -> tuple[int, int]:
    """Split an invoice number into ``(year, sequence)``."""
    match = _INVOICE_NUMBER_RE.match(invoice_number)
    if match is None:
        raise ValidationException(f"Malformed invoice number '{invoice_number}'")
    return int(match.group(1)), int(match.group(2))


class InvoiceNumberingService:
    """Hands out invoice numbers from the organization's counter row.

    The counter is read with ``SELECT ... FOR UPDATE`` so the
    read-increment-write happens under an exclusive row lock held until the
    caller's transaction ends.  The increment is flushed in that same
    transaction: if the invoice insert later fails and the transaction rolls
    back, the increment goes with it and the next caller gets that number.
    No two persisted invoices can share a number.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def next_number(self, organization_id: uuid.UUID, year: int) -> str:
        sequence = await self._lock_counter(organization_id)
        if sequence is None:
            sequence = await self._create_counter(organization_id, year)

        value = sequence.claim_next(year)
        await self.db.flush()

        invoice_number = format_invoice_number(year, value)
        logger.debug("Claimed invoice number %s for organization %s", invoice_number, organization_id)
        return invoice_number

    async def _lock_counter(self, organization_id: uuid.UUID) -> InvoiceSequence | None:
        result = await self.db.execute(
            select(InvoiceSequence)
            .where(InvoiceSequence.organization_id == organization_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _create_counter(self, organization_id: uuid.UUID, year: int) -> InvoiceSequence:
        """Insert the organization's first counter row.

        Two first-ever requests can race here; the loser's insert fails on the
        primary key inside its savepoint and it falls back to locking the row
        the winner created.
        """
        try:
            async with self.db.begin_nested():
                sequence = InvoiceSequence(
                    organization_id=organization_id,
                    current_year=year,
                    current_sequence=0,
                )
                self.db.add(sequence)
            logger.info("Created invoice sequence for organization %s", organization_id)
            return sequence
        except IntegrityError:
            logger.info(
                "Invoice sequence for organization %s created concurrently, locking existing row",
                organization_id,
            )
            existing = await self._lock_counter(organization_id)
            if existing is None:
                raise
            return existing
