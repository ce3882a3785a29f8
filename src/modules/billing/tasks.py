"""Celery tasks for invoice lifecycle automation.

No beat entry is registered here; an external scheduler triggers the sweep.
"""

from __future__ import annotations

import asyncio
import logging

from celery_app import celery
from src.database.engine import async_session

logger = logging.getLogger(__name__)


async def _mark_overdue_invoices_async() -> dict:
    """Move ISSUED invoices past their due date to OVERDUE."""
    from src.modules.billing.service import InvoiceService

    async with async_session() as session:
        svc = InvoiceService(session)
        stats = await svc.mark_overdue_invoices()
        await session.commit()

    return stats


@celery.task(name="src.modules.billing.tasks.mark_overdue_invoices")
def mark_overdue_invoices():
    """Celery task: mark past-due invoices OVERDUE."""
    stats = asyncio.run(_mark_overdue_invoices_async())
    logger.info("mark_overdue_invoices: %s", stats)
    return stats
