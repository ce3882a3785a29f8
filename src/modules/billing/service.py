"""Invoice lifecycle service: numbering, issuance, payments, overdue sweep."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from src.config import settings
from src.exceptions import (
    AppException,
    BusinessRuleException,
    ConcurrencyConflictException,
    NotFoundException,
    ValidationException,
)
from src.models.enums import InvoiceStatus, LineItemType, PaymentMethod
from src.models.invoice import Invoice
from src.models.invoice_line_item import InvoiceLineItem
from src.models.invoice_payment import InvoicePayment
from src.models.membership_plan import MembershipPlan
from src.modules.billing.constants import UNPAID_STATUSES
from src.modules.billing.directory import MemberDirectory, PlanCatalog
from src.modules.billing.money import Money
from src.modules.billing.numbering import InvoiceNumberingService
from src.modules.billing.schemas import BulkPaymentItem, LineItemCreate
from src.schemas.responses import BulkItemResult, BulkItemStatus

logger = logging.getLogger(__name__)


def billing_today() -> date:
    """Current calendar date in the billing timezone."""
    return datetime.now(ZoneInfo(settings.billing_timezone)).date()


class InvoiceService:
    """Transactional boundary for every invoice operation.

    All reads and writes are scoped to one organization.  Mutations load the
    invoice under a row lock and flush before returning, so optimistic-lock
    conflicts surface here as :class:`ConcurrencyConflictException`.
    """

    def __init__(self, db: AsyncSession, today: Callable[[], date] | None = None):
        self.db = db
        self._today = today or billing_today
        self.numbering = InvoiceNumberingService(db)
        self.members = MemberDirectory(db)
        self.plans = PlanCatalog(db)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_invoice(
        self,
        organization_id: uuid.UUID,
        member_id: uuid.UUID,
        lines: Sequence[LineItemCreate],
        vat_rate: Decimal | None = None,
        subscription_id: uuid.UUID | None = None,
        notes: str | None = None,
    ) -> Invoice:
        """Create a DRAFT invoice for a member from manual line items."""
        if not await self.members.member_exists(organization_id, member_id):
            raise NotFoundException(f"Member {member_id} not found")

        items = [self._build_line_item(line) for line in lines]
        return await self._persist_new_invoice(
            organization_id=organization_id,
            member_id=member_id,
            line_items=items,
            vat_rate=settings.default_vat_rate if vat_rate is None else vat_rate,
            subscription_id=subscription_id,
            notes=notes,
        )

    async def create_invoice_from_subscription(
        self,
        organization_id: uuid.UUID,
        subscription_id: uuid.UUID,
        notes: str | None = None,
    ) -> Invoice:
        """Create a DRAFT invoice from the subscription plan's fee structure.

        The joining fee is charged only on the member's first subscription.
        Refused while the subscription still has an unpaid invoice.
        """
        subscription = await self.plans.subscription_by_id(organization_id, subscription_id)

        unpaid_result = await self.db.execute(
            select(Invoice)
            .where(
                Invoice.subscription_id == subscription_id,
                Invoice.status.in_(UNPAID_STATUSES),
            )
            .order_by(Invoice.created_at)
            .limit(1)
        )
        unpaid = unpaid_result.scalar_one_or_none()
        if unpaid is not None:
            raise BusinessRuleException(
                f"Subscription {subscription_id} already has an unpaid invoice. "
                f"Invoice {unpaid.invoice_number} is {unpaid.status.value}; "
                "pay, cancel or refund it first."
            )

        plan = await self.plans.plan_by_id(organization_id, subscription.plan_id)
        member = await self.members.member_by_id(organization_id, subscription.member_id)

        subscription_count = await self.plans.count_member_subscriptions(member.id)
        items = self._plan_fee_lines(plan, include_join_fee=subscription_count <= 1)
        if not items:
            raise BusinessRuleException(
                f"Membership plan {plan.id} has no fees configured"
            )

        invoice = await self._persist_new_invoice(
            organization_id=organization_id,
            member_id=member.id,
            line_items=items,
            vat_rate=settings.default_vat_rate,
            subscription_id=subscription.id,
            notes=notes,
        )
        logger.info(
            "Created invoice %s for subscription %s (member %s)",
            invoice.invoice_number,
            subscription_id,
            member.id,
        )
        return invoice

    async def _persist_new_invoice(
        self,
        *,
        organization_id: uuid.UUID,
        member_id: uuid.UUID,
        line_items: list[InvoiceLineItem],
        vat_rate: Decimal,
        subscription_id: uuid.UUID | None,
        notes: str | None,
    ) -> Invoice:
        # The counter row stays locked until commit; a rollback releases the number.
        invoice_number = await self.numbering.next_number(
            organization_id, self._today().year
        )
        invoice = Invoice.create(
            invoice_number=invoice_number,
            organization_id=organization_id,
            member_id=member_id,
            line_items=line_items,
            vat_rate=vat_rate,
            subscription_id=subscription_id,
            notes=notes,
        )
        self.db.add(invoice)
        await self._flush()

        logger.info(
            "Created invoice %s for member %s (total: %s)",
            invoice.invoice_number,
            member_id,
            invoice.total_money,
        )
        return invoice

    @staticmethod
    def _build_line_item(line: LineItemCreate) -> InvoiceLineItem:
        try:
            unit_price = Money.of(line.unit_price, line.currency)
        except ValueError as exc:
            raise ValidationException(str(exc)) from exc
        return InvoiceLineItem.build(
            description_en=line.description_en,
            description_ar=line.description_ar,
            item_type=line.item_type,
            quantity=line.quantity,
            unit_price=unit_price,
            tax_rate=line.tax_rate,
        )

    @staticmethod
    def _plan_fee_lines(plan: MembershipPlan, include_join_fee: bool) -> list[InvoiceLineItem]:
        fees = [
            (
                plan.membership_fee,
                plan.membership_fee_tax_rate,
                LineItemType.SUBSCRIPTION,
                f"Membership Fee - {plan.name_en}",
                f"رسوم العضوية - {plan.name_ar or plan.name_en}",
            ),
            (
                plan.administration_fee,
                plan.administration_fee_tax_rate,
                LineItemType.OTHER,
                "Administration Fee",
                "رسوم إدارية",
            ),
        ]
        if include_join_fee:
            fees.append(
                (
                    plan.join_fee,
                    plan.join_fee_tax_rate,
                    LineItemType.OTHER,
                    "Joining Fee (One-time)",
                    "رسوم الانضمام (مرة واحدة)",
                )
            )

        items = []
        for amount, tax_rate, item_type, description_en, description_ar in fees:
            if not amount:
                continue
            items.append(
                InvoiceLineItem.build(
                    description_en=description_en,
                    description_ar=description_ar,
                    item_type=item_type,
                    quantity=1,
                    unit_price=Money.of(amount, plan.currency),
                    tax_rate=tax_rate,
                )
            )
        return items

    # ------------------------------------------------------------------
    # Get / List invoices
    # ------------------------------------------------------------------

    async def get_invoice(
        self, organization_id: uuid.UUID, invoice_id: uuid.UUID
    ) -> Invoice:
        """Get an invoice with its line items and payments."""
        result = await self.db.execute(
            select(Invoice)
            .options(selectinload(Invoice.line_items), selectinload(Invoice.payments))
            .where(Invoice.id == invoice_id, Invoice.organization_id == organization_id)
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise NotFoundException(f"Invoice {invoice_id} not found")
        return invoice

    async def get_invoice_by_number(
        self, organization_id: uuid.UUID, invoice_number: str
    ) -> Invoice:
        result = await self.db.execute(
            select(Invoice)
            .options(selectinload(Invoice.line_items), selectinload(Invoice.payments))
            .where(
                Invoice.invoice_number == invoice_number,
                Invoice.organization_id == organization_id,
            )
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise NotFoundException(f"Invoice {invoice_number} not found")
        return invoice

    async def _get_for_update(
        self, organization_id: uuid.UUID, invoice_id: uuid.UUID
    ) -> Invoice:
        result = await self.db.execute(
            select(Invoice)
            .options(selectinload(Invoice.line_items), selectinload(Invoice.payments))
            .where(Invoice.id == invoice_id, Invoice.organization_id == organization_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise NotFoundException(f"Invoice {invoice_id} not found")
        return invoice

    async def list_invoices(
        self,
        organization_id: uuid.UUID,
        search: str | None = None,
        status: InvoiceStatus | None = None,
        member_id: uuid.UUID | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Invoice], int]:
        """List an organization's invoices, newest first, paginated."""
        filters = [Invoice.organization_id == organization_id]
        if search:
            filters.append(Invoice.invoice_number.ilike(f"%{search}%"))
        if status is not None:
            filters.append(Invoice.status == status)
        if member_id is not None:
            filters.append(Invoice.member_id == member_id)
        if date_from is not None:
            start = datetime.combine(date_from, time.min, tzinfo=UTC)
            filters.append(Invoice.created_at >= start)
        if date_to is not None:
            end = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=UTC)
            filters.append(Invoice.created_at < end)

        total_result = await self.db.execute(
            select(func.count()).select_from(Invoice).where(*filters)
        )
        total = total_result.scalar() or 0

        result = await self.db.execute(
            select(Invoice)
            .where(*filters)
            .order_by(Invoice.created_at.desc(), Invoice.invoice_number.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def list_member_invoices(
        self,
        organization_id: uuid.UUID,
        member_id: uuid.UUID,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Invoice], int]:
        return await self.list_invoices(
            organization_id, member_id=member_id, limit=limit, offset=offset
        )

    async def list_pending(
        self, organization_id: uuid.UUID, limit: int = 20, offset: int = 0
    ) -> tuple[list[Invoice], int]:
        """ISSUED invoices awaiting payment, earliest due first."""
        return await self._list_by_status_due(
            organization_id, InvoiceStatus.ISSUED, limit, offset
        )

    async def list_overdue(
        self, organization_id: uuid.UUID, limit: int = 20, offset: int = 0
    ) -> tuple[list[Invoice], int]:
        return await self._list_by_status_due(
            organization_id, InvoiceStatus.OVERDUE, limit, offset
        )

    async def _list_by_status_due(
        self,
        organization_id: uuid.UUID,
        status: InvoiceStatus,
        limit: int,
        offset: int,
    ) -> tuple[list[Invoice], int]:
        filters = [Invoice.organization_id == organization_id, Invoice.status == status]

        total_result = await self.db.execute(
            select(func.count()).select_from(Invoice).where(*filters)
        )
        total = total_result.scalar() or 0

        result = await self.db.execute(
            select(Invoice)
            .where(*filters)
            .order_by(Invoice.due_date.asc(), Invoice.invoice_number.asc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def count_by_status(
        self, organization_id: uuid.UUID, status: InvoiceStatus
    ) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(Invoice)
            .where(Invoice.organization_id == organization_id, Invoice.status == status)
        )
        return result.scalar() or 0

    async def get_summary(self, organization_id: uuid.UUID) -> dict[str, int]:
        result = await self.db.execute(
            select(Invoice.status, func.count())
            .where(
                Invoice.organization_id == organization_id,
                Invoice.status.in_(
                    [InvoiceStatus.ISSUED, InvoiceStatus.OVERDUE, InvoiceStatus.PAID]
                ),
            )
            .group_by(Invoice.status)
        )
        counts = {status: count for status, count in result.all()}
        pending = counts.get(InvoiceStatus.ISSUED, 0)
        overdue = counts.get(InvoiceStatus.OVERDUE, 0)
        paid = counts.get(InvoiceStatus.PAID, 0)
        return {
            "total_invoices": pending + overdue + paid,
            "pending_count": pending,
            "overdue_count": overdue,
            "paid_count": paid,
        }

    # ------------------------------------------------------------------
    # Draft editing
    # ------------------------------------------------------------------

    async def update_invoice(
        self,
        organization_id: uuid.UUID,
        invoice_id: uuid.UUID,
        notes: str | None,
    ) -> Invoice:
        invoice = await self._get_for_update(organization_id, invoice_id)
        invoice.notes = notes
        await self._flush()
        return invoice

    async def add_line_item(
        self,
        organization_id: uuid.UUID,
        invoice_id: uuid.UUID,
        line: LineItemCreate,
    ) -> Invoice:
        invoice = await self._get_for_update(organization_id, invoice_id)
        invoice.add_line_item(self._build_line_item(line))
        await self._flush()
        logger.info(
            "Added line item to invoice %s (new total: %s)",
            invoice.invoice_number,
            invoice.total_money,
        )
        return invoice

    async def remove_line_item(
        self,
        organization_id: uuid.UUID,
        invoice_id: uuid.UUID,
        item_id: uuid.UUID,
    ) -> Invoice:
        invoice = await self._get_for_update(organization_id, invoice_id)
        invoice.remove_line_item(item_id)
        await self._flush()
        logger.info(
            "Removed line item %s from invoice %s (new total: %s)",
            item_id,
            invoice.invoice_number,
            invoice.total_money,
        )
        return invoice

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def issue_invoice(
        self,
        organization_id: uuid.UUID,
        invoice_id: uuid.UUID,
        issue_date: date | None = None,
        payment_due_days: int | None = None,
    ) -> Invoice:
        """DRAFT -> ISSUED; the due date is ``issue_date + payment_due_days``."""
        invoice = await self._get_for_update(organization_id, invoice_id)
        invoice.issue(
            issue_date or self._today(),
            settings.invoice_payment_due_days if payment_due_days is None else payment_due_days,
        )
        await self._flush()
        logger.info(
            "Invoice %s issued (due %s)", invoice.invoice_number, invoice.due_date
        )
        return invoice

    async def record_payment(
        self,
        organization_id: uuid.UUID,
        invoice_id: uuid.UUID,
        amount: Decimal,
        payment_method: PaymentMethod,
        payment_reference: str | None = None,
        *,
        currency: str | None = None,
        paid_on: date | None = None,
        gateway_transaction_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> Invoice:
        """Apply a payment under a row lock.

        A repeated submission carrying an idempotency key or gateway
        transaction id already on the ledger returns the invoice unchanged.
        """
        invoice = await self._get_for_update(organization_id, invoice_id)

        duplicate = self._find_duplicate_payment(
            invoice, idempotency_key, gateway_transaction_id
        )
        if duplicate is not None:
            logger.info(
                "Ignoring duplicate payment on invoice %s (existing entry %s)",
                invoice.invoice_number,
                duplicate.id,
            )
            return invoice

        try:
            money = Money.of(amount, currency or invoice.currency)
        except ValueError as exc:
            raise ValidationException(str(exc)) from exc

        old_status = invoice.status
        invoice.record_payment(
            money,
            payment_method,
            payment_reference,
            paid_on=paid_on or self._today(),
            paid_at=datetime.combine(paid_on, time.min, tzinfo=UTC) if paid_on else None,
            gateway_transaction_id=gateway_transaction_id,
            idempotency_key=idempotency_key,
        )
        await self._flush()

        logger.info(
            "Recorded payment of %s on invoice %s (%s -> %s, paid %s of %s)",
            money,
            invoice.invoice_number,
            old_status.value,
            invoice.status.value,
            invoice.paid_money,
            invoice.total_money,
        )
        return invoice

    @staticmethod
    def _find_duplicate_payment(
        invoice: Invoice,
        idempotency_key: str | None,
        gateway_transaction_id: str | None,
    ) -> InvoicePayment | None:
        for entry in invoice.payments:
            if idempotency_key and entry.idempotency_key == idempotency_key:
                return entry
            if gateway_transaction_id and entry.gateway_transaction_id == gateway_transaction_id:
                return entry
        return None

    async def cancel_invoice(
        self, organization_id: uuid.UUID, invoice_id: uuid.UUID
    ) -> Invoice:
        invoice = await self._get_for_update(organization_id, invoice_id)
        old_status = invoice.status
        invoice.cancel()
        await self._flush()
        logger.info(
            "Invoice %s cancelled (was %s)", invoice.invoice_number, old_status.value
        )
        return invoice

    async def refund_invoice(
        self, organization_id: uuid.UUID, invoice_id: uuid.UUID
    ) -> Invoice:
        invoice = await self._get_for_update(organization_id, invoice_id)
        invoice.refund()
        await self._flush()
        logger.info("Invoice %s refunded", invoice.invoice_number)
        return invoice

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def get_payments(
        self, organization_id: uuid.UUID, invoice_id: uuid.UUID
    ) -> list[InvoicePayment]:
        invoice = await self.get_invoice(organization_id, invoice_id)
        return list(invoice.payments)

    async def get_reconciliation(
        self, organization_id: uuid.UUID, invoice_id: uuid.UUID
    ) -> dict:
        """Compare the ledger entries against the invoice's paid amount."""
        invoice = await self.get_invoice(organization_id, invoice_id)

        ledger_total = sum(
            (Money.of(entry.amount, entry.currency) for entry in invoice.payments),
            Money.zero(invoice.currency),
        )
        paid = invoice.paid_money
        return {
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "status": invoice.status,
            "currency": invoice.currency,
            "total_amount": invoice.total_money.amount,
            "paid_amount": paid.amount,
            "ledger_total": ledger_total.amount,
            "remaining_balance": invoice.remaining_balance().amount,
            "payment_count": len(invoice.payments),
            "balanced": ledger_total.compare_to(paid) == 0,
        }

    # ------------------------------------------------------------------
    # Overdue sweep
    # ------------------------------------------------------------------

    async def mark_overdue_invoices(
        self,
        today: date | None = None,
        organization_id: uuid.UUID | None = None,
    ) -> dict[str, int]:
        """Move every ISSUED invoice past its due date to OVERDUE.

        With no ``organization_id`` the sweep runs across all organizations
        (the scheduled task); otherwise only that organization's invoices are
        considered.  Each invoice is marked inside its own savepoint; a
        failure is counted and logged and the sweep moves on.  OVERDUE
        invoices are never selected again.
        """
        today = today or self._today()
        query = select(Invoice).where(
            Invoice.status == InvoiceStatus.ISSUED, Invoice.due_date < today
        )
        if organization_id is not None:
            query = query.where(Invoice.organization_id == organization_id)
        result = await self.db.execute(
            query.order_by(Invoice.due_date).with_for_update()
        )
        invoices = list(result.scalars().all())

        stats = {"checked": len(invoices), "marked": 0, "errors": 0}
        for invoice in invoices:
            invoice_number = invoice.invoice_number
            try:
                async with self.db.begin_nested():
                    invoice.mark_overdue(today)
                stats["marked"] += 1
            except (AppException, StaleDataError):
                stats["errors"] += 1
                logger.exception("Failed to mark invoice %s overdue", invoice_number)

        logger.info(
            "Overdue sweep for %s: checked=%d marked=%d errors=%d",
            today,
            stats["checked"],
            stats["marked"],
            stats["errors"],
        )
        return stats

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    async def bulk_issue(
        self,
        organization_id: uuid.UUID,
        invoice_ids: Sequence[uuid.UUID],
        payment_due_days: int | None = None,
    ) -> list[BulkItemResult]:
        async def _issue(invoice_id: uuid.UUID) -> str:
            invoice = await self.issue_invoice(
                organization_id, invoice_id, payment_due_days=payment_due_days
            )
            return f"Invoice {invoice.invoice_number} issued"

        return [
            await self._run_bulk_item(invoice_id, _issue)
            for invoice_id in self._check_batch(invoice_ids)
        ]

    async def bulk_cancel(
        self, organization_id: uuid.UUID, invoice_ids: Sequence[uuid.UUID]
    ) -> list[BulkItemResult]:
        async def _cancel(invoice_id: uuid.UUID) -> str:
            invoice = await self.cancel_invoice(organization_id, invoice_id)
            return f"Invoice {invoice.invoice_number} cancelled"

        return [
            await self._run_bulk_item(invoice_id, _cancel)
            for invoice_id in self._check_batch(invoice_ids)
        ]

    async def bulk_record_payments(
        self, organization_id: uuid.UUID, payments: Sequence[BulkPaymentItem]
    ) -> list[BulkItemResult]:
        results = []
        for item in self._check_batch(payments):

            async def _pay(invoice_id: uuid.UUID, item: BulkPaymentItem = item) -> str:
                invoice = await self.record_payment(
                    organization_id,
                    invoice_id,
                    item.amount,
                    item.payment_method,
                    item.payment_reference,
                    gateway_transaction_id=item.gateway_transaction_id,
                )
                return f"Invoice {invoice.invoice_number} is {invoice.status.value}"

            results.append(await self._run_bulk_item(item.invoice_id, _pay))
        return results

    async def bulk_create_from_subscriptions(
        self, organization_id: uuid.UUID, subscription_ids: Sequence[uuid.UUID]
    ) -> list[BulkItemResult]:
        async def _create(subscription_id: uuid.UUID) -> str:
            invoice = await self.create_invoice_from_subscription(
                organization_id, subscription_id
            )
            return f"Invoice {invoice.invoice_number} created"

        return [
            await self._run_bulk_item(subscription_id, _create)
            for subscription_id in self._check_batch(subscription_ids)
        ]

    @staticmethod
    def _check_batch(items: Sequence) -> Sequence:
        if len(items) > settings.bulk_max_items:
            raise ValidationException(
                f"Bulk requests are limited to {settings.bulk_max_items} items, got {len(items)}"
            )
        return items

    async def _run_bulk_item(self, item_id: uuid.UUID, operation) -> BulkItemResult:
        try:
            async with self.db.begin_nested():
                message = await operation(item_id)
        except AppException as exc:
            logger.warning("Bulk item %s failed: %s", item_id, exc.message)
            return BulkItemResult(
                item_id=item_id,
                status=BulkItemStatus.FAILED,
                message=exc.message,
                error_code=exc.code,
            )
        return BulkItemResult(item_id=item_id, status=BulkItemStatus.SUCCESS, message=message)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _flush(self) -> None:
        try:
            await self.db.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflictException(
                "The invoice was modified concurrently; retry the request"
            ) from exc
