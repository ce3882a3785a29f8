"""Invoice ledger - members, plans, subscriptions, invoices, payments, sequences

Revision ID: 001
Revises:
Create Date: 2025-01-01

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# --- Enum types ---
member_status_enum = sa.Enum(
    "ACTIVE", "FROZEN", "CANCELLED", name="memberstatus", create_type=False
)
subscription_status_enum = sa.Enum(
    "PENDING_PAYMENT", "ACTIVE", "FROZEN", "EXPIRED", "CANCELLED",
    name="subscriptionstatus", create_type=False,
)
invoice_status_enum = sa.Enum(
    "DRAFT", "ISSUED", "PARTIALLY_PAID", "PAID", "OVERDUE", "CANCELLED", "REFUNDED",
    name="invoicestatus", create_type=False,
)
line_item_type_enum = sa.Enum(
    "SUBSCRIPTION", "CLASS_PACKAGE", "GUEST_PASS", "PERSONAL_TRAINING",
    "MERCHANDISE", "LOCKER_RENTAL", "PENALTY", "DISCOUNT", "OTHER",
    name="lineitemtype", create_type=False,
)
payment_method_enum = sa.Enum(
    "CASH", "CARD", "MADA", "BANK_TRANSFER", "STC_PAY", "SADAD", "TAMARA", "PAYTABS", "OTHER",
    name="paymentmethod", create_type=False,
)

_ENUMS = (
    member_status_enum,
    subscription_status_enum,
    invoice_status_enum,
    line_item_type_enum,
    payment_method_enum,
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in _ENUMS:
        enum_type.create(bind, checkfirst=True)

    # 1. members (read-only view of the member directory)
    op.create_table(
        "members",
        sa.Column("id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("organization_id", UUID(as_uuid=True), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("status", member_status_enum, server_default="ACTIVE", nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_members_organization_id", "members", ["organization_id"])

    # 2. membership_plans
    op.create_table(
        "membership_plans",
        sa.Column("id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("organization_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name_en", sa.String(255), nullable=False),
        sa.Column("name_ar", sa.String(255), nullable=True),
        sa.Column("currency", sa.String(3), server_default="SAR", nullable=False),
        sa.Column("membership_fee", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("membership_fee_tax_rate", sa.Numeric(5, 2), server_default="15", nullable=False),
        sa.Column("administration_fee", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("administration_fee_tax_rate", sa.Numeric(5, 2), server_default="15", nullable=False),
        sa.Column("join_fee", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("join_fee_tax_rate", sa.Numeric(5, 2), server_default="15", nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_membership_plans_organization_id", "membership_plans", ["organization_id"])

    # 3. subscriptions
    op.create_table(
        "subscriptions",
        sa.Column("id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("organization_id", UUID(as_uuid=True), nullable=False),
        sa.Column("member_id", UUID(as_uuid=True), sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=False),
        sa.Column("plan_id", UUID(as_uuid=True), sa.ForeignKey("membership_plans.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("status", subscription_status_enum, server_default="PENDING_PAYMENT", nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_subscriptions_organization_id", "subscriptions", ["organization_id"])
    op.create_index("ix_subscriptions_member_id", "subscriptions", ["member_id"])

    # 4. invoice_sequences (one counter row per organization, read FOR UPDATE)
    op.create_table(
        "invoice_sequences",
        sa.Column("organization_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("current_year", sa.Integer, nullable=False),
        sa.Column("current_sequence", sa.Integer, server_default="0", nullable=False),
        *_timestamps(),
    )

    # 5. invoices
    op.create_table(
        "invoices",
        sa.Column("id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("organization_id", UUID(as_uuid=True), nullable=False),
        sa.Column("invoice_number", sa.String(20), nullable=False),
        sa.Column("member_id", UUID(as_uuid=True), sa.ForeignKey("members.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("subscription_id", UUID(as_uuid=True), sa.ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True),
        sa.Column("status", invoice_status_enum, server_default="DRAFT", nullable=False),
        sa.Column("issue_date", sa.Date, nullable=True),
        sa.Column("due_date", sa.Date, nullable=True),
        sa.Column("paid_date", sa.Date, nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("subtotal", sa.Numeric(15, 2), nullable=False),
        sa.Column("vat_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("vat_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("paid_amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("payment_method", payment_method_enum, nullable=True),
        sa.Column("payment_reference", sa.String(200), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", "invoice_number", name="uq_invoices_organization_invoice_number"),
        sa.CheckConstraint(
            "paid_amount IS NULL OR paid_amount <= total_amount",
            name="ck_invoices_paid_within_total",
        ),
    )
    op.create_index("ix_invoices_organization_status", "invoices", ["organization_id", "status"])
    op.create_index("ix_invoices_member_id", "invoices", ["member_id"])
    op.create_index("ix_invoices_subscription_id", "invoices", ["subscription_id"])
    op.create_index("ix_invoices_due_date", "invoices", ["due_date"])

    # 6. invoice_line_items
    op.create_table(
        "invoice_line_items",
        sa.Column("id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("invoice_id", UUID(as_uuid=True), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("description_en", sa.String(500), nullable=False),
        sa.Column("description_ar", sa.String(500), nullable=True),
        sa.Column("item_type", line_item_type_enum, nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("sort_order", sa.Integer, server_default="0", nullable=False),
        sa.Column("line_total_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(15, 2), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("quantity > 0", name="ck_invoice_line_items_quantity_positive"),
        sa.CheckConstraint("tax_rate >= 0", name="ck_invoice_line_items_tax_rate_non_negative"),
    )
    op.create_index("ix_invoice_line_items_invoice_id", "invoice_line_items", ["invoice_id"])

    # 7. invoice_payments (append-only ledger)
    op.create_table(
        "invoice_payments",
        sa.Column("id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("organization_id", UUID(as_uuid=True), nullable=False),
        sa.Column("invoice_id", UUID(as_uuid=True), sa.ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("method", payment_method_enum, nullable=False),
        sa.Column("reference", sa.String(200), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("gateway_transaction_id", sa.String(200), nullable=True),
        sa.Column("idempotency_key", sa.String(200), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_invoice_payments_amount_positive"),
    )
    op.create_index("ix_invoice_payments_invoice_id", "invoice_payments", ["invoice_id"])
    op.create_index(
        "uq_invoice_payments_invoice_idempotency_key",
        "invoice_payments",
        ["invoice_id", "idempotency_key"],
        unique=True,
    )
    op.create_index(
        "uq_invoice_payments_invoice_gateway_txn",
        "invoice_payments",
        ["invoice_id", "gateway_transaction_id"],
        unique=True,
    )

    # Ledger entries are immutable once written
    op.execute("""
        CREATE OR REPLACE FUNCTION invoice_payments_immutable() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'invoice_payments rows are append-only';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER trg_invoice_payments_immutable
            BEFORE UPDATE OR DELETE ON invoice_payments
            FOR EACH ROW EXECUTE FUNCTION invoice_payments_immutable()
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_invoice_payments_immutable ON invoice_payments")
    op.execute("DROP FUNCTION IF EXISTS invoice_payments_immutable()")

    op.drop_table("invoice_payments")
    op.drop_table("invoice_line_items")
    op.drop_table("invoices")
    op.drop_table("invoice_sequences")
    op.drop_table("subscriptions")
    op.drop_table("membership_plans")
    op.drop_table("members")

    bind = op.get_bind()
    for enum_type in reversed(_ENUMS):
        enum_type.drop(bind, checkfirst=True)
