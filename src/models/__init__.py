# Import all models so SQLAlchemy metadata is populated for Alembic autogenerate
from src.models.enums import (
    InvoiceEvent,
    InvoiceStatus,
    LineItemType,
    MemberStatus,
    PaymentMethod,
    SubscriptionStatus,
)
from src.models.invoice import Invoice
from src.models.invoice_line_item import InvoiceLineItem
from src.models.invoice_payment import InvoicePayment
from src.models.invoice_sequence import InvoiceSequence
from src.models.member import Member
from src.models.membership_plan import MembershipPlan
from src.models.subscription import Subscription

__all__ = [
    "Invoice",
    "InvoiceEvent",
    "InvoiceLineItem",
    "InvoicePayment",
    "InvoiceSequence",
    "InvoiceStatus",
    "LineItemType",
    "Member",
    "MemberStatus",
    "MembershipPlan",
    "PaymentMethod",
    "Subscription",
    "SubscriptionStatus",
]
