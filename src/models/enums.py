import enum


class InvoiceStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class InvoiceEvent(str, enum.Enum):
    ISSUE = "ISSUE"
    PAY_PARTIAL = "PAY_PARTIAL"
    PAY_FULL = "PAY_FULL"
    MARK_OVERDUE = "MARK_OVERDUE"
    CANCEL = "CANCEL"
    REFUND = "REFUND"


class LineItemType(str, enum.Enum):
    SUBSCRIPTION = "SUBSCRIPTION"
    CLASS_PACKAGE = "CLASS_PACKAGE"
    GUEST_PASS = "GUEST_PASS"
    PERSONAL_TRAINING = "PERSONAL_TRAINING"
    MERCHANDISE = "MERCHANDISE"
    LOCKER_RENTAL = "LOCKER_RENTAL"
    PENALTY = "PENALTY"
    DISCOUNT = "DISCOUNT"
    OTHER = "OTHER"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    MADA = "MADA"
    BANK_TRANSFER = "BANK_TRANSFER"
    STC_PAY = "STC_PAY"
    SADAD = "SADAD"
    TAMARA = "TAMARA"
    PAYTABS = "PAYTABS"
    OTHER = "OTHER"


class MemberStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    FROZEN = "FROZEN"
    CANCELLED = "CANCELLED"


class SubscriptionStatus(str, enum.Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    ACTIVE = "ACTIVE"
    FROZEN = "FROZEN"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
