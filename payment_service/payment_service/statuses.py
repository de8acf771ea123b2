"""Processor payment statuses and their mapping onto order statuses."""

from enum import Enum
from typing import Optional

AWAITING_PAYMENT = "awaiting_payment"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment statuses reported by the processor.

    The processor's status domain is open; anything not listed here parses
    to ``UNKNOWN``.
    """

    WAITING = "waiting"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    SENDING = "sending"
    FINISHED = "finished"
    FAILED = "failed"
    REFUNDED = "refunded"
    EXPIRED = "expired"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "PaymentStatus":
        """Parse a raw processor status, falling back to ``UNKNOWN``."""
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN


ORDER_STATUS_BY_PAYMENT_STATUS: dict[PaymentStatus, OrderStatus] = {
    PaymentStatus.WAITING: OrderStatus.PENDING,
    PaymentStatus.CONFIRMING: OrderStatus.PENDING,
    PaymentStatus.CONFIRMED: OrderStatus.PROCESSING,
    PaymentStatus.SENDING: OrderStatus.PROCESSING,
    PaymentStatus.FINISHED: OrderStatus.PROCESSING,
    PaymentStatus.FAILED: OrderStatus.CANCELLED,
    PaymentStatus.REFUNDED: OrderStatus.CANCELLED,
    PaymentStatus.EXPIRED: OrderStatus.CANCELLED,
    PaymentStatus.UNKNOWN: OrderStatus.PENDING,
}

# Position of each status along the payment lifecycle. Terminal outcomes share
# a rank; a refund can only follow a settled payment.
PROGRESS_RANK: dict[PaymentStatus, int] = {
    PaymentStatus.WAITING: 1,
    PaymentStatus.CONFIRMING: 2,
    PaymentStatus.UNKNOWN: 2,
    PaymentStatus.CONFIRMED: 3,
    PaymentStatus.SENDING: 4,
    PaymentStatus.FINISHED: 5,
    PaymentStatus.FAILED: 5,
    PaymentStatus.EXPIRED: 5,
    PaymentStatus.REFUNDED: 6,
}


def order_status_for(payment_status: Optional[str]) -> OrderStatus:
    """Map a raw processor status onto the order status it implies."""
    return ORDER_STATUS_BY_PAYMENT_STATUS[PaymentStatus.parse(payment_status)]


def progress_rank(payment_status: Optional[str]) -> int:
    """Rank a stored payment status; no status or the awaiting sentinel is 0."""
    if payment_status is None or payment_status == AWAITING_PAYMENT:
        return 0
    return PROGRESS_RANK[PaymentStatus.parse(payment_status)]


def is_regression(current: Optional[str], incoming: Optional[str]) -> bool:
    """Whether moving from ``current`` to ``incoming`` goes backwards."""
    return progress_rank(incoming) < progress_rank(current)
