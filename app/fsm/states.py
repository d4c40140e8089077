"""
State definitions for appointments, orders, settlements and processor notifications.
"""

from datetime import time
from enum import Enum
from typing import Optional


class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle.
    Created as PENDING_PAYMENT; only a confirmed payment moves it to SCHEDULED.
    """

    PENDING_PAYMENT = "pending_payment"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def occupying(cls) -> tuple:
        """Statuses that hold a queue position."""
        return (cls.PENDING_PAYMENT.value, cls.SCHEDULED.value)


class OrderStatus(str, Enum):
    """Marketplace order status."""

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class SplitPaymentStatus(str, Enum):
    """Settlement record status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TimeSlot(str, Enum):
    """
    Shifts a customer can book.
    Each shift holds a fixed number of queue positions.
    """

    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"

    @property
    def start_time(self) -> time:
        """Local wall-clock time the shift opens."""
        times = {
            self.MORNING: time(10, 0),
            self.AFTERNOON: time(14, 0),
            self.EVENING: time(18, 0),
        }
        return times[self]


class WebhookTopic(str, Enum):
    """
    Canonical notification topics.
    The processor sends several spellings; parse() folds them together.
    """

    PAYMENT = "payment"
    MERCHANT_ORDER = "merchant_order"

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["WebhookTopic"]:
        if not raw:
            return None
        value = str(raw).strip().lower()
        # "payment.updated" style actions carry the topic as prefix
        value = value.split(".")[0]
        aliases = {
            "payment": cls.PAYMENT,
            "payments": cls.PAYMENT,
            "merchant_order": cls.MERCHANT_ORDER,
            "merchant_orders": cls.MERCHANT_ORDER,
            "topic_merchant_order_wh": cls.MERCHANT_ORDER,
        }
        return aliases.get(value)


class ProcessorPaymentStatus(str, Enum):
    """Payment statuses reported by the processor that we act on."""

    APPROVED = "approved"
    PENDING = "pending"
    IN_PROCESS = "in_process"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    CHARGED_BACK = "charged_back"
