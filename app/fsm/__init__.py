"""FSM package for appointment, order and settlement state."""

from app.fsm.states import (
    AppointmentStatus,
    OrderStatus,
    SplitPaymentStatus,
    TimeSlot,
    WebhookTopic,
)

__all__ = [
    "AppointmentStatus",
    "OrderStatus",
    "SplitPaymentStatus",
    "TimeSlot",
    "WebhookTopic",
]
