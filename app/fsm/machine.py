"""
Appointment state machine with strict transitions.
"""

import logging

from app.fsm.states import AppointmentStatus

logger = logging.getLogger(__name__)


# Only one path out of PENDING_PAYMENT is payment-driven (-> SCHEDULED);
# the other is abandonment (-> CANCELLED, by the customer or the expiry sweep).
TRANSITIONS = {
    AppointmentStatus.PENDING_PAYMENT: {
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.IN_PROGRESS: {
        AppointmentStatus.COMPLETED,
    },
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
}


def can_transition(current: str, target: AppointmentStatus) -> bool:
    """Check whether an appointment in `current` may move to `target`."""
    try:
        state = AppointmentStatus(current)
    except ValueError:
        logger.warning(f"Unknown appointment status: {current}")
        return False
    return target in TRANSITIONS[state]


def transition(appointment, target: AppointmentStatus) -> bool:
    """
    Move an appointment to `target` if allowed.

    Returns False (and leaves the row untouched) on a disallowed transition,
    so repeated confirmations are no-ops.
    """
    if not can_transition(appointment.status, target):
        return False
    appointment.status = target.value
    return True
