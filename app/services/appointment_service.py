"""
Appointment Service - payment-driven confirmation and customer lifecycle.
"""

import uuid
import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import or_, and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import AppointmentNotDeletable, AppointmentNotFound
from app.fsm.machine import transition
from app.fsm.states import AppointmentStatus
from app.models.appointment import Appointment
from app.models.user import Profile
from app.services.preference_service import PREFERENCE_NOTE_MARKER
from app.services.queue_service import QueueAllocator
from app.time_utils import as_utc, utcnow

logger = logging.getLogger(__name__)

EXTERNAL_REFERENCE_PREFIX = "appointment_"


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class AppointmentService:
    """Moves appointments between lifecycle states."""

    def __init__(self, db: AsyncSession, queue: Optional[QueueAllocator] = None):
        self.db = db
        self.queue = queue or QueueAllocator(db)

    @staticmethod
    def _paid_by(preference_id: str):
        # Rows written before the preference_id column existed only carry the notes suffix
        note_pattern = f"%{_escape_like(PREFERENCE_NOTE_MARKER + preference_id)}"
        return or_(
            Appointment.preference_id == preference_id,
            and_(
                Appointment.preference_id.is_(None),
                Appointment.notes.like(note_pattern, escape="\\"),
            ),
        )

    async def pending_for_preference(self, preference_id: str) -> List[Appointment]:
        """Pending appointments paid by `preference_id`."""
        result = await self.db.execute(
            select(Appointment)
            .where(Appointment.status == AppointmentStatus.PENDING_PAYMENT.value)
            .where(self._paid_by(preference_id))
        )
        return list(result.scalars().all())

    async def preference_is_known(self, preference_id: str) -> bool:
        """Whether any appointment, in any status, belongs to `preference_id`."""
        result = await self.db.execute(
            select(Appointment.id).where(self._paid_by(preference_id)).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def confirm_payment(
        self,
        preference_id: Optional[str],
        external_reference: Optional[str],
    ) -> List[Appointment]:
        """
        Schedule the appointments an approved payment is for.

        The external_reference fallback only applies when the preference is
        unknown here. A known preference whose appointments are no longer
        pending (already confirmed by an earlier notification) confirms
        nothing, so other unpaid bookings of the same customer stay pending.
        """
        if preference_id:
            confirmed = await self.confirm_by_preference(preference_id)
            if confirmed or await self.preference_is_known(str(preference_id)):
                return confirmed
        return await self.confirm_by_external_reference(external_reference)

    async def confirm_by_preference(self, preference_id: Optional[str]) -> List[Appointment]:
        """Schedule every pending appointment of a paid preference."""
        if not preference_id:
            return []

        confirmed = []
        for appointment in await self.pending_for_preference(str(preference_id)):
            if transition(appointment, AppointmentStatus.SCHEDULED):
                if appointment.preference_id is None:
                    appointment.preference_id = str(preference_id)
                confirmed.append(appointment)

        if confirmed:
            await self.db.flush()
            logger.info(f"Confirmed {len(confirmed)} appointment(s) for preference {preference_id}")
        return confirmed

    async def confirm_by_external_reference(self, external_reference: Optional[str]) -> List[Appointment]:
        """
        Fallback correlation: `appointment_[retry_]<ms>_<customer>`.

        The suffix is a profile id (mapped to its user) or, for older
        references, the user id itself. Every pending appointment of that
        customer is confirmed.
        """
        customer_id = await self._customer_from_reference(external_reference)
        if customer_id is None:
            return []

        result = await self.db.execute(
            select(Appointment)
            .where(Appointment.customer_id == customer_id)
            .where(Appointment.status == AppointmentStatus.PENDING_PAYMENT.value)
        )
        confirmed = [a for a in result.scalars().all() if transition(a, AppointmentStatus.SCHEDULED)]

        if confirmed:
            await self.db.flush()
            logger.info(f"Confirmed {len(confirmed)} appointment(s) via external_reference {external_reference}")
        return confirmed

    async def _customer_from_reference(self, external_reference: Optional[str]) -> Optional[uuid.UUID]:
        if not external_reference or not external_reference.startswith(EXTERNAL_REFERENCE_PREFIX):
            return None
        suffix = external_reference.rsplit("_", 1)[-1]
        try:
            ref_id = uuid.UUID(suffix)
        except ValueError:
            logger.warning(f"Unparseable customer in external_reference: {external_reference}")
            return None

        result = await self.db.execute(select(Profile.user_id).where(Profile.id == ref_id))
        user_id = result.scalar_one_or_none()
        return user_id or ref_id

    async def delete_for_customer(self, appointment_id: str, customer_id: uuid.UUID) -> None:
        """
        Remove an appointment on the customer's request.
        Allowed while awaiting payment or once its time has passed.
        """
        try:
            appointment_uuid = uuid.UUID(str(appointment_id))
        except ValueError:
            raise AppointmentNotFound()

        result = await self.db.execute(select(Appointment).where(Appointment.id == appointment_uuid))
        appointment = result.scalar_one_or_none()
        if appointment is None or appointment.customer_id != customer_id:
            raise AppointmentNotFound()

        is_pending = appointment.status == AppointmentStatus.PENDING_PAYMENT.value
        is_past = as_utc(appointment.scheduled_time) < utcnow()
        if not (is_pending or is_past):
            raise AppointmentNotDeletable()

        preference_id = appointment.preference_id
        await self.db.delete(appointment)
        await self.db.flush()
        await self.queue.release(preference_id)
        logger.info(f"Appointment {appointment_uuid} deleted by customer {customer_id}")

    async def expire_stale_pending(self, older_than_minutes: Optional[int] = None) -> int:
        """Cancel abandoned checkouts so their queue positions free up."""
        ttl = older_than_minutes or settings.pending_payment_ttl_minutes
        cutoff = utcnow() - timedelta(minutes=ttl)

        result = await self.db.execute(
            select(Appointment)
            .where(Appointment.status == AppointmentStatus.PENDING_PAYMENT.value)
            .where(Appointment.preference_created_at < cutoff)
        )
        expired = 0
        preference_ids = set()
        for appointment in result.scalars().all():
            if transition(appointment, AppointmentStatus.CANCELLED):
                expired += 1
                if appointment.preference_id:
                    preference_ids.add(appointment.preference_id)

        await self.db.flush()
        for preference_id in preference_ids:
            await self.queue.release(preference_id)

        if expired:
            logger.info(f"Expired {expired} pending appointment(s) older than {ttl} minutes")
        return expired
