"""
Queue Service - per-shift queue positions.

Each (date, time slot) has `queue_capacity` positions. A checkout reserves the
smallest free one. Pending and scheduled appointments both hold their
position; a reservation is released when its appointments are cancelled,
expired, deleted or completed.
"""

import uuid
import logging
from datetime import date
from typing import Optional, Set

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import SlotFull
from app.fsm.states import AppointmentStatus
from app.models.appointment import Appointment, DailyQueueEntry

logger = logging.getLogger(__name__)


class QueueAllocator:
    """Assigns queue positions under the per-shift capacity."""

    def __init__(self, db: AsyncSession, capacity: Optional[int] = None):
        self.db = db
        self.capacity = capacity or settings.queue_capacity

    async def occupied_positions(self, queue_date: date, time_slot: str) -> Set[int]:
        """Positions held by active appointments or active reservations."""
        appointments = await self.db.execute(
            select(Appointment.queue_position)
            .where(Appointment.scheduled_date == queue_date)
            .where(Appointment.time_slot == time_slot)
            .where(Appointment.status.in_(AppointmentStatus.occupying()))
            .where(Appointment.queue_position.is_not(None))
        )
        reservations = await self.db.execute(
            select(DailyQueueEntry.queue_position)
            .where(DailyQueueEntry.queue_date == queue_date)
            .where(DailyQueueEntry.time_slot == time_slot)
            .where(DailyQueueEntry.is_active.is_(True))
        )
        return set(appointments.scalars().all()) | set(reservations.scalars().all())

    def first_free(self, occupied: Set[int]) -> int:
        """Smallest position in 1..capacity not in `occupied`, else SlotFull."""
        if len(occupied) >= self.capacity:
            raise SlotFull()
        for position in range(1, self.capacity + 1):
            if position not in occupied:
                return position
        raise SlotFull()

    async def reserve(
        self,
        queue_date: date,
        time_slot: str,
        customer_id: Optional[uuid.UUID] = None,
    ) -> DailyQueueEntry:
        """
        Claim the smallest free position for (queue_date, time_slot).

        The claim is an insert guarded by the unique index on active
        (date, slot, position); losing a race to a concurrent checkout shows
        up as an IntegrityError and we recompute.
        """
        for attempt in range(1, settings.queue_reserve_attempts + 1):
            occupied = await self.occupied_positions(queue_date, time_slot)
            position = self.first_free(occupied)

            entry = DailyQueueEntry(
                queue_date=queue_date,
                time_slot=time_slot,
                queue_position=position,
                customer_id=customer_id,
                is_active=True,
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(entry)
                    await self.db.flush()
            except IntegrityError:
                logger.warning(
                    f"Queue position {position} for {queue_date} {time_slot} taken concurrently "
                    f"(attempt {attempt})"
                )
                continue

            logger.info(f"Reserved position {position} for {queue_date} {time_slot}")
            return entry

        raise SlotFull()

    async def attach_preference(self, entry: DailyQueueEntry, preference_id: str) -> None:
        entry.preference_id = preference_id
        await self.db.flush()

    async def release(self, preference_id: Optional[str]) -> int:
        """
        Free the reservation behind `preference_id` once none of its
        appointments still hold a position. Returns rows released.
        """
        if not preference_id:
            return 0

        still_holding = await self.db.execute(
            select(Appointment.id)
            .where(Appointment.preference_id == preference_id)
            .where(Appointment.status.in_(AppointmentStatus.occupying()))
            .limit(1)
        )
        if still_holding.scalar_one_or_none() is not None:
            return 0

        result = await self.db.execute(
            update(DailyQueueEntry)
            .where(DailyQueueEntry.preference_id == preference_id)
            .where(DailyQueueEntry.is_active.is_(True))
            .values(is_active=False)
        )
        if result.rowcount:
            logger.info(f"Released queue reservation for preference {preference_id}")
        return result.rowcount or 0
