"""
Tests for queue position allocation.
"""

import pytest
import uuid
from datetime import date
from unittest.mock import AsyncMock

from sqlalchemy import select

from app.exceptions import SlotFull
from app.models.appointment import DailyQueueEntry
from app.services.queue_service import QueueAllocator

DAY = date(2025, 3, 10)


@pytest.mark.asyncio
async def test_positions_fill_in_order(db):
    queue = QueueAllocator(db, capacity=5)

    positions = [(await queue.reserve(DAY, "morning", uuid.uuid4())).queue_position for _ in range(5)]

    assert positions == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_sixth_reservation_is_rejected(db):
    queue = QueueAllocator(db, capacity=5)
    for _ in range(5):
        await queue.reserve(DAY, "morning")

    with pytest.raises(SlotFull):
        await queue.reserve(DAY, "morning")

    occupied = await queue.occupied_positions(DAY, "morning")
    assert occupied == {1, 2, 3, 4, 5}


@pytest.mark.asyncio
async def test_slots_and_dates_are_independent(db):
    queue = QueueAllocator(db, capacity=1)
    await queue.reserve(DAY, "morning")

    afternoon = await queue.reserve(DAY, "afternoon")
    next_day = await queue.reserve(date(2025, 3, 11), "morning")

    assert afternoon.queue_position == 1
    assert next_day.queue_position == 1


@pytest.mark.asyncio
async def test_released_position_is_reused(db):
    queue = QueueAllocator(db, capacity=5)
    first = await queue.reserve(DAY, "evening")
    await queue.attach_preference(first, "pref-a")
    await queue.reserve(DAY, "evening")

    released = await queue.release("pref-a")

    assert released == 1
    again = await queue.reserve(DAY, "evening")
    assert again.queue_position == 1


@pytest.mark.asyncio
async def test_concurrent_claim_retries_next_position(db):
    """A position taken between computing and inserting is retried."""
    queue = QueueAllocator(db, capacity=5)
    taken = await queue.reserve(DAY, "morning")
    assert taken.queue_position == 1

    # First computation misses the row written "concurrently"
    real = queue.occupied_positions
    queue.occupied_positions = AsyncMock(side_effect=[set(), await real(DAY, "morning")])

    entry = await queue.reserve(DAY, "morning")

    assert entry.queue_position == 2
    result = await db.execute(select(DailyQueueEntry).where(DailyQueueEntry.is_active.is_(True)))
    assert sorted(e.queue_position for e in result.scalars().all()) == [1, 2]


def test_first_free_fills_gaps():
    queue = QueueAllocator(db=None, capacity=5)
    assert queue.first_free({1, 3}) == 2
    with pytest.raises(SlotFull):
        queue.first_free({1, 2, 3, 4, 5})
