"""Appointment models - scheduled services and per-shift queue reservations."""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    ForeignKey,
    Integer,
    Boolean,
    Text,
    Index,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.fsm.states import AppointmentStatus
from app.time_utils import utcnow


class Appointment(Base):
    """
    One booked service.
    A checkout with several services creates one row per service, all
    sharing the same preference and queue position.
    """

    __tablename__ = "appointments"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Auth user id of the customer
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        index=True,
    )

    service_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False,
    )

    scheduled_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Local calendar date of the shift (queue lookups key on this)
    scheduled_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    time_slot: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    queue_position: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
    )

    status: Mapped[str] = mapped_column(
        String(30),
        default=AppointmentStatus.PENDING_PAYMENT.value,
        nullable=False,
    )

    booking_type: Mapped[str] = mapped_column(
        String(20),
        default="app",
        nullable=False,
    )

    # Processor preference that pays for this appointment
    preference_id: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
        index=True,
    )

    # Free text; ends with "Preferência MP: <id>" for legacy correlation
    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    # When the current checkout was issued; a retry restarts the expiry clock
    preference_created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_appointments_queue_lookup", "scheduled_date", "time_slot", "status"),
    )

    def __repr__(self) -> str:
        return f"<Appointment {self.id} {self.scheduled_date} {self.time_slot}#{self.queue_position} {self.status}>"

    @property
    def holds_position(self) -> bool:
        return self.status in AppointmentStatus.occupying()


class DailyQueueEntry(Base):
    """
    Reservation of one queue position in a (date, shift).
    The partial unique index is the storage-level guard against two
    concurrent checkouts computing the same free position.
    """

    __tablename__ = "daily_queue"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    queue_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    time_slot: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    queue_position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        nullable=True,
    )

    # Set once the checkout preference exists
    preference_id: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
        index=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index(
            "uq_daily_queue_active_position",
            "queue_date",
            "time_slot",
            "queue_position",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    def __repr__(self) -> str:
        return f"<DailyQueueEntry {self.queue_date} {self.time_slot}#{self.queue_position}>"
