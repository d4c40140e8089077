"""
Customer appointment endpoints.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user
from app.auth import AuthenticatedUser
from app.database import get_db
from app.services.appointment_service import AppointmentService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.delete("/{appointment_id}")
async def delete_appointment(
    appointment_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Delete one of the caller's appointments.
    Only while awaiting payment or after its scheduled time.
    """
    service = AppointmentService(db)
    await service.delete_for_customer(appointment_id, user.id)
    return {"status": "deleted", "appointment_id": appointment_id}
