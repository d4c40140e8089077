"""
Payment endpoints.
Checkout preference creation for marketplace orders and appointments,
plus the seller's split summary.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_processor
from app.auth import AuthenticatedUser
from app.database import get_db
from app.exceptions import SellerNotConnected
from app.models.seller import Seller
from app.services.mercadopago_client import MercadoPagoClient
from app.services.preference_service import PreferenceService, resolve_base_url
from app.services.settlement_service import SplitSettlementRecorder

router = APIRouter()
logger = logging.getLogger(__name__)


class OrderItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(ge=1)


class CreateOrderPreferenceRequest(BaseModel):
    """Cart checkout for marketplace products."""
    items: List[OrderItemRequest]
    app_base_url: Optional[str] = None
    fee_percentage: Optional[Decimal] = None


class CreateAppointmentPreferenceRequest(BaseModel):
    """Checkout for one booking of one or more services."""
    service_ids: List[str]
    scheduled_date: date
    time_slot: str
    app_base_url: Optional[str] = None


class RetryPaymentRequest(BaseModel):
    appointment_id: str
    app_base_url: Optional[str] = None


def _base_url(request: Request, explicit: Optional[str]) -> str:
    return resolve_base_url(explicit, request.headers.get("origin"), request.headers.get("referer"))


@router.post("/create-preference")
async def create_order_preference(
    body: CreateOrderPreferenceRequest,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    processor: MercadoPagoClient = Depends(get_processor),
):
    """Create an order and the checkout that pays for it."""
    service = PreferenceService(db, processor=processor)
    return await service.create_order_preference(
        user,
        [item.model_dump() for item in body.items],
        base_url=_base_url(request, body.app_base_url),
        fee_percentage=body.fee_percentage,
    )


@router.post("/create-appointment-preference")
async def create_appointment_preference(
    body: CreateAppointmentPreferenceRequest,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    processor: MercadoPagoClient = Depends(get_processor),
):
    """Reserve a queue position and create the appointment checkout."""
    service = PreferenceService(db, processor=processor)
    return await service.create_appointment_preference(
        user,
        body.service_ids,
        body.scheduled_date,
        body.time_slot,
        base_url=_base_url(request, body.app_base_url),
    )


@router.post("/create-payment-preference")
async def retry_appointment_payment(
    body: RetryPaymentRequest,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    processor: MercadoPagoClient = Depends(get_processor),
):
    """New checkout for a pending appointment (payer abandoned the first one)."""
    service = PreferenceService(db, processor=processor)
    return await service.retry_appointment_preference(
        user,
        body.appointment_id,
        base_url=_base_url(request, body.app_base_url),
    )


@router.get("/splits/summary")
async def split_summary(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(Seller).where(Seller.user_id == user.id))
    seller = result.scalar_one_or_none()
    if seller is None:
        raise SellerNotConnected("Usuário não é um vendedor.")

    recorder = SplitSettlementRecorder(db)
    return await recorder.seller_summary(seller.id)
