"""
Preference Service - hosted checkout intents for appointments and orders.

Every preference is created with the *seller's* access token, so the payout
lands in the seller's account and the processor withholds the platform fee
(`marketplace_fee`) for us. Local pending rows are written in the same
transaction; if the processor call fails nothing is left behind.
"""

import time
import uuid
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import AuthenticatedUser
from app.config import settings, APPOINTMENT_RETURN_PATHS, ORDER_RETURN_PATHS
from app.exceptions import (
    AppointmentNotFound,
    InvalidRequest,
    MultiSellerNotSupported,
    ProductUnavailable,
    ServiceUnavailable,
)
from app.fsm.states import AppointmentStatus, OrderStatus, TimeSlot
from app.models.appointment import Appointment, DailyQueueEntry
from app.models.catalog import Product, Service
from app.models.marketplace_config import MarketplaceConfig
from app.models.order import Order, OrderItem
from app.models.user import Profile
from app.services.credential_vault import CredentialVault
from app.services.fee_strategy import FeeStrategy, FlatFee, PercentageFee, to_money
from app.services.mercadopago_client import MercadoPagoClient
from app.services.queue_service import QueueAllocator
from app.time_utils import slot_start_utc, utcnow

logger = logging.getLogger(__name__)

PREFERENCE_NOTE_MARKER = "Preferência MP: "


def resolve_base_url(
    app_base_url: Optional[str],
    origin: Optional[str] = None,
    referer: Optional[str] = None,
) -> str:
    """
    Origin the payer returns to after checkout.

    The processor validates redirect domains, so this must be explicit:
    request body first, then Origin, then the Referer's origin.
    """
    if app_base_url:
        return app_base_url.rstrip("/")
    if origin and origin != "null":
        return origin.rstrip("/")
    if referer:
        parsed = urlparse(referer)
        if parsed.scheme and parsed.netloc:
            return f"{parsed.scheme}://{parsed.netloc}"
    raise InvalidRequest(
        "Não foi possível determinar a URL base do aplicativo para os redirecionamentos."
    )


def appointment_notes(time_slot: str, position: Optional[int], preference_id: str) -> str:
    """Notes text; the trailing marker is matched by legacy correlation."""
    return f"Turno: {time_slot} - Posição: {position} - {PREFERENCE_NOTE_MARKER}{preference_id}"


def _parse_uuids(values: Iterable[Any]) -> Optional[List[uuid.UUID]]:
    parsed = []
    for value in values:
        try:
            parsed.append(uuid.UUID(str(value)))
        except ValueError:
            return None
    return parsed


class PreferenceService:
    """Builds checkout preferences and their local pending records."""

    def __init__(
        self,
        db: AsyncSession,
        processor: Optional[MercadoPagoClient] = None,
        vault: Optional[CredentialVault] = None,
        queue: Optional[QueueAllocator] = None,
    ):
        self.db = db
        self.processor = processor or MercadoPagoClient()
        self.vault = vault or CredentialVault(db)
        self.queue = queue or QueueAllocator(db)

    # ------------------------------------------------------------------
    # Appointments
    # ------------------------------------------------------------------

    async def create_appointment_preference(
        self,
        user: AuthenticatedUser,
        service_ids: Sequence[str],
        scheduled_date: date,
        time_slot: str,
        base_url: str,
    ) -> Dict[str, Any]:
        """
        Reserve a queue position and open a checkout for the chosen services.

        Creates one pending_payment Appointment per service at the reserved
        position, correlated to the preference id.
        """
        if not service_ids:
            raise InvalidRequest("Nenhum serviço fornecido")
        try:
            slot = TimeSlot(time_slot)
        except ValueError:
            raise InvalidRequest(f"Turno inválido: {time_slot}")

        # Keep request order, drop repeats
        unique_ids = list(dict.fromkeys(str(s) for s in service_ids))
        services = await self._resolve_services(unique_ids)

        seller_id = self._single_seller([s.seller_id for s in services], ServiceUnavailable)
        credential = await self.vault.get(seller_id)

        total = to_money(sum((s.price for s in services), Decimal("0")))
        items = [
            {
                "id": str(s.id),
                "title": s.name,
                "description": s.description or f"Agendamento para {scheduled_date.isoformat()}",
                "quantity": 1,
                "unit_price": float(to_money(s.price)),
                "currency_id": settings.currency_id,
            }
            for s in services
        ]

        entry = await self.queue.reserve(scheduled_date, slot.value, customer_id=user.id)

        profile = await self._get_profile(user.id)
        customer_ref = profile.id if profile else user.id
        fee = self._appointment_fee().compute(total)

        preference_data = await self._build_preference(
            items=items,
            payer=self._payer(user, profile),
            back_urls=self._back_urls(base_url, APPOINTMENT_RETURN_PATHS),
            external_reference=f"appointment_{int(time.time() * 1000)}_{customer_ref}",
            metadata={
                "customer_id": str(customer_ref),
                "service_ids": ",".join(unique_ids),
                "scheduled_date": scheduled_date.isoformat(),
                "time_slot": slot.value,
                "type": "appointment",
                "seller_id": str(seller_id),
            },
            fee=fee,
        )

        logger.info(
            f"Creating appointment preference: seller={seller_id} total={total} fee={fee} "
            f"date={scheduled_date} slot={slot.value} position={entry.queue_position}"
        )
        preference = await self.processor.create_preference(credential.access_token, preference_data)
        preference_id = str(preference["id"])

        scheduled_time = slot_start_utc(scheduled_date, slot)
        appointments = []
        for service in services:
            appointment = Appointment(
                customer_id=user.id,
                service_id=service.id,
                scheduled_time=scheduled_time,
                scheduled_date=scheduled_date,
                time_slot=slot.value,
                queue_position=entry.queue_position,
                status=AppointmentStatus.PENDING_PAYMENT.value,
                booking_type="app",
                preference_id=preference_id,
                notes=appointment_notes(slot.value, entry.queue_position, preference_id),
            )
            self.db.add(appointment)
            appointments.append(appointment)

        await self.queue.attach_preference(entry, preference_id)
        await self.db.flush()

        logger.info(f"Appointment preference {preference_id} created with {len(appointments)} appointment(s)")
        return {
            "preference_id": preference_id,
            "init_point": preference.get("init_point"),
            "appointment_ids": [str(a.id) for a in appointments],
            "total_amount": float(total),
        }

    async def retry_appointment_preference(
        self,
        user: AuthenticatedUser,
        appointment_id: str,
        base_url: str,
    ) -> Dict[str, Any]:
        """New checkout for an appointment whose first checkout was abandoned."""
        parsed = _parse_uuids([appointment_id])
        if not parsed:
            raise AppointmentNotFound()

        result = await self.db.execute(
            select(Appointment, Service)
            .join(Service, Service.id == Appointment.service_id)
            .where(Appointment.id == parsed[0])
            .where(Appointment.status == AppointmentStatus.PENDING_PAYMENT.value)
        )
        row = result.first()
        if row is None:
            raise AppointmentNotFound("Agendamento não encontrado ou não está pendente de pagamento")
        appointment, service = row
        if appointment.customer_id != user.id:
            raise AppointmentNotFound("Agendamento não pertence ao usuário")

        seller_id = self._single_seller([service.seller_id], ServiceUnavailable)
        credential = await self.vault.get(seller_id)

        profile = await self._get_profile(user.id)
        customer_ref = profile.id if profile else user.id
        amount = to_money(service.price)

        preference_data = await self._build_preference(
            items=[
                {
                    "id": str(service.id),
                    "title": service.name,
                    "description": service.description
                    or f"Agendamento para {appointment.scheduled_date.isoformat()}",
                    "quantity": 1,
                    "unit_price": float(amount),
                    "currency_id": settings.currency_id,
                }
            ],
            payer=self._payer(user, profile),
            back_urls=self._back_urls(base_url, APPOINTMENT_RETURN_PATHS),
            external_reference=f"appointment_retry_{int(time.time() * 1000)}_{customer_ref}",
            metadata={
                "customer_id": str(customer_ref),
                "appointment_id": str(appointment.id),
                "service_id": str(service.id),
                "scheduled_date": appointment.scheduled_date.isoformat(),
                "time_slot": appointment.time_slot,
                "type": "appointment_retry",
                "seller_id": str(seller_id),
            },
            fee=self._appointment_fee().compute(amount),
        )

        preference = await self.processor.create_preference(credential.access_token, preference_data)
        preference_id = str(preference["id"])

        old_preference_id = appointment.preference_id
        appointment.preference_id = preference_id
        appointment.notes = appointment_notes(appointment.time_slot, appointment.queue_position, preference_id)
        appointment.preference_created_at = utcnow()
        if old_preference_id:
            await self.db.execute(
                update(DailyQueueEntry)
                .where(DailyQueueEntry.preference_id == old_preference_id)
                .values(preference_id=preference_id)
            )
        await self.db.flush()

        logger.info(f"Retry preference {preference_id} created for appointment {appointment.id}")
        return {
            "preference_id": preference_id,
            "init_point": preference.get("init_point"),
            "appointment_id": str(appointment.id),
            "amount": float(amount),
        }

    # ------------------------------------------------------------------
    # Marketplace
    # ------------------------------------------------------------------

    async def create_order_preference(
        self,
        user: AuthenticatedUser,
        items: Sequence[Dict[str, Any]],
        base_url: str,
        fee_percentage: Optional[Decimal] = None,
    ) -> Dict[str, Any]:
        """
        Open a checkout for cart items from one seller.

        Stock is checked here but only committed when the payment is approved.
        """
        if not items:
            raise InvalidRequest("Nenhum item fornecido")

        quantities: Dict[str, int] = {}
        for item in items:
            quantity = int(item.get("quantity") or 0)
            if quantity < 1:
                raise InvalidRequest("Quantidade inválida")
            parsed = _parse_uuids([item.get("product_id")])
            if not parsed:
                raise ProductUnavailable()
            product_id = str(parsed[0])
            quantities[product_id] = quantities.get(product_id, 0) + quantity

        profile = await self._get_profile(user.id)
        if profile is None:
            raise InvalidRequest("Perfil do comprador não encontrado")

        products = await self._resolve_products(list(quantities))
        for product in products:
            if product.stock_quantity < quantities[str(product.id)]:
                raise ProductUnavailable(f"Estoque insuficiente para {product.name}")

        seller_id = self._single_seller([p.seller_id for p in products], ProductUnavailable)
        credential = await self.vault.get(seller_id)

        lines = []
        total = Decimal("0.00")
        for product in products:
            quantity = quantities[str(product.id)]
            unit_price = to_money(product.price)
            line_total = to_money(unit_price * quantity)
            total += line_total
            lines.append((product, quantity, unit_price, line_total))
        total = to_money(total)

        fee = (await self._order_fee(fee_percentage)).compute(total)

        order = Order(
            buyer_id=profile.id,
            seller_id=seller_id,
            total_amount=total,
            marketplace_fee=fee,
            status=OrderStatus.PENDING.value,
        )
        self.db.add(order)
        await self.db.flush()

        for product, quantity, unit_price, line_total in lines:
            self.db.add(
                OrderItem(
                    order_id=order.id,
                    product_id=product.id,
                    quantity=quantity,
                    unit_price=unit_price,
                    total_price=line_total,
                )
            )

        preference_data = await self._build_preference(
            items=[
                {
                    "id": str(product.id),
                    "title": product.name,
                    "description": product.description or "",
                    "quantity": quantity,
                    "unit_price": float(unit_price),
                    "currency_id": settings.currency_id,
                }
                for product, quantity, unit_price, _ in lines
            ],
            payer=self._payer(user, profile),
            back_urls=self._back_urls(base_url, ORDER_RETURN_PATHS),
            external_reference=f"order_{order.id}",
            metadata={
                "order_id": str(order.id),
                "buyer_id": str(profile.id),
                "seller_id": str(seller_id),
                "type": "order",
            },
            fee=fee,
        )

        logger.info(f"Creating order preference: order={order.id} seller={seller_id} total={total} fee={fee}")
        preference = await self.processor.create_preference(credential.access_token, preference_data)

        order.mp_preference_id = str(preference["id"])
        await self.db.flush()

        return {
            "preference_id": order.mp_preference_id,
            "init_point": preference.get("init_point"),
            "order_id": str(order.id),
            "total_amount": float(total),
            "application_fee": float(fee),
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _resolve_services(self, service_ids: List[str]) -> List[Service]:
        parsed = _parse_uuids(service_ids)
        if parsed is None:
            raise ServiceUnavailable()

        result = await self.db.execute(select(Service).where(Service.id.in_(parsed)))
        by_id = {s.id: s for s in result.scalars().all()}

        services = []
        for service_id in parsed:
            service = by_id.get(service_id)
            if service is None or not service.is_active:
                raise ServiceUnavailable()
            services.append(service)
        return services

    async def _resolve_products(self, product_ids: List[str]) -> List[Product]:
        parsed = _parse_uuids(product_ids)
        if parsed is None:
            raise ProductUnavailable()

        result = await self.db.execute(select(Product).where(Product.id.in_(parsed)))
        by_id = {p.id: p for p in result.scalars().all()}

        products = []
        for product_id in parsed:
            product = by_id.get(product_id)
            if product is None or not product.is_active:
                raise ProductUnavailable(f"Produto {product_id} não encontrado ou inativo")
            products.append(product)
        return products

    @staticmethod
    def _single_seller(seller_ids: List[Optional[uuid.UUID]], missing_error) -> uuid.UUID:
        """A checkout settles to exactly one seller."""
        if any(seller_id is None for seller_id in seller_ids):
            raise missing_error("Itens sem vendedor associado. Configure o vendedor.")
        distinct = set(seller_ids)
        if len(distinct) > 1:
            raise MultiSellerNotSupported()
        return distinct.pop()

    async def _get_profile(self, user_id: uuid.UUID) -> Optional[Profile]:
        result = await self.db.execute(select(Profile).where(Profile.user_id == user_id))
        return result.scalar_one_or_none()

    async def _active_config(self) -> Optional[MarketplaceConfig]:
        result = await self.db.execute(
            select(MarketplaceConfig).where(MarketplaceConfig.is_active.is_(True)).limit(1)
        )
        return result.scalar_one_or_none()

    def _appointment_fee(self) -> FeeStrategy:
        return FlatFee(settings.appointment_fee_flat)

    async def _order_fee(self, fee_percentage: Optional[Decimal]) -> FeeStrategy:
        if fee_percentage is not None:
            try:
                return PercentageFee(fee_percentage)
            except ValueError as e:
                raise InvalidRequest(str(e))
        config = await self._active_config()
        if config and config.platform_fee_percentage is not None:
            return PercentageFee(config.platform_fee_percentage)
        return PercentageFee(settings.marketplace_fee_percentage)

    @staticmethod
    def _payer(user: AuthenticatedUser, profile: Optional[Profile]) -> Dict[str, Any]:
        payer: Dict[str, Any] = {"email": user.email or (profile.email if profile else None)}
        if profile and profile.full_name:
            payer["name"] = profile.full_name
        return {k: v for k, v in payer.items() if v}

    @staticmethod
    def _back_urls(base_url: str, paths: Dict[str, str]) -> Dict[str, str]:
        return {key: f"{base_url}{path}" for key, path in paths.items()}

    async def _build_preference(
        self,
        items: List[Dict[str, Any]],
        payer: Dict[str, Any],
        back_urls: Dict[str, str],
        external_reference: str,
        metadata: Dict[str, Any],
        fee: Decimal,
    ) -> Dict[str, Any]:
        preference: Dict[str, Any] = {
            "items": items,
            "payer": payer,
            "back_urls": back_urls,
            "auto_return": "approved",
            "notification_url": settings.notification_url,
            "external_reference": external_reference,
            "metadata": metadata,
            "marketplace_fee": float(fee),
        }

        config = await self._active_config()
        if config and config.mercado_pago_user_id and str(config.mercado_pago_user_id).isdigit():
            preference["sponsor_id"] = int(config.mercado_pago_user_id)
        return preference
