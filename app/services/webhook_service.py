"""
Webhook Service - processor notifications to appointment and order state.

Every notification shape the processor has used (v1 webhooks, "resource"
feeds, legacy IPN query strings) is normalized into one Notification and
run through the same steps: signature check, idempotency gate, dispatch,
ledger insert. Only v1 notifications carry an event id; the other shapes
skip the ledger and rely on dispatch itself being idempotent. Processing must
be safe under redelivery and under payment / merchant_order events arriving
in any order for the same purchase.
"""

import hmac
import json
import uuid
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import MalformedWebhookPayload, SignatureInvalid
from app.fsm.states import ProcessorPaymentStatus, WebhookTopic
from app.models.appointment import Appointment
from app.models.payment import ProcessedWebhookEvent
from app.redis import remember_webhook_event, webhook_event_seen
from app.services.appointment_service import AppointmentService
from app.services.mercadopago_client import MercadoPagoClient
from app.services.settlement_service import SplitSettlementRecorder

logger = logging.getLogger(__name__)

ORDER_REFERENCE_PREFIX = "order_"


@dataclass
class Notification:
    """A processor notification reduced to what processing needs."""

    raw_topic: Optional[str]
    topic: Optional[WebhookTopic]
    resource_id: str
    # None for shapes without a notification id (legacy IPN, resource feeds)
    event_id: Optional[str] = None


def _resource_id(payload: Dict[str, Any], query: Mapping[str, str]) -> Optional[str]:
    data = payload.get("data")
    if isinstance(data, dict) and data.get("id") is not None:
        return str(data["id"])

    resource = payload.get("resource")
    if resource:
        # Either a bare id or a URL ending in one
        last = str(resource).rstrip("/").rsplit("/", 1)[-1]
        if last:
            return last

    if payload.get("id") is not None:
        return str(payload["id"])

    # Legacy IPN: ?topic=payment&id=123 or ?type=payment&data.id=123
    return query.get("data.id") or query.get("id") or None


def parse_notification(body: bytes, query: Optional[Mapping[str, str]] = None) -> Optional[Notification]:
    """
    Normalize a raw delivery.

    Raises MalformedWebhookPayload on unreadable input; returns None when the
    delivery names no resource (nothing to do).
    """
    query = query or {}
    payload: Dict[str, Any] = {}
    if body and body.strip():
        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedWebhookPayload(f"invalid JSON: {e}")
        if not isinstance(payload, dict):
            raise MalformedWebhookPayload("payload is not an object")
    elif not query:
        raise MalformedWebhookPayload("empty body")

    resource_id = _resource_id(payload, query)
    if not resource_id:
        return None

    raw_topic = payload.get("type") or payload.get("topic") or query.get("type") or query.get("topic")
    if not raw_topic and payload.get("action"):
        raw_topic = payload["action"]

    # Top-level id identifies the notification itself. Legacy IPN and resource
    # feeds re-notify the same resource id on every status change, so the
    # resource id is never used as an event id.
    event_id = payload.get("id") if isinstance(payload.get("data"), dict) else None
    return Notification(
        raw_topic=raw_topic,
        topic=WebhookTopic.parse(raw_topic),
        resource_id=resource_id,
        event_id=str(event_id) if event_id is not None else None,
    )


def parse_signature_header(header: Optional[str]) -> Dict[str, str]:
    """`ts=...,v1=...` into a dict."""
    parts: Dict[str, str] = {}
    for part in (header or "").split(","):
        key, sep, value = part.strip().partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def verify_signature(
    resource_id: str,
    x_signature: Optional[str],
    x_request_id: Optional[str],
    secret: Optional[str] = None,
) -> bool:
    """
    Check the processor's HMAC-SHA256 over
    `id:<resource id>;request-id:<x-request-id>;ts:<ts>;`.

    Returns True when verification passes or cannot be performed (no secret
    or no signature headers). False only on a verified mismatch.
    """
    secret = secret if secret is not None else settings.mp_webhook_secret
    if not secret:
        return True
    if not x_signature or not x_request_id:
        logger.info("Webhook without signature headers, processing unauthenticated")
        return True

    parts = parse_signature_header(x_signature)
    ts, v1 = parts.get("ts"), parts.get("v1")
    if not ts or not v1:
        logger.info("Webhook signature header incomplete, processing unauthenticated")
        return True

    manifest = f"id:{resource_id};request-id:{x_request_id};ts:{ts};"
    expected = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, v1)


class WebhookProcessor:
    """Runs one notification through the idempotent processing pipeline."""

    def __init__(
        self,
        db: AsyncSession,
        processor: Optional[MercadoPagoClient] = None,
        redis=None,
    ):
        self.db = db
        self.processor = processor or MercadoPagoClient()
        self.redis = redis
        self.appointments = AppointmentService(db)
        self.settlements = SplitSettlementRecorder(db)

    async def handle(
        self,
        body: bytes,
        query: Optional[Mapping[str, str]] = None,
        x_signature: Optional[str] = None,
        x_request_id: Optional[str] = None,
    ) -> str:
        """
        Process a delivery and return what happened
        ("ignored", "duplicate", "processed").

        Raises SignatureInvalid on a verified bad signature and
        MalformedWebhookPayload on unreadable input; everything else the
        processor raises propagates for the caller to log.
        """
        notification = parse_notification(body, query)
        if notification is None:
            logger.info("Webhook without resource id, ignored")
            return "ignored"

        if not verify_signature(notification.resource_id, x_signature, x_request_id):
            logger.error(f"Invalid webhook signature for resource {notification.resource_id}")
            raise SignatureInvalid(notification.resource_id)

        # Id-less shapes skip the ledger; their dispatch is idempotent on its own
        gated = notification.event_id is not None
        if gated and await self.is_duplicate(notification.event_id):
            logger.info(f"Duplicate webhook event {notification.event_id} ignored")
            return "duplicate"

        logger.info(
            f"Webhook received: topic={notification.raw_topic} resource={notification.resource_id} "
            f"event={notification.event_id}"
        )

        if notification.topic == WebhookTopic.PAYMENT:
            await self.process_payment(notification.resource_id)
        elif notification.topic == WebhookTopic.MERCHANT_ORDER:
            await self.process_merchant_order(notification.resource_id)
        else:
            logger.info(f"Unhandled webhook topic: {notification.raw_topic}")

        if gated:
            await self.mark_processed(notification)
        return "processed"

    # ------------------------------------------------------------------
    # Idempotency
    # ------------------------------------------------------------------

    async def is_duplicate(self, event_id: str) -> bool:
        if await webhook_event_seen(self.redis, event_id):
            return True

        result = await self.db.execute(
            select(ProcessedWebhookEvent.id).where(ProcessedWebhookEvent.event_id == event_id)
        )
        return result.scalar_one_or_none() is not None

    async def mark_processed(self, notification: Notification) -> None:
        """Ledger insert, after dispatch so a crash mid-way allows redelivery."""
        try:
            async with self.db.begin_nested():
                self.db.add(
                    ProcessedWebhookEvent(
                        event_id=notification.event_id,
                        event_type=(notification.raw_topic or "unknown")[:50],
                    )
                )
                await self.db.flush()
        except IntegrityError:
            logger.info(f"Webhook event {notification.event_id} recorded concurrently")

        await remember_webhook_event(self.redis, notification.event_id)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def process_payment(self, payment_id: str) -> None:
        token = await self.processor.client_credentials_token()
        payment = await self.processor.get_payment(payment_id, token)

        status = payment.get("status")
        metadata = payment.get("metadata") or {}
        logger.info(f"Payment {payment_id} status={status} type={metadata.get('type')}")

        order_id = metadata.get("order_id") or self._order_from_reference(payment.get("external_reference"))
        if order_id:
            await self.settlements.record(payment, order_id=order_id)
            return

        confirmed: List[Appointment] = []
        if status == ProcessorPaymentStatus.APPROVED.value:
            preference_id = await self._preference_for_payment(payment, token)
            confirmed = await self.appointments.confirm_payment(
                preference_id, payment.get("external_reference")
            )
            if not confirmed:
                logger.warning(f"Approved payment {payment_id} matched no pending appointment")

        await self._record_appointment_split(payment, metadata, confirmed)

    async def process_merchant_order(self, merchant_order_id: str) -> None:
        token = await self.processor.client_credentials_token()
        merchant_order = await self.processor.get_merchant_order(merchant_order_id, token)

        payments = merchant_order.get("payments") or []
        approved = [p for p in payments if p.get("status") == ProcessorPaymentStatus.APPROVED.value]
        logger.info(
            f"Merchant order {merchant_order_id}: {len(payments)} payment(s), {len(approved)} approved"
        )

        order_id = self._order_from_reference(merchant_order.get("external_reference"))
        if order_id:
            # Merchant order payment entries carry no fee breakdown
            for entry in approved:
                payment = await self.processor.get_payment(str(entry["id"]), token)
                await self.settlements.record(payment, order_id=order_id)
            return

        if not approved:
            return

        preference_id = merchant_order.get("preference_id")
        await self.appointments.confirm_payment(
            str(preference_id) if preference_id else None,
            merchant_order.get("external_reference"),
        )

    async def _preference_for_payment(self, payment: Dict[str, Any], token: str) -> Optional[str]:
        """Payments reference their preference only indirectly, via the merchant order."""
        metadata = payment.get("metadata") or {}
        preference_id = payment.get("preference_id") or metadata.get("preference_id")
        if preference_id:
            return str(preference_id)

        merchant_order_id = (payment.get("order") or {}).get("id")
        if not merchant_order_id:
            return None
        merchant_order = await self.processor.get_merchant_order(str(merchant_order_id), token)
        preference_id = merchant_order.get("preference_id")
        return str(preference_id) if preference_id else None

    async def _record_appointment_split(
        self,
        payment: Dict[str, Any],
        metadata: Dict[str, Any],
        confirmed: List[Appointment],
    ) -> None:
        seller_id = _as_uuid(metadata.get("seller_id"))
        if seller_id is None:
            return
        appointment_id = confirmed[0].id if confirmed else _as_uuid(metadata.get("appointment_id"))
        await self.settlements.record(payment, appointment_id=appointment_id, seller_id=seller_id)

    @staticmethod
    def _order_from_reference(external_reference: Optional[str]) -> Optional[str]:
        if external_reference and external_reference.startswith(ORDER_REFERENCE_PREFIX):
            return external_reference[len(ORDER_REFERENCE_PREFIX):]
        return None


def _as_uuid(value: Any) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None
