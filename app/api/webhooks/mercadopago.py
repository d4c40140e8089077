"""
Mercado Pago Webhook Handler.
Verifies signatures and processes payment / merchant_order notifications.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from redis.asyncio.client import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_optional_redis, get_processor
from app.database import get_db
from app.exceptions import MalformedWebhookPayload, SignatureInvalid
from app.services.mercadopago_client import MercadoPagoClient
from app.services.webhook_service import WebhookProcessor

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/mercadopago")
async def mercadopago_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    processor: MercadoPagoClient = Depends(get_processor),
    redis: Optional[Redis] = Depends(get_optional_redis),
):
    """
    Handle Mercado Pago notifications.

    Always answers 200 "OK" except on a verified bad signature (401).
    """
    body = await request.body()
    webhook = WebhookProcessor(db, processor=processor, redis=redis)

    try:
        outcome = await webhook.handle(
            body,
            query=dict(request.query_params),
            x_signature=request.headers.get("x-signature"),
            x_request_id=request.headers.get("x-request-id"),
        )
        logger.info(f"Mercado Pago webhook {outcome}")
    except SignatureInvalid:
        await db.rollback()
        return PlainTextResponse("Unauthorized", status_code=401)
    except MalformedWebhookPayload as e:
        logger.warning(f"Malformed Mercado Pago webhook ignored: {e}")
    except Exception as e:
        # Nothing half-done is kept; the event stays unrecorded so redelivery retries it
        await db.rollback()
        logger.error(f"Error processing Mercado Pago webhook: {e}", exc_info=True)

    return PlainTextResponse("OK", status_code=200)
