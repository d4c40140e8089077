"""
Pending Payment Expiry Worker.
Cancels appointments whose checkout was never paid and frees their queue positions.
"""

import asyncio
import logging

from app.workers.celery_app import celery_app
from app.database import get_db_context
from app.services.appointment_service import AppointmentService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def expire_stale_pending_appointments(self):
    """
    Celery task for the stale pending sweep.

    Runs every 10 minutes; anything pending longer than
    pending_payment_ttl_minutes is cancelled.
    """
    try:
        result = asyncio.run(_expire_stale_pending())
        logger.info(f"Stale pending sweep finished: {result}")
        return result
    except Exception as e:
        logger.error(f"Stale pending sweep failed: {e}", exc_info=True)
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))


async def _expire_stale_pending():
    """Async implementation of the sweep."""
    async with get_db_context() as db:
        service = AppointmentService(db)
        expired = await service.expire_stale_pending()
        return {"expired": expired}
