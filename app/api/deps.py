from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from redis.asyncio.client import Redis

from app.auth import AuthenticatedUser, decode_access_token
from app.exceptions import Unauthenticated
from app.redis import get_redis
from app.services.mercadopago_client import MercadoPagoClient

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AuthenticatedUser:
    """
    Resolve the caller from the Authorization header.
    Raises Unauthenticated (401) if missing or invalid.
    """
    if credentials is None or not credentials.credentials:
        raise Unauthenticated()
    return decode_access_token(credentials.credentials)


def get_processor() -> MercadoPagoClient:
    """Processor client; overridden in tests."""
    return MercadoPagoClient()


async def get_optional_redis() -> Optional[Redis]:
    """Redis if configured, else None (callers fall back to the database)."""
    try:
        return await get_redis()
    except RuntimeError:
        return None
