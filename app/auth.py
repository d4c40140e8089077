"""Authentication module for hosting-backend session JWTs."""

import uuid
import logging
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from app.config import settings
from app.exceptions import Unauthenticated

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


class AuthenticatedUser(BaseModel):
    """The caller behind a valid bearer session."""

    id: uuid.UUID
    email: Optional[str] = None


def decode_access_token(token: str) -> AuthenticatedUser:
    """Validate a session JWT and return the user it was issued to."""
    if not token or not settings.supabase_jwt_secret:
        raise Unauthenticated()

    try:
        payload: Dict[str, Any] = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=[JWT_ALGORITHM],
            audience=settings.supabase_jwt_audience,
        )
    except JWTError as e:
        logger.info(f"Rejected session token: {e}")
        raise Unauthenticated()

    subject = payload.get("sub")
    if not isinstance(subject, str):
        raise Unauthenticated()
    try:
        user_id = uuid.UUID(subject)
    except ValueError:
        raise Unauthenticated()

    return AuthenticatedUser(id=user_id, email=payload.get("email"))
