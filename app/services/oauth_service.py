"""
OAuth Service - connect a seller's Mercado Pago account to the platform.

Flow:
1. initiate(): store a random state, hand the browser the authorization URL
2. complete(): consume the state exactly once, exchange the code
   server-to-server, store encrypted tokens, create the Seller if needed
"""

import uuid
import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import InvalidState, ProcessorRequestFailed
from app.models.oauth import OAuthCredential, OAuthState
from app.models.seller import Seller
from app.models.user import Profile
from app.services.credential_vault import CredentialVault
from app.services.mercadopago_client import MercadoPagoClient
from app.time_utils import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_BUSINESS_NAME = "Minha Loja"


class OAuthService:
    """Seller onboarding with the payment processor."""

    def __init__(
        self,
        db: AsyncSession,
        processor: Optional[MercadoPagoClient] = None,
        vault: Optional[CredentialVault] = None,
    ):
        self.db = db
        self.processor = processor or MercadoPagoClient()
        self._vault = vault

    @property
    def vault(self) -> CredentialVault:
        # Built lazily so initiate() works without an encryption key
        if self._vault is None:
            self._vault = CredentialVault(self.db)
        return self._vault

    async def initiate(self, user_id: uuid.UUID) -> str:
        """Create a CSRF state for `user_id` and return the authorization URL."""
        state = secrets.token_urlsafe(32)
        self.db.add(
            OAuthState(
                state=state,
                user_id=user_id,
                expires_at=utcnow() + timedelta(minutes=settings.oauth_state_ttl_minutes),
            )
        )
        await self.db.flush()

        params = {
            "client_id": settings.mp_client_id,
            "response_type": "code",
            "platform_id": "mp",
            "state": state,
            "redirect_uri": settings.oauth_redirect_uri,
        }
        logger.info(f"OAuth authorization started for user {user_id}")
        return f"{settings.mp_auth_url}?{urlencode(params)}"

    async def consume_state(self, state: str) -> uuid.UUID:
        """
        Delete the state row and return its owner in one statement.

        A second call with the same value finds nothing, which is what makes
        a captured callback URL useless.
        """
        result = await self.db.execute(
            delete(OAuthState)
            .where(OAuthState.state == state)
            .returning(OAuthState.user_id, OAuthState.expires_at)
        )
        row = result.first()
        if row is None:
            raise InvalidState()

        user_id, expires_at = row
        if as_utc(expires_at) <= utcnow():
            raise InvalidState()
        return user_id

    async def complete(self, code: str, state: str) -> Seller:
        """Finish the authorization-code exchange and bind tokens to the seller."""
        if not code or not state:
            raise InvalidState("Código ou state não fornecidos")

        try:
            user_id = await self.consume_state(state)
        finally:
            # The state is spent even if anything below fails
            await self.db.commit()

        token_data = await self.processor.exchange_code(code, settings.oauth_redirect_uri)
        access_token = token_data.get("access_token")
        mp_user_id = token_data.get("user_id")
        if not access_token or mp_user_id is None:
            raise ProcessorRequestFailed(502, "resposta sem access_token/user_id", action="obter tokens")

        logger.info(
            f"Tokens received for user {user_id}: access_token=present, "
            f"refresh_token={'present' if token_data.get('refresh_token') else 'absent'}"
        )

        seller = await self._get_or_create_seller(user_id, str(mp_user_id))

        await self.vault.put(
            seller_id=seller.id,
            access_token=access_token,
            refresh_token=token_data.get("refresh_token"),
            mp_user_id=str(mp_user_id),
            expires_in=token_data.get("expires_in"),
            public_key=token_data.get("public_key"),
        )
        return seller

    async def _get_or_create_seller(self, user_id: uuid.UUID, mp_user_id: str) -> Seller:
        result = await self.db.execute(select(Seller).where(Seller.user_id == user_id))
        seller = result.scalar_one_or_none()
        if seller:
            seller.mp_user_id = mp_user_id
            return seller

        profile_result = await self.db.execute(select(Profile).where(Profile.user_id == user_id))
        profile = profile_result.scalar_one_or_none()

        seller = Seller(
            user_id=user_id,
            profile_id=profile.id if profile else None,
            business_name=(profile.full_name if profile and profile.full_name else DEFAULT_BUSINESS_NAME),
            mp_user_id=mp_user_id,
        )
        self.db.add(seller)
        await self.db.flush()
        logger.info(f"Created seller {seller.id} for user {user_id}")
        return seller

    async def connection_status(self, user_id: uuid.UUID) -> Dict[str, Any]:
        """Whether the user has a seller account bound to processor credentials."""
        result = await self.db.execute(
            select(Seller, OAuthCredential)
            .outerjoin(OAuthCredential, OAuthCredential.seller_id == Seller.id)
            .where(Seller.user_id == user_id)
        )
        row = result.first()
        if row is None:
            return {"connected": False, "seller_id": None, "mp_user_id": None, "expires_at": None}

        seller, credential = row
        expires_at = as_utc(credential.expires_at) if credential else None
        return {
            "connected": credential is not None,
            "seller_id": str(seller.id),
            "mp_user_id": credential.mp_user_id if credential else None,
            "expires_at": expires_at.isoformat() if expires_at else None,
        }
