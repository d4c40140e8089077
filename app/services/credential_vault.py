"""
Credential Vault - the single entry point for seller processor credentials.

Business code asks the vault for a seller's decrypted token and never touches
the encrypted columns or the cipher directly.
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import SellerNotConnected
from app.models.oauth import OAuthCredential
from app.services.token_cipher import TokenCipher
from app.time_utils import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecryptedCredential:
    seller_id: uuid.UUID
    access_token: str
    refresh_token: Optional[str]
    mp_user_id: str
    expires_at: Optional[datetime]

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and self.expires_at <= utcnow()


class CredentialVault:
    """Read/write encrypted OAuth credentials keyed by seller."""

    def __init__(self, db: AsyncSession, cipher: Optional[TokenCipher] = None):
        self.db = db
        self.cipher = cipher or TokenCipher()

    async def _get_row(self, seller_id: uuid.UUID) -> Optional[OAuthCredential]:
        result = await self.db.execute(
            select(OAuthCredential).where(OAuthCredential.seller_id == seller_id)
        )
        return result.scalar_one_or_none()

    async def has_credential(self, seller_id: uuid.UUID) -> bool:
        return await self._get_row(seller_id) is not None

    async def get(self, seller_id: uuid.UUID) -> DecryptedCredential:
        """
        Return the seller's decrypted credential.

        Raises SellerNotConnected if the seller never authorized, and
        CredentialDecryptionError if the stored ciphertext does not verify.
        """
        row = await self._get_row(seller_id)
        if row is None:
            raise SellerNotConnected()

        access_token = self.cipher.decrypt(row.encrypted_access_token)
        refresh_token = (
            self.cipher.decrypt(row.encrypted_refresh_token)
            if row.encrypted_refresh_token
            else None
        )

        credential = DecryptedCredential(
            seller_id=row.seller_id,
            access_token=access_token,
            refresh_token=refresh_token,
            mp_user_id=row.mp_user_id,
            expires_at=as_utc(row.expires_at),
        )
        if credential.is_expired:
            logger.warning(f"Credential for seller {seller_id} is past its expiry; using it anyway")
        return credential

    async def put(
        self,
        seller_id: uuid.UUID,
        access_token: str,
        refresh_token: Optional[str],
        mp_user_id: str,
        expires_in: Optional[int] = None,
        public_key: Optional[str] = None,
    ) -> OAuthCredential:
        """
        Encrypt and upsert the seller's credential.

        Both tokens are encrypted before anything is written, so an encryption
        failure leaves the existing row untouched.
        """
        encrypted_access = self.cipher.encrypt(access_token)
        encrypted_refresh = self.cipher.encrypt(refresh_token) if refresh_token else None
        expires_at = utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None

        row = await self._get_row(seller_id)
        if row is None:
            row = OAuthCredential(seller_id=seller_id)
            self.db.add(row)

        row.encrypted_access_token = encrypted_access
        row.encrypted_refresh_token = encrypted_refresh
        row.mp_user_id = str(mp_user_id)
        row.public_key = public_key
        row.expires_at = expires_at

        await self.db.flush()
        logger.info(f"Stored processor credential for seller {seller_id}")
        return row
