"""
Token Cipher - authenticated symmetric encryption for processor tokens at rest.

Fernet (AES-128-CBC + HMAC-SHA256) keyed by a server-held secret. Decryption
fails closed: a tampered ciphertext or a wrong key raises instead of returning
garbage.

Generate a key with:
    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from app.config import settings
from app.exceptions import CredentialDecryptionError

logger = logging.getLogger(__name__)


class TokenCipher:
    """Encrypt/decrypt OAuth tokens. The only place tokens are transformed."""

    def __init__(self, key: Optional[str] = None):
        key = key if key is not None else settings.token_encryption_key
        if not key:
            raise RuntimeError("TOKEN_ENCRYPTION_KEY is not configured")
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise RuntimeError("TOKEN_ENCRYPTION_KEY is not a valid Fernet key") from e

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            logger.error("Stored token failed authentication; refusing to use it")
            raise CredentialDecryptionError() from e
