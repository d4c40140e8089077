"""Services package."""

from app.services.token_cipher import TokenCipher
from app.services.credential_vault import CredentialVault
from app.services.mercadopago_client import MercadoPagoClient
from app.services.oauth_service import OAuthService
from app.services.queue_service import QueueAllocator
from app.services.preference_service import PreferenceService
from app.services.appointment_service import AppointmentService
from app.services.settlement_service import SplitSettlementRecorder
from app.services.webhook_service import WebhookProcessor

__all__ = [
    "TokenCipher",
    "CredentialVault",
    "MercadoPagoClient",
    "OAuthService",
    "QueueAllocator",
    "PreferenceService",
    "AppointmentService",
    "SplitSettlementRecorder",
    "WebhookProcessor",
]
