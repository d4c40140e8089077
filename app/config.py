"""
Application configuration using pydantic-settings.
Loads from environment variables / .env file.
"""

from decimal import Decimal
from functools import lru_cache
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

MP_API_URL = "https://api.mercadopago.com"
MP_AUTH_URL = "https://auth.mercadopago.com/authorization"

# Client-side routes the payer lands on after hosted checkout
APPOINTMENT_RETURN_PATHS = {
    "success": "/agendamento-confirmado",
    "failure": "/agendamento-erro",
    "pending": "/agendamento-pendente",
}
ORDER_RETURN_PATHS = {
    "success": "/marketplace/pedido-confirmado",
    "failure": "/marketplace/pedido-erro",
    "pending": "/marketplace/pedido-pendente",
}


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "barbearia-pagamentos"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # API Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = ["http://localhost:5173"]

    # Postgres
    database_url: str = ""
    database_ssl: bool = True
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Hosting backend (auth issuer + public functions URL)
    supabase_url: str = ""
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = "authenticated"

    # Mercado Pago
    mp_client_id: str = ""
    mp_client_secret: str = ""
    mp_access_token: str = ""
    mp_webhook_secret: str = ""
    mp_redirect_uri: str = ""
    mp_notification_url: str = ""
    mp_api_url: str = MP_API_URL
    mp_auth_url: str = MP_AUTH_URL
    processor_timeout_seconds: float = 10.0

    # Fernet key for OAuth tokens at rest
    token_encryption_key: str = ""

    # OAuth
    oauth_state_ttl_minutes: int = 10

    # Scheduling
    queue_capacity: int = 5
    queue_reserve_attempts: int = 3
    pending_payment_ttl_minutes: int = 60
    local_timezone: str = "America/Sao_Paulo"

    # Fees
    appointment_fee_flat: Decimal = Decimal("1.00")
    marketplace_fee_percentage: Decimal = Decimal("10")
    currency_id: str = "BRL"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def oauth_redirect_uri(self) -> str:
        """Where the processor sends the seller back with the authorization code."""
        if self.mp_redirect_uri:
            return self.mp_redirect_uri
        return f"{self.supabase_url.rstrip('/')}/mercadopago/oauth/callback"

    @property
    def notification_url(self) -> str:
        """Webhook URL handed to the processor on every preference."""
        if self.mp_notification_url:
            return self.mp_notification_url
        return f"{self.supabase_url.rstrip('/')}/webhooks/mercadopago"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
