"""
Mercado Pago Service - server-to-server calls to the payment processor.

Every call carries an explicit timeout; a hung processor must not hang the
request (or the webhook acknowledgement) indefinitely.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from app.config import settings
from app.exceptions import ProcessorRequestFailed

logger = logging.getLogger(__name__)


class MercadoPagoClient:
    """Thin async client for the processor's REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.mp_api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.processor_timeout_seconds
        self.client_id = settings.mp_client_id
        self.client_secret = settings.mp_client_secret
        self._transport = transport

    async def exchange_code(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        """
        Trade an authorization code for seller tokens.

        Authenticated with the platform's client id/secret, which never leave
        the server.
        """
        return await self._request(
            "POST",
            "/oauth/token",
            data={
                "grant_type": "authorization_code",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
            action="obter tokens",
        )

    async def client_credentials_token(self) -> str:
        """Platform-level token for reading payments the webhook tells us about."""
        if settings.mp_access_token:
            return settings.mp_access_token

        data = await self._request(
            "POST",
            "/oauth/token",
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            action="obter token da plataforma",
        )
        token = data.get("access_token")
        if not token:
            raise ProcessorRequestFailed(502, "resposta sem access_token", action="obter token da plataforma")
        return token

    async def create_preference(self, access_token: str, preference: Dict[str, Any]) -> Dict[str, Any]:
        """Create a hosted checkout preference on behalf of the token owner."""
        return await self._request(
            "POST",
            "/checkout/preferences",
            token=access_token,
            json=preference,
            action="criar preferência",
        )

    async def get_payment(self, payment_id: str, access_token: str) -> Dict[str, Any]:
        return await self._request(
            "GET",
            f"/v1/payments/{payment_id}",
            token=access_token,
            action="consultar pagamento",
        )

    async def get_merchant_order(self, merchant_order_id: str, access_token: str) -> Dict[str, Any]:
        return await self._request(
            "GET",
            f"/merchant_orders/{merchant_order_id}",
            token=access_token,
            action="consultar merchant order",
        )

    async def _request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        action: str = "chamar o Mercado Pago",
    ) -> Dict[str, Any]:
        """
        Send one request and return the decoded JSON body.

        Raises ProcessorRequestFailed carrying the processor's error body on
        any non-2xx status, timeout or transport failure.
        """
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method,
                    path,
                    json=json,
                    data=data,
                    headers=headers,
                )
        except httpx.TimeoutException:
            logger.error(f"Mercado Pago timeout on {method} {path}")
            raise ProcessorRequestFailed(504, "timeout", action=action)
        except httpx.HTTPError as e:
            logger.error(f"Mercado Pago transport error on {method} {path}: {e}")
            raise ProcessorRequestFailed(502, str(e), action=action)

        if not response.is_success:
            logger.error(f"Mercado Pago HTTP error: {response.status_code} {response.text}")
            raise ProcessorRequestFailed(response.status_code, response.text, action=action)

        try:
            return response.json()
        except ValueError:
            raise ProcessorRequestFailed(response.status_code, "resposta não-JSON", action=action)
