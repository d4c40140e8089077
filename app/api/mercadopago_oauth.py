"""
Mercado Pago OAuth endpoints.
Seller onboarding runs in a popup; the callback page reports back to the
opener window with postMessage and closes itself.
"""

import html
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_processor
from app.auth import AuthenticatedUser
from app.database import get_db
from app.exceptions import PaymentFlowError
from app.services.mercadopago_client import MercadoPagoClient
from app.services.oauth_service import OAuthService

router = APIRouter()
logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Autorização concluída com sucesso! Esta janela será fechada automaticamente."


def _popup_page(message_type: str, text: str, error: Optional[str] = None) -> HTMLResponse:
    message = {"type": message_type}
    if error is not None:
        message["error"] = error
    # Safe inside <script>: JSON literal with "</" broken up
    payload = json.dumps(message, ensure_ascii=False).replace("</", "<\\/")
    redirect = "" if error is not None else "else { window.location.href = '/'; }"
    body = f"""<html>
  <body>
    <script>
      if (window.opener) {{
        window.opener.postMessage({payload}, '*');
        window.close();
      }} {redirect}
    </script>
    <p>{html.escape(text)}</p>
  </body>
</html>"""
    return HTMLResponse(content=body)


def success_page() -> HTMLResponse:
    return _popup_page("MP_AUTH_SUCCESS", SUCCESS_MESSAGE)


def error_page(error: str) -> HTMLResponse:
    return _popup_page("MP_AUTH_ERROR", f"Erro: {error}", error=error)


@router.post("/oauth/initiate")
async def initiate_oauth(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Start seller onboarding and return the processor's authorization URL."""
    service = OAuthService(db)
    authorization_url = await service.initiate(user.id)
    return {"authorization_url": authorization_url}


@router.api_route("/oauth/callback", methods=["GET", "POST"], response_class=HTMLResponse)
async def oauth_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
    processor: MercadoPagoClient = Depends(get_processor),
):
    """
    Processor redirect target.

    Accepts code/state/error as query params, or a JSON/form body on POST.
    Always answers with the popup page; failures become MP_AUTH_ERROR.
    """
    params = dict(request.query_params)
    if request.method == "POST" and not params.get("code"):
        params.update(await _read_body(request))

    provider_error = params.get("error")
    if provider_error:
        logger.warning(f"OAuth authorization denied by provider: {provider_error}")
        return error_page(f"Erro na autorização: {provider_error}")

    service = OAuthService(db, processor=processor)
    try:
        seller = await service.complete(params.get("code"), params.get("state"))
    except PaymentFlowError as e:
        await db.rollback()
        logger.warning(f"OAuth callback failed: {e.message}")
        return error_page(e.message)
    except Exception as e:
        await db.rollback()
        logger.error(f"OAuth callback error: {e}", exc_info=True)
        return error_page("Erro interno ao conectar o Mercado Pago")

    logger.info(f"Seller {seller.id} connected to Mercado Pago")
    return success_page()


@router.get("/oauth/status")
async def oauth_status(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Whether the caller's seller account is connected."""
    service = OAuthService(db)
    return await service.connection_status(user.id)


async def _read_body(request: Request) -> dict:
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith("application/json"):
            data = await request.json()
            return {k: str(v) for k, v in data.items() if v is not None} if isinstance(data, dict) else {}
        form = await request.form()
        return {k: str(v) for k, v in form.items()}
    except Exception as e:
        logger.warning(f"Unreadable OAuth callback body: {e}")
        return {}
