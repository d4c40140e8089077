"""
Tests for the seller OAuth connect flow.
"""

import pytest
import uuid
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

from sqlalchemy import select, update

from app.config import settings
from app.exceptions import InvalidState, ProcessorRequestFailed
from app.models.oauth import OAuthCredential, OAuthState
from app.models.seller import Seller
from app.services.credential_vault import CredentialVault
from app.services.oauth_service import OAuthService
from app.time_utils import utcnow

from conftest import create_profile

TOKEN_RESPONSE = {
    "access_token": "APP_USR-from-exchange",
    "refresh_token": "TG-from-exchange",
    "expires_in": 15552000,
    "user_id": 246810,
    "public_key": "APP_USR-public",
}


def _state_from(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


@pytest.mark.asyncio
async def test_initiate_builds_authorization_url(db, processor):
    user_id = uuid.uuid4()
    url = await OAuthService(db, processor=processor).initiate(user_id)

    parsed = urlparse(url)
    params = parse_qs(parsed.query)
    assert url.startswith(settings.mp_auth_url)
    assert params["client_id"] == ["test-client-id"]
    assert params["response_type"] == ["code"]
    assert params["redirect_uri"] == [settings.oauth_redirect_uri]

    result = await db.execute(select(OAuthState).where(OAuthState.state == params["state"][0]))
    state = result.scalar_one()
    assert state.user_id == user_id


@pytest.mark.asyncio
async def test_complete_creates_seller_and_credential(db, processor):
    profile = await create_profile(db, full_name="Barbearia Central")
    processor.exchange_code.return_value = dict(TOKEN_RESPONSE)
    service = OAuthService(db, processor=processor)
    state = _state_from(await service.initiate(profile.user_id))

    seller = await service.complete("TG-code", state)

    assert seller.business_name == "Barbearia Central"
    assert seller.mp_user_id == "246810"
    processor.exchange_code.assert_awaited_once_with("TG-code", settings.oauth_redirect_uri)
    credential = await CredentialVault(db).get(seller.id)
    assert credential.access_token == "APP_USR-from-exchange"
    assert credential.refresh_token == "TG-from-exchange"


@pytest.mark.asyncio
async def test_state_cannot_be_replayed(db, processor):
    processor.exchange_code.return_value = dict(TOKEN_RESPONSE)
    service = OAuthService(db, processor=processor)
    state = _state_from(await service.initiate(uuid.uuid4()))

    await service.complete("TG-code", state)

    with pytest.raises(InvalidState):
        await service.complete("TG-code", state)
    assert processor.exchange_code.await_count == 1


@pytest.mark.asyncio
async def test_expired_state_is_rejected(db, processor):
    service = OAuthService(db, processor=processor)
    state = _state_from(await service.initiate(uuid.uuid4()))
    await db.execute(
        update(OAuthState)
        .where(OAuthState.state == state)
        .values(expires_at=utcnow() - timedelta(minutes=1))
    )

    with pytest.raises(InvalidState):
        await service.complete("TG-code", state)
    processor.exchange_code.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_state(db, processor):
    with pytest.raises(InvalidState):
        await OAuthService(db, processor=processor).complete("TG-code", "forged-state")


@pytest.mark.asyncio
async def test_failed_exchange_still_consumes_state(db, processor):
    processor.exchange_code.side_effect = ProcessorRequestFailed(400, '{"error":"invalid_grant"}', action="obter tokens")
    service = OAuthService(db, processor=processor)
    state = _state_from(await service.initiate(uuid.uuid4()))

    with pytest.raises(ProcessorRequestFailed) as exc:
        await service.complete("TG-bad", state)

    assert "invalid_grant" in exc.value.message
    result = await db.execute(select(OAuthState).where(OAuthState.state == state))
    assert result.scalar_one_or_none() is None
    assert (await db.execute(select(OAuthCredential))).scalars().all() == []


@pytest.mark.asyncio
async def test_reauthorize_overwrites_credential(db, processor):
    user_id = uuid.uuid4()
    service = OAuthService(db, processor=processor)

    processor.exchange_code.return_value = dict(TOKEN_RESPONSE)
    first = await service.complete("TG-1", _state_from(await service.initiate(user_id)))

    processor.exchange_code.return_value = dict(TOKEN_RESPONSE, access_token="APP_USR-second")
    second = await service.complete("TG-2", _state_from(await service.initiate(user_id)))

    assert first.id == second.id
    sellers = (await db.execute(select(Seller).where(Seller.user_id == user_id))).scalars().all()
    assert len(sellers) == 1
    credential = await CredentialVault(db).get(second.id)
    assert credential.access_token == "APP_USR-second"


@pytest.mark.asyncio
async def test_connection_status(db, processor):
    user_id = uuid.uuid4()
    service = OAuthService(db, processor=processor)

    assert (await service.connection_status(user_id))["connected"] is False

    processor.exchange_code.return_value = dict(TOKEN_RESPONSE)
    seller = await service.complete("TG-1", _state_from(await service.initiate(user_id)))

    status = await service.connection_status(user_id)
    assert status["connected"] is True
    assert status["seller_id"] == str(seller.id)
    assert status["mp_user_id"] == "246810"
