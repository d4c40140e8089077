"""
Tests for the webhook dedup cache helpers.
"""

import pytest
from unittest.mock import AsyncMock

from app.redis import WEBHOOK_DEDUP_TTL, remember_webhook_event, webhook_event_seen

from conftest import FakeRedis


@pytest.mark.asyncio
async def test_remember_then_seen():
    redis = FakeRedis()
    assert await webhook_event_seen(redis, "12345") is False

    await remember_webhook_event(redis, "12345")

    assert redis.store == {"mp:webhook:12345": "1"}
    assert await webhook_event_seen(redis, "12345") is True


@pytest.mark.asyncio
async def test_without_client():
    assert await webhook_event_seen(None, "12345") is False
    await remember_webhook_event(None, "12345")


@pytest.mark.asyncio
async def test_errors_fall_through():
    redis = AsyncMock()
    redis.exists.side_effect = ConnectionError("down")
    redis.setex.side_effect = ConnectionError("down")

    assert await webhook_event_seen(redis, "12345") is False
    await remember_webhook_event(redis, "12345")
    redis.setex.assert_awaited_once_with("mp:webhook:12345", int(WEBHOOK_DEDUP_TTL.total_seconds()), "1")
