"""
Tests for checkout preference creation.
"""

import pytest
import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from app.auth import AuthenticatedUser
from app.exceptions import (
    AppointmentNotFound,
    InvalidRequest,
    MultiSellerNotSupported,
    ProcessorRequestFailed,
    ProductUnavailable,
    SellerNotConnected,
    ServiceUnavailable,
    SlotFull,
)
from app.models.appointment import Appointment, DailyQueueEntry
from app.models.marketplace_config import MarketplaceConfig
from app.models.order import Order, OrderItem
from app.services.preference_service import PreferenceService, resolve_base_url
from app.services.queue_service import QueueAllocator

from conftest import SELLER_ACCESS_TOKEN, create_product, create_profile, create_seller, create_service

BASE_URL = "https://barbearia.example.com"
DAY = date(2025, 3, 10)
PREF_ID = "123456789-pref-0001"


async def _customer(db) -> AuthenticatedUser:
    profile = await create_profile(db, full_name="João Cliente", email="joao@example.com")
    return AuthenticatedUser(id=profile.user_id, email="joao@example.com")


class TestResolveBaseUrl:

    def test_explicit_wins(self):
        assert resolve_base_url("https://app.example.com/", "https://other.example.com") == "https://app.example.com"

    def test_origin(self):
        assert resolve_base_url(None, "https://app.example.com") == "https://app.example.com"

    def test_referer_origin(self):
        assert resolve_base_url(None, None, "https://app.example.com/agendar?x=1") == "https://app.example.com"

    def test_nothing_to_go_on(self):
        with pytest.raises(InvalidRequest):
            resolve_base_url(None, "null", None)


@pytest.mark.asyncio
async def test_appointment_preference_end_to_end(db, processor):
    seller = await create_seller(db)
    service = await create_service(db, seller, price="50.00")
    user = await _customer(db)

    result = await PreferenceService(db, processor=processor).create_appointment_preference(
        user, [str(service.id)], DAY, "morning", BASE_URL
    )

    assert result["preference_id"] == PREF_ID
    assert result["init_point"].startswith("https://")
    assert result["total_amount"] == 50.0

    appointments = (await db.execute(select(Appointment))).scalars().all()
    assert len(appointments) == 1
    appointment = appointments[0]
    assert appointment.status == "pending_payment"
    assert appointment.queue_position == 1
    assert appointment.preference_id == PREF_ID
    assert appointment.notes == f"Turno: morning - Posição: 1 - Preferência MP: {PREF_ID}"
    assert appointment.customer_id == user.id

    entry = (await db.execute(select(DailyQueueEntry))).scalar_one()
    assert entry.preference_id == PREF_ID


@pytest.mark.asyncio
async def test_preference_uses_seller_token_and_payload(db, processor):
    seller = await create_seller(db)
    service = await create_service(db, seller, price="50.00")
    user = await _customer(db)

    await PreferenceService(db, processor=processor).create_appointment_preference(
        user, [str(service.id)], DAY, "afternoon", BASE_URL
    )

    token, payload = processor.create_preference.await_args.args
    assert token == SELLER_ACCESS_TOKEN
    assert payload["marketplace_fee"] == 1.0
    assert payload["auto_return"] == "approved"
    assert payload["back_urls"]["success"] == f"{BASE_URL}/agendamento-confirmado"
    assert payload["back_urls"]["failure"] == f"{BASE_URL}/agendamento-erro"
    assert payload["back_urls"]["pending"] == f"{BASE_URL}/agendamento-pendente"
    assert payload["notification_url"].endswith("/webhooks/mercadopago")
    assert payload["external_reference"].startswith("appointment_")
    assert payload["items"][0]["unit_price"] == 50.0
    assert payload["items"][0]["currency_id"] == "BRL"
    assert payload["metadata"]["seller_id"] == str(seller.id)
    assert payload["metadata"]["time_slot"] == "afternoon"
    assert payload["metadata"]["scheduled_date"] == "2025-03-10"
    assert payload["payer"]["email"] == "joao@example.com"
    assert "sponsor_id" not in payload


@pytest.mark.asyncio
async def test_multi_service_booking_shares_one_position(db, processor):
    seller = await create_seller(db)
    cut = await create_service(db, seller, price="50.00", name="Corte")
    beard = await create_service(db, seller, price="30.00", name="Barba")
    user = await _customer(db)

    result = await PreferenceService(db, processor=processor).create_appointment_preference(
        user, [str(cut.id), str(beard.id)], DAY, "morning", BASE_URL
    )

    assert result["total_amount"] == 80.0
    assert len(result["appointment_ids"]) == 2
    positions = (await db.execute(select(Appointment.queue_position))).scalars().all()
    assert positions == [1, 1]


@pytest.mark.asyncio
async def test_services_from_two_sellers_rejected(db, processor):
    first = await create_seller(db)
    second = await create_seller(db, mp_user_id="111")
    a = await create_service(db, first)
    b = await create_service(db, second)
    user = await _customer(db)

    with pytest.raises(MultiSellerNotSupported):
        await PreferenceService(db, processor=processor).create_appointment_preference(
            user, [str(a.id), str(b.id)], DAY, "morning", BASE_URL
        )
    processor.create_preference.assert_not_awaited()
    assert (await db.execute(select(DailyQueueEntry))).scalars().all() == []


@pytest.mark.asyncio
async def test_seller_without_credential(db, processor):
    seller = await create_seller(db, connected=False)
    service = await create_service(db, seller)
    user = await _customer(db)

    with pytest.raises(SellerNotConnected):
        await PreferenceService(db, processor=processor).create_appointment_preference(
            user, [str(service.id)], DAY, "morning", BASE_URL
        )
    processor.create_preference.assert_not_awaited()


@pytest.mark.asyncio
async def test_inactive_or_unknown_service(db, processor):
    seller = await create_seller(db)
    inactive = await create_service(db, seller, is_active=False)
    user = await _customer(db)
    service = PreferenceService(db, processor=processor)

    with pytest.raises(ServiceUnavailable):
        await service.create_appointment_preference(user, [str(inactive.id)], DAY, "morning", BASE_URL)
    with pytest.raises(ServiceUnavailable):
        await service.create_appointment_preference(user, [str(uuid.uuid4())], DAY, "morning", BASE_URL)
    with pytest.raises(InvalidRequest):
        await service.create_appointment_preference(user, [], DAY, "morning", BASE_URL)


@pytest.mark.asyncio
async def test_full_slot(db, processor):
    seller = await create_seller(db)
    service = await create_service(db, seller)
    user = await _customer(db)
    queue = QueueAllocator(db, capacity=5)
    for _ in range(5):
        await queue.reserve(DAY, "evening")

    with pytest.raises(SlotFull):
        await PreferenceService(db, processor=processor).create_appointment_preference(
            user, [str(service.id)], DAY, "evening", BASE_URL
        )
    processor.create_preference.assert_not_awaited()


@pytest.mark.asyncio
async def test_processor_failure_surfaces_body(db, processor):
    seller = await create_seller(db)
    service = await create_service(db, seller)
    user = await _customer(db)
    processor.create_preference.side_effect = ProcessorRequestFailed(
        400, '{"message":"invalid back_urls"}', action="criar preferência"
    )

    with pytest.raises(ProcessorRequestFailed) as exc:
        await PreferenceService(db, processor=processor).create_appointment_preference(
            user, [str(service.id)], DAY, "morning", BASE_URL
        )
    assert "invalid back_urls" in exc.value.message
    assert (await db.execute(select(Appointment))).scalars().all() == []


@pytest.mark.asyncio
async def test_sponsor_id_from_marketplace_config(db, processor):
    db.add(MarketplaceConfig(mercado_pago_user_id="13579", platform_fee_percentage=Decimal("5")))
    seller = await create_seller(db)
    service = await create_service(db, seller)
    user = await _customer(db)

    await PreferenceService(db, processor=processor).create_appointment_preference(
        user, [str(service.id)], DAY, "morning", BASE_URL
    )

    _, payload = processor.create_preference.await_args.args
    assert payload["sponsor_id"] == 13579


@pytest.mark.asyncio
async def test_retry_preference_keeps_position(db, processor):
    seller = await create_seller(db)
    service = await create_service(db, seller, price="45.00")
    user = await _customer(db)
    preferences = PreferenceService(db, processor=processor)
    created = await preferences.create_appointment_preference(
        user, [str(service.id)], DAY, "morning", BASE_URL
    )
    processor.create_preference.return_value = {"id": "retry-pref-0002", "init_point": "https://mp/retry"}

    result = await preferences.retry_appointment_preference(user, created["appointment_ids"][0], BASE_URL)

    assert result["preference_id"] == "retry-pref-0002"
    assert result["amount"] == 45.0
    _, payload = processor.create_preference.await_args.args
    assert payload["external_reference"].startswith("appointment_retry_")
    assert payload["metadata"]["type"] == "appointment_retry"

    appointment = (await db.execute(select(Appointment))).scalar_one()
    assert appointment.preference_id == "retry-pref-0002"
    assert appointment.queue_position == 1
    assert appointment.notes.endswith("Preferência MP: retry-pref-0002")
    entry = (await db.execute(select(DailyQueueEntry))).scalar_one()
    assert entry.preference_id == "retry-pref-0002"


@pytest.mark.asyncio
async def test_retry_rejects_other_customers_appointment(db, processor):
    seller = await create_seller(db)
    service = await create_service(db, seller)
    owner = await _customer(db)
    created = await PreferenceService(db, processor=processor).create_appointment_preference(
        owner, [str(service.id)], DAY, "morning", BASE_URL
    )
    stranger = AuthenticatedUser(id=uuid.uuid4())

    with pytest.raises(AppointmentNotFound):
        await PreferenceService(db, processor=processor).retry_appointment_preference(
            stranger, created["appointment_ids"][0], BASE_URL
        )


@pytest.mark.asyncio
async def test_order_preference(db, processor):
    seller = await create_seller(db)
    product = await create_product(db, seller, price="50.00", stock=10)
    user = await _customer(db)

    result = await PreferenceService(db, processor=processor).create_order_preference(
        user, [{"product_id": str(product.id), "quantity": 2}], BASE_URL
    )

    assert result["total_amount"] == 100.0
    assert result["application_fee"] == 10.0

    order = (await db.execute(select(Order))).scalar_one()
    assert order.status == "pending"
    assert order.mp_preference_id == PREF_ID
    assert order.total_amount == Decimal("100.00")
    item = (await db.execute(select(OrderItem))).scalar_one()
    assert item.quantity == 2
    assert item.total_price == Decimal("100.00")

    token, payload = processor.create_preference.await_args.args
    assert token == SELLER_ACCESS_TOKEN
    assert payload["external_reference"] == f"order_{order.id}"
    assert payload["metadata"]["order_id"] == str(order.id)
    assert payload["marketplace_fee"] == 10.0
    assert payload["back_urls"]["success"] == f"{BASE_URL}/marketplace/pedido-confirmado"


@pytest.mark.asyncio
async def test_order_fee_override_and_config(db, processor):
    db.add(MarketplaceConfig(platform_fee_percentage=Decimal("5")))
    seller = await create_seller(db)
    product = await create_product(db, seller, price="50.00")
    user = await _customer(db)
    preferences = PreferenceService(db, processor=processor)

    from_config = await preferences.create_order_preference(
        user, [{"product_id": str(product.id), "quantity": 2}], BASE_URL
    )
    explicit = await preferences.create_order_preference(
        user, [{"product_id": str(product.id), "quantity": 2}], BASE_URL, fee_percentage=Decimal("12.5")
    )

    assert from_config["application_fee"] == 5.0
    assert explicit["application_fee"] == 12.5


@pytest.mark.asyncio
async def test_order_rejects_insufficient_stock(db, processor):
    seller = await create_seller(db)
    product = await create_product(db, seller, stock=1)
    user = await _customer(db)

    with pytest.raises(ProductUnavailable):
        await PreferenceService(db, processor=processor).create_order_preference(
            user, [{"product_id": str(product.id), "quantity": 2}], BASE_URL
        )
    assert (await db.execute(select(Order))).scalars().all() == []


@pytest.mark.asyncio
async def test_order_rejects_multiple_sellers(db, processor):
    first = await create_seller(db)
    second = await create_seller(db, mp_user_id="222")
    a = await create_product(db, first)
    b = await create_product(db, second)
    user = await _customer(db)

    with pytest.raises(MultiSellerNotSupported):
        await PreferenceService(db, processor=processor).create_order_preference(
            user,
            [{"product_id": str(a.id), "quantity": 1}, {"product_id": str(b.id), "quantity": 1}],
            BASE_URL,
        )
