"""
Tests for split settlement recording.
"""

import pytest
import uuid
from decimal import Decimal

from sqlalchemy import func, select

from app.auth import AuthenticatedUser
from app.models.catalog import Product
from app.models.order import Order
from app.models.payment import SplitPayment
from app.services.preference_service import PreferenceService
from app.services.settlement_service import SplitAmounts, SplitSettlementRecorder, map_status

from conftest import create_product, create_profile, create_seller


def _payment(order_id, status="approved", payment_id=9001, amount=100.00, fee=1.00):
    return {
        "id": payment_id,
        "status": status,
        "transaction_amount": amount,
        "collector_id": 987654,
        "fee_details": [
            {"type": "mercadopago_fee", "amount": 4.99, "fee_payer": "collector"},
            {"type": "application_fee", "amount": fee, "fee_payer": "collector"},
        ],
        "metadata": {"order_id": str(order_id)},
        "external_reference": f"order_{order_id}",
    }


async def _order(db, processor, stock=10, quantity=2):
    seller = await create_seller(db)
    product = await create_product(db, seller, price="50.00", stock=stock)
    buyer = await create_profile(db)
    result = await PreferenceService(db, processor=processor).create_order_preference(
        AuthenticatedUser(id=buyer.user_id),
        [{"product_id": str(product.id), "quantity": quantity}],
        "https://barbearia.example.com",
    )
    return seller, product, result["order_id"]


class TestSplitArithmetic:

    def test_seller_amount_is_exact(self):
        amounts = SplitAmounts.from_payment(
            {"transaction_amount": 100.00, "fee_details": [{"type": "application_fee", "amount": 1.00}]}
        )
        assert amounts.seller_amount == Decimal("99.00")
        assert amounts.platform_fee == Decimal("1.00")

    def test_no_float_drift(self):
        amounts = SplitAmounts.from_payment(
            {"transaction_amount": 0.3, "fee_details": [{"type": "application_fee", "amount": 0.1}]}
        )
        assert amounts.seller_amount == Decimal("0.20")

    def test_marketplace_fee_fallback(self):
        amounts = SplitAmounts.from_payment({"transaction_amount": 80, "marketplace_fee": 8})
        assert amounts.platform_fee == Decimal("8.00")
        assert amounts.seller_amount == Decimal("72.00")

    def test_no_fee_reported(self):
        amounts = SplitAmounts.from_payment({"transaction_amount": 80})
        assert amounts.platform_fee == Decimal("0.00")
        assert amounts.seller_amount == Decimal("80.00")


class TestStatusMapping:

    @pytest.mark.parametrize(
        "processor_status,expected",
        [
            ("approved", ("paid", "approved")),
            ("pending", ("pending", "pending")),
            ("in_process", ("pending", "pending")),
            ("cancelled", ("cancelled", "rejected")),
            ("rejected", ("cancelled", "rejected")),
            ("refunded", ("refunded", "refunded")),
        ],
    )
    def test_map_status(self, processor_status, expected):
        assert map_status(processor_status) == expected


@pytest.mark.asyncio
async def test_approved_payment_records_split_and_pays_order(db, processor):
    seller, product, order_id = await _order(db, processor)

    split = await SplitSettlementRecorder(db).record(_payment(order_id), order_id=order_id)

    assert split.payment_id == "9001"
    assert split.total_amount == Decimal("100.00")
    assert split.platform_fee == Decimal("1.00")
    assert split.seller_amount == Decimal("99.00")
    assert split.status == "approved"
    assert split.processed_at is not None
    assert split.seller_id == seller.id
    assert split.mp_collector_id == "987654"

    order = (await db.execute(select(Order))).scalar_one()
    assert order.status == "paid"
    assert order.mp_application_fee == Decimal("1.00")
    await db.refresh(product)
    assert product.stock_quantity == 8


@pytest.mark.asyncio
async def test_redelivered_approval_decrements_stock_once(db, processor):
    _, product, order_id = await _order(db, processor)
    recorder = SplitSettlementRecorder(db)

    await recorder.record(_payment(order_id), order_id=order_id)
    await recorder.record(_payment(order_id), order_id=order_id)

    count = (await db.execute(select(func.count(SplitPayment.id)))).scalar_one()
    assert count == 1
    await db.refresh(product)
    assert product.stock_quantity == 8


@pytest.mark.asyncio
async def test_pending_then_approved_converges(db, processor):
    _, product, order_id = await _order(db, processor)
    recorder = SplitSettlementRecorder(db)

    pending = await recorder.record(_payment(order_id, status="pending"), order_id=order_id)
    assert pending.status == "pending"
    assert pending.processed_at is None
    await db.refresh(product)
    assert product.stock_quantity == 10

    approved = await recorder.record(_payment(order_id), order_id=order_id)
    assert approved.id == pending.id
    assert approved.status == "approved"
    assert approved.processed_at is not None
    await db.refresh(product)
    assert product.stock_quantity == 8


@pytest.mark.asyncio
async def test_late_pending_does_not_reopen_approved(db, processor):
    _, _, order_id = await _order(db, processor)
    recorder = SplitSettlementRecorder(db)

    await recorder.record(_payment(order_id), order_id=order_id)
    split = await recorder.record(_payment(order_id, status="pending"), order_id=order_id)

    assert split.status == "approved"
    order = (await db.execute(select(Order))).scalar_one()
    assert order.status == "paid"


@pytest.mark.asyncio
async def test_rejected_payment_cancels_order(db, processor):
    _, product, order_id = await _order(db, processor)

    split = await SplitSettlementRecorder(db).record(_payment(order_id, status="rejected"), order_id=order_id)

    assert split.status == "rejected"
    order = (await db.execute(select(Order))).scalar_one()
    assert order.status == "cancelled"
    await db.refresh(product)
    assert product.stock_quantity == 10


@pytest.mark.asyncio
async def test_unknown_order_is_skipped(db):
    split = await SplitSettlementRecorder(db).record(_payment(uuid.uuid4()), order_id=str(uuid.uuid4()))
    assert split is None


@pytest.mark.asyncio
async def test_seller_summary(db, processor):
    seller, _, order_id = await _order(db, processor)
    recorder = SplitSettlementRecorder(db)
    await recorder.record(_payment(order_id, payment_id=1), order_id=order_id)
    await recorder.record(_payment(order_id, payment_id=2, status="pending"), order_id=order_id)

    summary = await recorder.seller_summary(seller.id)

    assert summary == {
        "total_sales": 100.0,
        "platform_fees": 1.0,
        "seller_earnings": 99.0,
        "payments": 1,
        "pending_payments": 1,
    }
