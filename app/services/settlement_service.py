"""
Split Settlement Recorder - seller/platform division of confirmed payments.

The processor is authoritative on the fee it actually withheld, so amounts are
read from the payment's fee breakdown, never recomputed from our own rules.
"""

import uuid
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.fsm.states import OrderStatus, ProcessorPaymentStatus, SplitPaymentStatus
from app.models.catalog import Product
from app.models.order import Order, OrderItem
from app.models.payment import SplitPayment
from app.services.fee_strategy import to_money
from app.time_utils import utcnow

logger = logging.getLogger(__name__)

# processor status -> (order status, split status)
STATUS_MAP = {
    ProcessorPaymentStatus.APPROVED.value: (OrderStatus.PAID.value, SplitPaymentStatus.APPROVED.value),
    ProcessorPaymentStatus.PENDING.value: (OrderStatus.PENDING.value, SplitPaymentStatus.PENDING.value),
    ProcessorPaymentStatus.IN_PROCESS.value: (OrderStatus.PENDING.value, SplitPaymentStatus.PENDING.value),
    ProcessorPaymentStatus.CANCELLED.value: (OrderStatus.CANCELLED.value, SplitPaymentStatus.REJECTED.value),
    ProcessorPaymentStatus.REJECTED.value: (OrderStatus.CANCELLED.value, SplitPaymentStatus.REJECTED.value),
}


def map_status(processor_status: Optional[str]) -> Tuple[str, str]:
    """Unknown statuses pass through unchanged to both records."""
    status = processor_status or SplitPaymentStatus.PENDING.value
    return STATUS_MAP.get(status, (status, status))


def application_fee(payment: Dict[str, Any]) -> Decimal:
    """Fee the processor withheld for the platform."""
    for detail in payment.get("fee_details") or []:
        if detail.get("type") == "application_fee":
            return to_money(detail.get("amount"))
    if payment.get("marketplace_fee") is not None:
        return to_money(payment.get("marketplace_fee"))
    return Decimal("0.00")


@dataclass
class SplitAmounts:
    total_amount: Decimal
    platform_fee: Decimal
    seller_amount: Decimal

    @classmethod
    def from_payment(cls, payment: Dict[str, Any]) -> "SplitAmounts":
        total = to_money(payment.get("transaction_amount"))
        fee = application_fee(payment)
        return cls(total_amount=total, platform_fee=fee, seller_amount=to_money(total - fee))


class SplitSettlementRecorder:
    """Upserts SplitPayment rows and applies their effect on orders and stock."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        payment: Dict[str, Any],
        order_id: Optional[str] = None,
        appointment_id: Optional[uuid.UUID] = None,
        seller_id: Optional[uuid.UUID] = None,
    ) -> Optional[SplitPayment]:
        """
        Record `payment` against an order or an appointment.

        Safe under redelivery and out-of-order notifications: the row is keyed
        on the processor payment id and stock moves only the first time a
        payment becomes approved.
        """
        payment_id = payment.get("id")
        if payment_id is None:
            logger.warning("Payment without id, settlement skipped")
            return None
        payment_id = str(payment_id)

        order = None
        if order_id:
            order = await self._get_order(order_id)
            if order is None:
                logger.warning(f"Order {order_id} not found for payment {payment_id}")
                return None
            seller_id = order.seller_id

        order_status, split_status = map_status(payment.get("status"))
        amounts = SplitAmounts.from_payment(payment)
        collector = payment.get("collector_id") or (payment.get("collector") or {}).get("id")

        split, was_approved = await self._upsert(
            payment_id=payment_id,
            order_id=order.id if order else None,
            appointment_id=appointment_id,
            seller_id=seller_id,
            mp_collector_id=str(collector) if collector is not None else None,
            amounts=amounts,
            status=split_status,
        )

        if order is not None and split.status == split_status:
            order.status = order_status
            order.mp_application_fee = amounts.platform_fee
            if split_status == SplitPaymentStatus.APPROVED.value and not was_approved:
                await self._commit_stock(order.id)

        await self.db.flush()
        logger.info(
            f"Split recorded for payment {payment_id}: total={amounts.total_amount} "
            f"fee={amounts.platform_fee} seller={amounts.seller_amount} status={split_status}"
        )
        return split

    async def _upsert(
        self,
        payment_id: str,
        amounts: SplitAmounts,
        status: str,
        **refs: Any,
    ) -> Tuple[SplitPayment, bool]:
        """Returns the row and whether it was already approved before this call."""
        split = await self._get_split(payment_id)
        if split is None:
            split = SplitPayment(payment_id=payment_id, **self._values(amounts, status, refs))
            try:
                async with self.db.begin_nested():
                    self.db.add(split)
                    await self.db.flush()
                return split, False
            except IntegrityError:
                # A concurrent delivery inserted it first
                split = await self._get_split(payment_id)

        was_approved = split.status == SplitPaymentStatus.APPROVED.value
        if was_approved and status == SplitPaymentStatus.PENDING.value:
            # A late "pending" notification never reopens an approved payment
            logger.info(f"Ignoring pending update for approved payment {payment_id}")
            return split, was_approved

        for key, value in self._values(amounts, status, refs).items():
            if key == "processed_at" and was_approved:
                continue
            if value is not None or key == "processed_at":
                setattr(split, key, value)
        return split, was_approved

    @staticmethod
    def _values(amounts: SplitAmounts, status: str, refs: Dict[str, Any]) -> Dict[str, Any]:
        values = {
            "total_amount": amounts.total_amount,
            "seller_amount": amounts.seller_amount,
            "platform_fee": amounts.platform_fee,
            "status": status,
            "processed_at": utcnow() if status == SplitPaymentStatus.APPROVED.value else None,
        }
        values.update(refs)
        return values

    async def _get_split(self, payment_id: str) -> Optional[SplitPayment]:
        result = await self.db.execute(select(SplitPayment).where(SplitPayment.payment_id == payment_id))
        return result.scalar_one_or_none()

    async def _get_order(self, order_id: str) -> Optional[Order]:
        try:
            order_uuid = uuid.UUID(str(order_id))
        except ValueError:
            return None
        result = await self.db.execute(select(Order).where(Order.id == order_uuid))
        return result.scalar_one_or_none()

    async def _commit_stock(self, order_id: uuid.UUID) -> None:
        result = await self.db.execute(
            select(OrderItem.product_id, OrderItem.quantity).where(OrderItem.order_id == order_id)
        )
        for product_id, quantity in result.all():
            await self.db.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(stock_quantity=Product.stock_quantity - quantity)
            )
        logger.info(f"Stock committed for order {order_id}")

    async def seller_summary(self, seller_id: uuid.UUID) -> Dict[str, Any]:
        """Totals of approved splits for the seller dashboard."""
        approved = await self.db.execute(
            select(
                func.count(SplitPayment.id),
                func.coalesce(func.sum(SplitPayment.total_amount), 0),
                func.coalesce(func.sum(SplitPayment.platform_fee), 0),
                func.coalesce(func.sum(SplitPayment.seller_amount), 0),
            )
            .where(SplitPayment.seller_id == seller_id)
            .where(SplitPayment.status == SplitPaymentStatus.APPROVED.value)
        )
        count, total_sales, platform_fees, seller_earnings = approved.one()

        pending = await self.db.execute(
            select(func.count(SplitPayment.id))
            .where(SplitPayment.seller_id == seller_id)
            .where(SplitPayment.status == SplitPaymentStatus.PENDING.value)
        )

        return {
            "total_sales": float(to_money(total_sales)),
            "platform_fees": float(to_money(platform_fees)),
            "seller_earnings": float(to_money(seller_earnings)),
            "payments": count,
            "pending_payments": pending.scalar_one(),
        }
