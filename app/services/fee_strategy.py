"""
Platform fee strategies.

Appointments charge a flat fee per checkout; marketplace orders charge a
percentage of the total. Both round half-up to cents.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

CENTS = Decimal("0.01")


def to_money(value: Union[Decimal, int, float, str, None]) -> Decimal:
    """Coerce a processor or DB amount to a 2-place Decimal."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class FeeStrategy:
    """Computes the platform's share of a checkout total."""

    def compute(self, total: Decimal) -> Decimal:
        raise NotImplementedError


class FlatFee(FeeStrategy):
    def __init__(self, amount: Union[Decimal, str]):
        self.amount = to_money(amount)

    def compute(self, total: Decimal) -> Decimal:
        # Never take more than the checkout is worth
        return min(self.amount, to_money(total))

    def __repr__(self) -> str:
        return f"<FlatFee {self.amount}>"


class PercentageFee(FeeStrategy):
    def __init__(self, percentage: Union[Decimal, str, float]):
        percentage = Decimal(str(percentage))
        if percentage < 0 or percentage > 100:
            raise ValueError(f"fee percentage out of range: {percentage}")
        self.percentage = percentage

    def compute(self, total: Decimal) -> Decimal:
        return to_money(to_money(total) * self.percentage / Decimal("100"))

    def __repr__(self) -> str:
        return f"<PercentageFee {self.percentage}%>"
