"""Money arithmetic helpers.

Amounts are stored as floats on aggregates; every calculation goes through
``Decimal`` and is rounded half-up to cents before being stored again.
"""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Convert a float/str/Decimal amount to a cent-rounded Decimal."""
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def as_float(value: Decimal) -> float:
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


def money_sum(values: Iterable) -> Decimal:
    return sum((to_money(v) for v in values), ZERO)


def percentage_fee(amount, rate, fixed) -> Decimal:
    """``amount * rate + fixed``, rounded to cents."""
    fee = to_money(amount) * Decimal(str(rate)) + Decimal(str(fixed))
    return fee.quantize(CENT, rounding=ROUND_HALF_UP)


def net_of_fee(amount, fee) -> float:
    return as_float(to_money(amount) - to_money(fee))
