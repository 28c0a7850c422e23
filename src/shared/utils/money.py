from collections.abc import Iterable
from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal
from typing import Union

# Type alias for money values
Money = Decimal

MoneyLike = Union[Decimal, float, int, str]

ZERO = Decimal("0.00")

# Smallest currency unit; amounts within this distance count as equal
MONEY_EPSILON = Decimal("0.01")


def round_money(value: MoneyLike) -> Decimal:
    """
    Round monetary value to 2 decimal places using ROUND_HALF_UP.

    Examples:
        >>> round_money(10.125)
        Decimal('10.13')
        >>> round_money(10.124)
        Decimal('10.12')
        >>> round_money("10.115")
        Decimal('10.12')
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if value < 0:
        return value.quantize(MONEY_EPSILON, rounding=ROUND_HALF_DOWN)
    return value.quantize(MONEY_EPSILON, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[MoneyLike]) -> Decimal:
    """Sum monetary values and round the result (empty input gives 0.00)."""
    total = Decimal("0")
    for value in values:
        total += value if isinstance(value, Decimal) else Decimal(str(value))
    return round_money(total)


def line_total(quantity: int, unit_price: MoneyLike) -> Decimal:
    """Total price of a billing line: quantity x unit price."""
    return round_money(Decimal(quantity) * round_money(unit_price))


def is_settled(total: MoneyLike, paid: MoneyLike) -> bool:
    """True when paid covers total to within one currency unit."""
    return round_money(paid) >= round_money(total) - MONEY_EPSILON


def outstanding(total: MoneyLike, paid: MoneyLike) -> Decimal:
    """Unpaid part of a total, never negative."""
    return max(round_money(Decimal(str(total)) - Decimal(str(paid))), ZERO)
