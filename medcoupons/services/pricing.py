from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal


MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() first so floats like 0.1 keep their printed value.
    return Decimal(str(value))


def quantize_money(value: Decimal) -> Decimal:
    return to_decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    """Unrounded ``percent``% of ``amount``; callers quantize once at the end."""
    return to_decimal(amount) * to_decimal(percent) / Decimal("100")
