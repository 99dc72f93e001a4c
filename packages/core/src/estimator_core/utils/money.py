from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

CENT = Decimal("0.01")
CURRENCY_SYMBOLS = {
    "GBP": "£",
    "USD": "$",
    "EUR": "€",
    "AUD": "A$",
    "CAD": "C$",
}


def to_decimal(value: float | int | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps the shortest repr, so 1.005 stays 1.005 instead of 1.00499...
    return Decimal(str(value))


def round2(value: float | int | Decimal) -> float:
    """Round half-up to two decimal places and return a float."""
    return float(to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


def money_sum(values: Iterable[float | int | Decimal]) -> float:
    total = Decimal("0")
    for value in values:
        total += to_decimal(value)
    return round2(total)


def money_mul(left: float | int | Decimal, right: float | int | Decimal) -> float:
    return round2(to_decimal(left) * to_decimal(right))


def percent_of(amount: float, rate_pct: float) -> float:
    return round2(to_decimal(amount) * to_decimal(rate_pct) / Decimal("100"))


def currency_symbol(currency: str) -> str:
    return CURRENCY_SYMBOLS.get(currency.upper(), f"{currency} ")


def format_currency(amount: float, currency: str) -> str:
    return f"{currency_symbol(currency)}{to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)}"


def format_number(value: float | int) -> str:
    """Render a quantity or rate without a trailing ``.0``."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
