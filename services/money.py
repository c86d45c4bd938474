# services/money.py
"""
Money helpers. Every internal amount is an integer number of cents;
euros only appear at the API edge.
"""
from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Union

Number = Union[int, float, str, Decimal]

DAYS_PER_MONTH = 30  # commercial month used for proration


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # repr() keeps the shortest round-trip form: 37.7 -> "37.7", not 37.70000000000000284
        return Decimal(repr(value))
    return Decimal(str(value))


def euros_to_cents(euros: Number) -> int:
    """37.70 -> 3770. Rounds half-up to the nearest cent."""
    return int((_to_decimal(euros) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_euros(cents: int) -> float:
    """3770 -> 37.7"""
    return round(int(cents) / 100, 2)


def calculate_importe_cents(days: int, rate_cents: int) -> int:
    """
    Prorated charge for `days` active days at a monthly rate of `rate_cents`:
    round(days * rate_cents / 30), half-up, in exact arithmetic.
    """
    days = int(days)
    if days < 0:
        raise ValueError(f"days must be >= 0, got {days}")
    if days == 0:
        return 0
    exact = Decimal(days * int(rate_cents)) / Decimal(DAYS_PER_MONTH)
    return int(exact.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_importe(days: int, rate_euros: Number) -> float:
    return cents_to_euros(calculate_importe_cents(days, euros_to_cents(rate_euros)))


def sum_importes_cents(values: Iterable[int]) -> int:
    return sum(int(v) for v in values)


def format_cents_to_euros(cents: int) -> str:
    """1381 -> '13.81 €'"""
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(int(cents)), 100)
    return f"{sign}{whole}.{frac:02d} €"
