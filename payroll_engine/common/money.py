"""Decimal helpers for monetary values (2 dp, round-half-up)."""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Iterable, Union

from payroll_engine.common.constants import CENT

Number = Union[Decimal, int, str]

ZERO = Decimal("0.00")


def to_decimal(value: Number) -> Decimal:
    """Coerce *value* to Decimal; floats are rejected to avoid binary drift."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        raise TypeError("Monetary values must not be floats.")
    return Decimal(str(value))


def quantize(value: Number) -> Decimal:
    """Round to cents using ROUND_HALF_UP."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def truncate(value: Number) -> Decimal:
    """Round towards zero to cents."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_DOWN)


def percentage_of(rate: Number, base: Number) -> Decimal:
    """``rate`` percent of ``base``, rounded once."""
    return quantize(to_decimal(base) * to_decimal(rate) / Decimal(100))


def money_sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)
