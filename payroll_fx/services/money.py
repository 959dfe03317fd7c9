"""Money / rounding helpers.

Centralized so the conversion engine, batch conversion and any reporting code
use identical rounding semantics. All arithmetic is Decimal; floats are
converted through ``str`` so 2155.555 means exactly 2155.555.
"""

from __future__ import annotations
from decimal import (
    Decimal,
    InvalidOperation,
    ROUND_DOWN,
    ROUND_HALF_DOWN,
    ROUND_HALF_EVEN,
    ROUND_HALF_UP,
    ROUND_UP,
    localcontext,
)
from typing import Union

Number = Union[Decimal, int, float, str]

ROUNDING_MODES = {
    "up": ROUND_UP,  # away from zero
    "down": ROUND_DOWN,  # toward zero
    "half_up": ROUND_HALF_UP,
    "half_down": ROUND_HALF_DOWN,
    "half_even": ROUND_HALF_EVEN,
}


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("booleans are not amounts")
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"not a decimal value: {value!r}") from e


def round_amount(value: Number, decimal_places: int = 2, method: str = "half_up") -> Decimal:
    """Round `value` to `decimal_places` using one of ROUNDING_MODES."""
    try:
        mode = ROUNDING_MODES[method]
    except KeyError:
        raise ValueError(f"Unknown rounding method '{method}'") from None
    quantum = Decimal(1).scaleb(-decimal_places)
    value = to_decimal(value)
    with localcontext() as ctx:
        # quantize fails when the result has more digits than the context allows
        ctx.prec = max(ctx.prec, value.adjusted() + decimal_places + 2)
        return value.quantize(quantum, rounding=mode)


def round2(value: Number) -> Decimal:
    return round_amount(value, 2, "half_up")
