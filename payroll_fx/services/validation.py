"""Input validation shared by the resolver, conversion engine and rate admin.

Runs before any store access and raises ValidationError with a message fit
for API clients.
"""

from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from payroll_fx.core.errors import ValidationError
from payroll_fx.models.constants import (
    CURRENCY_CODE_RE,
    MAX_AMOUNT,
    MAX_DECIMAL_PLACES,
    MAX_RATE,
    MIN_RATE,
    ROUNDING_METHODS,
    STORED_RATE_SOURCES,
)
from .money import Number, to_decimal


def normalize_currency(code: object) -> str:
    if not isinstance(code, str):
        raise ValidationError(f"Invalid currency code {code!r}")
    normalized = code.strip().upper()
    if not CURRENCY_CODE_RE.match(normalized):
        raise ValidationError(f"Invalid currency code '{code}'")
    return normalized


def _positive_decimal(value: Number, what: str) -> Decimal:
    try:
        dec = to_decimal(value)
    except ValueError as e:
        raise ValidationError(f"{what} must be a number") from e
    if not dec.is_finite() or dec <= 0:
        raise ValidationError(f"{what} must be positive, got {value}")
    return dec


def validate_amount(amount: Number) -> Decimal:
    dec = _positive_decimal(amount, "amount")
    if dec > MAX_AMOUNT:
        raise ValidationError(f"amount must not exceed {MAX_AMOUNT}, got {amount}")
    return dec


def validate_rate(rate: Number) -> Decimal:
    dec = _positive_decimal(rate, "rate")
    if not MIN_RATE <= dec <= MAX_RATE:
        raise ValidationError(f"rate must be between {MIN_RATE} and {MAX_RATE}, got {rate}")
    return dec


def validate_rounding(method: str, decimal_places: int, max_places: int = MAX_DECIMAL_PLACES) -> None:
    if method not in ROUNDING_METHODS:
        raise ValidationError(
            f"Unknown rounding method '{method}'. Allowed: {', '.join(ROUNDING_METHODS)}"
        )
    if isinstance(decimal_places, bool) or not isinstance(decimal_places, int):
        raise ValidationError("decimal_places must be an integer")
    if not 0 <= decimal_places <= max_places:
        raise ValidationError(f"decimal_places must be between 0 and {max_places}")


def validate_source(source: str) -> str:
    if source not in STORED_RATE_SOURCES:
        raise ValidationError(
            f"Unsupported rate source '{source}'. Allowed: {', '.join(STORED_RATE_SOURCES)}"
        )
    return source


def validate_window(effective_from: date, effective_to: Optional[date]) -> None:
    if effective_to is not None and effective_to <= effective_from:
        raise ValidationError("effective_to must be after effective_from")


def as_date(value: object, what: str) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if value is None or isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
    raise ValidationError(f"{what} must be an ISO date, got {value!r}")
