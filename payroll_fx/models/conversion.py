from __future__ import annotations
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from .constants import CURRENCY_CODE_RE, MAX_AMOUNT, MAX_DECIMAL_PLACES

RoundingMethod = Literal["up", "down", "half_up", "half_down", "half_even"]


class ConversionIn(BaseModel):
    amount: Decimal = Field(..., gt=0, le=MAX_AMOUNT)
    from_currency: str
    to_currency: str
    as_of_date: Optional[date] = None
    rounding_method: Optional[RoundingMethod] = None
    decimal_places: Optional[int] = Field(None, ge=0, le=MAX_DECIMAL_PLACES)
    reference_type: Optional[str] = Field(None, min_length=1, max_length=50)
    reference_id: Optional[Union[int, str]] = None

    @field_validator("from_currency", "to_currency")
    @classmethod
    def valid_currency(cls, v: str) -> str:
        v = v.strip().upper()
        if not CURRENCY_CODE_RE.match(v):
            raise ValueError("currency code must be three letters")
        return v


class BatchEntryIn(BaseModel):
    """Loosely typed on purpose: each entry is validated by the engine so a
    malformed entry fails alone instead of rejecting the batch."""

    amount: Any = None
    from_currency: Any = None
    to_currency: Any = None
    as_of_date: Optional[date] = None
    rounding_method: Optional[str] = None
    decimal_places: Optional[int] = None
    reference_type: Optional[str] = None
    reference_id: Optional[Union[int, str]] = None


class BatchConversionIn(BaseModel):
    conversions: List[BatchEntryIn] = Field(..., max_length=1000)


class ConversionOut(BaseModel):
    from_amount: Decimal
    to_amount: Decimal
    rate: Decimal
    from_currency: str
    to_currency: str
    source: str
    exchange_rate_id: Optional[int] = None
    conversion_id: Optional[int] = None
    rounding_method: str
    decimal_places: int
    metadata: Dict[str, Any] = Field(default_factory=dict)


class BatchConversionItemOut(BaseModel):
    success: bool
    from_currency: Optional[Any] = None
    to_currency: Optional[Any] = None
    from_amount: Optional[Any] = None
    to_amount: Optional[Decimal] = None
    rate: Optional[Decimal] = None
    source: Optional[str] = None
    exchange_rate_id: Optional[int] = None
    conversion_id: Optional[int] = None
    rounding_method: Optional[str] = None
    decimal_places: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    error_code: Optional[str] = None


class ConversionRecordOut(BaseModel):
    id: int
    organization_id: str
    from_currency: str
    to_currency: str
    from_amount: Decimal
    to_amount: Decimal
    rate_used: Decimal
    exchange_rate_id: Optional[int] = None
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None
    created_at: str
