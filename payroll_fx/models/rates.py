from __future__ import annotations
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .constants import CURRENCY_CODE_RE, MAX_RATE, MIN_RATE


def _currency_code(v: str) -> str:
    v = v.strip().upper()
    if not CURRENCY_CODE_RE.match(v):
        raise ValueError("currency code must be three letters")
    return v


class ExchangeRateIn(BaseModel):
    from_currency: str
    to_currency: str
    rate: Decimal = Field(
        ..., ge=MIN_RATE, le=MAX_RATE, description="to_amount = from_amount * rate"
    )
    source: Literal["manual", "imported"] = "manual"
    effective_from: Optional[date] = Field(None, description="Defaults to today")
    effective_to: Optional[date] = Field(
        None, description="Exclusive end; omit for the current rate"
    )
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("from_currency", "to_currency")
    @classmethod
    def valid_currency(cls, v: str) -> str:
        return _currency_code(v)

    @model_validator(mode="after")
    def cross_field_rules(self) -> "ExchangeRateIn":
        if self.from_currency == self.to_currency:
            raise ValueError("to_currency cannot equal from_currency")
        if (
            self.effective_from
            and self.effective_to
            and self.effective_to <= self.effective_from
        ):
            raise ValueError("effective_to must be after effective_from")
        return self


class ExchangeRateUpdateIn(BaseModel):
    """Partial in-place edit. Currency pair is immutable.

    Send ``effective_to: null`` explicitly to reopen a closed row; the
    one-current-row rule still applies.
    """

    rate: Optional[Decimal] = Field(None, ge=MIN_RATE, le=MAX_RATE)
    source: Optional[Literal["manual", "imported"]] = None
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def at_least_one(self) -> "ExchangeRateUpdateIn":
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided for update")
        return self


class ExchangeRateOut(BaseModel):
    id: int
    organization_id: str
    from_currency: str
    to_currency: str
    rate: Decimal
    source: str
    effective_from: date
    effective_to: Optional[date] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None
    created_at: str
    updated_by: Optional[str] = None
    updated_at: str


class ResolvedRateOut(BaseModel):
    from_currency: str
    to_currency: str
    rate: Decimal
    source: str
    exchange_rate_id: Optional[int] = None
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    as_of_date: date


class BulkImportIn(BaseModel):
    # Rows are validated one by one in the service so a bad row fails alone
    # instead of rejecting the whole payload.
    rates: List[Dict[str, Any]] = Field(..., min_length=1, max_length=1000)


class BulkImportError(BaseModel):
    index: int
    error: str


class BulkImportOut(BaseModel):
    created: List[ExchangeRateOut]
    errors: List[BulkImportError]
