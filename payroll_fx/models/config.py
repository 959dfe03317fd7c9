from __future__ import annotations
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from .constants import MAX_CONFIG_DECIMAL_PLACES


class OrgCurrencyConfigOut(BaseModel):
    organization_id: str
    base_currency: str
    supported_currencies: List[str]
    default_rounding_method: str
    default_decimal_places: int
    created_at: str
    updated_at: str
    updated_by: Optional[str] = None


class OrgCurrencyConfigUpdateIn(BaseModel):
    base_currency: Optional[str] = Field(None, min_length=3, max_length=3)
    supported_currencies: Optional[List[str]] = Field(None, min_length=1)
    default_rounding_method: Optional[
        Literal["up", "down", "half_up", "half_down", "half_even"]
    ] = None
    default_decimal_places: Optional[int] = Field(
        None, ge=0, le=MAX_CONFIG_DECIMAL_PLACES
    )

    @model_validator(mode="after")
    def at_least_one(self) -> "OrgCurrencyConfigUpdateIn":
        if not any(
            getattr(self, f) is not None
            for f in [
                "base_currency",
                "supported_currencies",
                "default_rounding_method",
                "default_decimal_places",
            ]
        ):
            raise ValueError("at least one field must be provided for update")
        return self
