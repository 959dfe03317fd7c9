"""Pydantic request/response models for the currency API."""

from .constants import (
    ROUNDING_METHODS,
    STORED_RATE_SOURCES,
)  # re-export
from .rates import (
    ExchangeRateIn,
    ExchangeRateUpdateIn,
    ExchangeRateOut,
    ResolvedRateOut,
    BulkImportIn,
    BulkImportOut,
)
from .conversion import (
    ConversionIn,
    ConversionOut,
    BatchConversionIn,
    BatchConversionItemOut,
    ConversionRecordOut,
)
from .config import OrgCurrencyConfigOut, OrgCurrencyConfigUpdateIn

__all__ = [
    "ROUNDING_METHODS",
    "STORED_RATE_SOURCES",
    "ExchangeRateIn",
    "ExchangeRateUpdateIn",
    "ExchangeRateOut",
    "ResolvedRateOut",
    "BulkImportIn",
    "BulkImportOut",
    "ConversionIn",
    "ConversionOut",
    "BatchConversionIn",
    "BatchConversionItemOut",
    "ConversionRecordOut",
    "OrgCurrencyConfigOut",
    "OrgCurrencyConfigUpdateIn",
]
