from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal, localcontext
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from payroll_fx.core.errors import CurrencyError
from payroll_fx.models.constants import DEFAULT_DECIMAL_PLACES, DEFAULT_ROUNDING_METHOD
from payroll_fx.services.money import Number, round_amount
from payroll_fx.services.validation import (
    normalize_currency,
    validate_amount,
    validate_rounding,
)
from .resolver import RateResolver, ResolvedRate

"""Conversion engine.

Responsibilities:
    - Resolve a rate via RateResolver.
    - Multiply and round once, in a single place, under the requested
      discipline (org defaults when the caller omits one).
    - Append a ledger record when the caller links the conversion to a
      reference entity. Ledger failures are logged and dropped; the
      conversion result is still returned, without conversion_id.
    - Batch conversion with per-entry failure isolation.
"""

logger = logging.getLogger("payroll_fx.conversion")

BATCH_ENTRY_KEYS = (
    "as_of",
    "rounding_method",
    "decimal_places",
    "reference_type",
    "reference_id",
    "created_by",
)


class SupportsLedgerWrite(Protocol):
    def insert_conversion(self, record: Mapping[str, Any]) -> Dict[str, Any]: ...


class SupportsConversionDefaults(Protocol):
    def get_conversion_defaults(self, organization_id: str) -> tuple[str, int]: ...


@dataclass(frozen=True)
class ConversionResult:
    from_amount: Decimal
    to_amount: Decimal
    rate: Decimal
    from_currency: str
    to_currency: str
    source: str
    exchange_rate_id: Optional[int] = None
    conversion_id: Optional[int] = None
    rounding_method: str = "half_up"
    decimal_places: int = 2
    metadata: Dict[str, Any] = field(default_factory=dict)


def apply_rate(
    amount: Decimal, resolved: ResolvedRate, decimal_places: int, rounding_method: str
) -> Decimal:
    with localcontext() as ctx:
        # exact product; rounding happens once, in round_amount
        ctx.prec = max(ctx.prec, _digits(amount) + _digits(resolved.rate))
        raw = amount * resolved.rate
    return round_amount(raw, decimal_places, rounding_method)


def _digits(value: Decimal) -> int:
    return len(value.as_tuple().digits)


class ConversionEngine:
    def __init__(
        self,
        resolver: RateResolver,
        ledger: SupportsLedgerWrite,
        defaults: SupportsConversionDefaults,
    ):
        self._resolver = resolver
        self._ledger = ledger
        self._defaults = defaults

    def convert(
        self,
        organization_id: str,
        amount: Number,
        from_currency: str,
        to_currency: str,
        as_of: Optional[date] = None,
        rounding_method: Optional[str] = None,
        decimal_places: Optional[int] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[Any] = None,
        created_by: Optional[str] = None,
    ) -> ConversionResult:
        amount = validate_amount(amount)
        from_currency = normalize_currency(from_currency)
        to_currency = normalize_currency(to_currency)
        validate_rounding(
            rounding_method or DEFAULT_ROUNDING_METHOD,
            DEFAULT_DECIMAL_PLACES if decimal_places is None else decimal_places,
        )
        if rounding_method is None or decimal_places is None:
            default_method, default_places = self._defaults.get_conversion_defaults(
                organization_id
            )
            rounding_method = rounding_method or default_method
            decimal_places = default_places if decimal_places is None else decimal_places

        resolved = self._resolver.resolve(organization_id, from_currency, to_currency, as_of)
        to_amount = apply_rate(amount, resolved, decimal_places, rounding_method)

        metadata: Dict[str, Any] = {
            "rounding_method": rounding_method,
            "decimal_places": decimal_places,
            "source": resolved.source,
        }
        if "via" in resolved.metadata:
            metadata["via"] = resolved.metadata["via"]
            metadata["from_to_base"] = resolved.metadata["from_to_base"]
            metadata["base_to_target"] = resolved.metadata["base_to_target"]

        conversion_id = None
        if reference_type and reference_id is not None:
            conversion_id = self._record(
                {
                    "organization_id": organization_id,
                    "from_currency": from_currency,
                    "to_currency": to_currency,
                    "from_amount": amount,
                    "to_amount": to_amount,
                    "rate_used": resolved.rate,
                    "exchange_rate_id": resolved.exchange_rate_id,
                    "reference_type": reference_type,
                    "reference_id": str(reference_id),
                    "metadata": metadata,
                    "created_by": created_by,
                }
            )

        logger.info(
            "currency conversion completed",
            extra={
                "fields": {
                    "organization_id": organization_id,
                    "from": from_currency,
                    "to": to_currency,
                    "amount": amount,
                    "converted_amount": to_amount,
                    "rate": resolved.rate,
                    "source": resolved.source,
                }
            },
        )
        return ConversionResult(
            from_amount=amount,
            to_amount=to_amount,
            rate=resolved.rate,
            from_currency=from_currency,
            to_currency=to_currency,
            source=resolved.source,
            exchange_rate_id=resolved.exchange_rate_id,
            conversion_id=conversion_id,
            rounding_method=rounding_method,
            decimal_places=decimal_places,
            metadata=dict(resolved.metadata),
        )

    def _record(self, record: Dict[str, Any]) -> Optional[int]:
        try:
            return self._ledger.insert_conversion(record)["id"]
        except Exception:
            # LedgerWriteError from the DAL, or anything a substitute ledger raises
            logger.exception(
                "error logging conversion",
                extra={
                    "fields": {
                        "organization_id": record["organization_id"],
                        "reference_type": record["reference_type"],
                        "reference_id": record["reference_id"],
                    }
                },
            )
            return None

    def batch_convert(
        self, organization_id: str, conversions: Iterable[Mapping[str, Any]]
    ) -> List[Dict[str, Any]]:
        """Convert each entry independently; results keep input order.

        Each result is ``{"success": True, **ConversionResult}`` or
        ``{"success": False, "error": ..., "error_code": ...}``.
        """
        results: List[Dict[str, Any]] = []
        for entry in conversions:
            options = {k: entry[k] for k in BATCH_ENTRY_KEYS if entry.get(k) is not None}
            try:
                result = self.convert(
                    organization_id,
                    entry.get("amount"),
                    entry.get("from_currency"),
                    entry.get("to_currency"),
                    **options,
                )
            except CurrencyError as e:
                logger.warning(
                    "batch conversion item error",
                    extra={"fields": {"entry": dict(entry), "error": str(e)}},
                )
                results.append(_failure(entry, str(e), e.code))
                continue
            except Exception:
                # one broken entry must not take its siblings down
                logger.exception(
                    "batch conversion item crashed", extra={"fields": {"entry": dict(entry)}}
                )
                results.append(_failure(entry, "internal error", "internal_error"))
                continue
            results.append({"success": True, **asdict(result)})

        logger.info(
            "batch conversion completed",
            extra={
                "fields": {
                    "organization_id": organization_id,
                    "total": len(results),
                    "successful": sum(1 for r in results if r["success"]),
                    "failed": sum(1 for r in results if not r["success"]),
                }
            },
        )
        return results


def _failure(entry: Mapping[str, Any], error: str, code: str) -> Dict[str, Any]:
    return {
        "success": False,
        "error": error,
        "error_code": code,
        "from_currency": entry.get("from_currency"),
        "to_currency": entry.get("to_currency"),
        "from_amount": entry.get("amount"),
    }
