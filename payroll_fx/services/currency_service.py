"""Currency service facade.

Single entry point used by the HTTP routers and by in-process callers such as
the payroll calculation engine (which hands each paycheck's pay components to
``convert_payroll_components``). Composes the rate store, resolution
cache, resolver, conversion engine and organization config.

Any rate mutation, and any config change, drops the organization's cached
resolutions: inverted and triangulated entries for other keys can derive from
the row that changed.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from payroll_fx.core.config import Settings
from payroll_fx.core.errors import CurrencyError, RateRecordNotFoundError, ValidationError
from payroll_fx.db.dal import UPDATABLE_RATE_FIELDS, Database
from .money import Number, to_decimal
from .org_config import OrgCurrencyConfigService
from .rates.base import RateCache, organization_prefix
from .rates.cache_service import InMemoryRateCache
from .rates.conversion import ConversionEngine, ConversionResult
from .rates.resolver import RateResolver, ResolvedRate
from .validation import (
    as_date,
    normalize_currency,
    validate_rate,
    validate_source,
    validate_window,
)

logger = logging.getLogger("payroll_fx.currency")


class CurrencyService:
    def __init__(
        self,
        db: Database,
        settings: Settings,
        cache: Optional[RateCache] = None,
        today: Callable[[], date] = date.today,
    ):
        self.db = db
        self.settings = settings
        self.cache = cache or InMemoryRateCache(settings.rates_cache_ttl_seconds)
        self._today = today
        self.org_config = OrgCurrencyConfigService(db, settings)
        self.resolver = RateResolver(db, self.org_config, self.cache, today=today)
        self.engine = ConversionEngine(self.resolver, db, self.org_config)

    def today(self) -> date:
        """The service clock; "current" lookups and soft deletes use this date."""
        return self._today()

    # Resolution & conversion ----------------------------------
    def get_exchange_rate(
        self,
        organization_id: str,
        from_currency: str,
        to_currency: str,
        as_of: Optional[date] = None,
    ) -> ResolvedRate:
        return self.resolver.resolve(organization_id, from_currency, to_currency, as_of)

    def convert_amount(
        self,
        organization_id: str,
        amount: Number,
        from_currency: str,
        to_currency: str,
        **options: Any,
    ) -> ConversionResult:
        return self.engine.convert(organization_id, amount, from_currency, to_currency, **options)

    def batch_convert(
        self, organization_id: str, conversions: Iterable[Mapping[str, Any]]
    ) -> List[Dict[str, Any]]:
        return self.engine.batch_convert(organization_id, conversions)

    def convert_payroll_components(
        self,
        organization_id: str,
        components: Iterable[Mapping[str, Any]],
        target_currency: str,
        as_of: Optional[date] = None,
        rounding_method: Optional[str] = None,
        decimal_places: Optional[int] = None,
        created_by: Optional[str] = None,
        paycheck_id: Optional[Any] = None,
    ) -> Dict[str, Any]:
        """Bring every pay component of one paycheck into `target_currency`.

        Components are mappings with ``id``, ``name``, ``component_type``,
        ``amount`` and an optional ``currency`` (defaults to the target); any
        other keys are carried through untouched. Components already in the
        target currency are passed through unrounded. Foreign ones go through
        ``convert_amount`` with ``reference_type='payroll_component'`` and the
        component id as reference, so each leaves a ledger row.

        The first component that cannot be converted aborts the call with its
        error: a paycheck is never returned partially converted.
        """
        target_currency = normalize_currency(target_currency)
        as_of = as_of or self._today()

        converted: List[Dict[str, Any]] = []
        conversions: List[Dict[str, Any]] = []
        original_totals: Dict[str, Decimal] = {}
        total = Decimal(0)

        for component in components:
            item = dict(component)
            amount = item.pop("amount", None)
            currency = normalize_currency(item.pop("currency", None) or target_currency)

            if currency == target_currency:
                try:
                    amount = to_decimal(amount)
                except ValueError as e:
                    raise ValidationError(
                        f"Component {item.get('name')!r} amount must be a number"
                    ) from e
                if not amount.is_finite():
                    raise ValidationError(
                        f"Component {item.get('name')!r} amount must be finite"
                    )
                converted.append(
                    {
                        **item,
                        "amount": amount,
                        "currency": currency,
                        "original_amount": amount,
                        "original_currency": currency,
                        "exchange_rate": Decimal(1),
                        "conversion_needed": False,
                        "conversion_id": None,
                    }
                )
                original_totals[currency] = original_totals.get(currency, Decimal(0)) + amount
                total += amount
                continue

            try:
                result = self.engine.convert(
                    organization_id,
                    amount,
                    currency,
                    target_currency,
                    as_of=as_of,
                    rounding_method=rounding_method,
                    decimal_places=decimal_places,
                    reference_type="payroll_component",
                    reference_id=item.get("id"),
                    created_by=created_by,
                )
            except CurrencyError:
                logger.error(
                    "failed to convert payroll component",
                    extra={
                        "fields": {
                            "organization_id": organization_id,
                            "component_id": item.get("id"),
                            "component_name": item.get("name"),
                            "from": currency,
                            "to": target_currency,
                            "amount": amount,
                        }
                    },
                )
                raise

            converted.append(
                {
                    **item,
                    "amount": result.to_amount,
                    "currency": target_currency,
                    "original_amount": result.from_amount,
                    "original_currency": currency,
                    "exchange_rate": result.rate,
                    "conversion_needed": True,
                    "conversion_id": result.conversion_id,
                }
            )
            conversions.append(
                {
                    "component_id": item.get("id"),
                    "component_name": item.get("name"),
                    "from_currency": currency,
                    "to_currency": target_currency,
                    "from_amount": result.from_amount,
                    "to_amount": result.to_amount,
                    "rate": result.rate,
                }
            )
            original_totals[currency] = (
                original_totals.get(currency, Decimal(0)) + result.from_amount
            )
            total += result.to_amount

        return {
            "components": converted,
            "conversions": conversions,
            "summary": {
                "total_components": len(converted),
                "components_converted": len(conversions),
                "target_currency": target_currency,
                "original_totals": original_totals,
                "total_converted_amount": total,
                "conversion_date": as_of,
                "paycheck_id": paycheck_id,
            },
        }

    # Rate administration --------------------------------------
    def create_exchange_rate(
        self,
        organization_id: str,
        from_currency: str,
        to_currency: str,
        rate: Number,
        source: str = "manual",
        effective_from: Optional[date] = None,
        effective_to: Optional[date] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        from_currency = normalize_currency(from_currency)
        to_currency = normalize_currency(to_currency)
        if from_currency == to_currency:
            raise ValidationError("from_currency and to_currency must be different")
        rate = validate_rate(rate)
        validate_source(source)
        effective_from = as_date(effective_from, "effective_from") or self._today()
        effective_to = as_date(effective_to, "effective_to")
        if metadata is not None and not isinstance(metadata, Mapping):
            raise ValidationError("metadata must be an object")
        validate_window(effective_from, effective_to)

        row = self.db.insert_rate(
            organization_id,
            from_currency,
            to_currency,
            rate,
            source,
            effective_from,
            effective_to=effective_to,
            metadata=metadata,
            created_by=created_by,
        )
        self._invalidate(organization_id, from_currency, to_currency)
        logger.info(
            "exchange rate created",
            extra={
                "fields": {
                    "organization_id": organization_id,
                    "exchange_rate_id": row["id"],
                    "from": from_currency,
                    "to": to_currency,
                    "rate": rate,
                }
            },
        )
        return row

    def update_exchange_rate(
        self,
        organization_id: str,
        rate_id: int,
        changes: Mapping[str, Any],
        updated_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        existing = self.db.get_rate(organization_id, rate_id)
        if not existing:
            raise RateRecordNotFoundError(rate_id)
        fields = dict(changes)
        if not fields:
            raise ValidationError("at least one field must be provided for update")
        unknown = set(fields) - set(UPDATABLE_RATE_FIELDS)
        if unknown:
            raise ValidationError(f"Unsupported exchange rate fields: {sorted(unknown)}")
        if "rate" in fields:
            fields["rate"] = validate_rate(fields["rate"])
        if "source" in fields:
            validate_source(fields["source"])
        if "metadata" in fields and fields["metadata"] is None:
            fields["metadata"] = {}
        if "metadata" in fields and not isinstance(fields["metadata"], Mapping):
            raise ValidationError("metadata must be an object")
        for key in ("effective_from", "effective_to"):
            if key in fields:
                fields[key] = as_date(fields[key], key)
        if "effective_from" in fields and fields["effective_from"] is None:
            raise ValidationError("effective_from cannot be cleared")
        if "effective_from" in fields or "effective_to" in fields:
            validate_window(
                fields.get("effective_from", existing["effective_from"]),
                fields.get("effective_to", existing["effective_to"]),
            )

        row = self.db.update_rate(organization_id, rate_id, fields, updated_by=updated_by)
        self._invalidate(organization_id, row["from_currency"], row["to_currency"])
        logger.info(
            "exchange rate updated",
            extra={
                "fields": {
                    "organization_id": organization_id,
                    "exchange_rate_id": rate_id,
                    "changed": sorted(fields),
                }
            },
        )
        return row

    def delete_exchange_rate(
        self, organization_id: str, rate_id: int, deleted_by: Optional[str] = None
    ) -> Dict[str, Any]:
        row = self.db.close_rate(organization_id, rate_id, self._today(), updated_by=deleted_by)
        self._invalidate(organization_id, row["from_currency"], row["to_currency"])
        logger.info(
            "exchange rate closed",
            extra={
                "fields": {
                    "organization_id": organization_id,
                    "exchange_rate_id": rate_id,
                    "effective_to": row["effective_to"],
                }
            },
        )
        return row

    def bulk_import_rates(
        self,
        organization_id: str,
        rates: Iterable[Mapping[str, Any]],
        created_by: Optional[str] = None,
        fail_fast: bool = False,
    ) -> Dict[str, List[Dict[str, Any]]]:
        """Create each row in order. No atomicity across the batch.

        fail_fast re-raises the first error (rows before it stay created);
        otherwise failures are collected as ``{"index", "error"}``.
        """
        created: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []
        for index, item in enumerate(rates):
            try:
                row = self.create_exchange_rate(
                    organization_id,
                    item.get("from_currency"),
                    item.get("to_currency"),
                    item.get("rate"),
                    source=item.get("source") or "imported",
                    effective_from=item.get("effective_from"),
                    effective_to=item.get("effective_to"),
                    metadata=item.get("metadata"),
                    created_by=created_by,
                )
            except CurrencyError as e:
                if fail_fast:
                    raise
                errors.append({"index": index, "error": str(e)})
                continue
            created.append(row)
        logger.info(
            "bulk import completed",
            extra={
                "fields": {
                    "organization_id": organization_id,
                    "created": len(created),
                    "failed": len(errors),
                }
            },
        )
        return {"created": created, "errors": errors}

    # Listing ---------------------------------------------------
    def get_active_rates(self, organization_id: str) -> List[Dict[str, Any]]:
        return self.db.list_active_rates(organization_id, self._today())

    def get_historical_rates(
        self,
        organization_id: str,
        from_currency: str,
        to_currency: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        if start_date and end_date and end_date < start_date:
            raise ValidationError("end_date must not be before start_date")
        limit = max(1, min(limit, self.settings.historical_page_max))
        return self.db.list_historical_rates(
            organization_id,
            normalize_currency(from_currency),
            normalize_currency(to_currency),
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=max(0, offset),
        )

    def get_conversion_history(
        self, organization_id: str, reference_type: str, reference_id: Any
    ) -> List[Dict[str, Any]]:
        return self.db.list_conversions(organization_id, reference_type, str(reference_id))

    # Organization config ---------------------------------------
    def get_org_config(self, organization_id: str) -> Dict[str, Any]:
        return self.org_config.get_or_create(organization_id)

    def update_org_config(
        self,
        organization_id: str,
        changes: Mapping[str, Any],
        updated_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        config = self.org_config.update(organization_id, changes, updated_by=updated_by)
        self.cache.invalidate_prefix(organization_prefix(organization_id))
        return config

    # Cache administration --------------------------------------
    def clear_cache(self) -> None:
        self.cache.clear()

    def get_cache_stats(self) -> Dict[str, int]:
        return self.cache.stats()

    def _invalidate(self, organization_id: str, from_currency: str, to_currency: str) -> None:
        dropped = self.cache.invalidate_prefix(organization_prefix(organization_id))
        logger.debug(
            "rate cache invalidated",
            extra={
                "fields": {
                    "organization_id": organization_id,
                    "pair": f"{from_currency}/{to_currency}",
                    "keys": dropped,
                }
            },
        )


def build_currency_service(settings: Settings) -> CurrencyService:
    return CurrencyService(Database(settings.db_path), settings)
