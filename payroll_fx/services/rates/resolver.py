"""Exchange-rate resolution.

Given an organization, a currency pair and a date, find an applicable rate.
Strategies run in a fixed order and the first hit wins:

1. identity   - same currency, rate 1, no store or cache access
2. cache      - only for "as of today" lookups (historical dates bypass it)
3. direct     - stored row for (from, to) whose window contains the date
4. inversion  - stored row for (to, from); rate = 1 / reverse rate
5. triangulation - exactly one hop through the organization's base currency,
   each leg direct-or-inverse only

If every strategy fails, RateNotFoundError is raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from payroll_fx.core.errors import RateNotFoundError
from payroll_fx.services.validation import normalize_currency
from .base import BaseCurrencyLookup, RateCache, RateStore, cache_key

logger = logging.getLogger("payroll_fx.resolver")

ONE = Decimal(1)


@dataclass(frozen=True)
class ResolvedRate:
    from_currency: str
    to_currency: str
    rate: Decimal
    source: str
    exchange_rate_id: Optional[int] = None
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ResolvedRate":
        return cls(
            from_currency=row["from_currency"],
            to_currency=row["to_currency"],
            rate=row["rate"],
            source=row["source"],
            exchange_rate_id=row["id"],
            effective_from=row["effective_from"],
            effective_to=row["effective_to"],
        )

    def inverted(self) -> "ResolvedRate":
        return replace(
            self,
            from_currency=self.to_currency,
            to_currency=self.from_currency,
            rate=ONE / self.rate,
            source=f"{self.source}_inverted",
        )


class RateResolver:
    def __init__(
        self,
        store: RateStore,
        base_currencies: BaseCurrencyLookup,
        cache: RateCache,
        today: Callable[[], date] = date.today,
    ):
        self._store = store
        self._base_currencies = base_currencies
        self._cache = cache
        self._today = today

    def resolve(
        self,
        organization_id: str,
        from_currency: str,
        to_currency: str,
        as_of: Optional[date] = None,
    ) -> ResolvedRate:
        from_currency = normalize_currency(from_currency)
        to_currency = normalize_currency(to_currency)
        today = self._today()
        as_of = as_of or today

        if from_currency == to_currency:
            return ResolvedRate(
                from_currency=from_currency,
                to_currency=to_currency,
                rate=ONE,
                source="identity",
                effective_from=as_of,
            )

        use_cache = as_of == today
        key = cache_key(organization_id, from_currency, to_currency)
        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug(
                    "exchange rate from cache",
                    extra={"fields": {"from": from_currency, "to": to_currency}},
                )
                return cached

        resolved = self._direct_or_inverse(organization_id, from_currency, to_currency, as_of)
        if resolved is None:
            resolved = self._triangulate(organization_id, from_currency, to_currency, as_of)
        if resolved is None:
            raise RateNotFoundError(from_currency, to_currency)

        if use_cache:
            self._cache.set(key, resolved)
        return resolved

    # Internal --------------------------------------------------
    def _direct_or_inverse(
        self, organization_id: str, from_currency: str, to_currency: str, as_of: date
    ) -> Optional[ResolvedRate]:
        row = self._store.find_effective_rate(organization_id, from_currency, to_currency, as_of)
        if row:
            return ResolvedRate.from_row(row)

        row = self._store.find_effective_rate(organization_id, to_currency, from_currency, as_of)
        if row:
            resolved = ResolvedRate.from_row(row).inverted()
            logger.info(
                "using inverted exchange rate",
                extra={
                    "fields": {
                        "from": from_currency,
                        "to": to_currency,
                        "rate": resolved.rate,
                        "exchange_rate_id": resolved.exchange_rate_id,
                    }
                },
            )
            return resolved
        return None

    def _triangulate(
        self, organization_id: str, from_currency: str, to_currency: str, as_of: date
    ) -> Optional[ResolvedRate]:
        base = self._base_currencies.get_base_currency(organization_id)
        if base in (from_currency, to_currency):
            return None

        from_to_base = self._direct_or_inverse(organization_id, from_currency, base, as_of)
        if from_to_base is None:
            return None
        base_to_target = self._direct_or_inverse(organization_id, base, to_currency, as_of)
        if base_to_target is None:
            return None

        rate = from_to_base.rate * base_to_target.rate
        logger.info(
            "triangulated exchange rate",
            extra={
                "fields": {
                    "from": from_currency,
                    "to": to_currency,
                    "via": base,
                    "from_to_base": from_to_base.rate,
                    "base_to_target": base_to_target.rate,
                    "rate": rate,
                }
            },
        )
        return ResolvedRate(
            from_currency=from_currency,
            to_currency=to_currency,
            rate=rate,
            source="triangulated",
            effective_from=as_of,
            metadata={
                "via": base,
                "from_to_base": from_to_base.rate,
                "base_to_target": base_to_target.rate,
                "legs": [from_to_base.source, base_to_target.source],
            },
        )
