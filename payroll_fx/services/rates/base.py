from __future__ import annotations

"""Collaborator interfaces for rate resolution.

The resolver only needs a pair+date lookup from the store and a base-currency
lookup for triangulation; the cache is anything with get/set/invalidate so a
shared key-value store can replace the in-process map.
"""
from datetime import date
from typing import Any, Dict, Optional, Protocol


class RateStore(Protocol):
    def find_effective_rate(
        self,
        organization_id: str,
        from_currency: str,
        to_currency: str,
        as_of: date,
    ) -> Optional[Dict[str, Any]]: ...


class BaseCurrencyLookup(Protocol):
    def get_base_currency(self, organization_id: str) -> str: ...


class RateCache(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def invalidate(self, key: str) -> bool: ...

    def invalidate_prefix(self, prefix: str) -> int: ...

    def clear(self) -> None: ...

    def stats(self) -> Dict[str, int]: ...


def cache_key(organization_id: str, from_currency: str, to_currency: str) -> str:
    return f"{organization_id}:{from_currency}:{to_currency}"


def organization_prefix(organization_id: str) -> str:
    return f"{organization_id}:"
