from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

"""In-process resolution cache.

Purpose:
    Avoid repeated store lookups for the same (organization, pair) inside a
    short window. Keys are ``organization_id:from:to``; values are resolved
    rates. Entries expire after a fixed TTL.

Design:
    - Plain dict + insertion timestamp per entry, checked lazily on read.
    - Not write-through: rate mutations invalidate, the next resolve refills.
    - Process-local. Concurrent fills for one key are last-write-wins, which is
      fine because they derive from the same stored rows.
    - Satisfies the RateCache protocol (services/rates/base.py) so a shared
      cache can be dropped in for multi-instance deployments.
"""

logger = logging.getLogger("payroll_fx.cache")


@dataclass
class _CacheEntry:
    value: Any
    stored_at: float


class InMemoryRateCache:
    """TTL-bound key/value cache with hit/miss counters."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("cache ttl must be positive seconds")
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    # Internal --------------------------------------------------
    def _is_entry_valid(self, entry: _CacheEntry) -> bool:
        return self._clock() - entry.stored_at < self._ttl

    def _purge_expired(self) -> None:
        expired = [k for k, v in self._entries.items() if not self._is_entry_valid(v)]
        for k in expired:
            self._entries.pop(k, None)

    # Public API -----------------------------------------------
    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry and self._is_entry_valid(entry):
            self._hits += 1
            return entry.value
        if entry:
            self._entries.pop(key, None)
        self._misses += 1
        return None

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = _CacheEntry(value=value, stored_at=self._clock())

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for k in doomed:
            self._entries.pop(k, None)
        return len(doomed)

    def clear(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        logger.info("exchange rate cache cleared", extra={"fields": {"keys": count}})

    def stats(self) -> Dict[str, int]:
        self._purge_expired()
        return {
            "keys": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "ttl_seconds": int(self._ttl),
        }
