"""Database schema DDL definitions and initialization utilities.

Tables:
  - exchange_rates: org-scoped rates, each valid over [effective_from, effective_to)
  - org_currency_config: per-organization base currency, supported set and
    conversion defaults
  - currency_conversions: append-only conversion ledger
  - metadata: key/value store (schema version)

Decimal values (rates, amounts) are stored as TEXT so they round-trip exactly.
Dates are ISO strings (YYYY-MM-DD) and compare lexically.
"""

from __future__ import annotations
import sqlite3
from typing import Sequence
from pathlib import Path

BASIC_UTC_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"

EXCHANGE_RATES_DDL = f"""
CREATE TABLE IF NOT EXISTS exchange_rates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id TEXT NOT NULL,
    from_currency TEXT NOT NULL,
    to_currency TEXT NOT NULL,
    rate TEXT NOT NULL, -- decimal string, toAmount = fromAmount * rate
    source TEXT NOT NULL DEFAULT 'manual' CHECK (source IN ('manual','imported')),
    effective_from TEXT NOT NULL, -- inclusive
    effective_to TEXT, -- exclusive; NULL = current
    metadata TEXT NOT NULL DEFAULT '{{}}',
    created_by TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_by TEXT,
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    CHECK (from_currency != to_currency),
    CHECK (effective_to IS NULL OR effective_to >= effective_from)
);
"""

ORG_CURRENCY_CONFIG_DDL = f"""
CREATE TABLE IF NOT EXISTS org_currency_config (
    organization_id TEXT PRIMARY KEY,
    base_currency TEXT NOT NULL,
    supported_currencies TEXT NOT NULL, -- JSON array
    default_rounding_method TEXT NOT NULL DEFAULT 'half_up'
        CHECK (default_rounding_method IN ('up','down','half_up','half_down','half_even')),
    default_decimal_places INTEGER NOT NULL DEFAULT 2
        CHECK (default_decimal_places BETWEEN 0 AND 4),
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_by TEXT
);
"""

CURRENCY_CONVERSIONS_DDL = f"""
CREATE TABLE IF NOT EXISTS currency_conversions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id TEXT NOT NULL,
    from_currency TEXT NOT NULL,
    to_currency TEXT NOT NULL,
    from_amount TEXT NOT NULL,
    to_amount TEXT NOT NULL,
    rate_used TEXT NOT NULL,
    exchange_rate_id INTEGER, -- NULL for identity / triangulated conversions
    reference_type TEXT,
    reference_id TEXT,
    metadata TEXT NOT NULL DEFAULT '{{}}',
    created_by TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    FOREIGN KEY (exchange_rate_id) REFERENCES exchange_rates(id)
);
"""

METADATA_DDL = f"""
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

EXCHANGE_RATES_LOOKUP_INDEX_DDL = """
CREATE INDEX IF NOT EXISTS idx_exchange_rates_lookup
ON exchange_rates(organization_id, from_currency, to_currency, effective_from);
"""
CONVERSIONS_REFERENCE_INDEX_DDL = """
CREATE INDEX IF NOT EXISTS idx_conversions_reference
ON currency_conversions(organization_id, reference_type, reference_id);
"""

DDL_ORDER: Sequence[str] = (
    EXCHANGE_RATES_DDL,
    ORG_CURRENCY_CONFIG_DDL,
    CURRENCY_CONVERSIONS_DDL,
    METADATA_DDL,
)


def init_db(path: Path) -> None:
    """Create all tables idempotently.

    Parameters
    ----------
    path: Path to SQLite database file.
    """
    conn = sqlite3.connect(path)
    try:
        cur = conn.cursor()
        for ddl in DDL_ORDER:
            cur.execute(ddl)
        _ensure_indexes(cur)
        conn.commit()
    finally:
        conn.close()


def _ensure_indexes(cur: sqlite3.Cursor) -> None:
    for ddl in (EXCHANGE_RATES_LOOKUP_INDEX_DDL, CONVERSIONS_REFERENCE_INDEX_DDL):
        cur.execute(ddl)
