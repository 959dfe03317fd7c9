"""Database migration utilities.

Applies idempotent migrations keyed by an integer `schema_version` stored in
the metadata table. Each migration upgrades the SQLite schema in-place while
preserving data.

Versions:
  1 - base tables (see schema.py)
  2 - one-current-rate partial unique index; append-only ledger triggers
"""

from __future__ import annotations
from pathlib import Path
import sqlite3
from typing import Optional

from . import schema as schema_def
from .schema import init_db

CURRENT_SCHEMA_VERSION = 2
SCHEMA_VERSION_KEY = "schema_version"

ONE_CURRENT_RATE_INDEX_DDL = """
CREATE UNIQUE INDEX IF NOT EXISTS uq_exchange_rates_current
ON exchange_rates(organization_id, from_currency, to_currency)
WHERE effective_to IS NULL;
"""

LEDGER_NO_UPDATE_TRIGGER_DDL = """
CREATE TRIGGER IF NOT EXISTS trg_currency_conversions_no_update
BEFORE UPDATE ON currency_conversions
BEGIN
    SELECT RAISE(ABORT, 'currency_conversions is append-only');
END;
"""

LEDGER_NO_DELETE_TRIGGER_DDL = """
CREATE TRIGGER IF NOT EXISTS trg_currency_conversions_no_delete
BEFORE DELETE ON currency_conversions
BEGIN
    SELECT RAISE(ABORT, 'currency_conversions is append-only');
END;
"""


def _get_schema_version(conn: sqlite3.Connection) -> Optional[int]:
    try:
        cur = conn.cursor()
        cur.execute("SELECT value FROM metadata WHERE key=?", (SCHEMA_VERSION_KEY,))
        row = cur.fetchone()
        if row:
            return int(row[0])
    except sqlite3.OperationalError:
        # metadata table may not exist yet (first run before init_db)
        return None
    return None


def apply_migrations(db_path: Path) -> int:
    """Apply required migrations and return resulting schema version."""
    init_db(db_path)
    conn = sqlite3.connect(db_path)
    try:
        version = _get_schema_version(conn) or 1
        if version < 2:
            _migrate_to_v2(conn)
            version = 2
        _set_schema_version(conn, version)
        conn.commit()
        return version
    finally:
        conn.close()


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    cur = conn.cursor()
    cur.execute(
        "INSERT INTO metadata (key, value) VALUES (?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value, "
        f"updated_at=({schema_def.BASIC_UTC_NOW})",
        (SCHEMA_VERSION_KEY, str(version)),
    )


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    """Enforce the one-current-rate invariant and ledger immutability in the DB.

    Rows that already violate the invariant are closed first: for every pair
    with several open rows, all but the newest are closed at the newest row's
    effective_from.
    """
    cur = conn.cursor()
    try:
        _close_duplicate_current_rates(cur)
        cur.execute(ONE_CURRENT_RATE_INDEX_DDL)
        cur.execute(LEDGER_NO_UPDATE_TRIGGER_DDL)
        cur.execute(LEDGER_NO_DELETE_TRIGGER_DDL)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _close_duplicate_current_rates(cur: sqlite3.Cursor) -> None:
    cur.execute(
        """
        SELECT organization_id, from_currency, to_currency
        FROM exchange_rates
        WHERE effective_to IS NULL
        GROUP BY organization_id, from_currency, to_currency
        HAVING COUNT(*) > 1
        """
    )
    for org_id, from_ccy, to_ccy in cur.fetchall():
        cur.execute(
            """
            SELECT id, effective_from FROM exchange_rates
            WHERE organization_id = ? AND from_currency = ? AND to_currency = ?
              AND effective_to IS NULL
            ORDER BY effective_from DESC, id DESC
            """,
            (org_id, from_ccy, to_ccy),
        )
        rows = cur.fetchall()
        newest_from = rows[0][1]
        for rate_id, eff_from in rows[1:]:
            cur.execute(
                f"""
                UPDATE exchange_rates
                SET effective_to = ?, updated_at = ({schema_def.BASIC_UTC_NOW})
                WHERE id = ?
                """,
                (max(newest_from, eff_from), rate_id),
            )
