"""Data Access Layer for exchange rates, org currency config and the ledger.

Responsibilities
----------------
- Persist exchange-rate rows scoped to an organization and a validity window;
  look them up by pair + date, list active/historical rows, soft-delete.
- Keep the one-current-row invariant inside a single write transaction
  (backed by the partial unique index installed by migration v2).
- Store per-organization currency configuration.
- Append conversion records to the ledger and read them back by reference.

Every query is filtered by organization id; there are no cross-tenant reads.
Rows are returned as plain dicts with Decimal / date / dict values decoded.
"""

from __future__ import annotations

from pathlib import Path
import json
import sqlite3
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from payroll_fx.core.errors import (
    LedgerWriteError,
    RateConflictError,
    RateRecordNotFoundError,
)

UTC_NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"
UPDATABLE_RATE_FIELDS = ("rate", "source", "effective_from", "effective_to", "metadata")
UPDATABLE_CONFIG_FIELDS = (
    "base_currency",
    "supported_currencies",
    "default_rounding_method",
    "default_decimal_places",
)


def _decode_rate(row: sqlite3.Row) -> Dict[str, Any]:
    out = dict(row)
    out["rate"] = Decimal(out["rate"])
    out["effective_from"] = date.fromisoformat(out["effective_from"])
    if out["effective_to"] is not None:
        out["effective_to"] = date.fromisoformat(out["effective_to"])
    out["metadata"] = json.loads(out["metadata"] or "{}")
    return out


def _decode_config(row: sqlite3.Row) -> Dict[str, Any]:
    out = dict(row)
    out["supported_currencies"] = json.loads(out["supported_currencies"])
    return out


def _decode_conversion(row: sqlite3.Row) -> Dict[str, Any]:
    out = dict(row)
    for key in ("from_amount", "to_amount", "rate_used"):
        out[key] = Decimal(out[key])
    out["metadata"] = json.loads(out["metadata"] or "{}")
    return out


def _encode(key: str, value: Any) -> Any:
    if value is None:
        return None
    if key in ("metadata", "supported_currencies"):
        return json.dumps(value, separators=(",", ":"), default=str)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path

    # ------------------------------------------------------------------
    # Connection helpers
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    # ------------------------------------------------------------------
    # Exchange rates
    def get_rate(self, organization_id: str, rate_id: int) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM exchange_rates WHERE id = ? AND organization_id = ?",
                (rate_id, organization_id),
            )
            row = cur.fetchone()
            return _decode_rate(row) if row else None

    def find_effective_rate(
        self,
        organization_id: str,
        from_currency: str,
        to_currency: str,
        as_of: date,
    ) -> Optional[Dict[str, Any]]:
        """Return the row whose window contains `as_of`, newest effective_from first."""
        day = as_of.isoformat()
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT * FROM exchange_rates
                WHERE organization_id = ?
                  AND from_currency = ?
                  AND to_currency = ?
                  AND effective_from <= ?
                  AND (effective_to IS NULL OR effective_to > ?)
                ORDER BY effective_from DESC, id DESC
                LIMIT 1
                """,
                (organization_id, from_currency, to_currency, day, day),
            )
            row = cur.fetchone()
            return _decode_rate(row) if row else None

    def list_active_rates(
        self, organization_id: str, today: date
    ) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT * FROM exchange_rates
                WHERE organization_id = ?
                  AND (effective_to IS NULL OR effective_to > ?)
                ORDER BY from_currency, to_currency, effective_from DESC, id DESC
                """,
                (organization_id, today.isoformat()),
            )
            return [_decode_rate(r) for r in cur.fetchall()]

    def list_historical_rates(
        self,
        organization_id: str,
        from_currency: str,
        to_currency: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        clauses = ["organization_id = ?", "from_currency = ?", "to_currency = ?"]
        params: List[Any] = [organization_id, from_currency, to_currency]
        if start_date:
            clauses.append("effective_from >= ?")
            params.append(start_date.isoformat())
        if end_date:
            clauses.append("effective_from <= ?")
            params.append(end_date.isoformat())
        where = " WHERE " + " AND ".join(clauses)
        sql = (
            f"SELECT * FROM exchange_rates{where} "
            "ORDER BY effective_from DESC, id DESC LIMIT ? OFFSET ?"
        )
        params.extend([limit, offset])
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, params)
            return [_decode_rate(r) for r in cur.fetchall()]

    def insert_rate(
        self,
        organization_id: str,
        from_currency: str,
        to_currency: str,
        rate: Decimal,
        source: str,
        effective_from: date,
        effective_to: Optional[date] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Insert a rate row.

        An open-ended row (effective_to None) becomes the pair's current rate:
        the prior current row is closed at the new row's effective_from in the
        same transaction. A prior current row that starts after the new one
        is a conflict. Rows with an explicit effective_to are historical and
        leave the current row alone.
        """
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            if effective_to is None:
                cur.execute(
                    """
                    SELECT id, effective_from FROM exchange_rates
                    WHERE organization_id = ? AND from_currency = ? AND to_currency = ?
                      AND effective_to IS NULL
                    """,
                    (organization_id, from_currency, to_currency),
                )
                current = cur.fetchone()
                if current:
                    if current["effective_from"] > effective_from.isoformat():
                        conn.rollback()
                        raise RateConflictError(
                            f"Current {from_currency}/{to_currency} rate {current['id']} "
                            f"starts {current['effective_from']}, after {effective_from.isoformat()}"
                        )
                    cur.execute(
                        f"""
                        UPDATE exchange_rates
                        SET effective_to = ?, updated_by = ?, updated_at = ({UTC_NOW_SQL})
                        WHERE id = ?
                        """,
                        (effective_from.isoformat(), created_by, current["id"]),
                    )
            try:
                cur.execute(
                    f"""
                    INSERT INTO exchange_rates (
                        organization_id, from_currency, to_currency, rate, source,
                        effective_from, effective_to, metadata, created_by,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
                    """,
                    (
                        organization_id,
                        from_currency,
                        to_currency,
                        str(rate),
                        source,
                        effective_from.isoformat(),
                        _encode("effective_to", effective_to),
                        _encode("metadata", dict(metadata or {})),
                        created_by,
                    ),
                )
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise RateConflictError(str(e)) from e
            rate_id = int(cur.lastrowid)
            conn.commit()
            cur.execute("SELECT * FROM exchange_rates WHERE id = ?", (rate_id,))
            return _decode_rate(cur.fetchone())

    def update_rate(
        self,
        organization_id: str,
        rate_id: int,
        fields: Mapping[str, Any],
        updated_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        unknown = set(fields) - set(UPDATABLE_RATE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported exchange rate fields: {sorted(unknown)}")
        assignments = [f"{k} = ?" for k in fields]
        params: List[Any] = [_encode(k, v) for k, v in fields.items()]
        assignments.append("updated_by = ?")
        params.append(updated_by)
        params.extend([rate_id, organization_id])
        with self._connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute(
                    f"""
                    UPDATE exchange_rates
                    SET {", ".join(assignments)}, updated_at = ({UTC_NOW_SQL})
                    WHERE id = ? AND organization_id = ?
                    """,
                    params,
                )
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise RateConflictError(str(e)) from e
            if cur.rowcount == 0:
                raise RateRecordNotFoundError(rate_id)
            conn.commit()
            cur.execute("SELECT * FROM exchange_rates WHERE id = ?", (rate_id,))
            return _decode_rate(cur.fetchone())

    def close_rate(
        self,
        organization_id: str,
        rate_id: int,
        closed_on: date,
        updated_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Soft-delete: end the row's window. Already closed rows are returned as-is."""
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                UPDATE exchange_rates
                SET effective_to = MAX(?, effective_from),
                    updated_by = ?,
                    updated_at = ({UTC_NOW_SQL})
                WHERE id = ? AND organization_id = ? AND effective_to IS NULL
                """,
                (closed_on.isoformat(), updated_by, rate_id, organization_id),
            )
            conn.commit()
            cur.execute(
                "SELECT * FROM exchange_rates WHERE id = ? AND organization_id = ?",
                (rate_id, organization_id),
            )
            row = cur.fetchone()
            if not row:
                raise RateRecordNotFoundError(rate_id)
            return _decode_rate(row)

    # ------------------------------------------------------------------
    # Organization currency config
    def get_org_config(self, organization_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM org_currency_config WHERE organization_id = ?",
                (organization_id,),
            )
            row = cur.fetchone()
            return _decode_config(row) if row else None

    def insert_org_config_if_missing(
        self,
        organization_id: str,
        base_currency: str,
        supported_currencies: List[str],
        default_rounding_method: str,
        default_decimal_places: int,
    ) -> Optional[Dict[str, Any]]:
        """Create the config row unless one exists; return whichever row is stored."""
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                INSERT OR IGNORE INTO org_currency_config (
                    organization_id, base_currency, supported_currencies,
                    default_rounding_method, default_decimal_places,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
                """,
                (
                    organization_id,
                    base_currency,
                    _encode("supported_currencies", supported_currencies),
                    default_rounding_method,
                    default_decimal_places,
                ),
            )
            conn.commit()
            cur.execute(
                "SELECT * FROM org_currency_config WHERE organization_id = ?",
                (organization_id,),
            )
            row = cur.fetchone()
            return _decode_config(row) if row else None

    def update_org_config(
        self,
        organization_id: str,
        fields: Mapping[str, Any],
        updated_by: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        unknown = set(fields) - set(UPDATABLE_CONFIG_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported config fields: {sorted(unknown)}")
        assignments = [f"{k} = ?" for k in fields] + ["updated_by = ?"]
        params: List[Any] = [_encode(k, v) for k, v in fields.items()]
        params.extend([updated_by, organization_id])
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                UPDATE org_currency_config
                SET {", ".join(assignments)}, updated_at = ({UTC_NOW_SQL})
                WHERE organization_id = ?
                """,
                params,
            )
            if cur.rowcount == 0:
                return None
            conn.commit()
            cur.execute(
                "SELECT * FROM org_currency_config WHERE organization_id = ?",
                (organization_id,),
            )
            return _decode_config(cur.fetchone())

    # ------------------------------------------------------------------
    # Conversion ledger (append-only)
    def insert_conversion(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            with self._connect() as conn:
                cur = conn.cursor()
                cur.execute(
                    f"""
                    INSERT INTO currency_conversions (
                        organization_id, from_currency, to_currency, from_amount,
                        to_amount, rate_used, exchange_rate_id, reference_type,
                        reference_id, metadata, created_by, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ({UTC_NOW_SQL}))
                    """,
                    (
                        record["organization_id"],
                        record["from_currency"],
                        record["to_currency"],
                        str(record["from_amount"]),
                        str(record["to_amount"]),
                        str(record["rate_used"]),
                        record.get("exchange_rate_id"),
                        record.get("reference_type"),
                        _encode("reference_id", record.get("reference_id")),
                        _encode("metadata", dict(record.get("metadata") or {})),
                        record.get("created_by"),
                    ),
                )
                conversion_id = int(cur.lastrowid)
                conn.commit()
                cur.execute(
                    "SELECT * FROM currency_conversions WHERE id = ?", (conversion_id,)
                )
                return _decode_conversion(cur.fetchone())
        except sqlite3.Error as e:
            raise LedgerWriteError(f"failed to write conversion record: {e}") from e

    def list_conversions(
        self, organization_id: str, reference_type: str, reference_id: str
    ) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT * FROM currency_conversions
                WHERE organization_id = ? AND reference_type = ? AND reference_id = ?
                ORDER BY created_at ASC, id ASC
                """,
                (organization_id, reference_type, str(reference_id)),
            )
            return [_decode_conversion(r) for r in cur.fetchall()]
