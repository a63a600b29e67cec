"""
Ledger Store — append-only event tables keyed by (tx_hash, log_index).

Tables:
    event_deposited   amount, username_hash, from_address
    event_paid        amount, from_username_hash, to_username_hash
    event_withdrawn   amount, from_username_hash, to_user_address
    event_registered  username_hash, credential_hash
    (all)             tx_hash, log_index, block_time, block_number

Writes are upserts on the natural key: a redelivered log replaces its own
row, never adds a second one. The uniqueness constraint is the only
serialization point between concurrent webhook deliveries.

Two implementations share the contract:
    - PostgresLedgerStore: psycopg2, INSERT ... ON CONFLICT DO UPDATE, reads
      the vault_balances / history views maintained by the database.
    - InMemoryLedgerStore: process-local tables, balance and history
      projected from the rows. Used for development and tests.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import psycopg2
from psycopg2 import sql
from psycopg2.extras import RealDictCursor

from zkvault.core.errors import StoreReadFailed, StoreWriteFailed

logger = logging.getLogger(__name__)

NATURAL_KEY = ("tx_hash", "log_index")

EVENT_TABLES = (
    "event_deposited",
    "event_paid",
    "event_withdrawn",
    "event_registered",
)


class LedgerStore(ABC):
    """Persistence contract used by the reconciler and the read endpoints."""

    @abstractmethod
    def upsert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or replace ``row`` by (tx_hash, log_index). Raises StoreWriteFailed."""

    @abstractmethod
    def find_registration(self, username_hash: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def get_balance(self, username_hash: str) -> Optional[str]:
        """Current vault balance as a decimal string, None for unknown users."""

    @abstractmethod
    def get_history(self, username_hash: str) -> List[Dict[str, Any]]:
        """Transfers touching the user, newest block first."""


def _check_row(table: str, row: Dict[str, Any]) -> None:
    if table not in EVENT_TABLES:
        raise StoreWriteFailed(f"Unknown ledger table '{table}'")
    missing = [k for k in NATURAL_KEY if row.get(k) is None]
    if missing:
        raise StoreWriteFailed(f"{table} row is missing {', '.join(missing)}")


# ═══════════════════════════════════════════════════════════════════════════════
# IN-MEMORY
# ═══════════════════════════════════════════════════════════════════════════════

class InMemoryLedgerStore(LedgerStore):

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[Tuple[str, int], Dict[str, Any]]] = {
            name: {} for name in EVENT_TABLES
        }
        self._lock = threading.Lock()

    def upsert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        _check_row(table, row)
        key = (str(row["tx_hash"]), int(row["log_index"]))
        with self._lock:
            self._tables[table][key] = dict(row)
        return dict(row)

    def rows(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in self._tables[table].values()]

    def count(self, table: Optional[str] = None) -> int:
        with self._lock:
            if table:
                return len(self._tables[table])
            return sum(len(t) for t in self._tables.values())

    def find_registration(self, username_hash: str) -> Optional[Dict[str, Any]]:
        for row in self.rows("event_registered"):
            if row["username_hash"] == username_hash:
                return row
        return None

    def get_balance(self, username_hash: str) -> Optional[str]:
        known = self.find_registration(username_hash) is not None
        balance = 0
        for row in self.rows("event_deposited"):
            if row["username_hash"] == username_hash:
                balance += int(row["amount"])
                known = True
        for row in self.rows("event_paid"):
            if row["to_username_hash"] == username_hash:
                balance += int(row["amount"])
                known = True
            if row["from_username_hash"] == username_hash:
                balance -= int(row["amount"])
                known = True
        for row in self.rows("event_withdrawn"):
            if row["from_username_hash"] == username_hash:
                balance -= int(row["amount"])
                known = True
        return str(balance) if known else None

    def get_history(self, username_hash: str) -> List[Dict[str, Any]]:
        history: List[Dict[str, Any]] = []
        for row in self.rows("event_deposited"):
            if row["username_hash"] == username_hash:
                history.append(_history_row("deposit", row, row["from_address"], username_hash))
        for row in self.rows("event_paid"):
            if username_hash in (row["from_username_hash"], row["to_username_hash"]):
                history.append(_history_row(
                    "pay", row, row["from_username_hash"], row["to_username_hash"],
                ))
        for row in self.rows("event_withdrawn"):
            if row["from_username_hash"] == username_hash:
                history.append(_history_row(
                    "withdraw", row, row["from_username_hash"], row["to_user_address"],
                ))
        history.sort(key=lambda h: (int(h["block_number"]), h["log_index"]), reverse=True)
        return history


def _history_row(kind: str, row: Dict[str, Any], from_user: str, to_user: str) -> Dict[str, Any]:
    return {
        "type": kind,
        "from_user": from_user,
        "to_user": to_user,
        "amount": row["amount"],
        "tx_hash": row["tx_hash"],
        "log_index": row["log_index"],
        "block_time": row["block_time"],
        "block_number": row["block_number"],
    }


# ═══════════════════════════════════════════════════════════════════════════════
# POSTGRES
# ═══════════════════════════════════════════════════════════════════════════════

class PostgresLedgerStore(LedgerStore):
    """
    psycopg2-backed ledger. One short-lived connection per operation; the
    event tables carry a UNIQUE (tx_hash, log_index) constraint.
    """

    def __init__(self, dsn: str):
        self.dsn = dsn

    def _connect(self):
        return psycopg2.connect(self.dsn)

    def upsert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        _check_row(table, row)
        columns = list(row.keys())
        updates = [c for c in columns if c not in NATURAL_KEY]

        query = sql.SQL(
            "INSERT INTO {table} ({columns}) VALUES ({values}) "
            "ON CONFLICT ({key}) DO UPDATE SET {updates} RETURNING *"
        ).format(
            table=sql.Identifier(table),
            columns=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            values=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
            key=sql.SQL(", ").join(sql.Identifier(k) for k in NATURAL_KEY),
            updates=sql.SQL(", ").join(
                sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(c))
                for c in updates
            ),
        )

        try:
            conn = self._connect()
            try:
                with conn:
                    with conn.cursor(cursor_factory=RealDictCursor) as cur:
                        cur.execute(query, [row[c] for c in columns])
                        result = cur.fetchone()
            finally:
                conn.close()
        except psycopg2.Error as e:
            raise StoreWriteFailed(f"Upsert into {table} failed: {e}")

        logger.debug(f"[LEDGER] Upserted {table} tx={row['tx_hash']} log={row['log_index']}")
        return dict(result) if result else dict(row)

    def _fetch(self, query: str, params: Tuple[Any, ...]) -> List[Dict[str, Any]]:
        try:
            conn = self._connect()
            try:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(query, params)
                    return [dict(r) for r in cur.fetchall()]
            finally:
                conn.close()
        except psycopg2.Error as e:
            raise StoreReadFailed(str(e))

    def find_registration(self, username_hash: str) -> Optional[Dict[str, Any]]:
        rows = self._fetch(
            "SELECT * FROM event_registered WHERE username_hash = %s LIMIT 1",
            (username_hash,),
        )
        return rows[0] if rows else None

    def get_balance(self, username_hash: str) -> Optional[str]:
        rows = self._fetch(
            "SELECT amount FROM vault_balances WHERE username_hash = %s LIMIT 1",
            (username_hash,),
        )
        return str(rows[0]["amount"]) if rows else None

    def get_history(self, username_hash: str) -> List[Dict[str, Any]]:
        return self._fetch(
            "SELECT * FROM history WHERE from_user = %s OR to_user = %s "
            "ORDER BY block_number DESC",
            (username_hash, username_hash),
        )


def create_store(dsn: Optional[str] = None) -> LedgerStore:
    if dsn:
        logger.info("[LEDGER] Using Postgres ledger store")
        return PostgresLedgerStore(dsn)
    logger.warning("[LEDGER] DATABASE_URL not set. Using in-memory ledger store.")
    return InMemoryLedgerStore()
