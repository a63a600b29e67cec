"""
Ledger Reconciler — typed vault events → ledger rows.

Each supported event maps to one row in its own table, written with an
upsert on (tx_hash, log_index). Applying the same (event, context) any
number of times leaves exactly one identical row; a re-indexed log with
corrected fields overwrites the stale one.

Amounts and hashes are kept as decimal strings so 256-bit values never pass
through floating point. Transaction hashes are lowercased here, once, so every
store sees the same natural key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from zkvault.core.errors import StoreWriteFailed
from zkvault.infrastructure.blockchain.event_decoder import (
    Deposited,
    Paid,
    Registered,
    VaultEvent,
    Withdrawn,
)
from zkvault.infrastructure.ledger.store import LedgerStore

logger = logging.getLogger(__name__)


def format_block_time(timestamp: int) -> str:
    """Unix seconds → ``2023-11-14T22:13:20Z``."""
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class EventContext:
    """Where a log sits on chain, plus enrichment fetched by the handler."""
    tx_hash: str
    log_index: int
    block_number: int
    block_time: str
    tx_from: Optional[str] = None

    @classmethod
    def from_timestamp(
        cls,
        tx_hash: str,
        log_index: int,
        block_number: int,
        timestamp: int,
        tx_from: Optional[str] = None,
    ) -> "EventContext":
        return cls(
            tx_hash=tx_hash,
            log_index=int(log_index),
            block_number=int(block_number),
            block_time=format_block_time(timestamp),
            tx_from=tx_from,
        )


@dataclass(frozen=True)
class ReconcileOutcome:
    table: str
    row: Dict[str, Any]


def build_row(event: VaultEvent, context: EventContext) -> ReconcileOutcome:
    """Compute the ledger row for ``event``. Pure."""
    base = {
        "tx_hash": context.tx_hash.lower(),
        "log_index": context.log_index,
        "block_time": context.block_time,
        "block_number": str(context.block_number),
    }

    if isinstance(event, Deposited):
        if not context.tx_from:
            raise ValueError("Deposited rows need the transaction sender (tx_from)")
        return ReconcileOutcome("event_deposited", {
            "amount": str(event.amount),
            "username_hash": str(event.username_hash),
            **base,
            "from_address": context.tx_from,
        })
    if isinstance(event, Paid):
        return ReconcileOutcome("event_paid", {
            "amount": str(event.amount),
            "from_username_hash": str(event.from_username_hash),
            "to_username_hash": str(event.to_username_hash),
            **base,
        })
    if isinstance(event, Withdrawn):
        return ReconcileOutcome("event_withdrawn", {
            "amount": str(event.amount),
            "from_username_hash": str(event.from_username_hash),
            "to_user_address": event.to_user_address,
            **base,
        })
    if isinstance(event, Registered):
        return ReconcileOutcome("event_registered", {
            "username_hash": str(event.username_hash),
            "credential_hash": str(event.credential_hash),
            **base,
        })
    raise TypeError(f"Unsupported event type: {type(event).__name__}")


class LedgerReconciler:
    def __init__(self, store: LedgerStore):
        self.store = store

    def reconcile(self, event: VaultEvent, context: EventContext) -> ReconcileOutcome:
        """
        Upsert the row for ``event``.

        Raises:
            StoreWriteFailed: the store rejected the write.
        """
        outcome = build_row(event, context)
        try:
            stored = self.store.upsert(outcome.table, outcome.row)
        except StoreWriteFailed:
            raise
        except Exception as e:
            raise StoreWriteFailed(f"Upsert into {outcome.table} failed: {e}")

        logger.info(
            f"[LEDGER] {type(event).__name__} reconciled — "
            f"table={outcome.table} tx={context.tx_hash} log={context.log_index}"
        )
        return ReconcileOutcome(outcome.table, stored)
