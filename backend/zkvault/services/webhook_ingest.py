"""
Webhook Ingest — chain-data provider batches → ledger.

Pipeline per log (delivery order):
    1. EventDecoder        — skip anything that is not a mirrored vault event
    2. Enrichment          — block timestamp (cached per batch), and the
                             transaction sender for Deposited
    3. LedgerReconciler    — idempotent upsert

A failure on one log is logged and counted; the rest of the batch still
runs. The provider does not reliably redeliver single items, so one bad log
must never cost the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from zkvault.infrastructure.blockchain.event_decoder import UNRECOGNIZED, Deposited, EventDecoder
from zkvault.infrastructure.ledger.reconciler import EventContext, LedgerReconciler

logger = logging.getLogger(__name__)


@dataclass
class IngestReport:
    received: int = 0
    recorded: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)


def _as_int(value: Any, name: str) -> int:
    if value is None:
        raise ValueError(f"log is missing {name}")
    if isinstance(value, str):
        return int(value, 16) if value.lower().startswith("0x") else int(value)
    return int(value)


class WebhookIngestHandler:
    """
    Orchestrates one webhook delivery.

    Args:
        decoder: EventDecoder for the vault ABI.
        reconciler: LedgerReconciler bound to the ledger store.
        chain: anything with get_block_timestamp(n) and get_transaction_sender(hash).
    """

    def __init__(self, decoder: EventDecoder, reconciler: LedgerReconciler, chain):
        self.decoder = decoder
        self.reconciler = reconciler
        self.chain = chain

    def handle(self, logs: Sequence[Dict[str, Any]]) -> IngestReport:
        report = IngestReport(received=len(logs))
        timestamps: Dict[int, int] = {}

        for position, log in enumerate(logs):
            try:
                if self._ingest_one(log, timestamps):
                    report.recorded += 1
                else:
                    report.skipped += 1
            except Exception as exc:
                report.failed += 1
                report.errors.append({
                    "position": position,
                    "tx_hash": log.get("transactionHash") if isinstance(log, dict) else None,
                    "log_index": log.get("logIndex") if isinstance(log, dict) else None,
                    "error": type(exc).__name__,
                    "message": str(exc),
                })
                logger.error(
                    f"[INGEST] Log #{position} failed — "
                    f"{type(exc).__name__}: {exc}",
                    exc_info=True,
                )

        logger.info(
            f"[INGEST] Batch done — received={report.received} recorded={report.recorded} "
            f"skipped={report.skipped} failed={report.failed}"
        )
        return report

    def _ingest_one(self, log: Dict[str, Any], timestamps: Dict[int, int]) -> bool:
        if not isinstance(log, dict):
            raise ValueError(f"log entry must be an object, got {type(log).__name__}")

        event = self.decoder.decode({
            "address": log.get("address"),
            "topics": log.get("topics"),
            "data": log.get("data"),
        })
        if event is UNRECOGNIZED:
            logger.debug(f"[INGEST] Skipping unrecognized log {log.get('transactionHash')}")
            return False

        tx_hash = log.get("transactionHash")
        if not tx_hash:
            raise ValueError("log is missing transactionHash")
        block_number = _as_int(log.get("blockNumber"), "blockNumber")
        log_index = _as_int(log.get("logIndex"), "logIndex")

        if block_number not in timestamps:
            timestamps[block_number] = self.chain.get_block_timestamp(block_number)

        tx_from = None
        if isinstance(event, Deposited):
            tx_from = self.chain.get_transaction_sender(tx_hash)

        context = EventContext.from_timestamp(
            tx_hash=tx_hash,
            log_index=log_index,
            block_number=block_number,
            timestamp=timestamps[block_number],
            tx_from=tx_from,
        )
        self.reconciler.reconcile(event, context)
        return True
