import psycopg2
import pytest

from zkvault.core.errors import StoreReadFailed, StoreWriteFailed
from zkvault.infrastructure.blockchain.event_decoder import Deposited, Paid, Registered, Withdrawn
from zkvault.infrastructure.ledger.reconciler import (
    EventContext,
    LedgerReconciler,
    build_row,
    format_block_time,
)
from zkvault.infrastructure.ledger.store import PostgresLedgerStore, create_store, InMemoryLedgerStore

from conftest import DEPOSITOR

RECIPIENT = "0x4444444444444444444444444444444444444444"


def _context(tx_hash="0xabc", log_index=0, block_number=100, tx_from=None):
    return EventContext.from_timestamp(
        tx_hash=tx_hash,
        log_index=log_index,
        block_number=block_number,
        timestamp=1700000000,
        tx_from=tx_from,
    )

# ═══════════════════════════════════════════════════════════════════════════════
# ROW MAPPING
# ═══════════════════════════════════════════════════════════════════════════════

def test_block_time_format():
    assert format_block_time(1700000000) == "2023-11-14T22:13:20Z"


def test_deposited_row():
    outcome = build_row(Deposited(username_hash=111, amount=500), _context(tx_from=DEPOSITOR))
    assert outcome.table == "event_deposited"
    assert outcome.row == {
        "amount": "500",
        "username_hash": "111",
        "tx_hash": "0xabc",
        "log_index": 0,
        "block_time": "2023-11-14T22:13:20Z",
        "block_number": "100",
        "from_address": DEPOSITOR,
    }


def test_deposited_row_needs_sender():
    with pytest.raises(ValueError):
        build_row(Deposited(username_hash=111, amount=500), _context())


def test_large_amounts_stay_exact():
    amount = 2 ** 256 - 1
    outcome = build_row(Paid(from_username_hash=1, to_username_hash=2, amount=amount), _context())
    assert outcome.row["amount"] == str(amount)


def test_withdrawn_and_registered_tables():
    withdrawn = build_row(Withdrawn(from_username_hash=1, to_user_address=RECIPIENT, amount=5), _context())
    registered = build_row(Registered(username_hash=1, credential_hash=2), _context())
    assert withdrawn.table == "event_withdrawn"
    assert withdrawn.row["to_user_address"] == RECIPIENT
    assert registered.table == "event_registered"
    assert registered.row["credential_hash"] == "2"

# ═══════════════════════════════════════════════════════════════════════════════
# RECONCILIATION
# ═══════════════════════════════════════════════════════════════════════════════

def test_reconcile_is_idempotent(store):
    reconciler = LedgerReconciler(store)
    event = Deposited(username_hash=111, amount=500)
    for _ in range(3):
        reconciler.reconcile(event, _context(tx_from=DEPOSITOR))

    assert store.count("event_deposited") == 1
    assert store.count() == 1


def test_reconcile_overwrites_corrected_log(store):
    reconciler = LedgerReconciler(store)
    reconciler.reconcile(Deposited(username_hash=111, amount=500), _context(tx_from=DEPOSITOR))
    reconciler.reconcile(Deposited(username_hash=111, amount=600), _context(tx_hash="0xABC", tx_from=DEPOSITOR))

    rows = store.rows("event_deposited")
    assert len(rows) == 1
    assert rows[0]["amount"] == "600"
    assert rows[0]["tx_hash"] == "0xabc"


def test_distinct_log_indexes_are_distinct_rows(store):
    reconciler = LedgerReconciler(store)
    reconciler.reconcile(Paid(from_username_hash=1, to_username_hash=2, amount=5), _context(log_index=0))
    reconciler.reconcile(Paid(from_username_hash=1, to_username_hash=2, amount=5), _context(log_index=1))
    assert store.count("event_paid") == 2


def test_store_failures_are_wrapped():
    class BrokenStore(InMemoryLedgerStore):
        def upsert(self, table, row):
            raise RuntimeError("disk full")

    with pytest.raises(StoreWriteFailed):
        LedgerReconciler(BrokenStore()).reconcile(Registered(username_hash=1, credential_hash=2), _context())

# ═══════════════════════════════════════════════════════════════════════════════
# READ MODELS
# ═══════════════════════════════════════════════════════════════════════════════

def test_balance_projection(store):
    reconciler = LedgerReconciler(store)
    reconciler.reconcile(Registered(username_hash=1, credential_hash=9), _context("0x01"))
    reconciler.reconcile(Deposited(username_hash=1, amount=1000), _context("0x02", tx_from=DEPOSITOR))
    reconciler.reconcile(Paid(from_username_hash=1, to_username_hash=2, amount=300), _context("0x03"))
    reconciler.reconcile(Withdrawn(from_username_hash=1, to_user_address=RECIPIENT, amount=200), _context("0x04"))

    assert store.get_balance("1") == "500"
    assert store.get_balance("2") == "300"
    assert store.get_balance("3") is None


def test_registered_user_without_transfers_has_zero_balance(store):
    LedgerReconciler(store).reconcile(Registered(username_hash=7, credential_hash=9), _context())
    assert store.get_balance("7") == "0"
    assert store.find_registration("7")["credential_hash"] == "9"


def test_history_newest_first(store):
    reconciler = LedgerReconciler(store)
    reconciler.reconcile(Deposited(username_hash=1, amount=1000), _context("0x02", block_number=5, tx_from=DEPOSITOR))
    reconciler.reconcile(Paid(from_username_hash=2, to_username_hash=1, amount=300), _context("0x03", block_number=40))
    reconciler.reconcile(Withdrawn(from_username_hash=1, to_user_address=RECIPIENT, amount=200), _context("0x04", block_number=12))

    history = store.get_history("1")
    assert [h["type"] for h in history] == ["pay", "withdraw", "deposit"]
    assert history[0]["from_user"] == "2"
    assert history[1]["to_user"] == RECIPIENT
    assert history[2]["from_user"] == DEPOSITOR


def test_unknown_table_is_rejected(store):
    with pytest.raises(StoreWriteFailed):
        store.upsert("event_minted", {"tx_hash": "0x1", "log_index": 0})


def test_missing_natural_key_is_rejected(store):
    with pytest.raises(StoreWriteFailed):
        store.upsert("event_paid", {"tx_hash": "0x1"})


def test_store_keys_tx_hash_verbatim(store):
    row = {"username_hash": "1", "credential_hash": "2", "log_index": 0,
           "block_time": "2023-11-14T22:13:20Z", "block_number": "100"}
    store.upsert("event_registered", {**row, "tx_hash": "0xAB"})
    store.upsert("event_registered", {**row, "tx_hash": "0xab"})
    assert sorted(r["tx_hash"] for r in store.rows("event_registered")) == ["0xAB", "0xab"]

# ═══════════════════════════════════════════════════════════════════════════════
# POSTGRES
# ═══════════════════════════════════════════════════════════════════════════════

def test_create_store_picks_backend():
    assert isinstance(create_store(None), InMemoryLedgerStore)
    assert isinstance(create_store("postgresql://localhost/vault"), PostgresLedgerStore)


def test_postgres_errors_map_to_store_errors(monkeypatch):
    def refuse(dsn):
        raise psycopg2.OperationalError("connection refused")

    monkeypatch.setattr(psycopg2, "connect", refuse)
    pg = PostgresLedgerStore("postgresql://localhost/vault")

    with pytest.raises(StoreWriteFailed):
        pg.upsert("event_registered", {"tx_hash": "0x1", "log_index": 0, "username_hash": "1"})
    with pytest.raises(StoreReadFailed):
        pg.get_balance("1")
