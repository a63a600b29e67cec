import copy

import pytest
from eth_abi import encode

from zkvault.core.config import settings
from zkvault.infrastructure.blockchain.contracts.abi import event_topic, find_entry, load_vault_abi
from zkvault.infrastructure.blockchain.relay_pipeline import RelayResult
from zkvault.infrastructure.ledger.store import InMemoryLedgerStore

VAULT = "0x1111111111111111111111111111111111111111"
SMART_ACCOUNT = "0x2222222222222222222222222222222222222222"
DEPOSITOR = "0x3333333333333333333333333333333333333333"
USER_OP_HASH = "0x" + "aa" * 32
SETTLED_TX = "0x" + "bb" * 32

PROOF = {
    "pi_a": ["1", "2", "1"],
    "pi_b": [["3", "4"], ["5", "6"], ["1", "0"]],
    "pi_c": ["7", "8", "1"],
    "protocol": "groth16",
    "curve": "bn128",
    "publicSignals": ["111", "222", "13", "14"],
    "input": {
        "username_hash": "111",
        "credential_hash": "222",
        "nonce": "13",
        "result_hash": "14",
    },
}


# ═══════════════════════════════════════════════════════════════════════════════
# FAKES
# ═══════════════════════════════════════════════════════════════════════════════

class FakeChain:
    """Stands in for VaultChainService."""

    def __init__(self, timestamp=1700000000, sender=DEPOSITOR):
        self.timestamp = timestamp
        self.sender = sender
        self.block_reads = []
        self.sender_reads = []

    def get_block_timestamp(self, block_number):
        self.block_reads.append(block_number)
        return self.timestamp

    def get_transaction_sender(self, tx_hash):
        self.sender_reads.append(tx_hash)
        return self.sender

    def get_smart_account_address(self, owners, nonce=0):
        return SMART_ACCOUNT

    def is_deployed(self, address):
        return False

    def get_entry_point_nonce(self, sender, key=0):
        return 0

    def estimate_fees_per_gas(self):
        return {"maxFeePerGas": 2_000_000, "maxPriorityFeePerGas": 1_000_000}

    def token_balance_of(self, address, token=None):
        return 1_500_000


class FakeBundler:
    """Records every call; ``fail`` names the method that should raise."""

    def __init__(self, fail=None, receipt=None, stub_final=False):
        from zkvault.infrastructure.blockchain.bundler import BundlerRpcError

        self._error = BundlerRpcError
        self.fail = fail
        self.stub_final = stub_final
        self.receipt = receipt if receipt is not None else {
            "success": True,
            "receipt": {"transactionHash": SETTLED_TX},
        }
        self.calls = []
        self.sent = []

    def _maybe_fail(self, name):
        self.calls.append(name)
        if self.fail == name:
            raise self._error(f"{name} failed", code=-32500)

    def get_paymaster_stub_data(self, user_op, context=None):
        self._maybe_fail("stub")
        return {"paymasterAndData": "0x" + "ab" * 20, "isFinal": self.stub_final}

    def estimate_user_operation_gas(self, user_op):
        self._maybe_fail("estimate")
        return {"preVerificationGas": 21000, "verificationGasLimit": 100000, "callGasLimit": 50000}

    def get_paymaster_data(self, user_op, context=None):
        self._maybe_fail("sponsor")
        return {"paymasterAndData": "0x" + "cd" * 20}

    def send_user_operation(self, user_op):
        self._maybe_fail("send")
        self.sent.append(user_op)
        return USER_OP_HASH

    def wait_for_user_operation_receipt(self, user_op_hash, timeout=None, poll_interval=None):
        self._maybe_fail("wait")
        if self.receipt == "timeout":
            return None
        return self.receipt


class FakePipeline:
    def __init__(self):
        self.executed = []

    def execute(self, calls, action="call"):
        self.executed.append((action, list(calls)))
        return RelayResult(bundler_tx_hash=USER_OP_HASH, sender=SMART_ACCOUNT, tx_hash=SETTLED_TX)


# ═══════════════════════════════════════════════════════════════════════════════
# LOG BUILDERS
# ═══════════════════════════════════════════════════════════════════════════════

def _word(abi_type, value):
    return "0x" + encode([abi_type], [value]).hex()


def vault_log(event_name, indexed, data_types=(), data_values=(), tx_hash="0x" + "01" * 32,
              log_index=0, block_number=100):
    """Raw receipt log as the chain-data provider delivers it."""
    entry = find_entry(load_vault_abi(), event_name, kind="event")
    indexed_params = [i for i in entry["inputs"] if i.get("indexed")]
    topics = [event_topic(entry)] + [
        _word(param["type"], value) for param, value in zip(indexed_params, indexed)
    ]
    return {
        "address": VAULT,
        "topics": topics,
        "data": "0x" + encode(list(data_types), list(data_values)).hex(),
        "transactionHash": tx_hash,
        "blockNumber": hex(block_number),
        "logIndex": hex(log_index),
    }


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def proof():
    return copy.deepcopy(PROOF)


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def vault_address(monkeypatch):
    monkeypatch.setattr(settings, "VAULT_ADDRESS", VAULT)
    return VAULT
