import pytest
from fastapi.testclient import TestClient

from zkvault.api.deps import get_ingest_handler, get_vault_service
from zkvault.core.crypto import credential_hash, identity_hash
from zkvault.infrastructure.blockchain.event_decoder import EventDecoder
from zkvault.infrastructure.ledger.reconciler import LedgerReconciler
from zkvault.main import app
from zkvault.services.vault_service import VaultService
from zkvault.services.webhook_ingest import WebhookIngestHandler

from conftest import SETTLED_TX, SMART_ACCOUNT, USER_OP_HASH, FakePipeline, vault_log


@pytest.fixture
def pipeline():
    return FakePipeline()


@pytest.fixture
def client(store, chain, pipeline, vault_address):
    app.dependency_overrides[get_vault_service] = lambda: VaultService(store, pipeline, chain)
    app.dependency_overrides[get_ingest_handler] = lambda: WebhookIngestHandler(
        EventDecoder(), LedgerReconciler(store), chain,
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


def _register(store, username_hash, tx_hash="0x" + "0f" * 32):
    store.upsert("event_registered", {
        "username_hash": str(username_hash),
        "credential_hash": "222",
        "tx_hash": tx_hash,
        "log_index": 0,
        "block_time": "2023-11-14T22:13:20Z",
        "block_number": "100",
    })

# ═══════════════════════════════════════════════════════════════════════════════
# SPONSORED WRITES
# ═══════════════════════════════════════════════════════════════════════════════

def test_register_relays_proof(client, pipeline, proof):
    response = client.post("/api/register", json={"proof": proof})
    assert response.status_code == 200
    assert response.json() == {
        "bundler_tx_hash": USER_OP_HASH,
        "sender": SMART_ACCOUNT,
        "tx_hash": SETTLED_TX,
    }
    assert pipeline.executed[0][0] == "register"


def test_duplicate_register_is_rejected_before_relay(client, store, pipeline, proof):
    _register(store, 111)
    response = client.post("/api/register", json={"proof": proof})
    assert response.status_code == 400
    assert response.json()["error"] == "User already registered"
    assert pipeline.executed == []


def test_duplicate_check_normalizes_hex_identity(client, store, pipeline, proof):
    _register(store, 111)
    proof["input"]["username_hash"] = hex(111)
    response = client.post("/api/register", json={"proof": proof})
    assert response.status_code == 400
    assert pipeline.executed == []


def test_malformed_proof_is_rejected(client, pipeline, proof):
    del proof["pi_b"]
    response = client.post("/api/register", json={"proof": proof})
    assert response.status_code == 400
    assert response.json()["error"] == "Malformed proof"
    assert pipeline.executed == []


def test_pay_and_withdraw(client, pipeline, proof):
    pay = client.post("/api/pay", json={"proof": proof, "to_username_hash": "333", "amount": "25"})
    withdraw = client.post("/api/withdraw", json={
        "proof": proof,
        "to_user_address": "0x4444444444444444444444444444444444444444",
        "amount": 10,
    })
    assert pay.status_code == 200
    assert withdraw.status_code == 200
    assert [action for action, _ in pipeline.executed] == ["pay", "withdraw"]


def test_missing_fields_use_error_shape(client):
    response = client.post("/api/pay", json={})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid request"
    assert "to_username_hash" in body["message"]


@pytest.mark.parametrize("field", ["amount", "to_username_hash"])
def test_pay_value_beyond_uint256_is_bad_request(client, pipeline, proof, field):
    body = {"proof": proof, "to_username_hash": "333", "amount": "25"}
    body[field] = str(2 ** 256)
    response = client.post("/api/pay", json=body)
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request"
    assert field in response.json()["message"]
    assert pipeline.executed == []

# ═══════════════════════════════════════════════════════════════════════════════
# READS
# ═══════════════════════════════════════════════════════════════════════════════

def test_unknown_user_balance_is_404(client):
    response = client.get("/api/users/nobody/balance")
    assert response.status_code == 404
    assert response.json() == {"error": "Not found", "message": "User not found"}


def test_balance_after_deposit_webhook(client):
    alice = identity_hash("alice")
    log = vault_log("Deposited", [alice], ["uint256"], [500])
    assert client.post("/api/webhooks/quicknode", json={"data": [log]}).status_code == 200

    response = client.get("/api/users/alice/balance")
    assert response.status_code == 200
    assert response.json() == {
        "username": "alice",
        "username_hash": str(alice),
        "balance": "500",
        "token": "USDC",
    }

    history = client.get("/api/users/alice/history").json()["history"]
    assert history[0]["type"] == "deposit"


def test_credential_hash_endpoint(client):
    response = client.request("GET", "/api/proof/pay", json={"username": "alice", "password": "pw"})
    assert response.status_code == 200
    assert response.json() == {"credentialHash": str(credential_hash("alice", "pw"))}


def test_wallet_balance(client):
    response = client.get("/api/wallets/0x4444444444444444444444444444444444444444/balance")
    assert response.json()["balance"] == "1500000"
    assert client.get("/api/wallets/nope/balance").status_code == 400

# ═══════════════════════════════════════════════════════════════════════════════
# WEBHOOK
# ═══════════════════════════════════════════════════════════════════════════════

def test_webhook_acknowledges_with_counts(client, store):
    logs = [
        vault_log("Registered", [1], ["uint256"], [2], tx_hash="0x01"),
        {"topics": ["0x" + "12" * 32], "data": "0x", "transactionHash": "0x02",
         "blockNumber": "0x1", "logIndex": "0x0"},
    ]
    response = client.post("/api/webhooks/quicknode", json={"data": logs})
    assert response.status_code == 200
    assert response.json() == {
        "message": "Webhook received",
        "received": 2,
        "recorded": 1,
        "skipped": 1,
        "failed": 0,
    }
    assert store.count("event_registered") == 1


def test_webhook_redelivery_is_idempotent(client, store):
    log = vault_log("Paid", [1, 2], ["uint256"], [5])
    for _ in range(3):
        client.post("/api/webhooks/quicknode", json={"data": [log]})
    assert store.count("event_paid") == 1


def test_webhook_non_object_entry_fails_alone(client, store):
    logs = [vault_log("Registered", [1], ["uint256"], [2], tx_hash="0x01"), "garbage", 7]
    response = client.post("/api/webhooks/quicknode", json={"data": logs})
    assert response.status_code == 200
    body = response.json()
    assert (body["received"], body["recorded"], body["failed"]) == (3, 1, 2)
    assert store.count("event_registered") == 1
