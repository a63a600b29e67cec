"""
Vault Service — request-path operations behind the HTTP surface.

    register / pay / withdraw   proof → calldata → sponsored user operation
    balance / history           ledger read models keyed by identity hash
    credential                  credential hash derivation for the prover
    wallet_balance / transaction  direct chain reads

Duplicate registrations are rejected from the ledger before any pipeline
stage runs, so a call that would revert on-chain never consumes a
sponsored operation.
"""

import json
import logging
from typing import Any, Dict, List

from web3 import Web3

from zkvault.core.config import settings
from zkvault.core.crypto.field_hasher import credential_hash, identity_hash
from zkvault.core.errors import AlreadyRegistered, InvalidRequest, MalformedProof, NotFound
from zkvault.infrastructure.blockchain.relay_pipeline import (
    RelayResult,
    RelayTransactionPipeline,
    build_pay_call,
    build_register_call,
    build_withdraw_call,
)
from zkvault.infrastructure.ledger.store import LedgerStore
from zkvault.infrastructure.zkp.proof_adapter import parse_proof

logger = logging.getLogger(__name__)


def _decimal(value: Any, name: str) -> str:
    """Canonical decimal string for a field element given as int, decimal or hex."""
    try:
        if isinstance(value, str) and value.lower().startswith("0x"):
            return str(int(value, 16))
        return str(int(value))
    except (TypeError, ValueError):
        raise MalformedProof(f"{name} is not an integer: {value!r}")


class VaultService:
    def __init__(self, store: LedgerStore, pipeline: RelayTransactionPipeline, chain):
        self.store = store
        self.pipeline = pipeline
        self.chain = chain

    # ── Reads ──

    def balance(self, username: str) -> Dict[str, str]:
        username_hash = str(identity_hash(username))
        balance = self.store.get_balance(username_hash)
        if balance is None:
            raise NotFound("User not found")
        return {
            "username": username,
            "username_hash": username_hash,
            "balance": balance,
            "token": settings.TOKEN_SYMBOL,
        }

    def history(self, username: str) -> Dict[str, List[Dict[str, Any]]]:
        username_hash = str(identity_hash(username))
        return {"history": self.store.get_history(username_hash)}

    def credential(self, username: str, password: str) -> Dict[str, str]:
        return {"credentialHash": str(credential_hash(username, password))}

    def wallet_balance(self, address: str) -> Dict[str, str]:
        if not Web3.is_address(address):
            raise InvalidRequest(f"Invalid wallet address {address}")
        balance = self.chain.token_balance_of(address)
        return {
            "address": address,
            "balance": str(balance),
            "token": settings.TOKEN_SYMBOL,
        }

    def transaction(self, tx_hash: str) -> Dict[str, Any]:
        tx = self.chain.get_transaction(tx_hash)
        return {"tx_hash": json.loads(Web3.to_json(tx))}

    # ── Sponsored writes ──

    def register(self, raw_proof: Dict[str, Any]) -> RelayResult:
        proof = parse_proof(raw_proof)
        username_hash = _decimal(proof.input.username_hash, "username_hash")

        if self.store.find_registration(username_hash) is not None:
            logger.warning(f"[VAULT] Duplicate registration rejected for {username_hash[:12]}...")
            raise AlreadyRegistered("User already registered")

        call = build_register_call(proof)
        return self.pipeline.execute([call], action="register")

    def pay(self, raw_proof: Dict[str, Any], to_username_hash: Any, amount: Any) -> RelayResult:
        proof = parse_proof(raw_proof)
        call = build_pay_call(proof, to_username_hash, amount)
        return self.pipeline.execute([call], action="pay")

    def withdraw(self, raw_proof: Dict[str, Any], to_user_address: str, amount: Any) -> RelayResult:
        proof = parse_proof(raw_proof)
        call = build_withdraw_call(proof, to_user_address, amount)
        return self.pipeline.execute([call], action="withdraw")
