"""
Relay Transaction Pipeline — one sponsored vault call, end to end.

Lifecycle:
    BUILT → GAS_ESTIMATED → SUBMITTED → FINALIZED
                 ↘             ↘           ↘
                            FAILED

    1. Build      — vault calldata from the formatted proof + identifiers,
                    wrapped in a user operation for a fresh smart account.
    2. Estimate   — paymaster stub, bundler gas estimate, preVerificationGas
                    scaled by PRE_VERIFICATION_GAS_MULTIPLIER (one shot).
    3. Submit     — final paymaster data, owner signature, eth_sendUserOperation.
    4. Finalize   — wait for the user operation receipt.

Nothing is retried here. Proof validity is checked by the vault contract;
this module only encodes and submits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Type

from eth_abi.exceptions import EncodingError
from web3 import Web3
from web3.exceptions import Web3Exception

from zkvault.core.config import settings
from zkvault.core.errors import (
    EstimationFailed,
    InvalidRequest,
    MalformedProof,
    ReceiptFailed,
    ReceiptTimeout,
    RelayError,
    SubmissionRejected,
    VaultBridgeError,
)
from zkvault.infrastructure.blockchain.bundler import BundlerRpcError
from zkvault.infrastructure.blockchain.contracts.abi import encode_call, load_vault_abi
from zkvault.infrastructure.blockchain.smart_account import CallDescriptor, UserOperation
from zkvault.infrastructure.zkp.proof_adapter import format_proof
from zkvault.schemas.zkp import ZKProofObject

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# DATA MODELS
# ═══════════════════════════════════════════════════════════════════════════════

class RelayStage(str, Enum):
    BUILT = "built"
    GAS_ESTIMATED = "gas_estimated"
    SUBMITTED = "submitted"
    FINALIZED = "finalized"
    FAILED = "failed"


@dataclass(frozen=True)
class RelayResult:
    bundler_tx_hash: str
    sender: str
    tx_hash: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "bundler_tx_hash": self.bundler_tx_hash,
            "sender": self.sender,
            "tx_hash": self.tx_hash,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# CALL BUILDERS
# ═══════════════════════════════════════════════════════════════════════════════

UINT256_MAX = 2 ** 256 - 1


def _uint(value: Any, name: str, error: Type[VaultBridgeError] = MalformedProof) -> int:
    if value is None or isinstance(value, bool):
        raise error(f"{name} is required")
    try:
        number = int(value, 0) if isinstance(value, str) and value.lower().startswith("0x") else int(value)
    except (TypeError, ValueError):
        raise error(f"{name} is not an integer: {value!r}")
    if not 0 <= number <= UINT256_MAX:
        raise error(f"{name} does not fit in uint256")
    return number


def _vault_call(function_name: str, args: List[Any], vault_address: Optional[str]) -> CallDescriptor:
    to = vault_address or settings.VAULT_ADDRESS
    if not to:
        raise SubmissionRejected("VAULT_ADDRESS is not configured")
    try:
        data = encode_call(load_vault_abi(), function_name, args)
    except (Web3Exception, EncodingError, TypeError, ValueError, OverflowError) as e:
        raise SubmissionRejected(f"Malformed {function_name} call: {e}")
    return CallDescriptor(to=Web3.to_checksum_address(to), data=data)


def _points(proof: ZKProofObject) -> List[Any]:
    formatted = format_proof(proof)
    return [formatted.pi_a, formatted.pi_b, formatted.pi_c]


def build_register_call(proof: ZKProofObject, vault_address: Optional[str] = None) -> CallDescriptor:
    """register(pA, pB, pC, usernameHash, credentialHash, publicSignals[2], publicSignals[3])"""
    if len(proof.public_signals) < 4:
        raise MalformedProof("register proof needs at least 4 public signals")
    args = _points(proof) + [
        _uint(proof.input.username_hash, "username_hash"),
        _uint(proof.input.credential_hash, "credential_hash"),
        _uint(proof.public_signals[2], "publicSignals[2]"),
        _uint(proof.public_signals[3], "publicSignals[3]"),
    ]
    return _vault_call("register", args, vault_address)


def build_pay_call(
    proof: ZKProofObject,
    to_username_hash: Any,
    amount: Any,
    vault_address: Optional[str] = None,
) -> CallDescriptor:
    args = _points(proof) + [
        _uint(proof.input.username_hash, "username_hash"),
        _uint(to_username_hash, "to_username_hash", InvalidRequest),
        _uint(proof.input.credential_hash, "credential_hash"),
        _uint(proof.input.nonce, "nonce"),
        _uint(proof.input.result_hash, "result_hash"),
        _uint(amount, "amount", InvalidRequest),
    ]
    return _vault_call("pay", args, vault_address)


def build_withdraw_call(
    proof: ZKProofObject,
    to_user_address: str,
    amount: Any,
    vault_address: Optional[str] = None,
) -> CallDescriptor:
    if not isinstance(to_user_address, str) or not Web3.is_address(to_user_address):
        raise SubmissionRejected(f"Invalid recipient address: {to_user_address!r}")
    args = _points(proof) + [
        _uint(proof.input.username_hash, "username_hash"),
        Web3.to_checksum_address(to_user_address),
        _uint(proof.input.credential_hash, "credential_hash"),
        _uint(proof.input.nonce, "nonce"),
        _uint(proof.input.result_hash, "result_hash"),
        _uint(amount, "amount", InvalidRequest),
    ]
    return _vault_call("withdraw", args, vault_address)


# ═══════════════════════════════════════════════════════════════════════════════
# GAS POLICY
# ═══════════════════════════════════════════════════════════════════════════════

def adjust_gas_estimate(estimate: Dict[str, int], multiplier: Optional[int] = None) -> Dict[str, int]:
    """
    Over-provision preVerificationGas; other fields pass through.

    >>> adjust_gas_estimate({"preVerificationGas": 21000, "callGasLimit": 5}, 2)
    {'preVerificationGas': 42000, 'callGasLimit': 5}
    """
    multiplier = settings.PRE_VERIFICATION_GAS_MULTIPLIER if multiplier is None else multiplier
    adjusted = dict(estimate)
    adjusted["preVerificationGas"] = int(estimate["preVerificationGas"]) * multiplier
    return adjusted


# ═══════════════════════════════════════════════════════════════════════════════
# PIPELINE
# ═══════════════════════════════════════════════════════════════════════════════

class RelayTransactionPipeline:
    """
    Executes one sponsored call per ``execute``.

    Collaborators:
        bundler:          BundlerClient (or anything with the same methods).
        account_factory:  SmartAccountFactory, one disposable account per call.
        chain:            VaultChainService, for fee data.
    """

    def __init__(
        self,
        bundler,
        account_factory,
        chain,
        pre_verification_gas_multiplier: Optional[int] = None,
        receipt_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ):
        self.bundler = bundler
        self.account_factory = account_factory
        self.chain = chain
        self.multiplier = (
            settings.PRE_VERIFICATION_GAS_MULTIPLIER
            if pre_verification_gas_multiplier is None
            else pre_verification_gas_multiplier
        )
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval

    def _transition(self, action: str, stage: RelayStage, level: int = logging.INFO, **fields: Any) -> None:
        detail = " ".join(f"{k}={v}" for k, v in fields.items())
        logger.log(
            level,
            f"[RELAY] {action} → {stage.value} {detail}".rstrip(),
            extra={"relay_action": action, "relay_stage": stage.value, **fields},
        )

    def execute(self, calls: Sequence[CallDescriptor], action: str = "call") -> RelayResult:
        """
        Run the four stages for ``calls`` and return the settlement hashes.

        Raises:
            EstimationFailed, SubmissionRejected, ReceiptTimeout, ReceiptFailed
        """
        try:
            account, user_op = self._build(calls)
            self._transition(action, RelayStage.BUILT, sender=account.address)

            stub = self._estimate(user_op)
            self._transition(
                action, RelayStage.GAS_ESTIMATED,
                preVerificationGas=user_op.pre_verification_gas,
                callGasLimit=user_op.call_gas_limit,
                verificationGasLimit=user_op.verification_gas_limit,
            )

            user_op_hash = self._submit(account, user_op, stub)
            self._transition(action, RelayStage.SUBMITTED, user_op_hash=user_op_hash)

            tx_hash = self._finalize(user_op_hash)
            self._transition(action, RelayStage.FINALIZED, tx_hash=tx_hash)
        except RelayError as e:
            self._transition(action, RelayStage.FAILED, level=logging.ERROR,
                             error=type(e).__name__, reason=e.message)
            raise

        return RelayResult(bundler_tx_hash=user_op_hash, sender=account.address, tx_hash=tx_hash)

    # ── Stages ──

    def _build(self, calls: Sequence[CallDescriptor]):
        if not calls:
            raise SubmissionRejected("No calls to submit")
        try:
            account = self.account_factory.create()
            user_op = account.build_user_operation(calls)
            fees = self.chain.estimate_fees_per_gas()
        except VaultBridgeError as e:
            raise SubmissionRejected(e.message)
        except (Web3Exception, EncodingError, ValueError) as e:
            raise SubmissionRejected(f"Could not build user operation: {e}")
        user_op.max_fee_per_gas = fees["maxFeePerGas"]
        user_op.max_priority_fee_per_gas = fees["maxPriorityFeePerGas"]
        return account, user_op

    def _estimate(self, user_op: UserOperation) -> Dict[str, Any]:
        try:
            stub = self.bundler.get_paymaster_stub_data(user_op.to_rpc())
        except BundlerRpcError as e:
            raise SubmissionRejected(f"Sponsorship denied: {e}")
        user_op.paymaster_and_data = _hex_bytes(stub.get("paymasterAndData"))

        try:
            estimate = self.bundler.estimate_user_operation_gas(user_op.to_rpc())
            adjusted = adjust_gas_estimate(estimate, self.multiplier)
        except (BundlerRpcError, KeyError) as e:
            raise EstimationFailed(str(e))

        user_op.pre_verification_gas = adjusted["preVerificationGas"]
        user_op.verification_gas_limit = adjusted.get("verificationGasLimit", user_op.verification_gas_limit)
        user_op.call_gas_limit = adjusted.get("callGasLimit", user_op.call_gas_limit)
        return stub

    def _submit(self, account, user_op: UserOperation, stub: Dict[str, Any]) -> str:
        try:
            if not stub.get("isFinal"):
                sponsored = self.bundler.get_paymaster_data(user_op.to_rpc())
                user_op.paymaster_and_data = _hex_bytes(sponsored.get("paymasterAndData"))
            signed = account.sign_user_operation(user_op)
            user_op_hash = self.bundler.send_user_operation(signed.to_rpc())
        except BundlerRpcError as e:
            raise SubmissionRejected(str(e))
        if not user_op_hash:
            raise SubmissionRejected("Bundler returned no user operation hash")
        return user_op_hash

    def _finalize(self, user_op_hash: str) -> str:
        try:
            receipt = self.bundler.wait_for_user_operation_receipt(
                user_op_hash,
                timeout=self.receipt_timeout,
                poll_interval=self.poll_interval,
            )
        except BundlerRpcError as e:
            raise ReceiptFailed(str(e))

        if receipt is None:
            raise ReceiptTimeout(f"No receipt for user operation {user_op_hash}")
        if receipt.get("success") is False:
            reason = receipt.get("reason") or "user operation reverted"
            raise ReceiptFailed(f"User operation {user_op_hash} failed: {reason}")

        tx_hash = (receipt.get("receipt") or {}).get("transactionHash")
        if not tx_hash:
            raise ReceiptFailed(f"Receipt for {user_op_hash} has no transaction hash")
        return tx_hash


def _hex_bytes(value: Optional[str]) -> bytes:
    if not value:
        return b""
    return bytes(Web3.to_bytes(hexstr=value))
