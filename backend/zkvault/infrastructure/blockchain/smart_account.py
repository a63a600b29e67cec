"""
Ephemeral Smart Account — disposable owner key per sponsored call.

Each relay request generates a fresh secp256k1 key and uses it as the sole
owner of a counterfactual Coinbase Smart Wallet. The wallet is never
funded (the paymaster sponsors gas) and the key is dropped with the
request, so no privileged key lives in the service.

User operations follow the EntryPoint v0.6 layout. The owner signs the raw
user operation hash and the signature is wrapped as
``abi.encode((uint8 ownerIndex, bytes signatureData))``.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence

from eth_abi import encode
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from zkvault.core.config import settings
from zkvault.infrastructure.blockchain.contracts.abi import (
    SMART_WALLET_ABI,
    SMART_WALLET_FACTORY_ABI,
    encode_call,
)

logger = logging.getLogger(__name__)

# Stub ECDSA signature with the right length and recovery byte, used while
# estimating gas before the operation can be signed.
STUB_ECDSA_SIGNATURE = bytes.fromhex(
    "fffffffffffffffffffffffffffffff0000000000000000000000000000000007"
    "aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa1c"
)


@dataclass(frozen=True)
class CallDescriptor:
    """One contract call executed by the smart account."""
    to: str
    data: bytes
    value: int = 0


@dataclass
class UserOperation:
    """EntryPoint v0.6 user operation."""
    sender: str
    nonce: int
    init_code: bytes
    call_data: bytes
    call_gas_limit: int = 0
    verification_gas_limit: int = 0
    pre_verification_gas: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0
    paymaster_and_data: bytes = b""
    signature: bytes = b""

    def to_rpc(self) -> Dict[str, str]:
        """Hex-encoded form used by the bundler JSON-RPC API."""
        return {
            "sender": self.sender,
            "nonce": hex(self.nonce),
            "initCode": Web3.to_hex(self.init_code),
            "callData": Web3.to_hex(self.call_data),
            "callGasLimit": hex(self.call_gas_limit),
            "verificationGasLimit": hex(self.verification_gas_limit),
            "preVerificationGas": hex(self.pre_verification_gas),
            "maxFeePerGas": hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
            "paymasterAndData": Web3.to_hex(self.paymaster_and_data),
            "signature": Web3.to_hex(self.signature),
        }

    def packed_hash(self) -> bytes:
        packed = encode(
            ["address", "uint256", "bytes32", "bytes32", "uint256", "uint256",
             "uint256", "uint256", "uint256", "bytes32"],
            [
                Web3.to_checksum_address(self.sender),
                self.nonce,
                Web3.keccak(self.init_code),
                Web3.keccak(self.call_data),
                self.call_gas_limit,
                self.verification_gas_limit,
                self.pre_verification_gas,
                self.max_fee_per_gas,
                self.max_priority_fee_per_gas,
                Web3.keccak(self.paymaster_and_data),
            ],
        )
        return bytes(Web3.keccak(packed))

    def hash(self, entry_point: str, chain_id: int) -> bytes:
        """getUserOpHash as computed by the EntryPoint."""
        return bytes(Web3.keccak(encode(
            ["bytes32", "address", "uint256"],
            [self.packed_hash(), Web3.to_checksum_address(entry_point), chain_id],
        )))


def wrap_signature(signature: bytes, owner_index: int = 0) -> bytes:
    return encode(["(uint8,bytes)"], [(owner_index, signature)])


def owner_bytes(address: str) -> bytes:
    """Coinbase Smart Wallet owners are abi-encoded addresses."""
    return encode(["address"], [Web3.to_checksum_address(address)])


@dataclass
class EphemeralSmartAccount:
    owner: LocalAccount
    address: str
    init_code: bytes
    nonce: int
    entry_point: str = field(default_factory=lambda: settings.ENTRY_POINT_ADDRESS)
    chain_id: int = field(default_factory=lambda: settings.CHAIN_ID)

    def encode_calls(self, calls: Sequence[CallDescriptor]) -> bytes:
        if len(calls) == 1:
            call = calls[0]
            return encode_call(
                SMART_WALLET_ABI, "execute",
                [Web3.to_checksum_address(call.to), call.value, call.data],
            )
        return encode_call(
            SMART_WALLET_ABI, "executeBatch",
            [[(Web3.to_checksum_address(c.to), c.value, c.data) for c in calls]],
        )

    def stub_signature(self) -> bytes:
        return wrap_signature(STUB_ECDSA_SIGNATURE)

    def build_user_operation(self, calls: Sequence[CallDescriptor]) -> UserOperation:
        return UserOperation(
            sender=self.address,
            nonce=self.nonce,
            init_code=self.init_code,
            call_data=self.encode_calls(calls),
            signature=self.stub_signature(),
        )

    def sign_user_operation(self, user_op: UserOperation) -> UserOperation:
        op_hash = user_op.hash(self.entry_point, self.chain_id)
        signed = self.owner.unsafe_sign_hash(op_hash)
        return replace(user_op, signature=wrap_signature(bytes(signed.signature)))


class SmartAccountFactory:
    """Creates one disposable Coinbase Smart Wallet per relay request."""

    def __init__(self, chain, factory_address: Optional[str] = None):
        self.chain = chain
        self.factory_address = factory_address or settings.SMART_ACCOUNT_FACTORY_ADDRESS

    def create(self) -> EphemeralSmartAccount:
        owner = Account.create()
        owners: List[bytes] = [owner_bytes(owner.address)]
        address = self.chain.get_smart_account_address(owners, 0)

        init_code = b""
        if not self.chain.is_deployed(address):
            init_code = bytes.fromhex(self.factory_address[2:]) + encode_call(
                SMART_WALLET_FACTORY_ABI, "createAccount", [owners, 0],
            )

        nonce = self.chain.get_entry_point_nonce(address, 0)
        logger.debug(f"[ACCOUNT] Ephemeral smart account {address} (owner {owner.address})")
        return EphemeralSmartAccount(
            owner=owner,
            address=address,
            init_code=init_code,
            nonce=nonce,
        )
