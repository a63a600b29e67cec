import logging
from typing import Any, Dict, Optional, Sequence

from web3 import Web3
from web3.exceptions import TransactionNotFound

from zkvault.core.config import settings
from zkvault.core.errors import ChainReadError, NotFound
from zkvault.infrastructure.blockchain.contracts.abi import (
    ENTRY_POINT_ABI,
    ERC20_ABI,
    SMART_WALLET_FACTORY_ABI,
    get_contract,
)

logger = logging.getLogger(__name__)


class VaultChainService:
    """
    Read-side access to the chain-data provider: blocks, transactions,
    contract views and fee data. Writes go through the bundler instead.
    """

    def __init__(self, w3: Optional[Web3] = None):
        self.w3 = w3 or Web3(Web3.HTTPProvider(
            settings.RPC_URL,
            request_kwargs={"timeout": settings.HTTP_TIMEOUT_SECONDS},
        ))
        self.chain_id = settings.CHAIN_ID

    def is_connected(self) -> bool:
        return self.w3.is_connected()

    # ── Blocks & transactions ──

    def get_block_timestamp(self, block_number: int) -> int:
        try:
            block = self.w3.eth.get_block(block_number)
        except Exception as e:
            raise ChainReadError(f"Could not read block {block_number}: {e}")
        return int(block["timestamp"])

    def get_transaction(self, tx_hash: str) -> Dict[str, Any]:
        try:
            tx = self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            raise NotFound(f"Transaction {tx_hash} not found")
        except Exception as e:
            raise ChainReadError(f"Could not read transaction {tx_hash}: {e}")
        return dict(tx)

    def get_transaction_sender(self, tx_hash: str) -> str:
        return self.get_transaction(tx_hash)["from"]

    # ── Contract views ──

    def _view(self, address: str, abi: Sequence[Dict[str, Any]], name: str, *args: Any) -> Any:
        """``contract.functions.<name>(*args).call()``; any failure is a ChainReadError."""
        try:
            contract = get_contract(abi, address, w3=self.w3)
            return getattr(contract.functions, name)(*args).call()
        except Exception as e:
            raise ChainReadError(f"{name} on {address} failed: {e}")

    def token_balance_of(self, address: str, token: Optional[str] = None) -> int:
        """ERC-20 balanceOf on the settlement token (USDC by default)."""
        return int(self._view(
            token or settings.USDC_ADDRESS, ERC20_ABI, "balanceOf",
            Web3.to_checksum_address(address),
        ))

    def get_smart_account_address(self, owners: Sequence[bytes], nonce: int = 0) -> str:
        address = self._view(
            settings.SMART_ACCOUNT_FACTORY_ADDRESS, SMART_WALLET_FACTORY_ABI,
            "getAddress", list(owners), nonce,
        )
        return Web3.to_checksum_address(address)

    def get_entry_point_nonce(self, sender: str, key: int = 0) -> int:
        return int(self._view(
            settings.ENTRY_POINT_ADDRESS, ENTRY_POINT_ABI, "getNonce",
            Web3.to_checksum_address(sender), key,
        ))

    def is_deployed(self, address: str) -> bool:
        try:
            return len(self.w3.eth.get_code(Web3.to_checksum_address(address))) > 0
        except Exception as e:
            raise ChainReadError(f"Could not read code at {address}: {e}")

    # ── Fees ──

    def estimate_fees_per_gas(self) -> Dict[str, int]:
        """EIP-1559 fees: 1.2x the latest base fee plus the suggested tip."""
        try:
            base_fee = int(self.w3.eth.get_block("latest")["baseFeePerGas"])
            priority = int(self.w3.eth.max_priority_fee)
        except Exception as e:
            raise ChainReadError(f"Could not estimate fees: {e}")
        return {
            "maxFeePerGas": base_fee * 12 // 10 + priority,
            "maxPriorityFeePerGas": priority,
        }


# ── Singleton factory ──────────────────────────────────────────────────────────
_service_instance: Optional[VaultChainService] = None

def get_service() -> VaultChainService:
    """Lazy singleton bound to settings.RPC_URL."""
    global _service_instance
    if _service_instance is None:
        _service_instance = VaultChainService()
    return _service_instance
