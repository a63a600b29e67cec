"""
Contract ABIs — vault, ERC-20, ERC-4337 EntryPoint and Coinbase Smart Wallet.

Calldata goes through web3 contract objects built on a provider-less
Web3 instance, so encoding never needs a live node. The vault ABI ships with the
package and can be replaced with the deployed artifact via VAULT_ABI_PATH.
"""

import json
import os
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence

from web3 import Web3

from zkvault.core.config import settings

_DEFAULT_VAULT_ABI = os.path.join(os.path.dirname(__file__), "vault_abi.json")


ERC20_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "balance", "type": "uint256"}],
    },
]

ENTRY_POINT_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "getNonce",
        "stateMutability": "view",
        "inputs": [
            {"name": "sender", "type": "address"},
            {"name": "key", "type": "uint192"},
        ],
        "outputs": [{"name": "nonce", "type": "uint256"}],
    },
]

SMART_WALLET_FACTORY_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "getAddress",
        "stateMutability": "view",
        "inputs": [
            {"name": "owners", "type": "bytes[]"},
            {"name": "nonce", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function",
        "name": "createAccount",
        "stateMutability": "payable",
        "inputs": [
            {"name": "owners", "type": "bytes[]"},
            {"name": "nonce", "type": "uint256"},
        ],
        "outputs": [{"name": "account", "type": "address"}],
    },
]

SMART_WALLET_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "execute",
        "stateMutability": "payable",
        "inputs": [
            {"name": "target", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "data", "type": "bytes"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "executeBatch",
        "stateMutability": "payable",
        "inputs": [
            {
                "name": "calls",
                "type": "tuple[]",
                "components": [
                    {"name": "target", "type": "address"},
                    {"name": "value", "type": "uint256"},
                    {"name": "data", "type": "bytes"},
                ],
            },
        ],
        "outputs": [],
    },
]


@lru_cache(maxsize=4)
def load_vault_abi(path: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Load the vault ABI.

    Accepts either a bare ABI list or a compiler artifact with an "abi" key.
    """
    abi_path = path or settings.VAULT_ABI_PATH or _DEFAULT_VAULT_ABI
    with open(abi_path, "r") as f:
        contract_json = json.load(f)
    if isinstance(contract_json, dict):
        return contract_json["abi"]
    return contract_json


# Provider-less instance used only for calldata; never sends a request.
_OFFLINE = Web3()


def get_contract(abi: Sequence[Dict[str, Any]], address: Optional[str] = None, w3: Optional[Web3] = None):
    """web3 contract bound to ``address`` (or an unbound factory for encoding)."""
    w3 = w3 or _OFFLINE
    if address:
        return w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
    return w3.eth.contract(abi=abi)


def encode_call(abi: Sequence[Dict[str, Any]], name: str, args: Sequence[Any]) -> bytes:
    """Selector + ABI-encoded arguments, through the contract's encode_abi."""
    return bytes(Web3.to_bytes(hexstr=get_contract(abi).encode_abi(name, args=list(args))))


def find_entry(abi: Sequence[Dict[str, Any]], name: str, kind: str = "function") -> Dict[str, Any]:
    for entry in abi:
        if entry.get("type") == kind and entry.get("name") == name:
            return entry
    raise KeyError(f"{kind} '{name}' not found in ABI")


def event_topic(entry: Dict[str, Any]) -> str:
    """topic0 of an event entry. Vault events only carry elementary types."""
    types = ",".join(i["type"] for i in entry["inputs"])
    return Web3.to_hex(Web3.keccak(text=f"{entry['name']}({types})"))
