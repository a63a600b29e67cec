"""
Event Decoder — raw vault logs → typed ledger events.

Only the four events mirrored into the ledger are decoded; every other
signature (proxy upgrades, role grants, initializers, foreign contracts)
comes back as UNRECOGNIZED, which callers treat as a skip.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from eth_abi import decode
from web3 import Web3

from zkvault.core.errors import EventDecodeError
from zkvault.infrastructure.blockchain.contracts.abi import event_topic, load_vault_abi

logger = logging.getLogger(__name__)


class _Unrecognized:
    """Sentinel for logs this service does not mirror."""

    _instance: Optional["_Unrecognized"] = None

    def __new__(cls) -> "_Unrecognized":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNRECOGNIZED"

    def __bool__(self) -> bool:
        return False


UNRECOGNIZED = _Unrecognized()


# ═══════════════════════════════════════════════════════════════════════════════
# TYPED EVENTS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Deposited:
    username_hash: int
    amount: int


@dataclass(frozen=True)
class Paid:
    from_username_hash: int
    to_username_hash: int
    amount: int


@dataclass(frozen=True)
class Withdrawn:
    from_username_hash: int
    to_user_address: str
    amount: int


@dataclass(frozen=True)
class Registered:
    username_hash: int
    credential_hash: int


VaultEvent = Union[Deposited, Paid, Withdrawn, Registered]

# event name → (typed class, {abi argument name: field name})
MIRRORED_EVENTS: Dict[str, tuple] = {
    "Deposited": (Deposited, {"usernameHash": "username_hash", "amount": "amount"}),
    "Paid": (Paid, {
        "fromUsernameHash": "from_username_hash",
        "toUsernameHash": "to_username_hash",
        "amount": "amount",
    }),
    "Withdrawn": (Withdrawn, {
        "fromUsernameHash": "from_username_hash",
        "toUserAddress": "to_user_address",
        "amount": "amount",
    }),
    "Registered": (Registered, {
        "usernameHash": "username_hash",
        "credentialHash": "credential_hash",
    }),
}


def _to_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not value or value == "0x":
        return b""
    return bytes(Web3.to_bytes(hexstr=value))


def _normalize_topic(topic: Union[str, bytes]) -> str:
    return Web3.to_hex(_to_bytes(topic)).lower()


class EventDecoder:
    """Decodes vault logs using the event entries of the vault ABI."""

    def __init__(self, abi: Optional[Sequence[Dict[str, Any]]] = None):
        abi = abi if abi is not None else load_vault_abi()
        self._by_topic: Dict[str, Dict[str, Any]] = {}
        for entry in abi:
            if entry.get("type") == "event" and entry.get("name") in MIRRORED_EVENTS:
                self._by_topic[event_topic(entry).lower()] = entry

    @property
    def topics(self) -> Dict[str, str]:
        return {entry["name"]: topic for topic, entry in self._by_topic.items()}

    def decode(self, raw_log: Dict[str, Any]) -> Union[VaultEvent, _Unrecognized]:
        """
        Decode one ``{address, topics, data}`` log.

        Returns:
            A typed event, or UNRECOGNIZED for anything not mirrored.

        Raises:
            EventDecodeError: signature matched but the payload is malformed.
        """
        topics: List[Any] = raw_log.get("topics") or []
        if not topics:
            return UNRECOGNIZED

        entry = self._by_topic.get(_normalize_topic(topics[0]))
        if entry is None:
            return UNRECOGNIZED

        name = entry["name"]
        indexed = [i for i in entry["inputs"] if i.get("indexed")]
        plain = [i for i in entry["inputs"] if not i.get("indexed")]

        if len(topics) - 1 != len(indexed):
            raise EventDecodeError(
                f"{name}: expected {len(indexed)} indexed topics, got {len(topics) - 1}"
            )

        values: Dict[str, Any] = {}
        try:
            for param, topic in zip(indexed, topics[1:]):
                values[param["name"]] = decode([param["type"]], _to_bytes(topic))[0]
            decoded = decode([p["type"] for p in plain], _to_bytes(raw_log.get("data") or "0x"))
            for param, value in zip(plain, decoded):
                values[param["name"]] = value
        except Exception as e:
            raise EventDecodeError(f"{name}: could not decode payload: {e}")

        event_cls, field_map = MIRRORED_EVENTS[name]
        try:
            kwargs = {field_name: values[arg] for arg, field_name in field_map.items()}
        except KeyError as e:
            raise EventDecodeError(f"{name}: ABI is missing argument {e}")

        if "to_user_address" in kwargs:
            kwargs["to_user_address"] = Web3.to_checksum_address(kwargs["to_user_address"])
        return event_cls(**kwargs)
