"""
ZK Vault Cryptographic Primitives.

Public API:
    - poseidon_hash:     circomlib-compatible Poseidon over BN254 Fr.
    - str_to_field:      UTF-8 string → field element (big-endian bytes).
    - identity_hash:     Poseidon(username) — public lookup key.
    - credential_hash:   Poseidon(username, password) — proven secret.
    - result_hash:       Poseidon(credential_hash, nonce).
"""

from zkvault.core.crypto.field_hasher import (
    credential_hash,
    identity_hash,
    result_hash,
    str_to_field,
)
from zkvault.core.crypto.poseidon import FIELD_MODULUS, poseidon_hash

__all__ = [
    "FIELD_MODULUS",
    "poseidon_hash",
    "str_to_field",
    "identity_hash",
    "credential_hash",
    "result_hash",
]
