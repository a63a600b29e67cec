"""
Field Hasher — username and credential fingerprints.

Maps UTF-8 strings onto BN254 field elements and hashes them with
circomlib-compatible Poseidon, exactly as the registration and payment
circuits do:

    identity_hash(u)        = Poseidon(field(u))
    credential_hash(u, p)   = Poseidon(field(u), field(p))
    result_hash(c, nonce)   = Poseidon(c, nonce)

The identity hash is the public lookup key for balances, history and
events. The credential hash is the secret proven in zero knowledge.
"""

from typing import Union

from zkvault.core.crypto.poseidon import poseidon_hash


def str_to_field(text: str) -> int:
    """
    Big-endian byte accumulation of the UTF-8 encoding.

    Not reduced modulo the field prime; Poseidon reduces its inputs.
    """
    if not isinstance(text, str):
        raise ValueError(f"Expected str, got {type(text).__name__}")
    result = 0
    for byte in text.encode("utf-8"):
        result = (result << 8) + byte
    return result


def identity_hash(username: str) -> int:
    return poseidon_hash([str_to_field(username)])


def credential_hash(username: str, password: str) -> int:
    return poseidon_hash([str_to_field(username), str_to_field(password)])


def result_hash(credential: Union[int, str], nonce: Union[int, str]) -> int:
    """Binds a credential hash to a one-time nonce for pay/withdraw proofs."""
    return poseidon_hash([int(credential), int(nonce)])
