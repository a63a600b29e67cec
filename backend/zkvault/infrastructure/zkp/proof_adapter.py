"""
Proof Adapter — snarkjs proof → Solidity verifier calldata layout.

snarkjs emits Groth16 points in projective form and G2 coordinates in
(c0, c1) order. The generated Solidity verifier expects:

    pi_a: [x, y]                      (projective "1" dropped)
    pi_b: [[x.c1, x.c0], [y.c1, y.c0]] (Fp2 coordinates swapped)
    pi_c: [x, y]

A wrong pi_b order is not a decode error: the pairing check simply fails
on-chain. Shape problems are rejected here with MalformedProof.
"""

from typing import Any, Dict, List, Sequence, Union

from pydantic import ValidationError

from zkvault.core.errors import MalformedProof
from zkvault.schemas.zkp import FormattedProof, Proof, ZKProofObject


def parse_proof(raw: Union[Dict[str, Any], ZKProofObject]) -> ZKProofObject:
    """Validate the proof backend's JSON at the API boundary."""
    if isinstance(raw, ZKProofObject):
        return raw
    if not isinstance(raw, dict):
        raise MalformedProof("Proof must be a JSON object")
    try:
        return ZKProofObject.model_validate(raw)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise MalformedProof(f"Invalid proof object: {fields}")


def _coordinate(value: Any, path: str) -> int:
    if isinstance(value, bool):
        raise MalformedProof(f"{path} is not a field element")
    try:
        if isinstance(value, str) and value.lower().startswith("0x"):
            number = int(value, 16)
        else:
            number = int(value)
    except (TypeError, ValueError):
        raise MalformedProof(f"{path} is not a field element: {value!r}")
    if not 0 <= number < 2 ** 256:
        raise MalformedProof(f"{path} does not fit in uint256")
    return number


def _pair(values: Sequence[Any], path: str) -> List[int]:
    if not isinstance(values, (list, tuple)) or len(values) < 2:
        raise MalformedProof(f"{path} needs at least 2 coordinates")
    return [_coordinate(values[0], f"{path}[0]"), _coordinate(values[1], f"{path}[1]")]


def format_proof(proof: Union[Proof, Dict[str, Any]]) -> FormattedProof:
    """
    Reorder proof points for the on-chain verifier.

    Args:
        proof: A Proof model, or a dict with pi_a / pi_b / pi_c.

    Returns:
        FormattedProof with integer coordinates.

    Raises:
        MalformedProof: if any group is missing, short or non-numeric.
    """
    if isinstance(proof, Proof):
        pi_a, pi_b, pi_c = proof.pi_a, proof.pi_b, proof.pi_c
    elif isinstance(proof, dict):
        missing = [k for k in ("pi_a", "pi_b", "pi_c") if k not in proof]
        if missing:
            raise MalformedProof(f"Proof is missing {', '.join(missing)}")
        pi_a, pi_b, pi_c = proof["pi_a"], proof["pi_b"], proof["pi_c"]
    else:
        raise MalformedProof("Proof must be a JSON object")

    if not isinstance(pi_b, (list, tuple)) or len(pi_b) < 2:
        raise MalformedProof("pi_b needs at least 2 coordinate pairs")

    b0 = _pair(pi_b[0], "pi_b[0]")
    b1 = _pair(pi_b[1], "pi_b[1]")

    return FormattedProof(
        pi_a=_pair(pi_a, "pi_a"),
        pi_b=[[b0[1], b0[0]], [b1[1], b1[0]]],
        pi_c=_pair(pi_c, "pi_c"),
    )
