from typing import List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

Coordinate = Union[str, int]


class Proof(BaseModel):
    pi_a: List[Coordinate]
    pi_b: List[List[Coordinate]]
    pi_c: List[Coordinate]
    protocol: str = "groth16"
    curve: str = "bn128"


class ProofInput(BaseModel):
    """Circuit inputs echoed by the proof backend alongside the proof."""
    model_config = ConfigDict(extra="allow")

    username_hash: Coordinate
    credential_hash: Coordinate
    nonce: Optional[Coordinate] = None
    result_hash: Optional[Coordinate] = None


class ZKProofObject(Proof):
    """snarkjs proof plus its public signals and circuit inputs."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    public_signals: List[Coordinate] = Field(default_factory=list, alias="publicSignals")
    input: ProofInput


class FormattedProof(BaseModel):
    """Proof points in the verifier's calldata layout."""
    pi_a: List[int]
    pi_b: List[List[int]]
    pi_c: List[int]
