"""
Poseidon Hash — circomlib-compatible, BN254 scalar field.

The vault verifier recomputes identity and credential hashes inside the
circuit with circomlib's Poseidon, so the off-chain hash must match it
bit for bit: same field, same width, same round counts, same constants.

Parameters:
    - Field: BN254 scalar field Fr (the Groth16 curve order).
    - Width t = number of inputs + 1 (capacity element initialised to 0).
    - R_F = 8 full rounds, R_P from circomlib's table (56 for t=2, 57 for t=3).
    - S-box x^5.
    - Round constants and the Cauchy MDS matrix are derived with the Grain
      LFSR procedure of the Poseidon reference parameter script. A JSON
      export of the constants can be registered instead.

Usage:
    from zkvault.core.crypto.poseidon import poseidon_hash
    poseidon_hash([1, 2])
"""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Iterator, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════════

FIELD_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617
FIELD_BITS = 254
FULL_ROUNDS = 8
ALPHA = 5

# circomlib N_ROUNDS_P, indexed by t - 2
PARTIAL_ROUNDS = [56, 57, 56, 60, 60, 63, 64, 63, 60, 66, 60, 65, 70, 60, 64, 68]

_GRAIN_FIELD_PRIME = 1
_GRAIN_SBOX_POWER = 0


# ═══════════════════════════════════════════════════════════════════════════════
# PARAMETERS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PoseidonParams:
    """One Poseidon instance: width, round counts, MDS and round constants."""
    t: int
    R_F: int
    R_P: int
    alpha: int
    mds: List[List[int]]
    rc: List[int]  # flat, (R_F + R_P) * t

    def validate(self) -> None:
        if self.t < 2:
            raise ValueError("t must be >= 2")
        if self.R_F % 2 != 0:
            raise ValueError("R_F must be even")
        if len(self.mds) != self.t or any(len(row) != self.t for row in self.mds):
            raise ValueError("mds must be t x t")
        if len(self.rc) != (self.R_F + self.R_P) * self.t:
            raise ValueError(
                f"rc must hold (R_F+R_P)*t = {(self.R_F + self.R_P) * self.t} constants"
            )


_REGISTERED: Dict[int, PoseidonParams] = {}


def register_params(params: PoseidonParams) -> None:
    """Pin the parameter set used for width ``params.t``."""
    params.validate()
    _REGISTERED[params.t] = params


def _to_int(value: Union[int, str]) -> int:
    if isinstance(value, int):
        return value % FIELD_MODULUS
    text = str(value).strip().lower()
    if text.startswith("0x"):
        return int(text, 16) % FIELD_MODULUS
    return int(text) % FIELD_MODULUS


def load_params_json(path: str) -> List[PoseidonParams]:
    """
    Register parameter sets from a JSON export.

    Accepts one object or a list of objects of the form
    ``{"t", "R_F", "R_P", "alpha"?, "mds": [[..]], "rc": [..] | [[..]]}``.
    Values may be decimal strings, hex strings or numbers.
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)

    entries = raw if isinstance(raw, list) else [raw]
    loaded: List[PoseidonParams] = []
    for entry in entries:
        rc_raw = entry["rc"]
        if rc_raw and isinstance(rc_raw[0], list):
            rc_raw = [v for row in rc_raw for v in row]
        params = PoseidonParams(
            t=int(entry["t"]),
            R_F=int(entry["R_F"]),
            R_P=int(entry["R_P"]),
            alpha=int(entry.get("alpha", ALPHA)),
            mds=[[_to_int(v) for v in row] for row in entry["mds"]],
            rc=[_to_int(v) for v in rc_raw],
        )
        register_params(params)
        loaded.append(params)

    logger.info(f"[POSEIDON] Loaded {len(loaded)} parameter set(s) from {path}")
    return loaded


# ═══════════════════════════════════════════════════════════════════════════════
# GRAIN LFSR PARAMETER GENERATION
# ═══════════════════════════════════════════════════════════════════════════════

def _bits(value: int, width: int) -> List[int]:
    return [int(b) for b in bin(value)[2:].zfill(width)]


def _grain_stream(t: int, r_f: int, r_p: int) -> Iterator[int]:
    """Self-shrinking Grain LFSR seeded with the instance description."""
    seed = (
        _bits(_GRAIN_FIELD_PRIME, 2)
        + _bits(_GRAIN_SBOX_POWER, 4)
        + _bits(FIELD_BITS, 12)
        + _bits(t, 12)
        + _bits(r_f, 10)
        + _bits(r_p, 10)
        + [1] * 30
    )
    register = deque(seed)

    def clock() -> int:
        bit = (
            register[62] ^ register[51] ^ register[38]
            ^ register[23] ^ register[13] ^ register[0]
        )
        register.popleft()
        register.append(bit)
        return bit

    for _ in range(160):
        clock()

    while True:
        selector = clock()
        while selector == 0:
            clock()
            selector = clock()
        yield clock()


def _take_int(stream: Iterator[int], width: int) -> int:
    value = 0
    for _ in range(width):
        value = (value << 1) | next(stream)
    return value


def _cauchy_mds(stream: Iterator[int], t: int) -> List[List[int]]:
    while True:
        samples = [_take_int(stream, FIELD_BITS) % FIELD_MODULUS for _ in range(2 * t)]
        while len(set(samples)) != len(samples):
            samples = [_take_int(stream, FIELD_BITS) % FIELD_MODULUS for _ in range(2 * t)]
        xs, ys = samples[:t], samples[t:]
        if any((x + y) % FIELD_MODULUS == 0 for x in xs for y in ys):
            continue
        return [
            [pow((x + y) % FIELD_MODULUS, -1, FIELD_MODULUS) for y in ys]
            for x in xs
        ]


def generate_params(t: int) -> PoseidonParams:
    """Derive the reference parameter set for width ``t``."""
    if t < 2 or t - 2 >= len(PARTIAL_ROUNDS):
        raise ValueError(f"Unsupported Poseidon width t={t}")

    r_p = PARTIAL_ROUNDS[t - 2]
    stream = _grain_stream(t, FULL_ROUNDS, r_p)

    rc: List[int] = []
    for _ in range((FULL_ROUNDS + r_p) * t):
        value = _take_int(stream, FIELD_BITS)
        while value >= FIELD_MODULUS:
            value = _take_int(stream, FIELD_BITS)
        rc.append(value)

    mds = _cauchy_mds(stream, t)
    return PoseidonParams(t=t, R_F=FULL_ROUNDS, R_P=r_p, alpha=ALPHA, mds=mds, rc=rc)


@lru_cache(maxsize=None)
def _generated(t: int) -> PoseidonParams:
    params = generate_params(t)
    logger.debug(f"[POSEIDON] Generated parameters for t={t} (R_P={params.R_P})")
    return params


def get_params(t: int) -> PoseidonParams:
    if t in _REGISTERED:
        return _REGISTERED[t]
    return _generated(t)


# ═══════════════════════════════════════════════════════════════════════════════
# PERMUTATION
# ═══════════════════════════════════════════════════════════════════════════════

def _sbox(x: int, alpha: int) -> int:
    if alpha == 5:
        x2 = x * x % FIELD_MODULUS
        return x2 * x2 % FIELD_MODULUS * x % FIELD_MODULUS
    return pow(x, alpha, FIELD_MODULUS)


def poseidon_permute(state: Sequence[int], params: PoseidonParams) -> List[int]:
    """Full/partial/full round schedule over a width-t state."""
    t = params.t
    if len(state) != t:
        raise ValueError(f"state length {len(state)} != t={t}")

    half = params.R_F // 2
    x = [v % FIELD_MODULUS for v in state]
    for r in range(params.R_F + params.R_P):
        x = [(x[i] + params.rc[r * t + i]) % FIELD_MODULUS for i in range(t)]
        if r < half or r >= half + params.R_P:
            x = [_sbox(v, params.alpha) for v in x]
        else:
            x[0] = _sbox(x[0], params.alpha)
        x = [
            sum(params.mds[i][j] * x[j] for j in range(t)) % FIELD_MODULUS
            for i in range(t)
        ]
    return x


def poseidon_hash(inputs: Sequence[int], params: Optional[PoseidonParams] = None) -> int:
    """
    Hash 1..16 field elements the way circomlib's ``poseidon(inputs)`` does.

    Inputs are reduced modulo Fr; the state is ``[0, *inputs]`` and the
    output is ``state[0]`` after a single permutation.
    """
    if not inputs:
        raise ValueError("Poseidon needs at least one input")
    if len(inputs) > len(PARTIAL_ROUNDS):
        raise ValueError(f"Poseidon supports at most {len(PARTIAL_ROUNDS)} inputs")
    for value in inputs:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Poseidon inputs must be integers, got {type(value).__name__}")

    t = len(inputs) + 1
    params = params or get_params(t)
    if params.t != t:
        raise ValueError(f"Parameter width t={params.t} does not fit {len(inputs)} inputs")

    state = [0] + [v % FIELD_MODULUS for v in inputs]
    return poseidon_permute(state, params)[0]
