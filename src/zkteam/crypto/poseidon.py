"""
Poseidon hash over the BN254 scalar field.

This module provides the circuit-friendly hash used for nullifier hashes,
commitment hashes and Merkle nodes. Parameters follow the reference
Poseidon construction: x^5 S-box, 8 full rounds, width-dependent partial
rounds, round constants and a Cauchy MDS matrix drawn from the Grain LFSR.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterator, List, Sequence, Tuple

logger = logging.getLogger(__name__)

SNARK_SCALAR_FIELD = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)

FULL_ROUNDS = 8
# Partial rounds indexed by state width - 2.
PARTIAL_ROUNDS = [56, 57, 56, 60, 60, 63, 64, 63, 60, 66, 60, 65, 70, 60, 64, 68]

_FIELD_BITS = SNARK_SCALAR_FIELD.bit_length()


@dataclass(frozen=True)
class PoseidonParameters:
    """Round constants and MDS matrix for one state width."""

    width: int
    full_rounds: int
    partial_rounds: int
    round_constants: Tuple[int, ...]
    mds: Tuple[Tuple[int, ...], ...]


class GrainLFSR:
    """80-bit Grain LFSR used to sample Poseidon parameters."""

    def __init__(self, width: int, full_rounds: int, partial_rounds: int):
        bits: List[int] = []
        bits += self._to_bits(1, 2)  # prime field
        bits += self._to_bits(0, 4)  # x^alpha S-box
        bits += self._to_bits(_FIELD_BITS, 12)
        bits += self._to_bits(width, 12)
        bits += self._to_bits(full_rounds, 10)
        bits += self._to_bits(partial_rounds, 10)
        bits += [1] * 30

        # Bit i of the integer holds sequence position i.
        self._state = sum(bit << i for i, bit in enumerate(bits))
        for _ in range(160):
            self._clock()

    @staticmethod
    def _to_bits(value: int, length: int) -> List[int]:
        return [int(b) for b in bin(value)[2:].zfill(length)]

    def _clock(self) -> int:
        s = self._state
        new_bit = ((s >> 62) ^ (s >> 51) ^ (s >> 38) ^ (s >> 23) ^ (s >> 13) ^ s) & 1
        self._state = (s >> 1) | (new_bit << 79)
        return new_bit

    def bits(self) -> Iterator[int]:
        """Yield filtered output bits (self-shrinking generator)."""
        while True:
            selector = self._clock()
            while selector == 0:
                self._clock()
                selector = self._clock()
            yield self._clock()

    def random_bits(self, count: int) -> int:
        """Read ``count`` output bits as a big-endian integer."""
        source = self.bits()
        value = 0
        for _ in range(count):
            value = (value << 1) | next(source)
        return value

    def field_element(self) -> int:
        """Sample a field element by rejection."""
        while True:
            candidate = self.random_bits(_FIELD_BITS)
            if candidate < SNARK_SCALAR_FIELD:
                return candidate


@lru_cache(maxsize=None)
def get_parameters(width: int) -> PoseidonParameters:
    """Generate (once) the parameters for a state of ``width`` elements."""
    if width < 2 or width - 2 >= len(PARTIAL_ROUNDS):
        raise ValueError(f"Unsupported Poseidon width: {width}")

    partial_rounds = PARTIAL_ROUNDS[width - 2]
    lfsr = GrainLFSR(width, FULL_ROUNDS, partial_rounds)

    constant_count = (FULL_ROUNDS + partial_rounds) * width
    round_constants = tuple(lfsr.field_element() for _ in range(constant_count))

    while True:
        samples = [
            lfsr.random_bits(_FIELD_BITS) % SNARK_SCALAR_FIELD for _ in range(2 * width)
        ]
        if len(set(samples)) != len(samples):
            continue
        xs, ys = samples[:width], samples[width:]
        if any((x + y) % SNARK_SCALAR_FIELD == 0 for x in xs for y in ys):
            continue
        mds = tuple(
            tuple(pow(x + y, -1, SNARK_SCALAR_FIELD) for y in ys) for x in xs
        )
        break

    logger.debug(
        f"Generated Poseidon parameters for width {width} "
        f"({constant_count} round constants)"
    )
    return PoseidonParameters(
        width=width,
        full_rounds=FULL_ROUNDS,
        partial_rounds=partial_rounds,
        round_constants=round_constants,
        mds=mds,
    )


def poseidon(inputs: Sequence[int]) -> int:
    """Hash a sequence of field elements."""
    if not inputs:
        raise ValueError("Poseidon requires at least one input")

    p = SNARK_SCALAR_FIELD
    params = get_parameters(len(inputs) + 1)
    width = params.width
    constants = params.round_constants
    mds = params.mds
    half_full = params.full_rounds // 2
    total_rounds = params.full_rounds + params.partial_rounds

    state = [0] + [int(value) % p for value in inputs]

    for r in range(total_rounds):
        offset = r * width
        state = [(state[i] + constants[offset + i]) % p for i in range(width)]

        if r < half_full or r >= half_full + params.partial_rounds:
            state = [pow(x, 5, p) for x in state]
        else:
            state[0] = pow(state[0], 5, p)

        state = [
            sum(row[j] * state[j] for j in range(width)) % p for row in mds
        ]

    return state[0]


def poseidon1(a: int) -> int:
    return poseidon([a])


def poseidon2(a: int, b: int) -> int:
    return poseidon([a, b])


def poseidon3(a: int, b: int, c: int) -> int:
    return poseidon([a, b, c])
