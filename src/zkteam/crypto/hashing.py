"""
Hash functions and utilities for zkteam.

Poseidon is the hash shared with the external prover; keccak-256 is the
ledger's native digest and only enters the circuit after being re-hashed
with Poseidon.
"""

import logging
from typing import Union

from eth_utils import keccak

from .poseidon import SNARK_SCALAR_FIELD, poseidon1, poseidon2, poseidon3

logger = logging.getLogger(__name__)


def to_field(value: Union[int, bytes]) -> int:
    """Interpret ``value`` (int or big-endian bytes) as a field element."""
    if isinstance(value, (bytes, bytearray)):
        value = int.from_bytes(value, byteorder="big")
    if value < 0:
        raise ValueError("Field elements must be non-negative")
    return value % SNARK_SCALAR_FIELD


class PoseidonHasher:
    """Poseidon hasher with protocol-specific helpers."""

    @staticmethod
    def nullifier_hash(nullifier: int) -> int:
        """H1(nullifier): revealed on-chain when a step is consumed."""
        return poseidon1(nullifier)

    @staticmethod
    def commitment_hash(nullifier: int, secret: int, allowance: int) -> int:
        """H3(nullifier, secret, allowance): the Merkle leaf for a step."""
        return poseidon3(nullifier, secret, allowance)

    @staticmethod
    def node_hash(left: int, right: int) -> int:
        """H2(left, right): inner Merkle node."""
        return poseidon2(left, right)

    @staticmethod
    def keccak256(data: bytes) -> bytes:
        """Ledger-native digest."""
        return keccak(data)

    @staticmethod
    def call_data_hash(call_data: bytes) -> int:
        """
        Circuit-compatible digest of operation call data.

        The circuit cannot ingest a raw keccak digest, so the keccak value is
        folded through Poseidon.

        Args:
            call_data: Encoded call data of the operation

        Returns:
            Field element binding the proof to the call data
        """
        digest = int.from_bytes(keccak(call_data), byteorder="big")
        return poseidon1(digest)


def get_nullifier_hash(nullifier: int) -> int:
    return PoseidonHasher.nullifier_hash(nullifier)


def get_commitment_hash(nullifier: int, secret: int, allowance: int) -> int:
    return PoseidonHasher.commitment_hash(nullifier, secret, allowance)
