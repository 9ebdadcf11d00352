"""Cryptographic primitives: Poseidon, allowance encryption, Merkle trees, secp256k1 keys."""

from .encryption import (
    MAXIMUM_ALLOWANCE,
    ZERO_ALLOWANCE,
    DecryptedAllowance,
    decrypt_allowance,
    encrypt_allowance,
)
from .hashing import PoseidonHasher, get_commitment_hash, get_nullifier_hash
from .merkle import TREE_DEPTH, CommitmentTree, IncrementalMerkleTree, MerkleProof
from .poseidon import SNARK_SCALAR_FIELD, poseidon, poseidon1, poseidon2, poseidon3
from .signatures import PrivateKey, PublicKey

__all__ = [
    "MAXIMUM_ALLOWANCE",
    "ZERO_ALLOWANCE",
    "DecryptedAllowance",
    "decrypt_allowance",
    "encrypt_allowance",
    "PoseidonHasher",
    "get_commitment_hash",
    "get_nullifier_hash",
    "TREE_DEPTH",
    "CommitmentTree",
    "IncrementalMerkleTree",
    "MerkleProof",
    "SNARK_SCALAR_FIELD",
    "poseidon",
    "poseidon1",
    "poseidon2",
    "poseidon3",
    "PrivateKey",
    "PublicKey",
]
