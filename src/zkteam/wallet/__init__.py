"""Hierarchical key derivation for allowance chains."""

from .key_derivation import (
    ExtendedKey,
    Triplet,
    derive_nullifier,
    derive_user_key,
    generate_triplet,
    parse_path,
)

__all__ = [
    "ExtendedKey",
    "Triplet",
    "derive_nullifier",
    "derive_user_key",
    "generate_triplet",
    "parse_path",
]
