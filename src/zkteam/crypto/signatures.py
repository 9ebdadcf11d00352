"""
secp256k1 key primitives for hierarchical derivation.

Only what BIP32 child derivation needs lives here: private keys from raw
bytes and compressed public key serialization.
"""

import logging
from dataclasses import dataclass

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

logger = logging.getLogger(__name__)

SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


@dataclass(frozen=True)
class PrivateKey:
    """Immutable secp256k1 private key."""

    _key: ec.EllipticCurvePrivateKey

    def __post_init__(self) -> None:
        if not isinstance(self._key.curve, ec.SECP256K1):
            raise ValueError("Private key must use secp256k1 curve")

    @classmethod
    def from_bytes(cls, key_bytes: bytes) -> "PrivateKey":
        """Create a private key from 32 raw bytes."""
        if len(key_bytes) != 32:
            raise ValueError("Private key must be exactly 32 bytes")

        value = int.from_bytes(key_bytes, byteorder="big")
        if value == 0 or value >= SECP256K1_ORDER:
            raise ValueError("Private key out of range for secp256k1")

        return cls(ec.derive_private_key(value, ec.SECP256K1()))

    def to_bytes(self) -> bytes:
        private_value = self._key.private_numbers().private_value
        return private_value.to_bytes(32, byteorder="big")

    def get_public_key(self) -> "PublicKey":
        return PublicKey(self._key.public_key())


@dataclass(frozen=True)
class PublicKey:
    """Immutable secp256k1 public key."""

    _key: ec.EllipticCurvePublicKey

    def to_bytes(self, compressed: bool = True) -> bytes:
        encoding = (
            PublicFormat.CompressedPoint
            if compressed
            else PublicFormat.UncompressedPoint
        )
        return self._key.public_bytes(Encoding.X962, encoding)
