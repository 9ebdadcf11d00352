"""
Hierarchical deterministic key derivation for allowance chains.

This module implements BIP32 private derivation on secp256k1 and the
triplet layout used by the allowance protocol: at chain step ``i`` the
children ``i/0``, ``i/1``, ``i/2`` and ``i/3`` give the commitment secret,
the nullifier, the envelope key and the envelope nonce.

The administrator's root derives one hardened user root per
``(account index, user index)``; a user holding that key can walk its own
chain but cannot reach any sibling chain.
"""

import hashlib
import hmac
import logging
import secrets
import unicodedata
from dataclasses import dataclass
from typing import List, Tuple

from cryptography.hazmat.primitives import hashes

from ..crypto.signatures import SECP256K1_ORDER, PrivateKey
from ..errors import KeyDerivationError

logger = logging.getLogger(__name__)

HARDENED_OFFSET = 0x80000000
XPRV_VERSION = bytes.fromhex("0488ade4")
SERIALIZED_LENGTH = 78
CHECKSUM_LENGTH = 4


def _checksum(payload: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(payload).digest()).digest()[:CHECKSUM_LENGTH]


def parse_path(path: str) -> Tuple[bool, List[int]]:
    """
    Parse a derivation path.

    Args:
        path: ``m/0/1'`` (absolute) or ``3/0`` (relative); ``'`` or ``h`` marks hardened

    Returns:
        Tuple of (is_absolute, child numbers)
    """
    components = path.strip().split("/")
    absolute = components[0] == "m"
    if absolute:
        components = components[1:]

    indices = []
    for component in components:
        if component == "":
            raise KeyDerivationError(f"Invalid derivation path: {path!r}")
        hardened = component.endswith(("'", "h", "H"))
        digits = component[:-1] if hardened else component
        if not digits.isdigit():
            raise KeyDerivationError(f"Invalid path component {component!r} in {path!r}")
        index = int(digits)
        if index >= HARDENED_OFFSET:
            raise KeyDerivationError(f"Path index {index} out of range in {path!r}")
        indices.append(index + HARDENED_OFFSET if hardened else index)

    return absolute, indices


@dataclass(frozen=True)
class ExtendedKey:
    """Extended private key (BIP32)."""

    key: bytes
    chain_code: bytes
    depth: int = 0
    parent_fingerprint: bytes = b"\x00\x00\x00\x00"
    child_number: int = 0

    def __post_init__(self):
        """Validate extended key."""
        if len(self.key) != 32:
            raise KeyDerivationError("Key must be 32 bytes")
        if len(self.chain_code) != 32:
            raise KeyDerivationError("Chain code must be 32 bytes")
        if len(self.parent_fingerprint) != 4:
            raise KeyDerivationError("Parent fingerprint must be 4 bytes")
        if self.depth < 0 or self.depth > 255:
            raise KeyDerivationError("Depth must be between 0 and 255")
        if self.child_number < 0 or self.child_number > 0xFFFFFFFF:
            raise KeyDerivationError("Child number must fit in 32 bits")

    @classmethod
    def from_seed(cls, seed: bytes) -> "ExtendedKey":
        """Derive the master key from a seed (HMAC-SHA512, BIP32)."""
        if len(seed) < 16 or len(seed) > 64:
            raise KeyDerivationError("Seed must be between 16 and 64 bytes")

        digest = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        return cls(key=digest[:32], chain_code=digest[32:])

    @classmethod
    def from_mnemonic(cls, mnemonic: str, passphrase: str = "") -> "ExtendedKey":
        """Master key from a BIP39 phrase (seed stretching only, no wordlist check)."""
        normalized = unicodedata.normalize("NFKD", " ".join(mnemonic.split()))
        salt = unicodedata.normalize("NFKD", "mnemonic" + passphrase)
        seed = hashlib.pbkdf2_hmac(
            "sha512", normalized.encode("utf-8"), salt.encode("utf-8"), 2048
        )
        return cls.from_seed(seed)

    @classmethod
    def random(cls) -> "ExtendedKey":
        return cls.from_seed(secrets.token_bytes(64))

    def to_private_key(self) -> PrivateKey:
        return PrivateKey.from_bytes(self.key)

    def fingerprint(self) -> bytes:
        """BIP32 fingerprint: first 4 bytes of HASH160 of the compressed public key."""
        public_key = self.to_private_key().get_public_key().to_bytes()
        digest = hashes.Hash(hashes.RIPEMD160())
        digest.update(hashlib.sha256(public_key).digest())
        return digest.finalize()[:4]

    def derive_child(self, index: int) -> "ExtendedKey":
        """Derive the child at ``index`` (hardened when >= 2^31)."""
        if index < 0 or index > 0xFFFFFFFF:
            raise KeyDerivationError(f"Child index {index} out of range")

        if index >= HARDENED_OFFSET:
            data = b"\x00" + self.key + index.to_bytes(4, "big")
        else:
            public_key = self.to_private_key().get_public_key().to_bytes()
            data = public_key + index.to_bytes(4, "big")

        digest = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        tweak = int.from_bytes(digest[:32], "big")
        child_value = (tweak + int.from_bytes(self.key, "big")) % SECP256K1_ORDER
        if tweak >= SECP256K1_ORDER or child_value == 0:
            raise KeyDerivationError(f"Invalid child key at index {index}")

        return ExtendedKey(
            key=child_value.to_bytes(32, "big"),
            chain_code=digest[32:],
            depth=self.depth + 1,
            parent_fingerprint=self.fingerprint(),
            child_number=index,
        )

    def derive_path(self, path: str) -> "ExtendedKey":
        """Derive along ``path``; absolute paths require a master key."""
        absolute, indices = parse_path(path)
        if absolute and self.depth != 0:
            raise KeyDerivationError(
                f"Cannot derive absolute path {path!r} from a key at depth {self.depth}"
            )

        node = self
        for index in indices:
            node = node.derive_child(index)
        return node

    def to_bytes(self) -> bytes:
        """78-byte BIP32 serialization."""
        return (
            XPRV_VERSION
            + bytes([self.depth])
            + self.parent_fingerprint
            + self.child_number.to_bytes(4, "big")
            + self.chain_code
            + b"\x00"
            + self.key
        )

    def to_hex(self) -> str:
        """Hex serialization with a double-SHA256 checksum."""
        payload = self.to_bytes()
        return (payload + _checksum(payload)).hex()

    @classmethod
    def from_hex(cls, serialized: str) -> "ExtendedKey":
        """Parse the output of ``to_hex``."""
        try:
            raw = bytes.fromhex(serialized.removeprefix("0x"))
        except ValueError as e:
            raise KeyDerivationError("Extended key is not valid hex", cause=e) from e

        if len(raw) != SERIALIZED_LENGTH + CHECKSUM_LENGTH:
            raise KeyDerivationError("Extended key has the wrong length")

        payload, checksum = raw[:SERIALIZED_LENGTH], raw[SERIALIZED_LENGTH:]
        if _checksum(payload) != checksum:
            raise KeyDerivationError("Extended key checksum mismatch")
        if payload[:4] != XPRV_VERSION:
            raise KeyDerivationError("Extended key is not a private key")
        if payload[45] != 0:
            raise KeyDerivationError("Malformed private key padding")

        return cls(
            key=payload[46:78],
            chain_code=payload[13:45],
            depth=payload[4],
            parent_fingerprint=payload[5:9],
            child_number=int.from_bytes(payload[9:13], "big"),
        )

    def __repr__(self) -> str:
        return (
            f"ExtendedKey(depth={self.depth}, child_number={self.child_number}, "
            f"fingerprint={self.fingerprint().hex()})"
        )


@dataclass(frozen=True)
class Triplet:
    """Secret material for one chain step."""

    secret: int
    nullifier: int
    key: bytes
    nonce: bytes


def generate_triplet(root: ExtendedKey, step: int) -> Triplet:
    """Derive the triplet at chain ``step`` below ``root``."""
    if step < 0:
        raise KeyDerivationError(f"Chain step must be non-negative, got {step}")

    node = root.derive_child(step)
    return Triplet(
        secret=int.from_bytes(node.derive_child(0).key, "big"),
        nullifier=int.from_bytes(node.derive_child(1).key, "big"),
        key=node.derive_child(2).key,
        nonce=node.derive_child(3).key[:24],
    )


def derive_nullifier(root: ExtendedKey, step: int) -> int:
    """Nullifier alone at chain ``step``."""
    return int.from_bytes(root.derive_child(step).derive_child(1).key, "big")


def derive_user_key(
    admin_root: ExtendedKey, account_index: int, user_index: int
) -> ExtendedKey:
    """User root at ``m/{account_index}/{user_index}'``."""
    return admin_root.derive_path(f"m/{account_index}/{user_index}'")
