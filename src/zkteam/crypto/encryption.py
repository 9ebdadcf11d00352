"""
Allowance envelope encryption.

An allowance is sealed with XChaCha20-Poly1305 into a fixed 16-byte
plaintext: 7 bytes of padding followed by the 9-byte big-endian allowance.
The fixed length keeps the ciphertext size independent of the amount.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Optional

import nacl.bindings
from nacl.exceptions import CryptoError

from ..errors import AuthenticationError, OutOfRangeError, ValidationError

logger = logging.getLogger(__name__)

PLAINTEXT_LENGTH = 16
PADDING_LENGTH = 7
ALLOWANCE_LENGTH = PLAINTEXT_LENGTH - PADDING_LENGTH
MAXIMUM_ALLOWANCE = 2 ** (ALLOWANCE_LENGTH * 8) - 1

KEY_LENGTH = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_KEYBYTES
NONCE_LENGTH = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_NPUBBYTES
TAG_LENGTH = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_ABYTES
CIPHERTEXT_LENGTH = PLAINTEXT_LENGTH + TAG_LENGTH

# On-chain value of a nullifier that was never used.
ZERO_ALLOWANCE = b"\x00" * 32


@dataclass(frozen=True)
class DecryptedAllowance:
    """Plaintext recovered from an allowance envelope."""

    padding: bytes
    allowance: int


def _check_key_material(key: bytes, nonce: bytes) -> None:
    if len(key) != KEY_LENGTH:
        raise ValidationError(
            f"Encryption key must be {KEY_LENGTH} bytes",
            field="key",
            value=len(key),
            expected=KEY_LENGTH,
        )
    if len(nonce) != NONCE_LENGTH:
        raise ValidationError(
            f"Encryption nonce must be {NONCE_LENGTH} bytes",
            field="nonce",
            value=len(nonce),
            expected=NONCE_LENGTH,
        )


def encrypt_allowance(
    allowance: int, key: bytes, nonce: bytes, padding: Optional[bytes] = None
) -> bytes:
    """
    Seal an allowance under ``(key, nonce)``.

    Args:
        allowance: Amount to encrypt, at most MAXIMUM_ALLOWANCE
        key: 32-byte symmetric key
        nonce: 24-byte XChaCha20 nonce
        padding: 7 explicit padding bytes, random when omitted

    Returns:
        32-byte authenticated ciphertext
    """
    if allowance < 0 or allowance > MAXIMUM_ALLOWANCE:
        raise OutOfRangeError(
            f"allowance cannot be greater than MAXIMUM_ALLOWANCE ({MAXIMUM_ALLOWANCE})",
            field="allowance",
            value=allowance,
            expected=f"0..{MAXIMUM_ALLOWANCE}",
        )
    _check_key_material(key, nonce)

    if padding is None:
        padding = secrets.token_bytes(PADDING_LENGTH)
    elif len(padding) != PADDING_LENGTH:
        raise ValidationError(
            f"Padding must be {PADDING_LENGTH} bytes",
            field="padding",
            value=len(padding),
            expected=PADDING_LENGTH,
        )

    plaintext = bytes(padding) + allowance.to_bytes(ALLOWANCE_LENGTH, byteorder="big")
    return nacl.bindings.crypto_aead_xchacha20poly1305_ietf_encrypt(
        plaintext, None, bytes(nonce), bytes(key)
    )


def decrypt_allowance(ciphertext: bytes, key: bytes, nonce: bytes) -> DecryptedAllowance:
    """Open an allowance envelope; fails unless it authenticates under ``(key, nonce)``."""
    _check_key_material(key, nonce)

    if len(ciphertext) != CIPHERTEXT_LENGTH:
        raise AuthenticationError(
            f"Encrypted allowance must be {CIPHERTEXT_LENGTH} bytes, got {len(ciphertext)}"
        )

    try:
        plaintext = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_decrypt(
            bytes(ciphertext), None, bytes(nonce), bytes(key)
        )
    except CryptoError as e:
        raise AuthenticationError(
            "Encrypted allowance does not authenticate under the given key and nonce",
            cause=e,
        ) from e

    return DecryptedAllowance(
        padding=plaintext[:PADDING_LENGTH],
        allowance=int.from_bytes(plaintext[PADDING_LENGTH:], byteorder="big"),
    )
