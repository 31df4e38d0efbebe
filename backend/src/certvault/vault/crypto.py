"""Symmetric crypto primitives used to wrap vault secrets.

Blob format: [nonce 12B][ciphertext][GCM tag 16B]

Never log plaintext, ciphertext or key bytes.
"""

import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from certvault.errors import DecryptFailedError

logger = logging.getLogger(__name__)

NONCE_SIZE = 12  # 96-bit nonce
KEY_LENGTH = 32  # AES-256
TAG_SIZE = 16


class SymmetricKey:
    """A 256-bit AES-GCM key."""

    __slots__ = ("_raw", "_cipher")

    def __init__(self, raw: bytes):
        if len(raw) != KEY_LENGTH:
            raise ValueError(f"AES-256 key must be {KEY_LENGTH} bytes, got {len(raw)}")
        self._raw = bytes(raw)
        self._cipher = AESGCM(self._raw)

    @property
    def cipher(self) -> AESGCM:
        return self._cipher

    def __repr__(self) -> str:
        return "SymmetricKey(<redacted>)"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SymmetricKey):
            return NotImplemented
        return self._raw == other._raw

    def __hash__(self) -> int:
        return hash(self._raw)


def generate_key() -> SymmetricKey:
    """Generate a fresh 256-bit AES-GCM key."""
    return SymmetricKey(AESGCM.generate_key(bit_length=KEY_LENGTH * 8))


def export_key(key: SymmetricKey) -> bytes:
    """Export a key to its raw byte form for storage."""
    return key._raw


def import_key(data: bytes) -> SymmetricKey:
    """Import a key from the raw bytes produced by export_key."""
    return SymmetricKey(data)


def encrypt(plaintext: bytes, key: SymmetricKey) -> bytes:
    """Encrypt with a new random nonce on every call.

    Returns:
        nonce || ciphertext || tag
    """
    nonce = os.urandom(NONCE_SIZE)
    return nonce + key.cipher.encrypt(nonce, plaintext, None)


def decrypt(blob: bytes, key: SymmetricKey) -> bytes:
    """Decrypt a blob produced by encrypt.

    Raises:
        DecryptFailedError: If the blob is shorter than a nonce or the tag does not verify.
    """
    if len(blob) < NONCE_SIZE + TAG_SIZE:
        raise DecryptFailedError(
            f"Blob too short: {len(blob)} bytes (minimum {NONCE_SIZE + TAG_SIZE})"
        )
    nonce = blob[:NONCE_SIZE]
    try:
        return key.cipher.decrypt(nonce, blob[NONCE_SIZE:], None)
    except InvalidTag as e:
        raise DecryptFailedError("Authentication tag did not verify") from e
