"""
AES-GCM encryption for stored audio blobs.

Blob layout: ``nonce (12 bytes) || ciphertext || tag (16 bytes)``.

One key is shared by every blob in the store. Rotating it is not supported:
blobs written under an old key can only be read with that old key.
"""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from nudgebox.errors import AuthenticationFailure

NONCE_SIZE = 12
TAG_SIZE = 16
VALID_KEY_SIZES = (16, 24, 32)


def _as_key(key: bytes | str) -> bytes:
    if isinstance(key, str):
        key = key.encode("utf-8")
    return bytes(key)


def encrypt(plaintext: bytes, key: bytes | str) -> bytes:
    """AES-GCM encrypt with a fresh random nonce. Returns nonce || sealed box."""
    key = _as_key(key)
    if len(key) not in VALID_KEY_SIZES:
        raise ValueError(
            f"AES key must be 16, 24 or 32 bytes long, got {len(key)}"
        )
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, None)


def decrypt(ciphertext: bytes, key: bytes | str) -> bytes:
    """
    Split off the nonce and open the sealed box.

    Raises AuthenticationFailure on a bad tag, truncated input or a key of the
    wrong length.
    """
    key = _as_key(key)
    if len(key) not in VALID_KEY_SIZES:
        raise AuthenticationFailure()
    if len(ciphertext) < NONCE_SIZE + TAG_SIZE:
        raise AuthenticationFailure("Ciphertext is truncated.")
    nonce, sealed = ciphertext[:NONCE_SIZE], ciphertext[NONCE_SIZE:]
    try:
        return AESGCM(key).decrypt(nonce, sealed, None)
    except InvalidTag as exc:
        raise AuthenticationFailure() from exc


class Cipher:
    """Holds the configured blob key so callers never reach for the environment."""

    def __init__(self, key: bytes | str):
        key = _as_key(key)
        if len(key) not in VALID_KEY_SIZES:
            raise ValueError(
                f"AES key must be 16, 24 or 32 bytes long, got {len(key)}"
            )
        self._key = key

    def encrypt(self, plaintext: bytes) -> bytes:
        return encrypt(plaintext, self._key)

    def decrypt(self, ciphertext: bytes) -> bytes:
        return decrypt(ciphertext, self._key)
