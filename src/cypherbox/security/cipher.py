"""
AES-256-CBC envelope encryption with PKCS7 padding.

Each call to :func:`encrypt` draws a fresh 128-bit IV, so encrypting the same
plaintext twice under the same key never yields the same envelope. The IV is
not secret and travels with the ciphertext inside a
:class:`~cypherbox.core.models.CipherEnvelope`:

- ``ciphertext``: base64 text
- ``iv``: hex text (16 bytes)

CBC with PKCS7 detects a wrong key only through the padding check, which a
random key passes roughly once in 256 tries. Callers that parse the result
(base64, JSON) catch the rest.
"""

from __future__ import annotations

import base64
import binascii
import os
from typing import Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from cypherbox.core.exceptions import DecryptionError
from cypherbox.core.models import CipherEnvelope
from .kdf import KEY_SIZE


IV_SIZE = 16
BLOCK_SIZE_BITS = 128


def generate_iv() -> bytes:
    return os.urandom(IV_SIZE)


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
        raise ValueError(f"key must be {KEY_SIZE} bytes")


def encrypt(plaintext: Union[bytes, str], key: bytes) -> CipherEnvelope:
    """Encrypt ``plaintext`` under ``key`` and return a new envelope."""
    _check_key(key)
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")

    iv = generate_iv()
    padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
    padded = padder.update(plaintext) + padder.finalize()

    encryptor = Cipher(algorithms.AES(bytes(key)), modes.CBC(iv)).encryptor()
    ct = encryptor.update(padded) + encryptor.finalize()

    return CipherEnvelope(
        ciphertext=base64.b64encode(ct).decode("ascii"),
        iv=iv.hex(),
    )


def decrypt(envelope: CipherEnvelope, key: bytes) -> bytes:
    """
    Decrypt an envelope produced by :func:`encrypt`.

    Raises DecryptionError when the IV or ciphertext is malformed or
    truncated, or when the padding check fails (wrong key).
    """
    _check_key(key)

    try:
        iv = bytes.fromhex(envelope.iv)
        ct = base64.b64decode(envelope.ciphertext, validate=True)
    except (TypeError, ValueError, binascii.Error) as e:
        raise DecryptionError("Envelope encoding is invalid") from e

    if len(iv) != IV_SIZE:
        raise DecryptionError(f"IV must be {IV_SIZE} bytes, got {len(iv)}")
    if not ct or len(ct) % IV_SIZE:
        raise DecryptionError("Ciphertext is empty or not block aligned")

    try:
        decryptor = Cipher(algorithms.AES(bytes(key)), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ct) + decryptor.finalize()

        unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError:
        # do not chain the message: it may describe padding bytes
        raise DecryptionError("Decryption failed (wrong key or corrupted data)") from None
