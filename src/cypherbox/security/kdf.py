"""Per-object key derivation for CypherBox.

Every object key is recomputed from the master key and the object id, so no
per-object key store is needed. Derivation runs in two PBKDF2 stages:

1. ``salt = PBKDF2(password=object_id, salt=master_key, iterations=1)``
2. ``key  = PBKDF2(password=master_key, salt=salt, iterations=1000)``

Changing any constant below changes every derived key and makes existing
ciphertext unreadable.
"""
from typing import Dict, Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


SALT_SIZE = 16  # 128 bits
KEY_SIZE = 32  # 256 bits
SALT_ITERATIONS = 1
ITERATIONS = 1000


def _to_bytes(value: Union[str, bytes], name: str) -> bytes:
    if isinstance(value, str):
        value = value.encode("utf-8")
    if not isinstance(value, (bytes, bytearray)):
        raise TypeError(f"{name} must be str or bytes")
    if not value:
        raise ValueError(f"{name} must not be empty")
    return bytes(value)


def _pbkdf2(password: bytes, salt: bytes, iterations: int, length: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password)


def derive_salt(master_key: Union[str, bytes], object_id: Union[str, bytes]) -> bytes:
    """Return the 16-byte per-object salt (stage 1)."""
    return _pbkdf2(
        _to_bytes(object_id, "object_id"),
        _to_bytes(master_key, "master_key"),
        SALT_ITERATIONS,
        SALT_SIZE,
    )


def derive_key(
    master_key: Union[str, bytes],
    object_id: Union[str, bytes],
    iterations: int = ITERATIONS,
) -> bytes:
    """
    Derive the 32-byte symmetric key of ``object_id``.

    Pure and deterministic: the same inputs always give the same key.
    """
    if iterations < 1:
        raise ValueError("iterations must be a positive integer")

    salt = derive_salt(master_key, object_id)
    return _pbkdf2(_to_bytes(master_key, "master_key"), salt, iterations, KEY_SIZE)


def kdf_params_to_dict(iterations: int = ITERATIONS) -> Dict:
    return {
        "algo": "pbkdf2-sha256",
        "salt_iterations": SALT_ITERATIONS,
        "salt_size": SALT_SIZE,
        "iterations": iterations,
        "key_size": KEY_SIZE,
    }
