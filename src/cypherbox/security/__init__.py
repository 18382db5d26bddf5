"""Security primitives for CypherBox.

This package provides:
- deterministic two-stage PBKDF2 derivation of per-object keys
- AES-256-CBC / PKCS7 envelope encryption with a fresh IV per call
- RSA-OAEP (SHA-256) wrapping of object keys for recipients
- optional OS keyring storage of the master key
"""

from .kdf import derive_key, derive_salt, kdf_params_to_dict
from .cipher import encrypt, decrypt
from .wrapping import (
    wrap_key,
    unwrap_key,
    generate_key_pair,
    public_key_from_private,
    load_public_key,
    load_private_key,
)
from .keystore import save_master_key, load_master_key, delete_master_key

__all__ = [
    "derive_key",
    "derive_salt",
    "kdf_params_to_dict",
    "encrypt",
    "decrypt",
    "wrap_key",
    "unwrap_key",
    "generate_key_pair",
    "public_key_from_private",
    "load_public_key",
    "load_private_key",
    "save_master_key",
    "load_master_key",
    "delete_master_key",
]
