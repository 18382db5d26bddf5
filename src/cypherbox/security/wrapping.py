"""RSA-OAEP wrapping of object keys for sharing.

The object key is encrypted under a recipient's RSA public key with OAEP
padding (SHA-256 for both the main hash and MGF1) and stored base64-encoded.
Only the holder of the matching private key can recover it.
"""
from __future__ import annotations

import base64
import binascii
from typing import Optional, Tuple, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from cypherbox.core.exceptions import KeyFormatError, UnwrapError


PemInput = Union[str, bytes]

DEFAULT_KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def _pem_bytes(pem: PemInput) -> bytes:
    if isinstance(pem, str):
        return pem.encode("utf-8")
    if isinstance(pem, (bytes, bytearray)):
        return bytes(pem)
    raise KeyFormatError("PEM key must be str or bytes")


def load_public_key(public_key_pem: PemInput) -> rsa.RSAPublicKey:
    """Parse a PEM RSA public key, raising KeyFormatError on bad input."""
    try:
        key = serialization.load_pem_public_key(_pem_bytes(public_key_pem))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyFormatError(f"Malformed public key PEM: {e}") from e
    if not isinstance(key, rsa.RSAPublicKey):
        raise KeyFormatError("Public key is not an RSA key")
    return key


def load_private_key(private_key_pem: PemInput, password: Optional[bytes] = None) -> rsa.RSAPrivateKey:
    """Parse a PEM RSA private key, raising KeyFormatError on bad input."""
    if isinstance(password, str):
        password = password.encode("utf-8")
    try:
        key = serialization.load_pem_private_key(_pem_bytes(private_key_pem), password=password)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        # the library message never contains key bytes
        raise KeyFormatError(f"Malformed private key PEM: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyFormatError("Private key is not an RSA key")
    return key


def wrap_key(key: bytes, public_key_pem: PemInput) -> str:
    """Encrypt ``key`` for the owner of ``public_key_pem``; returns base64 text."""
    public_key = load_public_key(public_key_pem)
    wrapped = public_key.encrypt(bytes(key), _oaep())
    return base64.b64encode(wrapped).decode("ascii")


def unwrap_key(wrapped: str, private_key_pem: PemInput, password: Optional[bytes] = None) -> bytes:
    """
    Recover a key wrapped by :func:`wrap_key`.

    Raises KeyFormatError for an unusable private key and UnwrapError when
    the key does not match or the wrapped data is corrupt.
    """
    private_key = load_private_key(private_key_pem, password=password)

    try:
        raw = base64.b64decode(wrapped, validate=True)
    except (TypeError, ValueError, binascii.Error) as e:
        raise UnwrapError("Wrapped key is not valid base64") from e

    try:
        return private_key.decrypt(raw, _oaep())
    except ValueError:
        raise UnwrapError("Failed to unwrap key (wrong private key or corrupted data)") from None


def generate_key_pair(key_size: int = DEFAULT_KEY_SIZE) -> Tuple[str, str]:
    """Return a fresh ``(private_pem, public_pem)`` RSA pair as text."""
    private_key = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=key_size)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return private_pem.decode("ascii"), _public_pem(private_key.public_key())


def public_key_from_private(private_key_pem: PemInput, password: Optional[bytes] = None) -> str:
    """Return the PEM public key belonging to ``private_key_pem``."""
    return _public_pem(load_private_key(private_key_pem, password=password).public_key())


def _public_pem(public_key: rsa.RSAPublicKey) -> str:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
