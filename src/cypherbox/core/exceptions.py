"""
Exceptions for CypherBox
All errors share one base class so callers have a single catch point
"""


class CypherBoxError(Exception):
    # general container for errors
    pass


class NotFoundError(CypherBoxError):
    # raised when an object id has no stored record
    pass


class DecryptionError(CypherBoxError):
    # raised when ciphertext / IV is malformed or the key does not match
    # messages must never carry plaintext or key bytes
    pass


class KeyFormatError(CypherBoxError):
    # raised on malformed or unsupported PEM input
    pass


class UnwrapError(CypherBoxError):
    # raised when RSA-OAEP unwrapping fails (wrong private key, corrupt data)
    pass


class AccessDeniedError(CypherBoxError):
    # raised when a recipient holds no wrapped key for an object
    pass


class StorageError(CypherBoxError):
    # raised if the backing store fails in some way
    pass


class ConfigurationError(CypherBoxError):
    # raised when configuration values are missing or invalid
    pass
