"""CypherBox: per-object envelope encryption with multi-recipient sharing."""

from .core.cypher import Cypher
from .core.exceptions import (
    CypherBoxError,
    NotFoundError,
    DecryptionError,
    KeyFormatError,
    UnwrapError,
    AccessDeniedError,
    StorageError,
    ConfigurationError,
)
from .core.models import Metadata, CipherEnvelope, WrappedKeyEntry, ObjectRecord, RetrievedObject, IngestResult
from .database.store import ObjectStore, InMemoryObjectStore
from .database.sqlite_store import SQLiteObjectStore

__version__ = "0.1.0"

__all__ = [
    "Cypher",
    "CypherBoxError",
    "NotFoundError",
    "DecryptionError",
    "KeyFormatError",
    "UnwrapError",
    "AccessDeniedError",
    "StorageError",
    "ConfigurationError",
    "Metadata",
    "CipherEnvelope",
    "WrappedKeyEntry",
    "ObjectRecord",
    "RetrievedObject",
    "IngestResult",
    "ObjectStore",
    "InMemoryObjectStore",
    "SQLiteObjectStore",
]
