"""
Cypher: per-object envelope encryption with multi-recipient sharing.

Lifecycle of one object
=======================
 - ingest   : new ids -> derive key -> encrypt payload and metadata -> put record
 - retrieve : derive the same key -> decrypt both envelopes -> typed object
 - share    : derive key -> wrap under recipient public key -> add key map entry
 - revoke   : drop the recipient's key map entry (envelopes untouched)
==============================
For reference:
> The object key is never stored. Anyone holding the master key recomputes it
  from the object id (see security/kdf.py).
> Revocation is bookkeeping only. The object key is not rotated and the
  payload is not re-encrypted, so a recipient who copied its wrapped key
  before revocation can still decrypt the object.
> Records are never mutated in place. share/revoke build a new record and
  write it with a single put, under a per-object lock.
"""

import base64
import binascii
import json
import logging
import threading
import uuid
import weakref
from typing import Callable, List, Optional

from ..database.store import InMemoryObjectStore, ObjectStore
from ..security import cipher
from ..security.kdf import ITERATIONS, KEY_SIZE, derive_key
from ..security.wrapping import PemInput, unwrap_key, wrap_key
from .exceptions import (
    AccessDeniedError,
    DecryptionError,
    KeyFormatError,
    NotFoundError,
    UnwrapError,
)
from .models import (
    IngestResult,
    Metadata,
    ObjectRecord,
    RetrievedObject,
    WrappedKeyEntry,
    create_metadata_from_dict,
)
from .reader import Handle, metadata_from_path, read_all


logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


def _recipient_text(pem: PemInput) -> str:
    # recipient identities are PEM text, which is ASCII
    if isinstance(pem, bytes):
        try:
            return pem.decode("ascii")
        except UnicodeDecodeError:
            raise KeyFormatError("Recipient public key is not ASCII PEM text") from None
    return pem


def open_record(record: ObjectRecord, key: bytes) -> RetrievedObject:
    """Decrypt both envelopes of ``record`` with an already-known object key."""
    # payload is base64 text inside the envelope
    encoded = cipher.decrypt(record.payload, key)
    try:
        data = base64.b64decode(encoded, validate=True)
    except (ValueError, binascii.Error):
        raise DecryptionError("Decrypted payload is malformed") from None

    raw_meta = cipher.decrypt(record.metadata, key)
    try:
        metadata = create_metadata_from_dict(json.loads(raw_meta.decode("utf-8")))
    except (ValueError, TypeError):
        raise DecryptionError("Decrypted metadata is malformed") from None

    # drop any slack beyond the declared size
    return RetrievedObject(payload=data[: metadata.size], metadata=metadata)


def open_shared(
    record: ObjectRecord,
    recipient_id: str,
    private_key_pem: PemInput,
    password: Optional[bytes] = None,
) -> RetrievedObject:
    """
    Recipient-side open: unwrap the recipient's stored key and decrypt.

    Needs no master key. Raises AccessDeniedError when ``recipient_id`` has
    no entry and UnwrapError when the private key does not match.
    """
    entry = record.key_map.get(recipient_id)
    if entry is None:
        raise AccessDeniedError(f"Recipient has no access to object '{record.object_id}'")

    key = unwrap_key(entry.wrapped_key, private_key_pem, password=password)
    if len(key) != KEY_SIZE:
        raise UnwrapError("Unwrapped key has an unexpected length")
    return open_record(record, key)


class Cypher:
    """Envelope store over an injected object repository."""

    def __init__(
        self,
        master_key: str,
        store: Optional[ObjectStore] = None,
        id_factory: Optional[Callable[[], str]] = None,
        kdf_iterations: int = ITERATIONS,
    ):
        if not master_key:
            raise ValueError("master_key must not be empty")
        if kdf_iterations < 1:
            raise ValueError("kdf_iterations must be a positive integer")

        self._master_key = master_key
        self.store = store if store is not None else InMemoryObjectStore()
        self.id_factory = id_factory or new_id
        self.kdf_iterations = kdf_iterations

        # one lock per object id with a share/revoke in flight; entries go
        # away once no caller holds the lock
        self._locks = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _derive(self, object_id: str) -> bytes:
        return derive_key(self._master_key, object_id, iterations=self.kdf_iterations)

    def _lock_for(self, object_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(object_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[object_id] = lock
            return lock

    def _require_record(self, object_id: str) -> ObjectRecord:
        record = self.store.get(object_id)
        if record is None:
            raise NotFoundError(f"Object '{object_id}' not found")
        return record

    def _new_ids(self):
        object_id = self.id_factory()
        metadata_id = self.id_factory()
        if object_id == metadata_id:
            raise ValueError("id factory returned the same id twice")
        return object_id, metadata_id

    # ------------------------------------------------------------------
    # Ingest / retrieve
    # ------------------------------------------------------------------

    def ingest(self, payload: bytes, metadata: Metadata) -> IngestResult:
        """
        Encrypt ``payload`` and ``metadata`` under a fresh object key and store them.

        The record is written with one put once both envelopes exist, so a
        failure leaves nothing behind.
        """
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise TypeError("payload must be bytes")
        if not isinstance(metadata, Metadata):
            raise TypeError("metadata must be a Metadata instance")
        payload = bytes(payload)

        if metadata.size != len(payload):
            # retrieve() clamps to metadata.size
            logger.warning(
                "Declared size %d differs from payload length %d", metadata.size, len(payload)
            )

        object_id, metadata_id = self._new_ids()
        key = self._derive(object_id)

        encrypted_payload = cipher.encrypt(base64.b64encode(payload), key)
        encrypted_metadata = cipher.encrypt(json.dumps(metadata.to_dict()), key)

        record = ObjectRecord(
            object_id=object_id,
            metadata_id=metadata_id,
            payload=encrypted_payload,
            metadata=encrypted_metadata,
        )
        self.store.put(object_id, record)

        logger.info("Ingested object %s (%d bytes)", object_id, len(payload))
        return IngestResult(object_id, metadata_id)

    def ingest_file(self, source: Handle, metadata: Optional[Metadata] = None) -> IngestResult:
        """
        Read ``source`` (path or binary file object) and ingest it.

        Without explicit metadata, ``source`` must be a path; metadata is
        built from its name and stat info.
        """
        if metadata is None:
            if hasattr(source, "read"):
                raise ValueError("metadata is required when reading from a file object")
            metadata = metadata_from_path(source)
        return self.ingest(read_all(source), metadata)

    def retrieve(self, object_id: str) -> RetrievedObject:
        """Decrypt and return the payload and metadata of ``object_id``."""
        record = self._require_record(object_id)
        obj = open_record(record, self._derive(object_id))
        logger.debug("Retrieved object %s", object_id)
        return obj

    def exists(self, object_id: str) -> bool:
        return self.store.get(object_id) is not None

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    def share(self, object_id: str, recipient_public_key: str) -> None:
        """
        Wrap the object key for ``recipient_public_key``.

        The PEM string itself identifies the recipient in the key map; sharing
        again with the same key replaces the entry.
        """
        recipient_public_key = _recipient_text(recipient_public_key)
        # unknown ids never get a lock
        self._require_record(object_id)

        with self._lock_for(object_id):
            record = self._require_record(object_id)
            wrapped = wrap_key(self._derive(object_id), recipient_public_key)

            key_map = dict(record.key_map)
            key_map[recipient_public_key] = WrappedKeyEntry(
                wrapped_key=wrapped, public_key=recipient_public_key
            )
            self.store.put(object_id, record.with_key_map(key_map))

        logger.info("Shared object %s (%d recipients)", object_id, len(key_map))

    def revoke(self, object_id: str, recipient_id: str) -> None:
        """
        Remove ``recipient_id`` from the key map of ``object_id``.

        Revoking an identity that holds no entry is a no-op.
        """
        recipient_id = _recipient_text(recipient_id)
        self._require_record(object_id)

        with self._lock_for(object_id):
            record = self._require_record(object_id)
            if recipient_id not in record.key_map:
                logger.debug("Revoke on object %s: recipient holds no entry", object_id)
                return

            key_map = dict(record.key_map)
            del key_map[recipient_id]
            self.store.put(object_id, record.with_key_map(key_map))

        logger.info("Revoked recipient on object %s (%d remaining)", object_id, len(key_map))

    def recipients(self, object_id: str) -> List[str]:
        """List recipient identities currently holding a wrapped key."""
        return list(self._require_record(object_id).key_map)

    def get_wrapped_key(self, object_id: str, recipient_id: str) -> WrappedKeyEntry:
        """Return the stored wrapped key entry of one recipient."""
        record = self._require_record(object_id)
        entry = record.key_map.get(recipient_id)
        if entry is None:
            raise AccessDeniedError(f"Recipient has no access to object '{object_id}'")
        return entry

    def retrieve_shared(
        self,
        object_id: str,
        recipient_id: str,
        private_key_pem: PemInput,
        password: Optional[bytes] = None,
    ) -> RetrievedObject:
        """
        Recipient-side retrieval: unwrap the stored key with ``private_key_pem``
        and decrypt, without touching the master key.
        """
        record = self._require_record(object_id)
        return open_shared(record, recipient_id, private_key_pem, password=password)
