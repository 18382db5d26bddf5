"""
Base data models for metadata, cipher envelopes and stored object records
"""

from datetime import datetime, timezone
from typing import Dict, NamedTuple, Optional


DEFAULT_MIMETYPE = "application/octet-stream"

METADATA_FIELDS = ('filename', 'mimetype', 'size', 'created_at', 'modified_at')


def _utcnow():
    return datetime.now(timezone.utc)


def _parse_timestamp(name, value):
    # Timestamps are always serialized with datetime.isoformat()
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Metadata field '{name}' must be an ISO-8601 string")
    return datetime.fromisoformat(value)


class Metadata:
    """
        Plain description of an object, encrypted as one unit next to the payload
    """

    __slots__ = METADATA_FIELDS

    def __init__(self, filename, mimetype=DEFAULT_MIMETYPE, size=0, created_at=None, modified_at=None):
        """
            Initialize metadata, validating the fixed schema
        """
        if not isinstance(filename, str):
            raise ValueError("filename must be a string")
        if not isinstance(mimetype, str):
            raise ValueError("mimetype must be a string")
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise ValueError(f"size must be a non-negative integer, got {size!r}")

        self.filename = filename
        self.mimetype = mimetype
        self.size = size
        self.created_at = created_at if created_at is not None else _utcnow()
        self.modified_at = modified_at if modified_at is not None else self.created_at

        if not isinstance(self.created_at, datetime) or not isinstance(self.modified_at, datetime):
            raise ValueError("created_at and modified_at must be datetime values")

    def to_dict(self):
        """
            Convert metadata to a JSON-friendly dict
        """
        return {
            'filename': self.filename,
            'mimetype': self.mimetype,
            'size': self.size,
            'created_at': self.created_at.isoformat(),
            'modified_at': self.modified_at.isoformat(),
        }

    def __repr__(self):
        return f"Metadata(filename={self.filename!r}, mimetype={self.mimetype!r}, size={self.size!r})"

    def __eq__(self, other):
        if not isinstance(other, Metadata):
            return NotImplemented
        return all(getattr(self, f) == getattr(other, f) for f in METADATA_FIELDS)


def create_metadata_from_dict(data):
    """
        Create Metadata from its serialized dict form.

        Every field of the schema is required; timestamps are parsed from
        ISO-8601 strings. Raises ValueError on a missing or mistyped field.
    """
    if not isinstance(data, dict):
        raise ValueError("Metadata must be a JSON object")

    missing = [f for f in METADATA_FIELDS if f not in data]
    if missing:
        raise ValueError(f"Metadata is missing fields: {', '.join(missing)}")

    return Metadata(
        filename=data['filename'],
        mimetype=data['mimetype'],
        size=data['size'],
        created_at=_parse_timestamp('created_at', data['created_at']),
        modified_at=_parse_timestamp('modified_at', data['modified_at']),
    )


class CipherEnvelope:
    """
        Ciphertext (base64) plus the IV (hex) it was produced with
    """

    __slots__ = ('ciphertext', 'iv')

    def __init__(self, ciphertext, iv):
        self.ciphertext = ciphertext
        self.iv = iv

    def to_dict(self):
        return {'ciphertext': self.ciphertext, 'iv': self.iv}

    def __eq__(self, other):
        if not isinstance(other, CipherEnvelope):
            return NotImplemented
        return self.ciphertext == other.ciphertext and self.iv == other.iv

    def __repr__(self):
        return f"CipherEnvelope(iv={self.iv!r}, ciphertext_len={len(self.ciphertext)})"


def create_envelope_from_dict(data):
    return CipherEnvelope(ciphertext=data['ciphertext'], iv=data['iv'])


class WrappedKeyEntry:
    """
        An object key wrapped for one recipient
    """

    __slots__ = ('wrapped_key', 'public_key')

    def __init__(self, wrapped_key, public_key):
        self.wrapped_key = wrapped_key
        self.public_key = public_key

    def to_dict(self):
        return {'wrapped_key': self.wrapped_key, 'public_key': self.public_key}

    def __eq__(self, other):
        if not isinstance(other, WrappedKeyEntry):
            return NotImplemented
        return self.wrapped_key == other.wrapped_key and self.public_key == other.public_key

    def __repr__(self):
        return f"WrappedKeyEntry(wrapped_key_len={len(self.wrapped_key)})"


def create_wrapped_key_from_dict(data):
    return WrappedKeyEntry(wrapped_key=data['wrapped_key'], public_key=data['public_key'])


class ObjectRecord:
    """
        The unit of persistence: both envelopes plus the recipient key map.

        Records are treated as immutable once built; key map changes go
        through with_key_map() which returns a new record.
    """

    __slots__ = ('object_id', 'metadata_id', 'key_map', 'payload', 'metadata')

    def __init__(
        self,
        object_id: str,
        metadata_id: str,
        payload: CipherEnvelope,
        metadata: CipherEnvelope,
        key_map: Optional[Dict[str, WrappedKeyEntry]] = None,
    ):
        self.object_id = object_id
        self.metadata_id = metadata_id
        self.payload = payload
        self.metadata = metadata
        self.key_map = dict(key_map) if key_map else {}

    def with_key_map(self, key_map: Dict[str, WrappedKeyEntry]) -> "ObjectRecord":
        """
            Return a copy of this record carrying a different key map
        """
        return ObjectRecord(
            object_id=self.object_id,
            metadata_id=self.metadata_id,
            payload=self.payload,
            metadata=self.metadata,
            key_map=key_map,
        )

    def to_dict(self):
        """
            Convert record to dict (storage form)
        """
        return {
            'object_id': self.object_id,
            'metadata_id': self.metadata_id,
            'key_map': {rid: entry.to_dict() for rid, entry in self.key_map.items()},
            'payload': self.payload.to_dict(),
            'metadata': self.metadata.to_dict(),
        }

    def __repr__(self):
        return f"ObjectRecord(object_id={self.object_id!r}, recipients={len(self.key_map)})"

    def __eq__(self, other):
        if not isinstance(other, ObjectRecord):
            return NotImplemented
        return self.to_dict() == other.to_dict()


def create_record_from_dict(data):
    """
        Create ObjectRecord from its storage dict
    """
    key_map = {
        rid: create_wrapped_key_from_dict(entry)
        for rid, entry in (data.get('key_map') or {}).items()
    }
    return ObjectRecord(
        object_id=data['object_id'],
        metadata_id=data['metadata_id'],
        payload=create_envelope_from_dict(data['payload']),
        metadata=create_envelope_from_dict(data['metadata']),
        key_map=key_map,
    )


class IngestResult(NamedTuple):
    """Identifiers issued for a freshly ingested object."""

    object_id: str
    metadata_id: str


class RetrievedObject(NamedTuple):
    """
    A decrypted object: payload bytes and typed metadata in one value.

    Unpacks as ``payload, metadata``.
    """

    payload: bytes
    metadata: Metadata

    @property
    def filename(self) -> str:
        return self.metadata.filename

    @property
    def mimetype(self) -> str:
        return self.metadata.mimetype

    @property
    def size(self) -> int:
        return len(self.payload)

    @property
    def last_modified(self) -> datetime:
        return self.metadata.modified_at

    def text(self, encoding: str = "utf-8") -> str:
        return self.payload.decode(encoding)
