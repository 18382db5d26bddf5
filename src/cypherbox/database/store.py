"""Keyed repository contract for object records, plus an in-memory implementation."""

from abc import ABC, abstractmethod
import threading
from typing import Dict, Optional

from ..core.models import ObjectRecord, create_record_from_dict


class ObjectStore(ABC):
    """
    Persistence boundary of the envelope store.

    Records are only ever addressed by object id; implementations never need
    to iterate or query by any other field.
    """

    @abstractmethod
    def get(self, object_id: str) -> Optional[ObjectRecord]:
        """Return the record for ``object_id`` or None."""

    @abstractmethod
    def put(self, object_id: str, record: ObjectRecord) -> None:
        """Insert or replace the record for ``object_id``."""

    def __contains__(self, object_id):
        return self.get(object_id) is not None


class InMemoryObjectStore(ObjectStore):
    """Process-local store backed by a dict.

    Records are kept in their dict form so callers never share mutable state
    with the store.
    """

    def __init__(self):
        self._records: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, object_id):
        with self._lock:
            data = self._records.get(object_id)
        if data is None:
            return None
        return create_record_from_dict(data)

    def put(self, object_id, record):
        data = record.to_dict()
        with self._lock:
            self._records[object_id] = data

    def __len__(self):
        with self._lock:
            return len(self._records)
