"""SQLite-backed object store."""

import json
import sqlite3
from typing import Optional

from .connection import DatabaseConnection
from .store import ObjectStore
from ..core.exceptions import StorageError
from ..core.models import ObjectRecord, create_record_from_dict


class SQLiteObjectStore(ObjectStore):
    """Keeps each record as one JSON row in ``object_records``."""

    __slots__ = ("db",)

    def __init__(self, db):
        """Accept a DatabaseConnection or a database path."""
        if not isinstance(db, DatabaseConnection):
            db = DatabaseConnection(db)
        db.initialize()
        self.db = db

    def get(self, object_id: str) -> Optional[ObjectRecord]:
        """Get a record by object id."""
        row = self.db.fetch_one(
            "SELECT record FROM object_records WHERE object_id = ?", (object_id,)
        )
        if row is None:
            return None
        try:
            return create_record_from_dict(json.loads(row["record"]))
        except (ValueError, KeyError, TypeError) as e:
            raise StorageError(f"Stored record for '{object_id}' is corrupt: {e}") from e

    def put(self, object_id: str, record: ObjectRecord) -> None:
        """Insert or replace a record in a single transaction."""
        query = """
            INSERT INTO object_records (object_id, metadata_id, record)
            VALUES (?, ?, ?)
            ON CONFLICT(object_id) DO UPDATE SET
                record = excluded.record,
                updated_at = CURRENT_TIMESTAMP
        """
        params = (object_id, record.metadata_id, json.dumps(record.to_dict()))

        try:
            with self.db.get_transaction_context() as cursor:
                cursor.execute(query, params)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to store record '{object_id}': {e}") from e

    def close(self) -> None:
        self.db.close()
