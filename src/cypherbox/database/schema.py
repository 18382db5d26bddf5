"""SQLite schema definitions for CypherBox."""

# SQL schema definitions
SCHEMA_VERSION = 1

CREATE_TABLES = [
    # One row per ingested object; the record column holds the JSON storage form
    """
    CREATE TABLE IF NOT EXISTS object_records (
        object_id TEXT PRIMARY KEY,
        metadata_id TEXT NOT NULL UNIQUE,
        record TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # Schema version tracking
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]


def get_init_schema():
    """Return the statements that create the schema and record its version."""
    return CREATE_TABLES + [
        f"INSERT OR IGNORE INTO schema_version (version) VALUES ({SCHEMA_VERSION})"
    ]
