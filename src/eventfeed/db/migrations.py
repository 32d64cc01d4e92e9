"""
Database migrations for the local event cache.

Each migration is idempotent: indexes are only created if absent, so both
fresh installs and existing cache files are handled without manual steps.

Called automatically from init_db() after create_all().
"""
from sqlalchemy import text

# Feed order is (timestamp desc, id desc); every cache range query uses it.
EVENT_ORDER_INDEX = "ix_event_timestamp_desc_id_desc"


def run_migrations(engine) -> None:
    """Apply all pending schema migrations.

    Safe to call multiple times. Supports SQLite only (uses PRAGMA index_list).

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).
    """
    with engine.connect() as conn:
        _create_index_if_missing(
            conn, "event", EVENT_ORDER_INDEX, "timestamp DESC, id DESC"
        )
        _create_index_if_missing(
            conn, "downloadrecord", "ix_downloadrecord_downloaded_at", "downloaded_at DESC"
        )
        conn.commit()


def _create_index_if_missing(conn, table: str, index: str, columns: str) -> None:
    """Create an index on a table if it doesn't already exist.

    Args:
        conn: SQLAlchemy connection.
        table: Table name (lowercase, as SQLite stores it).
        index: Index name.
        columns: Column list with ordering, e.g. "timestamp DESC, id DESC".
    """
    result = conn.execute(text(f"PRAGMA index_list({table})"))
    existing_indexes = {row[1] for row in result}
    if index not in existing_indexes:
        conn.execute(text(f"CREATE INDEX {index} ON {table} ({columns})"))
