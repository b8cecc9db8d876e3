"""SQLite connection and schema management for durable client storage.

The key_value table is the durable storage location for credentials and
other small client blobs.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import structlog

logger = structlog.get_logger(__name__)

# Default database location
DEFAULT_DB_PATH = Path("db/learnsync.db")


def init_db(db_path: Path | None = None) -> Path:
    """Initialize database with schema.

    Creates the database file and the key_value table if they don't exist.

    Args:
        db_path: Path to database file. Defaults to db/learnsync.db

    Returns:
        Path of the initialized database
    """
    path = db_path or DEFAULT_DB_PATH

    with get_db(path) as conn:
        _create_schema(conn)

    logger.info("database.initialized", path=str(path))
    return path


@contextmanager
def get_db(db_path: Path | None = None) -> Generator[sqlite3.Connection, None, None]:
    """Get database connection as context manager.

    Yields:
        SQLite connection with row factory set to sqlite3.Row

    Example:
        with get_db(path) as conn:
            row = conn.execute("SELECT value FROM key_value WHERE key = ?", ("token",)).fetchone()
    """
    path = db_path or DEFAULT_DB_PATH

    # Ensure directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _create_schema(conn: sqlite3.Connection) -> None:
    """Create database schema. Uses IF NOT EXISTS for idempotency."""
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS key_value (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        );
        """
    )
