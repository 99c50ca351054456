"""
Database connection management.

Provides SQLite connection for quota and history persistence.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = ".poml-converter.db"


class StorageError(Exception):
    """Raised when the persistence backend fails to read or write."""


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled

    Raises:
        StorageError: If the database cannot be opened
    """
    path = Path(db_path)
    try:
        conn = sqlite3.connect(str(path))
        conn.execute("PRAGMA foreign_keys = ON")
    except sqlite3.Error as e:
        raise StorageError(f"Cannot open database {db_path}: {e}") from e
    return conn
