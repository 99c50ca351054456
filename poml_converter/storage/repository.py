"""
Repository pattern for data access.

Persistence collaborators behind the quota ledger and the history store.
Two backends are provided: in-memory (per process) and SQLite (durable).
"""

import sqlite3
import threading
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from .db import DEFAULT_DB_PATH, StorageError, get_connection
from .models import ConversionRecord


class QuotaRepository(Protocol):
    """Key-value access to per-identity conversion counts.

    increment and decrement must be atomic with respect to every other
    writer of the same store, including other processes.
    """

    def get(self, identity_key: str) -> int:
        ...

    def set(self, identity_key: str, used_count: int) -> None:
        ...

    def increment(self, identity_key: str, limit: Optional[int] = None) -> Optional[int]:
        """Add one to the count unless it already reached `limit`.

        Returns the new count, or None when the limit was reached.
        """
        ...

    def decrement(self, identity_key: str) -> None:
        ...


class HistoryRepository(Protocol):
    """Append-only access to conversion records, keyed by identity."""

    def insert(self, identity_key: str, record: ConversionRecord) -> None:
        ...

    def list_ordered(self, identity_key: str) -> List[ConversionRecord]:
        ...


class InMemoryQuotaRepository:
    """Process-lifetime quota counts. Missing keys read as zero."""

    def __init__(self):
        self._counts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, identity_key: str) -> int:
        with self._lock:
            return self._counts.get(identity_key, 0)

    def set(self, identity_key: str, used_count: int) -> None:
        with self._lock:
            self._counts[identity_key] = used_count

    def increment(self, identity_key: str, limit: Optional[int] = None) -> Optional[int]:
        with self._lock:
            used = self._counts.get(identity_key, 0)
            if limit is not None and used >= limit:
                return None
            self._counts[identity_key] = used + 1
            return used + 1

    def decrement(self, identity_key: str) -> None:
        with self._lock:
            used = self._counts.get(identity_key, 0)
            self._counts[identity_key] = max(used - 1, 0)


class InMemoryHistoryRepository:
    """Process-lifetime conversion history."""

    def __init__(self):
        self._records: Dict[str, List[ConversionRecord]] = {}
        self._lock = threading.Lock()

    def insert(self, identity_key: str, record: ConversionRecord) -> None:
        with self._lock:
            partition = self._records.setdefault(identity_key, [])
            if any(existing.id == record.id for existing in partition):
                raise StorageError(f"Duplicate record id {record.id} for {identity_key}")
            partition.append(record)

    def list_ordered(self, identity_key: str) -> List[ConversionRecord]:
        with self._lock:
            # sorted() is stable, so equal timestamps keep insertion order
            return sorted(self._records.get(identity_key, []), key=lambda r: r.created_at)


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the quota and history tables if they don't exist.

    conversion_record is an append-only ledger. No UPDATE or DELETE
    operations should ever be performed on it.

    Args:
        db_path: Path to SQLite database file

    Raises:
        StorageError: If the schema cannot be created
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS quota_usage (
                identity_key TEXT PRIMARY KEY,
                used_count INTEGER NOT NULL CHECK (used_count >= 0)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS conversion_record (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL,
                identity_key TEXT NOT NULL,
                input_text TEXT NOT NULL,
                output_document TEXT NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE (identity_key, id)
            )
        """)
        conn.commit()
    except sqlite3.Error as e:
        raise StorageError(f"Failed to initialize schema: {e}") from e
    finally:
        conn.close()


class SqliteQuotaRepository:
    """Durable quota counts stored in the quota_usage table."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get(self, identity_key: str) -> int:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT used_count FROM quota_usage WHERE identity_key = ?",
                (identity_key,)
            ).fetchone()
            return row[0] if row else 0
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read quota for {identity_key}: {e}") from e
        finally:
            conn.close()

    def set(self, identity_key: str, used_count: int) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO quota_usage (identity_key, used_count) VALUES (?, ?)
                ON CONFLICT (identity_key) DO UPDATE SET used_count = excluded.used_count
            """, (identity_key, used_count))
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write quota for {identity_key}: {e}") from e
        finally:
            conn.close()

    def increment(self, identity_key: str, limit: Optional[int] = None) -> Optional[int]:
        """Conditionally add one inside a write transaction.

        BEGIN IMMEDIATE takes the database write lock before the read, so
        processes sharing the file cannot both pass the limit check.
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT used_count FROM quota_usage WHERE identity_key = ?",
                (identity_key,)
            ).fetchone()
            used = row[0] if row else 0
            if limit is not None and used >= limit:
                conn.rollback()
                return None
            conn.execute("""
                INSERT INTO quota_usage (identity_key, used_count) VALUES (?, 1)
                ON CONFLICT (identity_key) DO UPDATE SET used_count = used_count + 1
            """, (identity_key,))
            conn.commit()
            return used + 1
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Failed to increment quota for {identity_key}: {e}") from e
        finally:
            conn.close()

    def decrement(self, identity_key: str) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                UPDATE quota_usage SET used_count = used_count - 1
                WHERE identity_key = ? AND used_count > 0
            """, (identity_key,))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Failed to decrement quota for {identity_key}: {e}") from e
        finally:
            conn.close()


class SqliteHistoryRepository:
    """Durable conversion history stored in the conversion_record table."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def insert(self, identity_key: str, record: ConversionRecord) -> None:
        """Insert a single record. The transaction makes the write atomic."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO conversion_record
                (id, identity_key, input_text, output_document, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                record.id,
                identity_key,
                record.input_text,
                record.output_document,
                record.created_at.isoformat()
            ))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Failed to insert record {record.id}: {e}") from e
        finally:
            conn.close()

    def list_ordered(self, identity_key: str) -> List[ConversionRecord]:
        """Fetch all records for an identity, oldest first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT id, identity_key, input_text, output_document, created_at
                FROM conversion_record
                WHERE identity_key = ?
                ORDER BY created_at ASC, seq ASC
            """, (identity_key,))
            records = []
            for row in cursor.fetchall():
                records.append(ConversionRecord(
                    id=row[0],
                    identity_key=row[1],
                    input_text=row[2],
                    output_document=row[3],
                    created_at=datetime.fromisoformat(row[4])
                ))
            return records
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list records for {identity_key}: {e}") from e
        finally:
            conn.close()
