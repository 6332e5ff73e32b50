"""
SQLite-backed key-value store.

Used by the sqlite backend (one row per record) and by unified index
snapshots. Every table has the same shape:
- key: record id
- value: JSON bytes
- ts: change time (unix seconds, float) used for delta pulls
"""

import sqlite3
import threading
import time
from pathlib import Path
from typing import Iterable, List, Optional, Tuple


class KVStore:
    """
    File-backed SQLite key-value store.

    Thread-safe: WAL mode plus a connection lock, so adapters can call it
    from worker threads via asyncio.to_thread.
    """

    def __init__(self, db_path: Path | str, tables: Iterable[str] = ("records",)):
        """
        Initialize KV store at given path.

        Args:
            db_path: Path to SQLite database file (":memory:" for tests)
            tables: Table names to create
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.tables = tuple(tables)
        for table in self.tables:
            if not table.isidentifier():
                raise ValueError(f"Invalid table name {table!r}")
        self._lock = threading.Lock()
        self._closed = False

        self._conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,  # Allow multi-threaded access
            timeout=10.0,
        )

        # Enable WAL mode for better concurrency
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")

        self._init_tables()

    def _init_tables(self) -> None:
        """Create tables if they don't exist."""
        for table in self.tables:
            self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS "{table}" (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL,
                    ts REAL NOT NULL
                )
            """)

            # Index on change time for delta queries
            self._conn.execute(f"""
                CREATE INDEX IF NOT EXISTS "idx_{table}_ts"
                ON "{table}"(ts)
            """)

        self._conn.commit()

    def _check_table(self, table: str) -> None:
        if table not in self.tables:
            raise ValueError(f"Unknown table {table!r}; expected one of {self.tables}")

    def set(self, table: str, key: str, value: bytes, ts: Optional[float] = None) -> None:
        """
        Set a key-value pair in the specified table.

        Args:
            table: Table name
            key: String key
            value: Binary value
            ts: Change time (defaults to now)
        """
        self._check_table(table)
        ts = time.time() if ts is None else ts

        with self._lock:
            self._conn.execute(
                f'INSERT OR REPLACE INTO "{table}" (key, value, ts) VALUES (?, ?, ?)',
                (key, value, ts)
            )
            self._conn.commit()

    def set_many(self, table: str, items: List[Tuple[str, bytes]], ts: Optional[float] = None) -> int:
        """Write several pairs in one transaction. Returns number written."""
        self._check_table(table)
        ts = time.time() if ts is None else ts

        with self._lock:
            self._conn.executemany(
                f'INSERT OR REPLACE INTO "{table}" (key, value, ts) VALUES (?, ?, ?)',
                [(k, v, ts) for k, v in items]
            )
            self._conn.commit()
        return len(items)

    def get(self, table: str, key: str) -> Optional[bytes]:
        """
        Get value for a key from the specified table.

        Returns:
            Binary value if found, None otherwise
        """
        self._check_table(table)
        with self._lock:
            row = self._conn.execute(
                f'SELECT value FROM "{table}" WHERE key = ?',
                (key,)
            ).fetchone()
        return row[0] if row else None

    def items(self, table: str) -> List[Tuple[str, bytes]]:
        """All (key, value) pairs of a table, ordered by key."""
        self._check_table(table)
        with self._lock:
            rows = self._conn.execute(
                f'SELECT key, value FROM "{table}" ORDER BY key'
            ).fetchall()
        return [(k, v) for k, v in rows]

    def items_since(self, table: str, since: float) -> List[Tuple[str, bytes, float]]:
        """
        Rows changed strictly after `since`, oldest first.

        Returns:
            List of (key, value, ts)
        """
        self._check_table(table)
        with self._lock:
            rows = self._conn.execute(
                f'SELECT key, value, ts FROM "{table}" WHERE ts > ? ORDER BY ts, key',
                (since,)
            ).fetchall()
        return [(k, v, ts) for k, v, ts in rows]

    def stats(self, table: str) -> dict:
        """
        Get statistics for a table.

        Returns:
            Dict with count, total_bytes, oldest_ts, newest_ts
        """
        self._check_table(table)
        with self._lock:
            row = self._conn.execute(f"""
                SELECT
                    COUNT(*) as count,
                    SUM(LENGTH(value)) as total_bytes,
                    MIN(ts) as oldest_ts,
                    MAX(ts) as newest_ts
                FROM "{table}"
            """).fetchone()

        return {
            "count": row[0] or 0,
            "total_bytes": row[1] or 0,
            "oldest_ts": row[2] or 0,
            "newest_ts": row[3] or 0,
        }

    def close(self) -> None:
        """Close database connection. Safe to call twice."""
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed
