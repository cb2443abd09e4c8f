"""SQLite-backed ordered key-value store.

Keys and values are BLOBs in a single ``WITHOUT ROWID`` table; SQLite
compares BLOBs with ``memcmp`` so ``ORDER BY key`` is exactly the unsigned
byte order the tuple codec relies on. Each transaction runs on its own
connection inside ``BEGIN IMMEDIATE`` and commits on clean exit.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import logging
from pathlib import Path
import sqlite3
import threading

from kv_postings.config import Settings
from kv_postings.index.tuple_codec import add_counter
from kv_postings.observability import create_span


logger = logging.getLogger(__name__)

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS kv (
        key BLOB PRIMARY KEY,
        value BLOB NOT NULL
    ) WITHOUT ROWID;
"""


def apply_store_pragmas(
    conn: sqlite3.Connection,
    *,
    busy_timeout_ms: int | None = 30000,
    cache_size_kb: int = -65536,
    mmap_size_bytes: int = 134217728,
) -> None:
    """Apply WAL-mode PRAGMAs suited to many small keyed writes."""
    if busy_timeout_ms is not None:
        conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute(f"PRAGMA cache_size = {cache_size_kb}")
    conn.execute(f"PRAGMA mmap_size = {mmap_size_bytes}")
    conn.execute("PRAGMA temp_store = MEMORY")


class SqliteTransaction:
    """Transaction handle bound to one open SQLite connection.

    Writers on different threads may share one handle; every statement runs
    under ``_lock`` so the connection only ever sees one at a time.
    """

    def __init__(self, conn: sqlite3.Connection, *, scan_batch_size: int = 512) -> None:
        self._conn = conn
        self._scan_batch_size = scan_batch_size
        self._lock = threading.Lock()

    def get(self, key: bytes) -> bytes | None:
        with self._lock:
            return self._get(key)

    def set(self, key: bytes, value: bytes) -> None:
        with self._lock:
            self._set(key, value)

    def atomic_add(self, key: bytes, delta: int) -> None:
        # Read and write under one lock hold; the connection owns the write lock
        with self._lock:
            self._set(key, add_counter(self._get(key), delta))

    def range_scan(self, begin: bytes, end: bytes, limit: int | None = None) -> Iterator[tuple[bytes, bytes]]:
        if limit is not None and limit <= 0:
            msg = f"Range scan limit must be positive, got {limit}"
            raise ValueError(msg)
        return self._scan(begin, end, limit)

    def _get(self, key: bytes) -> bytes | None:
        row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return bytes(row[0])

    def _set(self, key: bytes, value: bytes) -> None:
        self._conn.execute("INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (key, bytes(value)))

    def _scan(self, begin: bytes, end: bytes, limit: int | None) -> Iterator[tuple[bytes, bytes]]:
        # Page through the range so writes on the same connection can interleave
        remaining = limit
        lower, lower_op = begin, ">="
        while True:
            batch = self._scan_batch_size if remaining is None else min(self._scan_batch_size, remaining)
            with self._lock:
                rows = self._conn.execute(
                    f"SELECT key, value FROM kv WHERE key {lower_op} ? AND key < ? ORDER BY key LIMIT ?",
                    (lower, end, batch),
                ).fetchall()
            for key, value in rows:
                yield bytes(key), bytes(value)
            if len(rows) < batch:
                return
            if remaining is not None:
                remaining -= len(rows)
                if remaining <= 0:
                    return
            lower, lower_op = bytes(rows[-1][0]), ">"


class SqliteKeyValueStore:
    """Ordered key-value store persisted in one SQLite database file."""

    def __init__(
        self,
        db_path: str | Path,
        *,
        scan_batch_size: int = 512,
        busy_timeout_ms: int = 30000,
    ) -> None:
        if str(db_path) == ":memory:":
            raise ValueError("SqliteKeyValueStore needs a file path; use MemoryKeyValueStore for in-memory data")
        self.db_path = Path(db_path)
        self.scan_batch_size = scan_batch_size
        self.busy_timeout_ms = busy_timeout_ms
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.executescript(_SCHEMA)
        finally:
            conn.close()

    @classmethod
    def from_settings(cls, settings: Settings) -> SqliteKeyValueStore:
        return cls(
            settings.sqlite_path,
            scan_batch_size=settings.scan_batch_size,
            busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=False, cached_statements=0)
        apply_store_pragmas(conn, busy_timeout_ms=self.busy_timeout_ms)
        return conn

    @contextmanager
    def transaction(self) -> Iterator[SqliteTransaction]:
        """Open a write transaction; commit on clean exit, roll back on error."""
        conn = self._connect()
        try:
            with create_span("kv.sqlite.transaction", attributes={"db.system": "sqlite", "db.name": str(self.db_path)}):
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield SqliteTransaction(conn, scan_batch_size=self.scan_batch_size)
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
        finally:
            try:
                conn.close()
            except sqlite3.Error as close_error:
                logger.warning("Failed to close SQLite connection for %s: %s", self.db_path, close_error)

    def count(self) -> int:
        conn = self._connect()
        try:
            return int(conn.execute("SELECT COUNT(*) FROM kv").fetchone()[0])
        finally:
            conn.close()
