"""
SQLite foundation for the knowledge store.
A bounded pool hands out connections; multi-statement writes go through
transaction(), which commits on success and rolls back on any exception.
"""

import queue
import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Generator, Optional

from .config import DB_PATH, DB_POOL_SIZE, DB_TIMEOUT_SEC, SYSTEM_CONFIG_DEFAULTS, ensure_db_directory
from .errors import StoreConnectionError, QueryError
from ..util.logging import logger

SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS collections (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        embedding_model TEXT NOT NULL,
        vector_dimensions INTEGER NOT NULL,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS documents (
        id TEXT PRIMARY KEY,
        collection_id TEXT NOT NULL REFERENCES collections(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        file_name TEXT,
        file_size INTEGER,
        mime_type TEXT,
        metadata TEXT,
        chunk_count INTEGER DEFAULT 0,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )
    ''',
    # AUTOINCREMENT keeps chunk ids monotonic: a deleted id is never handed out again
    '''
    CREATE TABLE IF NOT EXISTS chunks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
        collection_id TEXT NOT NULL,
        chunk_index INTEGER NOT NULL,
        chunk_text TEXT NOT NULL,
        token_count INTEGER DEFAULT 0,
        created_at INTEGER NOT NULL
    )
    ''',
    # vectors.chunk_id is the row key and equals chunks.id
    '''
    CREATE TABLE IF NOT EXISTS vectors (
        chunk_id INTEGER PRIMARY KEY REFERENCES chunks(id) ON DELETE CASCADE,
        collection_id TEXT NOT NULL,
        dimensions INTEGER NOT NULL,
        embedding BLOB NOT NULL,
        created_at INTEGER NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS system_config (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        description TEXT,
        updated_at INTEGER NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS search_history (
        id TEXT PRIMARY KEY,
        query_text TEXT NOT NULL,
        collection_id TEXT,
        results_count INTEGER DEFAULT 0,
        execution_time INTEGER DEFAULT 0,
        created_at INTEGER NOT NULL
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_documents_collection_id ON documents(collection_id)',
    'CREATE INDEX IF NOT EXISTS idx_chunks_document_id ON chunks(document_id)',
    'CREATE INDEX IF NOT EXISTS idx_chunks_collection_id ON chunks(collection_id)',
    'CREATE INDEX IF NOT EXISTS idx_vectors_collection_id ON vectors(collection_id)',
    'CREATE INDEX IF NOT EXISTS idx_search_history_created_at ON search_history(created_at DESC)',
]


@contextmanager
def translate_errors(action: str = "database operation") -> Generator[None, None, None]:
    """Re-raise sqlite3 failures as StoreConnectionError or QueryError."""
    try:
        yield
    except sqlite3.OperationalError as e:
        message = str(e).lower()
        if "unable to open" in message or "locked" in message or "disk i/o" in message:
            raise StoreConnectionError(f"{action} failed: {e}") from e
        raise QueryError(f"{action} failed: {e}") from e
    except sqlite3.DatabaseError as e:
        raise QueryError(f"{action} failed: {e}") from e


class ConnectionPool:
    """Fixed-size pool of SQLite connections shared across worker threads."""

    def __init__(self, db_path: str = DB_PATH, size: int = DB_POOL_SIZE, timeout: float = DB_TIMEOUT_SEC):
        if size < 1:
            raise ValueError("pool size must be >= 1")

        self.timeout = timeout
        self._uri = False
        if db_path == ":memory:":
            # one shared in-memory database; a single connection avoids shared-cache table locks
            self.db_path = f"file:knowbase-{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._uri = True
            size = 1
        else:
            ensure_db_directory(db_path)
            self.db_path = db_path

        self.size = size
        self._pool: "queue.Queue[sqlite3.Connection]" = queue.Queue(maxsize=size)
        self._all = []
        self._closed = False
        self._lock = threading.Lock()

        with translate_errors("open database"):
            for _ in range(size):
                conn = self._connect()
                self._all.append(conn)
                self._pool.put(conn)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.timeout,
            isolation_level=None,  # explicit BEGIN/COMMIT only
            check_same_thread=False,
            uri=self._uri,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {int(self.timeout * 1000)}")
        if not self._uri:
            conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection for the duration of the block."""
        if self._closed:
            raise StoreConnectionError("Connection pool is closed")
        try:
            conn = self._pool.get(timeout=self.timeout)
        except queue.Empty:
            raise StoreConnectionError(f"No database connection available within {self.timeout}s")
        try:
            with translate_errors():
                yield conn
        finally:
            if conn.in_transaction:
                conn.rollback()
            self._pool.put(conn)

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Run the block in one write transaction; nothing is visible unless it commits."""
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for conn in self._all:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Failed to close connection: {e}")


def init_db(pool: ConnectionPool, now: Optional[int] = None) -> None:
    """Create the schema and seed system_config defaults (existing rows are kept)."""
    ts = int(now if now is not None else time.time())

    with pool.transaction() as conn:
        for statement in SCHEMA:
            conn.execute(statement)
        conn.executemany(
            "INSERT OR IGNORE INTO system_config (key, value, description, updated_at) VALUES (?, ?, ?, ?)",
            [(key, value, description, ts) for key, value, description in SYSTEM_CONFIG_DEFAULTS],
        )


def health_check(pool: ConnectionPool) -> bool:
    """Check that the metadata store answers a trivial query."""
    try:
        with pool.connection() as conn:
            conn.execute("SELECT 1").fetchone()
        return True
    except Exception as e:
        logger.log_health("metadata_store", False, str(e))
        return False
