"""
Row-level access to the knowledge metadata tables.
Every function takes an open connection so callers decide the transaction
boundary; sqlite3 errors are translated by the pool that lent the connection.
"""

import sqlite3
import time
import uuid
from typing import Dict, List, Optional

from .schema import Collection, Document, Chunk, SystemConfig
from ..util.logging import logger


def _now() -> int:
    return int(time.time())


def _to_collection(row: sqlite3.Row) -> Collection:
    return Collection(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        embedding_model=row["embedding_model"],
        vector_dimensions=row["vector_dimensions"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        collection_id=row["collection_id"],
        title=row["title"],
        content=row["content"],
        file_name=row["file_name"],
        file_size=row["file_size"],
        mime_type=row["mime_type"],
        metadata=row["metadata"],
        chunk_count=row["chunk_count"] or 0,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        collection_id=row["collection_id"],
        chunk_index=row["chunk_index"],
        chunk_text=row["chunk_text"],
        token_count=row["token_count"] or 0,
        created_at=row["created_at"],
    )


# Collections

def insert_collection(conn: sqlite3.Connection, collection: Collection) -> None:
    ts = collection.created_at or _now()
    conn.execute(
        "INSERT INTO collections (id, name, description, embedding_model, vector_dimensions, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        (collection.id, collection.name, collection.description, collection.embedding_model,
         collection.vector_dimensions, ts, collection.updated_at or ts),
    )


def get_collection(conn: sqlite3.Connection, collection_id: str) -> Optional[Collection]:
    row = conn.execute("SELECT * FROM collections WHERE id = ?", (collection_id,)).fetchone()
    return _to_collection(row) if row else None


def list_collections(conn: sqlite3.Connection) -> List[Collection]:
    rows = conn.execute("SELECT * FROM collections ORDER BY created_at, id").fetchall()
    return [_to_collection(r) for r in rows]


def touch_collection(conn: sqlite3.Connection, collection_id: str) -> None:
    conn.execute("UPDATE collections SET updated_at = ? WHERE id = ?", (_now(), collection_id))


# Documents

def insert_document(conn: sqlite3.Connection, document: Document) -> None:
    ts = document.created_at or _now()
    conn.execute(
        "INSERT INTO documents (id, collection_id, title, content, file_name, file_size, mime_type, metadata, "
        "chunk_count, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (document.id, document.collection_id, document.title, document.content, document.file_name,
         document.file_size, document.mime_type, document.metadata, document.chunk_count, ts,
         document.updated_at or ts),
    )


def get_document(conn: sqlite3.Connection, document_id: str) -> Optional[Document]:
    row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
    return _to_document(row) if row else None


def list_documents(conn: sqlite3.Connection, collection_id: str) -> List[Document]:
    """Documents of a collection, newest first."""
    rows = conn.execute(
        "SELECT * FROM documents WHERE collection_id = ? ORDER BY created_at DESC, id", (collection_id,)
    ).fetchall()
    return [_to_document(r) for r in rows]


def set_document_chunk_count(conn: sqlite3.Connection, document_id: str, chunk_count: int) -> None:
    conn.execute(
        "UPDATE documents SET chunk_count = ?, updated_at = ? WHERE id = ?",
        (chunk_count, _now(), document_id),
    )


# Chunks

def insert_chunks(conn: sqlite3.Connection, chunks: List[Chunk]) -> List[int]:
    """Insert chunks in order and return the ids SQLite assigned to them."""
    ids = []
    ts = _now()
    for chunk in chunks:
        cursor = conn.execute(
            "INSERT INTO chunks (document_id, collection_id, chunk_index, chunk_text, token_count, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (chunk.document_id, chunk.collection_id, chunk.chunk_index, chunk.chunk_text,
             chunk.token_count, chunk.created_at or ts),
        )
        ids.append(cursor.lastrowid)
    return ids


def get_chunks_by_document(conn: sqlite3.Connection, document_id: str) -> List[Chunk]:
    rows = conn.execute(
        "SELECT * FROM chunks WHERE document_id = ? ORDER BY chunk_index", (document_id,)
    ).fetchall()
    return [_to_chunk(r) for r in rows]


def chunk_collections(conn: sqlite3.Connection, chunk_ids: List[int]) -> Dict[int, str]:
    """Map each existing chunk id to its collection id."""
    found = {}
    # stay well below SQLite's bound-parameter limit
    for offset in range(0, len(chunk_ids), 500):
        batch = chunk_ids[offset:offset + 500]
        placeholders = ",".join("?" * len(batch))
        rows = conn.execute(
            f"SELECT id, collection_id FROM chunks WHERE id IN ({placeholders})", batch
        ).fetchall()
        found.update({r["id"]: r["collection_id"] for r in rows})
    return found


def chunks_missing_vectors(conn: sqlite3.Connection, collection_id: Optional[str] = None) -> List[Chunk]:
    """Chunks that have no row in the vectors table."""
    sql = ("SELECT c.* FROM chunks c LEFT JOIN vectors v ON v.chunk_id = c.id "
           "WHERE v.chunk_id IS NULL")
    params = ()
    if collection_id is not None:
        sql += " AND c.collection_id = ?"
        params = (collection_id,)
    rows = conn.execute(sql + " ORDER BY c.id", params).fetchall()
    return [_to_chunk(r) for r in rows]


# Counts

def count_documents(conn: sqlite3.Connection, collection_id: Optional[str] = None) -> int:
    if collection_id is None:
        return conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
    return conn.execute("SELECT COUNT(*) FROM documents WHERE collection_id = ?", (collection_id,)).fetchone()[0]


def count_chunks(conn: sqlite3.Connection, collection_id: str) -> int:
    return conn.execute("SELECT COUNT(*) FROM chunks WHERE collection_id = ?", (collection_id,)).fetchone()[0]


def count_document_chunks(conn: sqlite3.Connection, document_id: str) -> int:
    return conn.execute("SELECT COUNT(*) FROM chunks WHERE document_id = ?", (document_id,)).fetchone()[0]


def count_collections(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM collections").fetchone()[0]


def total_content_bytes(conn: sqlite3.Connection, collection_id: str) -> int:
    row = conn.execute(
        "SELECT SUM(LENGTH(CAST(content AS BLOB))) FROM documents WHERE collection_id = ?", (collection_id,)
    ).fetchone()
    return row[0] or 0


# System configuration

def set_config(conn: sqlite3.Connection, key: str, value: str, description: Optional[str] = None) -> None:
    conn.execute(
        "INSERT INTO system_config (key, value, description, updated_at) VALUES (?, ?, ?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
        "description = COALESCE(excluded.description, system_config.description), updated_at = excluded.updated_at",
        (key, str(value), description, _now()),
    )


def _parse(value: Optional[str], cast, default):
    if value is None:
        return default
    try:
        if cast is bool:
            return value.strip().lower() in ("1", "true", "yes", "on")
        return cast(value)
    except ValueError:
        logger.warning(f"Ignoring malformed system_config value {value!r}")
        return default


def get_system_config(conn: sqlite3.Connection) -> SystemConfig:
    """Read retrieval defaults; missing or malformed rows fall back to SystemConfig defaults."""
    rows = {r["key"]: r["value"] for r in conn.execute("SELECT key, value FROM system_config").fetchall()}
    defaults = SystemConfig()
    return SystemConfig(
        default_collection=rows.get("default_collection") or defaults.default_collection,
        chunk_size=_parse(rows.get("chunk_size"), int, defaults.chunk_size),
        chunk_overlap=_parse(rows.get("chunk_overlap"), int, defaults.chunk_overlap),
        search_limit=_parse(rows.get("search_limit"), int, defaults.search_limit),
        similarity_threshold=_parse(rows.get("similarity_threshold"), float, defaults.similarity_threshold),
        cache_ttl=_parse(rows.get("cache_ttl"), int, defaults.cache_ttl),
        max_document_size=_parse(rows.get("max_document_size"), int, defaults.max_document_size),
        enable_search_history=_parse(rows.get("enable_search_history"), bool, defaults.enable_search_history),
        enable_query_cache=_parse(rows.get("enable_query_cache"), bool, defaults.enable_query_cache),
    )


# Search history

def record_search_history(conn: sqlite3.Connection, query: str, collection_id: str, results_count: int, execution_ms: int) -> str:
    entry_id = str(uuid.uuid4())
    conn.execute(
        "INSERT INTO search_history (id, query_text, collection_id, results_count, execution_time, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (entry_id, query, collection_id, results_count, execution_ms, _now()),
    )
    return entry_id


def list_search_history(conn: sqlite3.Connection, limit: int = 50) -> List[Dict]:
    rows = conn.execute(
        "SELECT id, query_text, collection_id, results_count, execution_time, created_at "
        "FROM search_history ORDER BY created_at DESC, rowid DESC LIMIT ?", (limit,)
    ).fetchall()
    return [dict(r) for r in rows]
