"""
Vector store: SQLite holds collections, documents, chunks and the raw float32
vectors; one in-memory ANN index per collection answers nearest-neighbour
queries and is rebuilt from the vectors table on startup.

The vector row key is the owning chunk's id. ANN indexes are only mutated
after the SQLite transaction that wrote the rows has committed, under the
index lock; the query cache is invalidated afterwards, never while the index
lock is held.
"""

import threading
import time
import uuid
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from ..core import dao
from ..core.config import (
    OVERSAMPLE_FACTOR, MAX_CANDIDATES, MIN_CHUNK_CHARS, MAX_CHUNK_CHARS,
    cache_scoped_invalidation, get_vector_index_factory,
)
from ..core.db import ConnectionPool, health_check as metadata_health_check
from ..core.errors import DimensionMismatch, DocumentAlreadyProcessed, NotFound
from ..core.schema import (
    Chunk, Collection, CollectionStats, Document, SearchResult, StoreHealth, SystemStatus,
)
from ..util.logging import logger
from .cache import QueryCache
from .index import IVectorIndex
from .registry import ModelRegistry
from .similarity import content_hash, l2_normalize, l2_to_similarity
from .types import VectorRecord


def _as_vector(embedding) -> np.ndarray:
    return np.ascontiguousarray(np.asarray(embedding, dtype=np.float32))


def _check_width(vector: np.ndarray, collection: Collection) -> None:
    if vector.ndim != 1 or vector.shape[0] != collection.vector_dimensions:
        actual = int(vector.shape[-1]) if vector.ndim else 0
        raise DimensionMismatch(collection.vector_dimensions, actual, collection.id)


class VectorStore:
    """Persistent chunk and vector storage with per-collection ANN indexes."""

    def __init__(
        self,
        pool: ConnectionPool,
        registry: ModelRegistry,
        cache: QueryCache,
        index_factory: Optional[Callable[[int], IVectorIndex]] = None,
        oversample_factor: int = OVERSAMPLE_FACTOR,
        max_candidates: int = MAX_CANDIDATES,
        scoped_invalidation: Optional[bool] = None,
    ):
        self.pool = pool
        self.registry = registry
        self.cache = cache
        self.index_factory = index_factory or get_vector_index_factory()
        self.oversample_factor = oversample_factor
        self.max_candidates = max_candidates
        self.scoped_invalidation = cache_scoped_invalidation() if scoped_invalidation is None else scoped_invalidation

        self._indexes: Dict[str, IVectorIndex] = {}
        self._index_lock = threading.RLock()
        self.rebuild_index()

    # Collections

    def create_collection(
        self,
        name: str,
        embedding_model: str,
        vector_dimensions: Optional[int] = None,
        description: Optional[str] = None,
        collection_id: Optional[str] = None,
    ) -> Collection:
        """
        Create a collection bound to one embedding model.

        Raises:
            ModelNotFound: embedding_model is not registered
            DimensionMismatch: vector_dimensions disagrees with the model
            ValueError: vector_dimensions is not positive
        """
        spec = self.registry.describe(embedding_model)
        dims = spec.dimensions if vector_dimensions is None else int(vector_dimensions)
        if dims <= 0:
            raise ValueError("vector_dimensions must be positive")
        if dims != spec.dimensions:
            raise DimensionMismatch(spec.dimensions, dims)

        now = int(time.time())
        collection = Collection(
            id=collection_id or str(uuid.uuid4()),
            name=name,
            description=description,
            embedding_model=spec.model_id,
            vector_dimensions=dims,
            created_at=now,
            updated_at=now,
        )
        with self.pool.transaction() as conn:
            dao.insert_collection(conn, collection)

        with self._index_lock:
            self._indexes[collection.id] = self.index_factory(dims)

        logger.log_vector_operation("create_collection", collection.id, {"model": spec.model_id, "dimensions": dims})
        return collection

    def get_collection(self, collection_id: str) -> Collection:
        with self.pool.connection() as conn:
            collection = dao.get_collection(conn, collection_id)
        if collection is None:
            raise NotFound("collection", collection_id)
        return collection

    def list_collections(self) -> List[Collection]:
        with self.pool.connection() as conn:
            return dao.list_collections(conn)

    def list_documents(self, collection_id: str) -> List[Document]:
        """Documents of a collection, newest first. Raises NotFound for an unknown collection."""
        with self.pool.connection() as conn:
            if dao.get_collection(conn, collection_id) is None:
                raise NotFound("collection", collection_id)
            return dao.list_documents(conn, collection_id)

    def delete_collection(self, collection_id: str) -> int:
        """Delete a collection with its documents, chunks and vectors. Returns the vector count removed."""
        with self.pool.transaction() as conn:
            if dao.get_collection(conn, collection_id) is None:
                raise NotFound("collection", collection_id)
            removed = conn.execute("DELETE FROM vectors WHERE collection_id = ?", (collection_id,)).rowcount
            conn.execute("DELETE FROM chunks WHERE collection_id = ?", (collection_id,))
            conn.execute("DELETE FROM documents WHERE collection_id = ?", (collection_id,))
            conn.execute("DELETE FROM collections WHERE id = ?", (collection_id,))

        with self._index_lock:
            self._indexes.pop(collection_id, None)

        self._invalidate_cache(collection_id)
        logger.log_vector_operation("delete_collection", collection_id, {"vectors_removed": removed})
        return removed

    # Writes

    def insert_vectors(self, collection_id: str, records: Sequence[VectorRecord]) -> int:
        """
        Persist vectors for chunks that already exist in the collection.

        All records are validated before anything is written; the batch is
        stored atomically.

        Raises:
            NotFound: unknown collection, or a chunk id outside the collection
            DimensionMismatch: a vector's width differs from the collection's
        """
        if not records:
            return 0

        collection = self.get_collection(collection_id)
        vectors = []
        for record in records:
            vector = _as_vector(record.embedding)
            _check_width(vector, collection)
            vectors.append(vector)

        chunk_ids = [int(r.chunk_id) for r in records]
        with self.pool.transaction() as conn:
            owners = dao.chunk_collections(conn, chunk_ids)
            for chunk_id in chunk_ids:
                if owners.get(chunk_id) != collection_id:
                    raise NotFound("chunk", f"{chunk_id}@{collection_id}")
            self._write_vectors(conn, collection, chunk_ids, vectors)
            dao.touch_collection(conn, collection_id)

        self._index_add(collection, chunk_ids, vectors)
        self._invalidate_cache(collection_id)
        logger.log_vector_operation("insert_vectors", collection_id, {"count": len(chunk_ids)})
        return len(chunk_ids)

    def add_document_chunks(self, document: Document, chunks: Sequence[Chunk], embeddings: Sequence) -> List[int]:
        """
        Store a document's chunks and their vectors in one transaction.

        Chunk ids are assigned by SQLite and reused as the vector keys. The
        document row is created if it does not exist yet.

        Returns:
            The new chunk ids, in chunk order

        Raises:
            DocumentAlreadyProcessed: the document gained chunks before this write (nothing is written)
        """
        if len(chunks) != len(embeddings):
            raise ValueError(f"{len(chunks)} chunks but {len(embeddings)} embeddings")

        collection = self.get_collection(document.collection_id)
        vectors = []
        for embedding in embeddings:
            vector = _as_vector(embedding)
            _check_width(vector, collection)
            vectors.append(vector)

        with self.pool.transaction() as conn:
            if dao.get_document(conn, document.id) is None:
                dao.insert_document(conn, document)
            else:
                stored = dao.count_document_chunks(conn, document.id)
                if stored:
                    raise DocumentAlreadyProcessed(document.id, stored)
            chunk_ids = dao.insert_chunks(conn, list(chunks))
            self._write_vectors(conn, collection, chunk_ids, vectors)
            dao.set_document_chunk_count(conn, document.id, len(chunk_ids))
            dao.touch_collection(conn, collection.id)

        self._index_add(collection, chunk_ids, vectors)
        self._invalidate_cache(collection.id)
        logger.log_vector_operation(
            "add_document_chunks", collection.id, {"document_id": document.id, "chunks": len(chunk_ids)}
        )
        return chunk_ids

    def delete_document(self, document_id: str) -> int:
        """Delete a document with its chunks and vectors. Returns the vector count removed."""
        with self.pool.transaction() as conn:
            document = dao.get_document(conn, document_id)
            if document is None:
                raise NotFound("document", document_id)
            chunk_ids = [r["id"] for r in conn.execute(
                "SELECT id FROM chunks WHERE document_id = ?", (document_id,)
            ).fetchall()]
            removed = conn.execute(
                "DELETE FROM vectors WHERE chunk_id IN (SELECT id FROM chunks WHERE document_id = ?)",
                (document_id,),
            ).rowcount
            conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            dao.touch_collection(conn, document.collection_id)

        with self._index_lock:
            index = self._indexes.get(document.collection_id)
            if index is not None:
                index.remove(chunk_ids)

        self._invalidate_cache(document.collection_id)
        logger.log_vector_operation(
            "delete_document", document.collection_id, {"document_id": document_id, "vectors_removed": removed}
        )
        return removed

    def _write_vectors(self, conn, collection: Collection, chunk_ids: List[int], vectors: List[np.ndarray]) -> None:
        now = int(time.time())
        conn.executemany(
            "INSERT OR REPLACE INTO vectors (chunk_id, collection_id, dimensions, embedding, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            [(chunk_id, collection.id, collection.vector_dimensions, vector.tobytes(), now)
             for chunk_id, vector in zip(chunk_ids, vectors)],
        )

    def _index_add(self, collection: Collection, chunk_ids: List[int], vectors: List[np.ndarray]) -> None:
        records = [VectorRecord(chunk_id=cid, embedding=vec) for cid, vec in zip(chunk_ids, vectors)]
        with self._index_lock:
            index = self._indexes.get(collection.id)
            if index is None:
                index = self.index_factory(collection.vector_dimensions)
                self._indexes[collection.id] = index
            index.add(records)

    def _invalidate_cache(self, collection_id: str) -> None:
        if self.scoped_invalidation:
            self.cache.invalidate_collection(collection_id)
        else:
            self.cache.clear()

    # Reads

    def search(self, query_vector, collection_id: str, limit: int, threshold: float) -> List[SearchResult]:
        """
        Nearest-neighbour search within one collection.

        The query is L2-normalized and the index over-fetched; hits below the
        threshold, duplicate chunk texts and chunks outside the length window
        are dropped. Results are grouped by document (groups ordered by best
        score), then sorted by descending similarity and cut to limit.

        Raises:
            NotFound: unknown collection
            DimensionMismatch: query width differs from the collection's
        """
        collection = self.get_collection(collection_id)
        query = _as_vector(query_vector)
        _check_width(query, collection)
        if limit <= 0:
            return []

        query = l2_normalize(query)
        candidates = min(limit * self.oversample_factor, self.max_candidates)

        with self._index_lock:
            index = self._indexes.get(collection_id)
            hits = index.search(query, candidates) if index is not None else []

        scored = []
        for hit in hits:
            similarity = l2_to_similarity(hit.distance)
            if similarity >= threshold:
                scored.append((hit.chunk_id, similarity))
        if not scored:
            return []

        rows = self._load_chunk_rows(collection_id, [chunk_id for chunk_id, _ in scored])

        seen = set()
        groups: Dict[str, List[SearchResult]] = {}
        for chunk_id, similarity in scored:
            row = rows.get(chunk_id)
            if row is None:
                continue
            text = row["chunk_text"]
            digest = content_hash(text)
            if digest in seen:
                continue
            seen.add(digest)
            if not MIN_CHUNK_CHARS <= len(text) <= MAX_CHUNK_CHARS:
                continue
            groups.setdefault(row["document_id"], []).append(SearchResult(
                chunk_id=chunk_id,
                chunk_text=text,
                document_id=row["document_id"],
                document_title=row["title"],
                file_name=row["file_name"],
                similarity=similarity,
                score=similarity,
            ))

        ordered_groups = sorted(groups.values(), key=lambda g: max(r.similarity for r in g), reverse=True)
        flat = [result for group in ordered_groups for result in group]
        flat.sort(key=lambda r: r.similarity, reverse=True)
        return flat[:limit]

    def _load_chunk_rows(self, collection_id: str, chunk_ids: List[int]) -> Dict[int, dict]:
        placeholders = ",".join("?" * len(chunk_ids))
        with self.pool.connection() as conn:
            rows = conn.execute(
                "SELECT c.id, c.chunk_text, c.document_id, d.title, d.file_name "
                "FROM chunks c JOIN documents d ON d.id = c.document_id "
                f"WHERE c.collection_id = ? AND c.id IN ({placeholders})",
                [collection_id, *chunk_ids],
            ).fetchall()
        return {r["id"]: r for r in rows}

    def count_vectors(self, collection_id: Optional[str] = None) -> int:
        with self.pool.connection() as conn:
            if collection_id is None:
                return conn.execute("SELECT COUNT(*) FROM vectors").fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM vectors WHERE collection_id = ?", (collection_id,)
            ).fetchone()[0]

    def collection_stats(self, collection_id: str) -> CollectionStats:
        with self.pool.connection() as conn:
            collection = dao.get_collection(conn, collection_id)
            if collection is None:
                raise NotFound("collection", collection_id)
            documents = dao.count_documents(conn, collection_id)
            chunks = dao.count_chunks(conn, collection_id)
            size = dao.total_content_bytes(conn, collection_id)
        return CollectionStats(
            collection_id=collection.id,
            collection_name=collection.name,
            documents_count=documents,
            chunks_count=chunks,
            vectors_count=self.count_vectors(collection_id),
            total_size_bytes=size,
            created_at=collection.created_at,
            last_updated=collection.updated_at,
        )

    def system_status(self) -> SystemStatus:
        health = self.health_check()
        with self.pool.connection() as conn:
            collections = dao.count_collections(conn)
            documents = dao.count_documents(conn)
        return SystemStatus(
            health=health,
            collections_count=collections,
            total_documents=documents,
            total_vectors=self.count_vectors(),
            cache_stats=self.cache.stats(),
        )

    # Maintenance

    def rebuild_index(self, collection_id: Optional[str] = None) -> Dict[str, int]:
        """
        Reload ANN indexes from the persisted vectors table.

        Returns:
            Vector count loaded per collection
        """
        with self.pool.connection() as conn:
            if collection_id is None:
                collections = dao.list_collections(conn)
            else:
                collection = dao.get_collection(conn, collection_id)
                if collection is None:
                    raise NotFound("collection", collection_id)
                collections = [collection]
            loaded = {c.id: self._load_records(conn, c) for c in collections}

        fresh = {}
        for collection in collections:
            index = self.index_factory(collection.vector_dimensions)
            index.add(loaded[collection.id])
            fresh[collection.id] = index

        with self._index_lock:
            if collection_id is None:
                self._indexes = fresh
            else:
                self._indexes.update(fresh)

        counts = {cid: len(records) for cid, records in loaded.items()}
        logger.log_vector_operation("rebuild_index", collection_id or "*", {"collections": len(counts), "vectors": sum(counts.values())})
        return counts

    def _load_records(self, conn, collection: Collection) -> List[VectorRecord]:
        records = []
        rows = conn.execute(
            "SELECT chunk_id, dimensions, embedding, created_at FROM vectors WHERE collection_id = ? ORDER BY chunk_id",
            (collection.id,),
        ).fetchall()
        for row in rows:
            if row["dimensions"] != collection.vector_dimensions:
                logger.warning(f"Skipping vector for chunk {row['chunk_id']}: {row['dimensions']} dims in a {collection.vector_dimensions}-dim collection")
                continue
            embedding = np.frombuffer(row["embedding"], dtype=np.float32)
            records.append(VectorRecord(chunk_id=row["chunk_id"], embedding=embedding, created_at=row["created_at"]))
        return records

    def reset(self) -> None:
        """Wipe all knowledge data. system_config is kept."""
        with self.pool.transaction() as conn:
            for table in ("vectors", "chunks", "documents", "collections", "search_history"):
                conn.execute(f"DELETE FROM {table}")

        with self._index_lock:
            self._indexes = {}

        self.cache.clear()
        logger.log_vector_operation("reset", "*")

    def index_size(self, collection_id: str) -> int:
        with self._index_lock:
            index = self._indexes.get(collection_id)
            return len(index) if index is not None else 0

    def health_check(self) -> StoreHealth:
        """Probe the metadata store, the loaded indexes and the ANN backend."""
        metadata_ok = metadata_health_check(self.pool)

        vector_ok = False
        if metadata_ok:
            try:
                with self._index_lock:
                    indexed = sum(len(index) for index in self._indexes.values())
                vector_ok = indexed == self.count_vectors()
                if not vector_ok:
                    logger.log_health("vector_store", False, f"{indexed} indexed vectors for {self.count_vectors()} rows")
            except Exception as e:
                logger.log_health("vector_store", False, str(e))

        ann_ok = self._probe_ann()
        return StoreHealth(
            metadata_store_ok=metadata_ok,
            vector_store_ok=vector_ok,
            ann_extension_ok=ann_ok,
            cache_stats=(len(self.cache), self.cache.capacity),
        )

    def _probe_ann(self) -> bool:
        try:
            probe = self.index_factory(2)
            probe.add([
                VectorRecord(chunk_id=1, embedding=np.array([1.0, 0.0], dtype=np.float32)),
                VectorRecord(chunk_id=2, embedding=np.array([0.0, 1.0], dtype=np.float32)),
            ])
            hits = probe.search(np.array([1.0, 0.0], dtype=np.float32), 2)
            ok = [h.chunk_id for h in hits] == [1, 2] and abs(hits[1].distance - np.sqrt(2.0)) < 1e-4
            if not ok:
                logger.log_health("ann_extension", False, f"unexpected probe result {hits}")
            return ok
        except Exception as e:
            logger.log_health("ann_extension", False, str(e))
            return False
