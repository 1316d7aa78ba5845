"""
Document ingestion: size check, chunking, batched embedding and a single
transactional write of chunks plus vectors.
Progress is reported through an optional callback; a cancel event is honoured
at every embedding batch boundary and nothing is persisted on cancellation.
"""

import json
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from . import dao
from .chunker import chunk_text, enforce_chunk_limit, truncate_for_embedding
from .config import MAX_CHUNKS_PER_DOCUMENT, WARN_CHUNKS_PER_DOCUMENT
from .db import ConnectionPool
from .errors import DocumentAlreadyProcessed, DocumentTooLarge, IngestionCancelled
from .schema import Chunk, Document, SystemConfig
from ..util.logging import logger
from ..vector.embeddings import EmbeddingClient
from ..vector.registry import ModelRegistry
from ..vector.store import VectorStore
from ..vector.types import VectorRecord


@dataclass
class DocumentProcessRequest:
    collection_id: str
    title: str
    content: str
    document_id: Optional[str] = None  # reuse an existing document record
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    chunk_size: Optional[int] = None
    chunk_overlap: Optional[int] = None


@dataclass
class DocumentProcessResponse:
    document_id: str
    chunks_count: int
    vectors_count: int
    processing_time_ms: int


@dataclass
class ProcessingProgress:
    current: int
    total: int
    percentage: float
    stage: str
    message: str


ProgressCallback = Callable[[ProcessingProgress], None]


class DocumentProcessor:
    """Turns a document into stored chunks and vectors."""

    def __init__(
        self,
        pool: ConnectionPool,
        store: VectorStore,
        embeddings: EmbeddingClient,
        registry: ModelRegistry,
        max_chunks: int = MAX_CHUNKS_PER_DOCUMENT,
        warn_chunks: int = WARN_CHUNKS_PER_DOCUMENT,
    ):
        self.pool = pool
        self.store = store
        self.embeddings = embeddings
        self.registry = registry
        self.max_chunks = max_chunks
        self.warn_chunks = warn_chunks

    def resolve_chunk_params(self, model_id: str, request: DocumentProcessRequest, config: SystemConfig):
        """Explicit request values, then the model's recommendation, then system_config."""
        if self.registry.is_known(model_id):
            return self.registry.resolve_chunk_params(model_id, request.chunk_size, request.chunk_overlap)
        size = request.chunk_size if request.chunk_size is not None else config.chunk_size
        overlap = request.chunk_overlap if request.chunk_overlap is not None else config.chunk_overlap
        return size, overlap

    def process_document(
        self,
        request: DocumentProcessRequest,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> DocumentProcessResponse:
        """
        Ingest one document.

        Args:
            request: Document content and options
            progress: Optional callback receiving ProcessingProgress events
            cancel_event: Optional event; when set, ingestion stops at the next batch boundary

        Returns:
            DocumentProcessResponse with chunk and vector counts

        Raises:
            DocumentTooLarge: content exceeds max_document_size
            ChunkCountExceeded: too many chunks
            NotFound: unknown collection
            ProviderError: embedding failed (nothing is persisted)
            IngestionCancelled: cancel_event was set (nothing is persisted)
        """
        started = time.perf_counter()

        def notify(current: int, total: int, percentage: float, stage: str, message: str) -> None:
            if progress is not None:
                progress(ProcessingProgress(current, total, round(percentage, 2), stage, message))

        with self.pool.connection() as conn:
            config = dao.get_system_config(conn)
            existing = dao.get_document(conn, request.document_id) if request.document_id else None

        size = request.file_size if request.file_size is not None else len(request.content.encode("utf-8"))
        if size > config.max_document_size:
            raise DocumentTooLarge(size, config.max_document_size)

        if existing is not None and existing.chunk_count > 0:
            return self._already_processed(existing.id, started)

        collection = self.store.get_collection(existing.collection_id if existing else request.collection_id)
        model_id = collection.embedding_model
        document_id = request.document_id or str(uuid.uuid4())
        chunk_size, overlap = self.resolve_chunk_params(model_id, request, config)

        logger.log_ingestion("started", document_id, {
            "collection_id": collection.id, "bytes": size, "chunk_size": chunk_size, "overlap": overlap,
        })
        notify(0, 0, 0.0, "chunking", "Chunking document")

        pieces = chunk_text(request.content, chunk_size, overlap)
        enforce_chunk_limit(pieces, self.max_chunks, self.warn_chunks)
        total = len(pieces)
        notify(total, total, 20.0, "embedding", f"Chunked into {total} chunks")
        logger.log_ingestion("chunked", document_id, {"chunks": total})

        texts = [truncate_for_embedding(p.text) for p in pieces]
        vectors = self._embed(document_id, texts, model_id, notify, cancel_event)

        if cancel_event is not None and cancel_event.is_set():
            self._cancelled(document_id, len(vectors), total)

        now = int(time.time())
        document = existing or Document(
            id=document_id,
            collection_id=collection.id,
            title=request.title,
            content=request.content,
            file_name=request.file_name,
            file_size=size,
            mime_type=request.mime_type,
            metadata=json.dumps(request.metadata, ensure_ascii=False) if request.metadata else None,
            created_at=now,
            updated_at=now,
        )
        chunks = [
            Chunk(
                id=None,
                document_id=document.id,
                collection_id=collection.id,
                chunk_index=p.index,
                chunk_text=p.text,
                token_count=p.token_count,
                created_at=now,
            )
            for p in pieces
        ]
        try:
            chunk_ids = self.store.add_document_chunks(document, chunks, vectors)
        except DocumentAlreadyProcessed:
            # a concurrent request stored this document while we were embedding
            return self._already_processed(document.id, started)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        notify(len(chunk_ids), len(chunk_ids), 100.0, "completed",
               f"Stored {len(chunk_ids)} vectors in {elapsed_ms}ms")
        logger.log_ingestion("completed", document.id, {"chunks": len(chunk_ids), "duration_ms": elapsed_ms})

        return DocumentProcessResponse(
            document_id=document.id,
            chunks_count=len(chunk_ids),
            vectors_count=len(chunk_ids),
            processing_time_ms=elapsed_ms,
        )

    def _embed(self, document_id: str, texts: List[str], model_id: str, notify, cancel_event) -> List:
        batch_size = self.embeddings.max_batch_size
        total = len(texts)
        total_batches = (total + batch_size - 1) // batch_size
        vectors = []

        for batch_index, offset in enumerate(range(0, total, batch_size)):
            if cancel_event is not None and cancel_event.is_set():
                self._cancelled(document_id, offset, total)

            batch = texts[offset:offset + batch_size]
            notify(offset, total, 20.0 + batch_index / total_batches * 70.0, "embedding",
                   f"Embedding batch {batch_index + 1}/{total_batches} ({len(batch)} chunks)")

            try:
                vectors.extend(self.embeddings.embed_batch(batch, model_id))
            except Exception as e:
                logger.log_ingestion("embedding", document_id, {"batch": batch_index + 1, "error": str(e)}, status="failed")
                raise

            done = offset + len(batch)
            notify(done, total, 20.0 + done / total * 70.0, "embedding",
                   f"Batch {batch_index + 1}/{total_batches} done, {done}/{total} chunks")

        return vectors

    def reembed_missing_vectors(self, collection_id: Optional[str] = None) -> Dict[str, int]:
        """
        Embed stored chunks that have no vector row, e.g. after a partial restore.

        Returns:
            Number of vectors written per collection
        """
        with self.pool.connection() as conn:
            missing = dao.chunks_missing_vectors(conn, collection_id)

        by_collection: Dict[str, List[Chunk]] = {}
        for chunk in missing:
            by_collection.setdefault(chunk.collection_id, []).append(chunk)

        written = {}
        for cid, chunks in by_collection.items():
            model_id = self.store.get_collection(cid).embedding_model
            vectors = self.embeddings.embed_batch([truncate_for_embedding(c.chunk_text) for c in chunks], model_id)
            records = [VectorRecord(chunk_id=c.id, embedding=v) for c, v in zip(chunks, vectors)]
            written[cid] = self.store.insert_vectors(cid, records)
            logger.log_vector_operation("reembed", cid, {"vectors": written[cid]})
        return written

    def _cancelled(self, document_id: str, done: int, total: int) -> None:
        logger.log_ingestion("cancelled", document_id, {"embedded": done, "total": total}, status="cancelled")
        raise IngestionCancelled(f"Ingestion of document {document_id} cancelled after {done}/{total} chunks")

    def _already_processed(self, document_id: str, started: float) -> DocumentProcessResponse:
        with self.pool.connection() as conn:
            chunks = dao.count_document_chunks(conn, document_id)
            vectors = conn.execute(
                "SELECT COUNT(*) FROM vectors WHERE chunk_id IN (SELECT id FROM chunks WHERE document_id = ?)",
                (document_id,),
            ).fetchone()[0]
        logger.log_ingestion("skipped", document_id, {"reason": "already processed", "chunks": chunks})
        return DocumentProcessResponse(
            document_id=document_id,
            chunks_count=chunks,
            vectors_count=vectors,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
        )
