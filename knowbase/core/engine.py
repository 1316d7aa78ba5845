"""
Engine wiring.
Builds the connection pool, registry, embedding client, cache, vector store,
search orchestrator and document processor once, and hands them out as one
object; nothing here is a module-level singleton.
"""

from typing import Callable, Optional

from .config import (
    DB_PATH, DB_POOL_SIZE, MODEL_REGISTRY_PATH, QUERY_CACHE_CAPACITY, VERSION, validate_config,
)
from .db import ConnectionPool, init_db
from .ingestion import DocumentProcessor
from .search_service import SearchOrchestrator
from ..util.logging import logger
from ..vector.cache import QueryCache
from ..vector.embeddings import EmbeddingClient, IEmbeddingProvider
from ..vector.index import IVectorIndex
from ..vector.registry import ModelRegistry, ModelSpec
from ..vector.store import VectorStore


class KnowledgeEngine:
    """All engine components sharing one database and one query cache."""

    def __init__(
        self,
        db_path: str = DB_PATH,
        pool_size: int = DB_POOL_SIZE,
        registry: Optional[ModelRegistry] = None,
        provider_factory: Optional[Callable[[ModelSpec], IEmbeddingProvider]] = None,
        index_factory: Optional[Callable[[int], IVectorIndex]] = None,
        cache_capacity: int = QUERY_CACHE_CAPACITY,
        **store_options,
    ):
        for issue in validate_config():
            logger.warning(f"Configuration issue: {issue}")

        self.pool = ConnectionPool(db_path, size=pool_size)
        init_db(self.pool)

        if registry is None:
            registry = ModelRegistry.from_file(MODEL_REGISTRY_PATH) if MODEL_REGISTRY_PATH else ModelRegistry()
        self.registry = registry
        self.cache = QueryCache(cache_capacity)
        self.embeddings = EmbeddingClient(registry, provider_factory)
        self.store = VectorStore(self.pool, registry, self.cache, index_factory, **store_options)
        self.orchestrator = SearchOrchestrator(self.pool, self.store, self.embeddings, registry, self.cache)
        self.processor = DocumentProcessor(self.pool, self.store, self.embeddings, registry)

        logger.log_operation("engine.started", "success", {
            "version": VERSION, "db_path": db_path, "collections": len(self.store.list_collections()),
        })

    def close(self) -> None:
        self.pool.close()

    def __enter__(self) -> "KnowledgeEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
