"""
Search orchestration over the vector store.
Resolve collection and threshold, embed the (shaped) query, consult the query
cache, then query the store with a descending fallback ladder when the first
pass comes back empty.
"""

import logging
import time
from typing import Dict, List, Optional, Sequence

from . import dao
from .config import SEARCH_HISTORY_ENABLED, get_fallback_thresholds
from .db import ConnectionPool
from .schema import SearchResponse, SearchResult, SystemConfig
from ..util.logging import logger
from ..vector.cache import QueryCache, make_key
from ..vector.embeddings import EmbeddingClient
from ..vector.registry import ModelRegistry
from ..vector.similarity import l2_normalize
from ..vector.store import VectorStore


class SearchOrchestrator:
    """Runs single-collection and fan-out searches."""

    def __init__(
        self,
        pool: ConnectionPool,
        store: VectorStore,
        embeddings: EmbeddingClient,
        registry: ModelRegistry,
        cache: QueryCache,
        fallback_thresholds: Optional[Sequence[float]] = None,
        history_enabled: bool = SEARCH_HISTORY_ENABLED,
    ):
        self.pool = pool
        self.store = store
        self.embeddings = embeddings
        self.registry = registry
        self.cache = cache
        ladder = get_fallback_thresholds() if fallback_thresholds is None else fallback_thresholds
        self.fallback_thresholds = tuple(sorted(ladder, reverse=True))
        self.history_enabled = history_enabled

    def _system_config(self) -> SystemConfig:
        with self.pool.connection() as conn:
            return dao.get_system_config(conn)

    def resolve_threshold(self, model_id: str, threshold: Optional[float], config: SystemConfig) -> float:
        """Caller value, then the model's default, then the global similarity_threshold."""
        if threshold is not None:
            return float(threshold)
        return self.registry.default_threshold(model_id, config.similarity_threshold)

    def search(
        self,
        query: str,
        collection_id: Optional[str] = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> SearchResponse:
        """
        Search one collection.

        Args:
            query: Query text
            collection_id: Target collection; defaults to system_config's default_collection
            limit: Maximum results; defaults to system_config's search_limit
            threshold: Minimum similarity; see resolve_threshold

        Returns:
            SearchResponse with results sorted by descending similarity

        Raises:
            NotFound: unknown collection
            ProviderError: query embedding failed (nothing is cached)
        """
        started = time.perf_counter()
        config = self._system_config()

        collection = self.store.get_collection(collection_id or config.default_collection)
        limit = config.search_limit if limit is None else int(limit)
        if limit <= 0:
            raise ValueError("limit must be positive")

        model_id = collection.embedding_model
        resolved = self.resolve_threshold(model_id, threshold, config)

        shaped = self.registry.shape_query(model_id, query)
        vector = l2_normalize(self.embeddings.embed(shaped, model_id))

        use_cache = config.enable_query_cache
        key = make_key(collection.id, limit, resolved, vector)
        results = self.cache.get(key) if use_cache else None

        if results is not None:
            logger.log_cache("hit", {"collection_id": collection.id, "results": len(results)})
        else:
            if use_cache:
                logger.log_cache("miss", {"collection_id": collection.id})
            generation = self.cache.generation
            results = self._search_with_fallback(vector, collection.id, limit, resolved)
            if use_cache:
                stored = self.cache.put(key, results, ttl=config.cache_ttl, generation=generation)
                logger.log_cache("store" if stored else "discarded", {"collection_id": collection.id, "results": len(results)})

        elapsed_ms = (time.perf_counter() - started) * 1000
        self._record_history(query, collection.id, len(results), elapsed_ms, config)
        logger.log_search(collection.id, query, len(results), elapsed_ms, {"threshold": resolved})

        return SearchResponse(
            results=results,
            total_count=len(results),
            query_time_ms=int(elapsed_ms),
            collection_id=collection.id,
            model=model_id,
        )

    def _search_with_fallback(self, vector, collection_id: str, limit: int, threshold: float) -> List[SearchResult]:
        results = self.store.search(vector, collection_id, limit, threshold)
        if results:
            return results

        ladder = [t for t in self.fallback_thresholds if t < threshold]
        if not ladder:
            return results

        logger.log_fallback(collection_id, threshold, ladder)
        for relaxed in ladder:
            results = self.store.search(vector, collection_id, limit, relaxed)
            if results:
                logger.debug(f"Fallback threshold {relaxed} returned {len(results)} results")
                break
        return results

    def search_all_collections(
        self,
        query: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> Dict[str, SearchResponse]:
        """
        Run search once per collection.

        A collection that fails is logged and left out of the result.
        """
        responses = {}
        for collection in self.store.list_collections():
            try:
                responses[collection.id] = self.search(query, collection.id, limit, threshold)
            except Exception as e:
                logger.log_operation(
                    "search.fan_out", "failed",
                    {"collection_id": collection.id, "error": str(e)},
                    level=logging.WARNING,
                )
        return responses

    def _record_history(self, query: str, collection_id: str, results_count: int, elapsed_ms: float, config: SystemConfig) -> None:
        if not (self.history_enabled and config.enable_search_history):
            return
        try:
            with self.pool.transaction() as conn:
                dao.record_search_history(conn, query, collection_id, results_count, int(elapsed_ms))
        except Exception as e:
            logger.warning(f"Failed to record search history: {e}")

    def recent_searches(self, limit: int = 50) -> List[Dict]:
        with self.pool.connection() as conn:
            return dao.list_search_history(conn, limit)
