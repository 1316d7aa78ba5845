"""
HTTP command surface for the knowledge engine.
Routes are thin: they validate input with pydantic, call the engine and map
engine exceptions to status codes in one place.
"""

import json
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    CollectionCreateRequest,
    CollectionResponse,
    CollectionListResponse,
    CollectionStatsResponse,
    DeleteResponse,
    DocumentResponse,
    DocumentListResponse,
    CacheClearResponse,
    ResetResponse,
    DocumentProcessRequestModel,
    DocumentProcessResponseModel,
    SearchRequest,
    SearchResponseModel,
    MultiSearchResponse,
    HealthResponse,
    StatusResponse,
    ModelInfo,
    ModelListResponse,
)
from ..core.config import VERSION, debug_enabled
from ..core.engine import KnowledgeEngine
from ..core.errors import (
    KnowledgeBaseError,
    NotFound,
    ModelNotFound,
    DimensionMismatch,
    ChunkCountExceeded,
    DocumentTooLarge,
    ProviderError,
    StoreConnectionError,
    QueryError,
    IngestionCancelled,
    DocumentAlreadyProcessed,
)
from ..core.ingestion import DocumentProcessRequest
from ..core.schema import Document, StoreHealth
from ..util.logging import logger

# First matching class wins
ERROR_STATUS = [
    (NotFound, 404),
    (ModelNotFound, 404),
    (DimensionMismatch, 422),
    (ChunkCountExceeded, 422),
    (DocumentTooLarge, 413),
    (IngestionCancelled, 409),
    (DocumentAlreadyProcessed, 409),
    (ProviderError, 502),
    (StoreConnectionError, 503),
    (QueryError, 500),
]


def status_for(error: Exception) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def get_engine(request: Request) -> KnowledgeEngine:
    return request.app.state.engine


def _health_model(health: StoreHealth) -> HealthResponse:
    entries, capacity = health.cache_stats
    return HealthResponse(
        status="healthy" if health.healthy else "unhealthy",
        version=VERSION,
        metadata_store=health.metadata_store_ok,
        vector_store=health.vector_store_ok,
        ann_extension=health.ann_extension_ok,
        cache_entries=entries,
        cache_capacity=capacity,
    )


def _document_model(document: Document) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        collection_id=document.collection_id,
        title=document.title,
        file_name=document.file_name,
        file_size=document.file_size,
        mime_type=document.mime_type,
        metadata=json.loads(document.metadata) if document.metadata else {},
        chunk_count=document.chunk_count,
        created_at=document.created_at,
        updated_at=document.updated_at,
    )


def _search_model(response) -> SearchResponseModel:
    return SearchResponseModel(
        results=[r.to_dict() for r in response.results],
        total_count=response.total_count,
        query_time_ms=response.query_time_ms,
        collection_id=response.collection_id,
        model=response.model,
    )


def create_app(engine: Optional[KnowledgeEngine] = None) -> FastAPI:
    """Build the API around an engine (a default one is created when omitted)."""
    app = FastAPI(
        title="Knowledge Base API",
        version=VERSION,
        description="Local semantic knowledge retrieval over SQLite and FAISS",
        docs_url="/docs" if debug_enabled() else None,
        redoc_url="/redoc" if debug_enabled() else None,
    )
    app.state.engine = engine or KnowledgeEngine()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(KnowledgeBaseError)
    async def knowledge_error_handler(request: Request, exc: KnowledgeBaseError):
        status = status_for(exc)
        logger.log_operation("api.error", "failed", {"path": request.url.path, "status": status, "error": str(exc)})
        return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"detail": str(exc), "error": "ValueError"})

    @app.get("/health", response_model=HealthResponse)
    def health_endpoint(engine: KnowledgeEngine = Depends(get_engine)):
        """Check store health."""
        return _health_model(engine.store.health_check())

    @app.get("/status", response_model=StatusResponse)
    def status_endpoint(engine: KnowledgeEngine = Depends(get_engine)):
        status = engine.store.system_status()
        return StatusResponse(
            health=_health_model(status.health),
            collections_count=status.collections_count,
            total_documents=status.total_documents,
            total_vectors=status.total_vectors,
            cache_stats=status.cache_stats,
        )

    @app.get("/models", response_model=ModelListResponse)
    def models_endpoint(engine: KnowledgeEngine = Depends(get_engine)):
        return ModelListResponse(models=[ModelInfo(**m) for m in engine.registry.to_dicts()])

    @app.post("/collections", response_model=CollectionResponse, status_code=201)
    def create_collection_endpoint(req: CollectionCreateRequest, engine: KnowledgeEngine = Depends(get_engine)):
        collection = engine.store.create_collection(
            name=req.name,
            embedding_model=req.embedding_model,
            vector_dimensions=req.vector_dimensions,
            description=req.description,
            collection_id=req.id,
        )
        return CollectionResponse(**collection.__dict__)

    @app.get("/collections", response_model=CollectionListResponse)
    def list_collections_endpoint(engine: KnowledgeEngine = Depends(get_engine)):
        return CollectionListResponse(
            collections=[CollectionResponse(**c.__dict__) for c in engine.store.list_collections()]
        )

    @app.delete("/collections/{collection_id}", response_model=DeleteResponse)
    def delete_collection_endpoint(collection_id: str, engine: KnowledgeEngine = Depends(get_engine)):
        removed = engine.store.delete_collection(collection_id)
        return DeleteResponse(success=True, id=collection_id, vectors_removed=removed)

    @app.get("/collections/{collection_id}/stats", response_model=CollectionStatsResponse)
    def collection_stats_endpoint(collection_id: str, engine: KnowledgeEngine = Depends(get_engine)):
        return CollectionStatsResponse(**engine.store.collection_stats(collection_id).__dict__)

    @app.get("/collections/{collection_id}/documents", response_model=DocumentListResponse)
    def list_documents_endpoint(collection_id: str, engine: KnowledgeEngine = Depends(get_engine)):
        return DocumentListResponse(documents=[_document_model(d) for d in engine.store.list_documents(collection_id)])

    @app.post("/documents", response_model=DocumentProcessResponseModel)
    def process_document_endpoint(req: DocumentProcessRequestModel, engine: KnowledgeEngine = Depends(get_engine)):
        result = engine.processor.process_document(DocumentProcessRequest(**req.model_dump()))
        return DocumentProcessResponseModel(**result.__dict__)

    @app.delete("/documents/{document_id}", response_model=DeleteResponse)
    def delete_document_endpoint(document_id: str, engine: KnowledgeEngine = Depends(get_engine)):
        removed = engine.store.delete_document(document_id)
        return DeleteResponse(success=True, id=document_id, vectors_removed=removed)

    @app.post("/search", response_model=SearchResponseModel)
    def search_endpoint(req: SearchRequest, engine: KnowledgeEngine = Depends(get_engine)):
        response = engine.orchestrator.search(req.query, req.collection_id, req.limit, req.threshold)
        return _search_model(response)

    @app.post("/search/all", response_model=MultiSearchResponse)
    def search_all_endpoint(req: SearchRequest, engine: KnowledgeEngine = Depends(get_engine)):
        responses = engine.orchestrator.search_all_collections(req.query, req.limit, req.threshold)
        return MultiSearchResponse(responses=[_search_model(r) for r in responses.values()])

    @app.post("/cache/clear", response_model=CacheClearResponse)
    def clear_cache_endpoint(expired_only: bool = False, engine: KnowledgeEngine = Depends(get_engine)):
        """Drop cached search results; with expired_only, just the entries past their TTL."""
        removed = engine.cache.purge_expired() if expired_only else engine.cache.clear()
        return CacheClearResponse(success=True, entries_removed=removed)

    @app.post("/reset", response_model=ResetResponse)
    def reset_endpoint(engine: KnowledgeEngine = Depends(get_engine)):
        """Wipe all collections, documents, chunks, vectors and search history."""
        engine.store.reset()
        logger.log_operation("api.reset", "success")
        return ResetResponse(success=True, message="Knowledge base reset")

    return app
