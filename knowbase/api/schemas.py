"""
Request and response models for the knowledge API.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional


class CollectionCreateRequest(BaseModel):
    name: str
    embedding_model: str
    vector_dimensions: Optional[int] = None
    description: Optional[str] = None
    id: Optional[str] = None

    @field_validator('name')
    @classmethod
    def name_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('name cannot be empty')
        return v.strip()

    @field_validator('vector_dimensions')
    @classmethod
    def dimensions_must_be_positive(cls, v):
        if v is not None and v <= 0:
            raise ValueError('vector_dimensions must be positive')
        return v


class CollectionResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    embedding_model: str
    vector_dimensions: int
    created_at: int
    updated_at: int


class CollectionListResponse(BaseModel):
    collections: List[CollectionResponse]


class CollectionStatsResponse(BaseModel):
    collection_id: str
    collection_name: str
    documents_count: int
    chunks_count: int
    vectors_count: int
    total_size_bytes: int
    created_at: int
    last_updated: int


class DeleteResponse(BaseModel):
    success: bool
    id: str
    vectors_removed: int


class DocumentProcessRequestModel(BaseModel):
    collection_id: str
    title: str
    content: str
    document_id: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    chunk_size: Optional[int] = Field(default=None, gt=0)
    chunk_overlap: Optional[int] = Field(default=None, ge=0)


class DocumentResponse(BaseModel):
    """Document summary; content is omitted from listings."""
    id: str
    collection_id: str
    title: str
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    chunk_count: int
    created_at: int
    updated_at: int


class DocumentListResponse(BaseModel):
    documents: List[DocumentResponse]


class CacheClearResponse(BaseModel):
    success: bool
    entries_removed: int


class ResetResponse(BaseModel):
    success: bool
    message: str


class DocumentProcessResponseModel(BaseModel):
    document_id: str
    chunks_count: int
    vectors_count: int
    processing_time_ms: int


class SearchRequest(BaseModel):
    query: str
    collection_id: Optional[str] = None
    limit: Optional[int] = Field(default=None, gt=0, le=100)
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator('query')
    @classmethod
    def query_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('query cannot be empty')
        return v


class SearchResultModel(BaseModel):
    chunk_id: int
    chunk_text: str
    document_id: str
    document_title: str
    file_name: Optional[str] = None
    similarity: float
    score: float


class SearchResponseModel(BaseModel):
    results: List[SearchResultModel]
    total_count: int
    query_time_ms: int
    collection_id: str
    model: str


class MultiSearchResponse(BaseModel):
    responses: List[SearchResponseModel]


class HealthResponse(BaseModel):
    status: str
    version: str
    metadata_store: bool
    vector_store: bool
    ann_extension: bool
    cache_entries: int
    cache_capacity: int


class StatusResponse(BaseModel):
    health: HealthResponse
    collections_count: int
    total_documents: int
    total_vectors: int
    cache_stats: Dict[str, float]


class ModelInfo(BaseModel):
    model_id: str
    name: str
    dimensions: int
    recommended_chunk_size: int
    recommended_overlap: int
    default_threshold: float
    query_instruction: Optional[str] = None
    language: str
    max_tokens: int
    aliases: List[str] = Field(default_factory=list)


class ModelListResponse(BaseModel):
    models: List[ModelInfo]
