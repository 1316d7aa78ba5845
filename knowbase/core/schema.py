"""
Typed records for the knowledge store.
Rows are read from SQLite into these dataclasses; timestamps are unix seconds.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Tuple


@dataclass
class Collection:
    id: str
    name: str
    embedding_model: str
    vector_dimensions: int
    description: Optional[str] = None
    created_at: int = 0
    updated_at: int = 0


@dataclass
class Document:
    id: str
    collection_id: str
    title: str
    content: str
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    metadata: Optional[str] = None  # JSON text
    chunk_count: int = 0
    created_at: int = 0
    updated_at: int = 0


@dataclass
class Chunk:
    """A stored chunk. id is assigned by SQLite and doubles as the vector key."""
    id: Optional[int]
    document_id: str
    collection_id: str
    chunk_index: int
    chunk_text: str
    token_count: int = 0
    created_at: int = 0


@dataclass
class SearchResult:
    chunk_id: int
    chunk_text: str
    document_id: str
    document_title: str
    file_name: Optional[str]
    similarity: float
    score: float

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class SearchResponse:
    results: List[SearchResult]
    total_count: int
    query_time_ms: int
    collection_id: str
    model: str


@dataclass
class CollectionStats:
    collection_id: str
    collection_name: str
    documents_count: int
    chunks_count: int
    vectors_count: int
    total_size_bytes: int
    created_at: int
    last_updated: int


@dataclass
class StoreHealth:
    metadata_store_ok: bool
    vector_store_ok: bool
    ann_extension_ok: bool
    cache_stats: Tuple[int, int] = (0, 0)

    @property
    def healthy(self) -> bool:
        return self.metadata_store_ok and self.vector_store_ok and self.ann_extension_ok


@dataclass
class SystemStatus:
    health: StoreHealth
    collections_count: int
    total_documents: int
    total_vectors: int
    cache_stats: Dict[str, float] = field(default_factory=dict)


@dataclass
class SystemConfig:
    """Retrieval defaults read from the system_config table."""
    default_collection: str = "default"
    chunk_size: int = 500
    chunk_overlap: int = 50
    search_limit: int = 10
    similarity_threshold: float = 0.7
    cache_ttl: int = 3600
    max_document_size: int = 10 * 1024 * 1024
    enable_search_history: bool = True
    enable_query_cache: bool = True
