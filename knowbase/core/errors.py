"""
Typed failures for the knowledge engine.
Storage and provider errors are raised to the caller; only multi-collection
fan-out and search-history writes log and continue.
"""


class KnowledgeBaseError(Exception):
    """Base class for all engine errors."""


class StoreConnectionError(KnowledgeBaseError):
    """The metadata or vector store could not be reached."""


class QueryError(KnowledgeBaseError):
    """A statement failed or returned a malformed result."""


class DimensionMismatch(KnowledgeBaseError):
    """A vector's width differs from its collection's configured width."""

    def __init__(self, expected: int, actual: int, collection_id: str = None):
        self.expected = expected
        self.actual = actual
        self.collection_id = collection_id
        where = f" for collection '{collection_id}'" if collection_id else ""
        super().__init__(f"Vector dimension {actual} does not match expected dimension {expected}{where}")


class ModelNotFound(KnowledgeBaseError):
    """Unknown embedding model identifier."""

    def __init__(self, model_id: str):
        self.model_id = model_id
        super().__init__(f"Unknown embedding model: {model_id}")


class DocumentTooLarge(KnowledgeBaseError):
    """Document exceeds the ingestion size ceiling."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Document size {size} bytes exceeds maximum limit of {limit} bytes")


class ChunkCountExceeded(KnowledgeBaseError):
    """Document produced more chunks than allowed."""

    def __init__(self, count: int, limit: int):
        self.count = count
        self.limit = limit
        super().__init__(f"Document chunk count {count} exceeds maximum limit ({limit})")


class ProviderError(KnowledgeBaseError):
    """The embedding provider failed or returned an unusable response."""


class NotFound(KnowledgeBaseError):
    """Unknown collection or document id."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found")


class IngestionCancelled(KnowledgeBaseError):
    """Ingestion was aborted by the caller before anything was committed."""


class DocumentAlreadyProcessed(KnowledgeBaseError):
    """The document already has stored chunks; a second write would duplicate them."""

    def __init__(self, document_id: str, chunk_count: int):
        self.document_id = document_id
        self.chunk_count = chunk_count
        super().__init__(f"Document {document_id} already has {chunk_count} chunks")
