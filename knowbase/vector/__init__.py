"""
Vector side of the knowledge store: embeddings, ANN indexes, query cache.
"""

# Package initialization for vector module
from .index import IVectorIndex, SimpleInMemoryVectorIndex
from .faiss_store import FaissVectorIndex
from .types import VectorRecord, QueryResult
from .embeddings import IEmbeddingProvider, DeterministicHashEmbedding, SentenceTransformerEmbedding, EmbeddingClient
from .registry import ModelRegistry, ModelSpec
from .cache import QueryCache

__all__ = [
    'IVectorIndex',
    'SimpleInMemoryVectorIndex',
    'FaissVectorIndex',
    'VectorRecord',
    'QueryResult',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'EmbeddingClient',
    'ModelRegistry',
    'ModelSpec',
    'QueryCache',
]
