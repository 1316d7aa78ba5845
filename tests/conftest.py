"""
Shared fixtures: a small test model, controllable embedding providers and
engines backed by a temporary SQLite file.
"""

import numpy as np
import pytest

from knowbase.core.engine import KnowledgeEngine
from knowbase.core.schema import Chunk, Document
from knowbase.vector.embeddings import IEmbeddingProvider, DeterministicHashEmbedding
from knowbase.vector.faiss_store import FaissVectorIndex
from knowbase.vector.index import SimpleInMemoryVectorIndex
from knowbase.vector.registry import DEFAULT_MODELS, ModelRegistry, ModelSpec

DIM = 8

MINI_MODEL = ModelSpec(
    model_id="test-mini",
    name="Test Mini",
    dimensions=DIM,
    recommended_chunk_size=40,
    recommended_overlap=5,
    default_threshold=0.5,
    language="en",
)


def unit(axis: int, dim: int = DIM) -> np.ndarray:
    v = np.zeros(dim, dtype=np.float32)
    v[axis] = 1.0
    return v


def vec_at(similarity: float, axis: int = 1, dim: int = DIM) -> np.ndarray:
    """Unit vector whose cosine similarity with unit(0) is `similarity`."""
    v = np.zeros(dim, dtype=np.float32)
    v[0] = similarity
    v[axis] = np.sqrt(max(0.0, 1.0 - similarity * similarity))
    return v


class ScriptedEmbedding(IEmbeddingProvider):
    """Returns preset vectors for known texts, hash vectors otherwise; records every call."""

    def __init__(self, dimension: int = DIM, vectors: dict = None):
        self.dimension = dimension
        self.vectors = dict(vectors or {})
        self.calls = []
        self.fail = False
        self._fallback = DeterministicHashEmbedding(dimension)

    def embed_text(self, text):
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("provider unavailable")
        if text in self.vectors:
            return list(self.vectors[text])
        return self._fallback.embed_text(text)

    def get_dimension(self):
        return self.dimension


@pytest.fixture
def registry():
    return ModelRegistry(list(DEFAULT_MODELS) + [MINI_MODEL])


@pytest.fixture
def provider():
    return ScriptedEmbedding()


@pytest.fixture(params=["memory", "faiss"])
def index_factory(request):
    return SimpleInMemoryVectorIndex if request.param == "memory" else FaissVectorIndex


@pytest.fixture
def engine(tmp_path, registry, provider, index_factory):
    def factory(spec):
        return provider if spec.dimensions == DIM else DeterministicHashEmbedding(spec.dimensions)

    eng = KnowledgeEngine(
        db_path=str(tmp_path / "knowledge.db"),
        pool_size=4,
        registry=registry,
        provider_factory=factory,
        index_factory=index_factory,
        scoped_invalidation=False,
    )
    yield eng
    eng.close()


@pytest.fixture
def store(engine):
    return engine.store


@pytest.fixture
def collection(store):
    return store.create_collection("notes", "test-mini", collection_id="notes")


def make_document(collection_id: str, doc_id: str, title: str = None) -> Document:
    return Document(id=doc_id, collection_id=collection_id, title=title or doc_id, content=f"content of {doc_id}")


def make_chunks(document: Document, texts) -> list:
    return [
        Chunk(id=None, document_id=document.id, collection_id=document.collection_id, chunk_index=i, chunk_text=t)
        for i, t in enumerate(texts)
    ]


def add_document(store, collection_id: str, doc_id: str, texts, vectors, title: str = None):
    """Store a document with one chunk per (text, vector) pair; returns the chunk ids."""
    document = make_document(collection_id, doc_id, title)
    return store.add_document_chunks(document, make_chunks(document, texts), vectors)
