"""
Embedding providers and the batching client used by ingestion and search.
Providers turn text into vectors; the client validates every response and
raises ProviderError instead of returning empty or zero vectors.
"""

from abc import ABC, abstractmethod
import hashlib
import threading
from typing import Callable, Dict, List, Optional

import numpy as np

from ..core.config import EMBED_MAX_BATCH_SIZE, get_embedding_provider
from ..core.errors import ProviderError
from ..util.logging import logger
from .registry import ModelRegistry, ModelSpec


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector for given text."""
        pass

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embedding vectors for several texts, in input order."""
        return [self.embed_text(text) for text in texts]

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider for tests and offline use.

    The text's SHA-256 digest seeds a Gaussian generator, so identical text
    always maps to the same unit vector and distinct texts are close to
    orthogonal.
    """

    def __init__(self, dimension: int = 1024):
        self.dimension = dimension

    def embed_text(self, text: str) -> List[float]:
        """Generate deterministic unit-length embedding vector."""
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "little")
        rng = np.random.default_rng(seed)
        vector = rng.standard_normal(self.dimension)
        vector /= np.linalg.norm(vector)
        return vector.astype(np.float32).tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models."""

    def __init__(self, model_name: str = "BAAI/bge-m3"):
        self.model_name = model_name
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector using sentence transformers."""
        embedding = self.model.encode(text, convert_to_tensor=False, normalize_embeddings=True)
        return embedding.tolist()

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        embeddings = self.model.encode(texts, convert_to_tensor=False, normalize_embeddings=True)
        return [e.tolist() for e in embeddings]

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension()
        return self._dimension


class EmbeddingClient:
    """
    Resolves a provider per embedding model and enforces the provider contract.

    Batches larger than max_batch_size are split into sub-batches that run
    sequentially; results keep input order.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        provider_factory: Optional[Callable[[ModelSpec], IEmbeddingProvider]] = None,
        max_batch_size: int = EMBED_MAX_BATCH_SIZE,
    ):
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        self.registry = registry
        self.max_batch_size = max_batch_size
        self._factory = provider_factory or get_embedding_provider
        self._providers: Dict[str, IEmbeddingProvider] = {}
        self._lock = threading.Lock()

    def provider_for(self, model_id: str) -> IEmbeddingProvider:
        spec = self.registry.describe(model_id)
        with self._lock:
            provider = self._providers.get(spec.model_id)
            if provider is None:
                provider = self._factory(spec)
                self._providers[spec.model_id] = provider
        return provider

    def embed(self, text: str, model_id: str) -> np.ndarray:
        """Embed a single text."""
        return self.embed_batch([text], model_id)[0]

    def embed_batch(self, texts: List[str], model_id: str) -> List[np.ndarray]:
        """
        Embed texts with the model's provider.

        Args:
            texts: Texts to embed
            model_id: Registered model id or alias

        Returns:
            One float32 vector per input text
        """
        if not texts:
            return []

        spec = self.registry.describe(model_id)
        provider = self.provider_for(spec.model_id)
        total_batches = (len(texts) + self.max_batch_size - 1) // self.max_batch_size
        vectors: List[np.ndarray] = []

        for batch_index, offset in enumerate(range(0, len(texts), self.max_batch_size)):
            batch = texts[offset:offset + self.max_batch_size]
            if total_batches > 1:
                logger.debug(f"Embedding batch {batch_index + 1}/{total_batches} ({len(batch)} texts)")

            try:
                raw = provider.embed_batch(batch)
            except ProviderError:
                raise
            except Exception as e:
                raise ProviderError(f"Embedding batch {batch_index + 1}/{total_batches} failed for model {spec.model_id}: {e}") from e

            vectors.extend(self._validate(raw, len(batch), spec))

        return vectors

    @staticmethod
    def _validate(raw, expected_count: int, spec: ModelSpec) -> List[np.ndarray]:
        if raw is None or len(raw) != expected_count:
            got = 0 if raw is None else len(raw)
            raise ProviderError(f"Provider returned {got} embeddings for {expected_count} texts")

        checked = []
        for vector in raw:
            arr = np.asarray(vector, dtype=np.float32)
            if arr.ndim != 1 or arr.shape[0] != spec.dimensions:
                width = arr.shape[-1] if arr.ndim else 0
                raise ProviderError(f"Provider returned {width}-dimensional vector, model {spec.model_id} expects {spec.dimensions}")
            if not np.all(np.isfinite(arr)) or not np.any(arr):
                raise ProviderError(f"Provider returned a zero or non-finite vector for model {spec.model_id}")
            checked.append(arr)
        return checked
