"""
ANN index interface and the in-memory reference implementation.
Indexes hold unit vectors keyed by chunk id and answer L2 nearest-neighbour
queries; all text and metadata lives in SQLite.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List
import numpy as np

from .types import VectorRecord, QueryResult
from .similarity import l2_normalize
from ..core.errors import DimensionMismatch


class IVectorIndex(ABC):
    """Abstract interface for a fixed-dimension ANN index."""

    def __init__(self, dimension: int):
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def check_dimension(self, vector: np.ndarray) -> None:
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise DimensionMismatch(self.dimension, int(vector.shape[-1]) if vector.ndim else 0)

    @abstractmethod
    def add(self, records: List[VectorRecord]) -> None:
        """Add records; an existing chunk id is replaced."""
        pass

    @abstractmethod
    def search(self, query_vector: np.ndarray, top_k: int) -> List[QueryResult]:
        """Return up to top_k hits ordered by ascending L2 distance."""
        pass

    @abstractmethod
    def remove(self, chunk_ids: Iterable[int]) -> int:
        """Remove vectors by chunk id; returns how many were removed."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all records from the index."""
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class SimpleInMemoryVectorIndex(IVectorIndex):
    """Exact brute-force index over a numpy matrix."""

    def __init__(self, dimension: int):
        super().__init__(dimension)
        self._vectors: Dict[int, np.ndarray] = {}
        self._matrix = None
        self._ids = None

    def add(self, records: List[VectorRecord]) -> None:
        for record in records:
            vector = np.asarray(record.embedding, dtype=np.float32)
            self.check_dimension(vector)
            self._vectors[int(record.chunk_id)] = l2_normalize(vector)
        self._matrix = None

    def _ensure_matrix(self):
        if self._matrix is None:
            self._ids = np.fromiter(self._vectors.keys(), dtype=np.int64, count=len(self._vectors))
            if self._vectors:
                self._matrix = np.vstack(list(self._vectors.values()))
            else:
                self._matrix = np.empty((0, self.dimension), dtype=np.float32)

    def search(self, query_vector: np.ndarray, top_k: int) -> List[QueryResult]:
        if not self._vectors or top_k <= 0:
            return []

        query = np.asarray(query_vector, dtype=np.float32)
        self.check_dimension(query)
        self._ensure_matrix()

        distances = np.linalg.norm(self._matrix - query, axis=1)
        k = min(top_k, len(distances))
        order = np.argsort(distances, kind="stable")[:k]
        return [QueryResult(chunk_id=int(self._ids[i]), distance=float(distances[i])) for i in order]

    def remove(self, chunk_ids: Iterable[int]) -> int:
        removed = 0
        for chunk_id in chunk_ids:
            if self._vectors.pop(int(chunk_id), None) is not None:
                removed += 1
        if removed:
            self._matrix = None
        return removed

    def clear(self) -> None:
        self._vectors.clear()
        self._matrix = None

    def __len__(self) -> int:
        return len(self._vectors)
