"""
FAISS-backed ANN index.
Vectors are stored in an IndexIDMap2 over IndexFlatL2 so that FAISS ids are
the chunk ids themselves and deletion works through remove_ids.
"""

from typing import Iterable, List
import numpy as np

from .types import VectorRecord, QueryResult
from .index import IVectorIndex
from .similarity import l2_normalize


class FaissVectorIndex(IVectorIndex):
    """FAISS-backed implementation of IVectorIndex."""

    def __init__(self, dimension: int = 1024):
        """
        Initialize FAISS vector index.

        Args:
            dimension: Dimension of the vectors (default: 1024)
        """
        super().__init__(dimension)
        try:
            import faiss
        except ImportError:
            raise ImportError("FAISS not installed. Please install faiss-cpu package.")
        self.faiss = faiss
        self.index = self._new_index()

    def _new_index(self):
        return self.faiss.IndexIDMap2(self.faiss.IndexFlatL2(self.dimension))

    def add(self, records: List[VectorRecord]) -> None:
        """Add vector records; existing chunk ids are replaced."""
        if not records:
            return

        vectors = []
        ids = []
        for record in records:
            vector = np.asarray(record.embedding, dtype=np.float32)
            self.check_dimension(vector)
            vectors.append(l2_normalize(vector))
            ids.append(int(record.chunk_id))

        id_array = np.asarray(ids, dtype=np.int64)
        # IndexIDMap2 does not dedupe ids on add
        self.index.remove_ids(id_array)
        self.index.add_with_ids(np.vstack(vectors).astype(np.float32), id_array)

    def search(self, query_vector: np.ndarray, top_k: int) -> List[QueryResult]:
        """Return hits ordered by ascending L2 distance."""
        if not self.index.ntotal or top_k <= 0:
            return []

        query = np.asarray(query_vector, dtype=np.float32)
        self.check_dimension(query)

        k = min(top_k, self.index.ntotal)
        # IndexFlatL2 reports squared distances
        squared, ids = self.index.search(query.reshape(1, -1), k)

        results = []
        for sq, chunk_id in zip(squared[0], ids[0]):
            if chunk_id < 0:
                continue
            results.append(QueryResult(chunk_id=int(chunk_id), distance=float(np.sqrt(max(float(sq), 0.0)))))
        return results

    def remove(self, chunk_ids: Iterable[int]) -> int:
        id_array = np.asarray(list(chunk_ids), dtype=np.int64)
        if id_array.size == 0:
            return 0
        return int(self.index.remove_ids(id_array))

    def clear(self) -> None:
        """Clear all records from the FAISS index."""
        self.index = self._new_index()

    def __len__(self) -> int:
        return int(self.index.ntotal)

