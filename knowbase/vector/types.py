"""
Vector records exchanged with the ANN index.
A record's id is the owning chunk's id; the index never invents its own keys.
"""

from typing import Optional
from dataclasses import dataclass
import numpy as np


@dataclass
class VectorRecord:
    """An embedding keyed by its chunk id."""

    chunk_id: int
    """Id of the owning chunk; also the vector's storage key"""

    embedding: np.ndarray
    """The vector representation of the chunk text"""

    created_at: Optional[int] = None
    """Unix timestamp of insertion"""


@dataclass
class QueryResult:
    """A raw nearest-neighbour hit from an ANN index."""

    chunk_id: int
    """Key of the matching vector"""

    distance: float
    """L2 distance between the normalized query and the stored vector"""
