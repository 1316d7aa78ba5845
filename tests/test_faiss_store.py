"""
Test cases for the ANN index backends and the similarity helpers.
"""

import numpy as np
import pytest

from knowbase.core.errors import DimensionMismatch
from knowbase.vector import FaissVectorIndex, SimpleInMemoryVectorIndex, VectorRecord
from knowbase.vector.similarity import content_hash, cosine_similarity, l2_normalize, l2_to_similarity


@pytest.fixture(params=[SimpleInMemoryVectorIndex, FaissVectorIndex], ids=["memory", "faiss"])
def index(request):
    return request.param(dimension=4)


def record(chunk_id, values):
    return VectorRecord(chunk_id=chunk_id, embedding=np.array(values, dtype=np.float32))


def test_index_rejects_non_positive_dimension():
    with pytest.raises(ValueError):
        SimpleInMemoryVectorIndex(dimension=0)


def test_search_empty_index(index):
    assert index.search(np.ones(4, dtype=np.float32), 5) == []
    assert len(index) == 0


def test_search_orders_by_distance_and_keys_by_chunk_id(index):
    index.add([
        record(10, [1, 0, 0, 0]),
        record(20, [0.8, 0.6, 0, 0]),
        record(30, [0, 0, 1, 0]),
    ])

    hits = index.search(np.array([1, 0, 0, 0], dtype=np.float32), 3)

    assert [h.chunk_id for h in hits] == [10, 20, 30]
    assert hits[0].distance == pytest.approx(0.0, abs=1e-5)
    assert l2_to_similarity(hits[1].distance) == pytest.approx(0.8, abs=1e-5)
    assert l2_to_similarity(hits[2].distance) == pytest.approx(0.0, abs=1e-5)


def test_vectors_are_normalized_on_add(index):
    index.add([record(1, [3, 4, 0, 0])])

    hit = index.search(np.array([0.6, 0.8, 0, 0], dtype=np.float32), 1)[0]

    assert hit.distance == pytest.approx(0.0, abs=1e-5)


def test_top_k_caps_results(index):
    index.add([record(i, [1, i, 0, 0]) for i in range(1, 6)])
    assert len(index.search(np.array([1, 0, 0, 0], dtype=np.float32), 2)) == 2
    assert len(index.search(np.array([1, 0, 0, 0], dtype=np.float32), 50)) == 5


def test_re_adding_a_chunk_id_replaces_it(index):
    index.add([record(7, [1, 0, 0, 0])])
    index.add([record(7, [0, 1, 0, 0])])

    assert len(index) == 1
    hit = index.search(np.array([0, 1, 0, 0], dtype=np.float32), 1)[0]
    assert hit.chunk_id == 7
    assert hit.distance == pytest.approx(0.0, abs=1e-5)


def test_remove_and_clear(index):
    index.add([record(1, [1, 0, 0, 0]), record(2, [0, 1, 0, 0])])

    assert index.remove([1, 99]) == 1
    assert [h.chunk_id for h in index.search(np.array([1, 0, 0, 0], dtype=np.float32), 5)] == [2]

    index.clear()
    assert len(index) == 0


def test_dimension_mismatch_raises(index):
    with pytest.raises(DimensionMismatch) as exc:
        index.add([record(1, [1, 0, 0])])
    assert exc.value.expected == 4
    assert exc.value.actual == 3

    index.add([record(1, [1, 0, 0, 0])])
    with pytest.raises(DimensionMismatch):
        index.search(np.ones(5, dtype=np.float32), 1)


def test_l2_similarity_matches_cosine_for_unit_vectors():
    rng = np.random.default_rng(42)
    for _ in range(50):
        a = l2_normalize(rng.standard_normal(16))
        b = l2_normalize(rng.standard_normal(16))
        distance = float(np.linalg.norm(a - b))
        assert l2_to_similarity(distance) == pytest.approx(cosine_similarity(a, b), abs=1e-5)


def test_l2_normalize_leaves_zero_vector():
    zero = np.zeros(3)
    assert np.array_equal(l2_normalize(zero), zero)
    assert l2_normalize([3, 4]).dtype == np.float32


def test_cosine_similarity_shape_mismatch():
    with pytest.raises(ValueError):
        cosine_similarity([1, 0], [1, 0, 0])


def test_content_hash_is_exact_match():
    assert content_hash("same text") == content_hash("same text")
    assert content_hash("same text") != content_hash("same text ")
