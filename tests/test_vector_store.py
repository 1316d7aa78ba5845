"""
Test cases for the vector store: persistence, search post-filtering,
deletion and cache invalidation. Every test runs against both ANN backends.
"""

import numpy as np
import pytest

from knowbase.core import dao
from knowbase.core.engine import KnowledgeEngine
from knowbase.core.errors import DimensionMismatch, ModelNotFound, NotFound
from knowbase.vector.cache import make_key
from knowbase.vector.types import VectorRecord

from conftest import add_document, make_chunks, make_document, unit, vec_at

QUERY = unit(0)


def test_insert_and_search_returns_matching_chunk(store, collection):
    ids = add_document(store, "notes", "doc-1", ["alpha chunk text", "beta chunk text"], [unit(0), vec_at(0.5)])

    results = store.search(QUERY, "notes", limit=10, threshold=0.7)

    assert len(results) == 1
    assert results[0].chunk_text == "alpha chunk text"
    assert results[0].chunk_id == ids[0]
    assert results[0].document_id == "doc-1"
    assert results[0].similarity == pytest.approx(1.0, abs=1e-5)
    assert results[0].score == results[0].similarity


def test_vector_key_is_the_chunk_id(store, collection):
    ids = add_document(store, "notes", "doc-1", ["first chunk", "second chunk"], [unit(0), unit(1)])

    with store.pool.connection() as conn:
        chunk_ids = [r["id"] for r in conn.execute("SELECT id FROM chunks ORDER BY chunk_index")]
        vector_ids = [r["chunk_id"] for r in conn.execute("SELECT chunk_id FROM vectors ORDER BY chunk_id")]

    assert chunk_ids == ids
    assert vector_ids == sorted(ids)
    hit = store.search(unit(1), "notes", 1, 0.9)[0]
    assert hit.chunk_id == ids[1]
    assert hit.chunk_text == "second chunk"


def test_dimension_mismatch_on_insert_persists_nothing(store):
    store.create_collection("wide", "bge-m3", collection_id="wide")
    narrow = np.ones(384, dtype=np.float32)

    with pytest.raises(DimensionMismatch) as exc:
        add_document(store, "wide", "doc-1", ["some chunk text"], [narrow])

    assert exc.value.expected == 1024
    assert exc.value.actual == 384
    assert store.count_vectors("wide") == 0
    assert store.collection_stats("wide").documents_count == 0

    with pytest.raises(DimensionMismatch):
        store.search(narrow, "wide", 5, 0.5)


def test_results_sorted_filtered_and_limited(store, collection):
    sims = [0.95, 0.9, 0.85, 0.8, 0.6]
    texts = [f"chunk number {i}" for i in range(len(sims))]
    add_document(store, "notes", "doc-1", texts, [vec_at(s, axis=1 + i % 3) for i, s in enumerate(sims)])

    results = store.search(QUERY, "notes", limit=3, threshold=0.7)

    assert [r.chunk_text for r in results] == texts[:3]
    similarities = [r.similarity for r in results]
    assert similarities == sorted(similarities, reverse=True)
    assert all(s >= 0.7 for s in similarities)


def test_duplicate_chunk_text_returned_once(store, collection):
    add_document(store, "notes", "doc-1", ["repeated passage"], [vec_at(0.99)])
    add_document(store, "notes", "doc-2", ["repeated passage"], [vec_at(0.95, axis=2)])

    results = store.search(QUERY, "notes", 10, 0.5)

    assert [r.chunk_text for r in results] == ["repeated passage"]
    assert results[0].document_id == "doc-1"


def test_chunk_length_window(store, collection):
    add_document(store, "notes", "doc-1", ["tiny", "long enough text"], [unit(0), vec_at(0.9)])

    results = store.search(QUERY, "notes", 10, 0.5)

    assert [r.chunk_text for r in results] == ["long enough text"]


def test_results_span_documents_by_similarity(store, collection):
    add_document(store, "notes", "doc-a", ["doc a best chunk", "doc a weak chunk"], [vec_at(0.9), vec_at(0.6, axis=2)])
    add_document(store, "notes", "doc-b", ["doc b only chunk"], [vec_at(0.8, axis=3)], title="Doc B")

    results = store.search(QUERY, "notes", 10, 0.5)

    assert [r.chunk_text for r in results] == ["doc a best chunk", "doc b only chunk", "doc a weak chunk"]
    assert results[1].document_title == "Doc B"


def test_search_unknown_collection(store):
    with pytest.raises(NotFound):
        store.search(QUERY, "missing", 5, 0.5)


def test_create_collection_validation(store):
    with pytest.raises(ModelNotFound):
        store.create_collection("x", "no-such-model")
    with pytest.raises(DimensionMismatch):
        store.create_collection("x", "bge-m3", vector_dimensions=384)
    with pytest.raises(ValueError):
        store.create_collection("x", "bge-m3", vector_dimensions=0)

    created = store.create_collection("x", "BAAI/bge-m3")
    assert created.embedding_model == "bge-m3"
    assert created.vector_dimensions == 1024
    assert [c.id for c in store.list_collections()] == [created.id]


def test_delete_document_removes_vectors(store, collection):
    add_document(store, "notes", "doc-1", ["alpha chunk text"], [unit(0)])
    add_document(store, "notes", "doc-2", ["other chunk text"], [vec_at(0.9)])

    assert store.delete_document("doc-1") == 1

    results = store.search(QUERY, "notes", 10, 0.5)
    assert [r.document_id for r in results] == ["doc-2"]
    assert store.count_vectors("notes") == 1
    with pytest.raises(NotFound):
        store.delete_document("doc-1")


def test_chunk_ids_never_reused(store, collection):
    first = add_document(store, "notes", "doc-1", ["first document chunk"], [unit(0)])
    store.delete_document("doc-1")
    second = add_document(store, "notes", "doc-2", ["second document chunk"], [unit(0)])

    assert second[0] > first[0]


def test_insert_vectors_for_existing_chunks(store, collection):
    document = make_document("notes", "doc-1")
    with store.pool.transaction() as conn:
        dao.insert_document(conn, document)
        chunk_ids = dao.insert_chunks(conn, make_chunks(document, ["stored without vector"]))

    written = store.insert_vectors("notes", [VectorRecord(chunk_id=chunk_ids[0], embedding=unit(0))])

    assert written == 1
    assert store.search(QUERY, "notes", 5, 0.9)[0].chunk_id == chunk_ids[0]


def test_insert_vectors_rejects_foreign_chunk(store, collection):
    store.create_collection("other", "test-mini", collection_id="other")
    foreign = add_document(store, "other", "doc-x", ["belongs elsewhere"], [unit(1)])

    with pytest.raises(NotFound):
        store.insert_vectors("notes", [VectorRecord(chunk_id=foreign[0], embedding=unit(0))])
    with pytest.raises(NotFound):
        store.insert_vectors("notes", [VectorRecord(chunk_id=99999, embedding=unit(0))])

    assert store.count_vectors("notes") == 0


def test_delete_collection_cascades(store, collection):
    add_document(store, "notes", "doc-1", ["alpha chunk text"], [unit(0)])

    assert store.delete_collection("notes") == 1

    with store.pool.connection() as conn:
        for table in ("documents", "chunks", "vectors"):
            assert conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0] == 0
    with pytest.raises(NotFound):
        store.search(QUERY, "notes", 5, 0.5)


def test_writes_invalidate_cache(store, collection):
    key = make_key("notes", 10, 0.7, QUERY)
    store.cache.put(key, ["stale"])

    add_document(store, "notes", "doc-1", ["alpha chunk text"], [unit(0)])

    assert store.cache.get(key) is None


def test_scoped_invalidation_keeps_other_collections(store, collection):
    store.create_collection("other", "test-mini", collection_id="other")
    store.scoped_invalidation = True
    mine = make_key("notes", 10, 0.7, QUERY)
    theirs = make_key("other", 10, 0.7, QUERY)
    store.cache.put(mine, ["stale"])
    store.cache.put(theirs, ["fresh"])

    add_document(store, "notes", "doc-1", ["alpha chunk text"], [unit(0)])

    assert store.cache.get(mine) is None
    assert store.cache.get(theirs) == ["fresh"]


def test_indexes_rebuilt_from_disk(tmp_path, registry, provider, index_factory):
    path = str(tmp_path / "persist.db")
    with KnowledgeEngine(db_path=path, pool_size=2, registry=registry,
                         provider_factory=lambda spec: provider, index_factory=index_factory) as engine:
        engine.store.create_collection("notes", "test-mini", collection_id="notes")
        ids = add_document(engine.store, "notes", "doc-1", ["persisted chunk"], [unit(0)])

    with KnowledgeEngine(db_path=path, pool_size=2, registry=registry,
                         provider_factory=lambda spec: provider, index_factory=index_factory) as engine:
        assert engine.store.index_size("notes") == 1
        results = engine.store.search(QUERY, "notes", 5, 0.9)
        assert [r.chunk_id for r in results] == ids
        assert engine.store.rebuild_index("notes") == {"notes": 1}


def test_stats_status_and_health(store, collection):
    add_document(store, "notes", "doc-1", ["alpha chunk text", "beta chunk text"], [unit(0), unit(1)])

    stats = store.collection_stats("notes")
    assert (stats.documents_count, stats.chunks_count, stats.vectors_count) == (1, 2, 2)
    assert stats.total_size_bytes == len("content of doc-1")

    health = store.health_check()
    assert health.healthy
    assert health.cache_stats == (0, store.cache.capacity)

    status = store.system_status()
    assert (status.collections_count, status.total_documents, status.total_vectors) == (1, 1, 2)


def test_health_reports_index_drift(store, collection):
    add_document(store, "notes", "doc-1", ["alpha chunk text"], [unit(0)])
    with store.pool.transaction() as conn:
        conn.execute("DELETE FROM vectors")

    assert not store.health_check().vector_store_ok
    store.rebuild_index()
    assert store.health_check().healthy


def test_reset_wipes_knowledge_data(store, collection):
    add_document(store, "notes", "doc-1", ["alpha chunk text"], [unit(0)])

    store.reset()

    assert store.list_collections() == []
    assert store.count_vectors() == 0
    with store.pool.connection() as conn:
        assert conn.execute("SELECT COUNT(*) FROM system_config").fetchone()[0] > 0


def test_list_documents_per_collection(store, collection):
    store.create_collection("other", "test-mini", collection_id="other")
    add_document(store, "notes", "doc-1", ["alpha chunk text"], [unit(0)])
    add_document(store, "notes", "doc-2", ["beta chunk text", "gamma chunk text"], [unit(1), unit(2)])
    add_document(store, "other", "doc-3", ["delta chunk text"], [unit(3)])

    documents = {d.id: d for d in store.list_documents("notes")}

    assert set(documents) == {"doc-1", "doc-2"}
    assert documents["doc-2"].chunk_count == 2
    assert store.list_documents("other")[0].id == "doc-3"
    with pytest.raises(NotFound):
        store.list_documents("missing")
