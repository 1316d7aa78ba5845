"""
Test the index health utility against a real database file.
"""

import pytest

from knowbase.core.engine import KnowledgeEngine
from knowbase.core.ingestion import DocumentProcessRequest
from scripts.rebuild_index import main, report


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "rebuild.db")
    with KnowledgeEngine(db_path=path, pool_size=2) as engine:
        engine.store.create_collection("Notes", "bge-m3", collection_id="notes")
        engine.processor.process_document(DocumentProcessRequest(
            collection_id="notes", title="Doc", content="First sentence. Second sentence. Third sentence.",
        ))
    return path


def test_report_lists_vectors_loaded_at_startup(capfd, db_path):
    assert main(["--db", db_path]) == 0

    captured = capfd.readouterr()
    assert "Loading vector indexes..." in captured.out
    assert "✓ 1 vectors indexed for collection notes" in captured.out
    assert "Index health check complete!" in captured.out


def test_report_unknown_collection(capfd, db_path):
    assert main(["--db", db_path, "--collection", "missing"]) == 1

    captured = capfd.readouterr()
    assert "ERROR: collection 'missing' not found" in captured.out


def test_reembed_restores_missing_vectors(db_path):
    with KnowledgeEngine(db_path=db_path, pool_size=2) as engine:
        with engine.pool.transaction() as conn:
            conn.execute("DELETE FROM vectors")

    with KnowledgeEngine(db_path=db_path, pool_size=2) as engine:
        summary = report(engine, reembed=True)

        assert summary["reembedded"] == {"notes": 1}
        assert summary["indexed"] == {"notes": 1}
        assert summary["health"].healthy


def test_report_without_vectors_indexes_nothing(capfd, db_path):
    with KnowledgeEngine(db_path=db_path, pool_size=2) as engine:
        with engine.pool.transaction() as conn:
            conn.execute("DELETE FROM vectors")

    assert main(["--db", db_path]) == 0
    assert "✓ 0 vectors indexed for collection notes" in capfd.readouterr().out
