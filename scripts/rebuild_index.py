#!/usr/bin/env python3
"""
Index Health Utility
Opening the engine reloads every ANN index from the vectors table; this
script reports what was loaded, checks store health and, optionally,
re-embeds chunks that lost their vector rows.
"""

import argparse
import sys
from pathlib import Path

# Allow running from a source checkout
sys.path.insert(0, str(Path(__file__).parent.parent))

from knowbase.core.config import DB_PATH
from knowbase.core.engine import KnowledgeEngine
from knowbase.core.errors import KnowledgeBaseError


def report(engine: KnowledgeEngine, collection_id: str = None, reembed: bool = False) -> dict:
    """Re-embed if asked, then summarize index sizes and store health."""
    if collection_id is not None:
        collections = [engine.store.get_collection(collection_id)]
    else:
        collections = engine.store.list_collections()

    summary = {"reembedded": {}}
    if reembed:
        summary["reembedded"] = engine.processor.reembed_missing_vectors(collection_id)
    summary["indexed"] = {c.id: engine.store.index_size(c.id) for c in collections}
    summary["health"] = engine.store.health_check()
    return summary


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Report the vector indexes loaded at startup and store health; "
                    "optionally re-embed chunks without a stored vector"
    )
    parser.add_argument("--db", default=DB_PATH, help="SQLite database path")
    parser.add_argument("--collection", help="Only report (and re-embed) this collection")
    parser.add_argument("--reembed", action="store_true", help="Embed chunks that have no stored vector")
    args = parser.parse_args(argv)

    print("Loading vector indexes...")
    try:
        with KnowledgeEngine(db_path=args.db) as engine:
            summary = report(engine, args.collection, args.reembed)
    except KnowledgeBaseError as e:
        print(f"ERROR: {e}")
        return 1

    for cid, count in summary["reembedded"].items():
        print(f"✓ Re-embedded {count} chunks in collection {cid}")
    for cid, count in summary["indexed"].items():
        print(f"✓ {count} vectors indexed for collection {cid}")

    health = summary["health"]
    if not health.healthy:
        print(f"WARNING: store unhealthy (metadata={health.metadata_store_ok}, "
              f"vectors={health.vector_store_ok}, ann={health.ann_extension_ok})")
        return 2

    print("Index health check complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
