"""
Engine configuration.
Process-level settings come from environment variables; per-deployment
retrieval defaults live in the system_config table (see dao.get_system_config).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("KB_DB_PATH", "./data/knowledge.db")
DB_POOL_SIZE = int(os.getenv("KB_DB_POOL_SIZE", "10"))
DB_TIMEOUT_SEC = float(os.getenv("KB_DB_TIMEOUT_SEC", "30"))

DEBUG = os.getenv("KB_DEBUG", "false").lower() == "true"

# Vector system configuration
VECTOR_BACKEND = os.getenv("KB_VECTOR_BACKEND", "faiss")  # faiss|memory
EMBED_PROVIDER = os.getenv("KB_EMBED_PROVIDER", "hash")  # hash|sentence_transformers
EMBED_MAX_BATCH_SIZE = int(os.getenv("KB_EMBED_MAX_BATCH_SIZE", "32"))
MODEL_REGISTRY_PATH = os.getenv("KB_MODEL_REGISTRY_PATH")  # optional JSON file with extra models

# Query cache
QUERY_CACHE_CAPACITY = int(os.getenv("KB_QUERY_CACHE_CAPACITY", "1000"))
CACHE_QUANTIZE_DECIMALS = int(os.getenv("KB_CACHE_QUANTIZE_DECIMALS", "6"))

# Search heuristics
OVERSAMPLE_FACTOR = int(os.getenv("KB_OVERSAMPLE_FACTOR", "3"))
MAX_CANDIDATES = int(os.getenv("KB_MAX_CANDIDATES", "100"))
FALLBACK_THRESHOLDS = os.getenv("KB_FALLBACK_THRESHOLDS", "0.40,0.30")
MIN_CHUNK_CHARS = int(os.getenv("KB_MIN_CHUNK_CHARS", "5"))
MAX_CHUNK_CHARS = int(os.getenv("KB_MAX_CHUNK_CHARS", "5000"))
SEARCH_HISTORY_ENABLED = os.getenv("KB_SEARCH_HISTORY_ENABLED", "true").lower() == "true"

# Ingestion limits
MAX_DOCUMENT_BYTES = int(os.getenv("KB_MAX_DOCUMENT_BYTES", str(10 * 1024 * 1024)))
MAX_CHUNKS_PER_DOCUMENT = int(os.getenv("KB_MAX_CHUNKS_PER_DOCUMENT", "5000"))
WARN_CHUNKS_PER_DOCUMENT = int(os.getenv("KB_WARN_CHUNKS_PER_DOCUMENT", "1000"))
CJK_SAFE_CHARS = int(os.getenv("KB_CJK_SAFE_CHARS", "512"))
LATIN_SAFE_CHARS = int(os.getenv("KB_LATIN_SAFE_CHARS", "2048"))

# Global fallbacks used when system_config has no row for a key
DEFAULT_COLLECTION = "default"
DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 50
DEFAULT_SEARCH_LIMIT = 10
DEFAULT_SIMILARITY_THRESHOLD = 0.7
DEFAULT_CACHE_TTL = 3600

# Rows seeded into system_config on first start: (key, value, description)
SYSTEM_CONFIG_DEFAULTS = [
    ("default_collection", DEFAULT_COLLECTION, "Default knowledge collection"),
    ("chunk_size", str(DEFAULT_CHUNK_SIZE), "Default chunk size (characters)"),
    ("chunk_overlap", str(DEFAULT_CHUNK_OVERLAP), "Default chunk overlap (characters)"),
    ("search_limit", str(DEFAULT_SEARCH_LIMIT), "Default number of search results"),
    ("similarity_threshold", str(DEFAULT_SIMILARITY_THRESHOLD), "Global similarity threshold"),
    ("cache_ttl", str(DEFAULT_CACHE_TTL), "Cache expiry (seconds)"),
    ("max_document_size", str(MAX_DOCUMENT_BYTES), "Maximum document size (bytes)"),
    ("enable_search_history", "true", "Record search history"),
    ("enable_query_cache", "true", "Enable the query result cache"),
]

VERSION = "0.4.0"


def get_vector_index_factory():
    """Return a callable building an empty ANN index for a given dimension."""
    if VECTOR_BACKEND == "memory":
        from knowbase.vector.index import SimpleInMemoryVectorIndex
        return SimpleInMemoryVectorIndex
    from knowbase.vector.faiss_store import FaissVectorIndex
    return FaissVectorIndex


def hub_model_name(spec):
    """Hugging Face repository id for a model: its first alias of the form org/name, else its id."""
    return next((alias for alias in spec.aliases if "/" in alias), spec.model_id)


def get_embedding_provider(spec):
    """Get configured embedding provider implementation for one registered model."""
    if EMBED_PROVIDER == "sentence_transformers":
        from knowbase.vector.embeddings import SentenceTransformerEmbedding
        return SentenceTransformerEmbedding(hub_model_name(spec))
    from knowbase.vector.embeddings import DeterministicHashEmbedding
    return DeterministicHashEmbedding(dimension=spec.dimensions)


def get_fallback_thresholds():
    """Parse the fallback ladder, highest first."""
    values = [float(v) for v in FALLBACK_THRESHOLDS.split(",") if v.strip()]
    return tuple(sorted(values, reverse=True))


def cache_scoped_invalidation():
    """Check if cache invalidation is limited to the written collection."""
    return os.getenv("KB_CACHE_SCOPED_INVALIDATION", "false").lower() == "true"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("KB_DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    path = db_path or DB_PATH
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if VECTOR_BACKEND not in ["faiss", "memory"]:
        issues.append(f"Invalid KB_VECTOR_BACKEND: {VECTOR_BACKEND}")

    if EMBED_PROVIDER not in ["hash", "sentence_transformers"]:
        issues.append(f"Invalid KB_EMBED_PROVIDER: {EMBED_PROVIDER}")

    if DB_POOL_SIZE < 1:
        issues.append("KB_DB_POOL_SIZE must be >= 1")

    if EMBED_MAX_BATCH_SIZE < 1:
        issues.append("KB_EMBED_MAX_BATCH_SIZE must be >= 1")

    if OVERSAMPLE_FACTOR < 1 or MAX_CANDIDATES < 1:
        issues.append("KB_OVERSAMPLE_FACTOR and KB_MAX_CANDIDATES must be >= 1")

    try:
        ladder = get_fallback_thresholds()
        if any(not 0.0 <= t <= 1.0 for t in ladder):
            issues.append("KB_FALLBACK_THRESHOLDS values must be within [0, 1]")
    except ValueError:
        issues.append(f"Invalid KB_FALLBACK_THRESHOLDS: {FALLBACK_THRESHOLDS}")

    if MIN_CHUNK_CHARS > MAX_CHUNK_CHARS:
        issues.append("KB_MIN_CHUNK_CHARS must not exceed KB_MAX_CHUNK_CHARS")

    return issues
