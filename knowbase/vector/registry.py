"""
Embedding model registry.
Maps a model identifier to its vector width, chunking defaults, default
similarity threshold and optional query instruction prefix.
"""

import json
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from ..core.errors import ModelNotFound
from ..util.logging import logger


@dataclass(frozen=True)
class ModelSpec:
    """Static description of an embedding model."""
    model_id: str
    name: str
    dimensions: int
    recommended_chunk_size: int
    recommended_overlap: int
    default_threshold: float
    query_instruction: Optional[str] = None
    language: str = "universal"
    max_tokens: int = 512
    aliases: Tuple[str, ...] = field(default_factory=tuple)

    def validate(self) -> List[str]:
        """Return a list of problems with this spec (empty when valid)."""
        issues = []
        if not self.model_id.strip():
            issues.append("model_id cannot be empty")
        if self.dimensions <= 0:
            issues.append(f"{self.model_id}: dimensions must be positive")
        if self.recommended_chunk_size <= 0:
            issues.append(f"{self.model_id}: recommended_chunk_size must be positive")
        if not 0 <= self.recommended_overlap < self.recommended_chunk_size:
            issues.append(f"{self.model_id}: recommended_overlap must be smaller than recommended_chunk_size")
        if not 0.0 < self.default_threshold <= 1.0:
            issues.append(f"{self.model_id}: default_threshold must be within (0, 1]")
        return issues


# bge-large-zh is constrained to 512 tokens, so it gets smaller chunks and an
# instruction prefix on the query side.
DEFAULT_MODELS = (
    ModelSpec(
        model_id="bge-m3",
        name="BGE-M3",
        dimensions=1024,
        recommended_chunk_size=900,
        recommended_overlap=120,
        default_threshold=0.80,
        language="universal",
        max_tokens=8192,
        aliases=("BAAI/bge-m3",),
    ),
    ModelSpec(
        model_id="bge-large-zh",
        name="BGE-Large-ZH",
        dimensions=1024,
        recommended_chunk_size=640,
        recommended_overlap=80,
        default_threshold=0.75,
        query_instruction="为这个句子生成表示以用于检索相关文章：",
        language="zh",
        max_tokens=512,
        aliases=("BAAI/bge-large-zh-v1.5", "bge-large-zh-v1.5"),
    ),
    ModelSpec(
        model_id="bge-large-en",
        name="BGE-Large-EN",
        dimensions=1024,
        recommended_chunk_size=900,
        recommended_overlap=100,
        default_threshold=0.70,
        language="en",
        max_tokens=512,
        aliases=("BAAI/bge-large-en-v1.5", "bge-large-en-v1.5"),
    ),
)


class ModelRegistry:
    """Explicit model table keyed by identifier (case-insensitive), validated on registration."""

    def __init__(self, models: Iterable[ModelSpec] = DEFAULT_MODELS):
        self._models: Dict[str, ModelSpec] = {}
        self._keys: Dict[str, str] = {}
        for spec in models:
            self.register(spec)

    @classmethod
    def from_file(cls, path: str, include_defaults: bool = True) -> "ModelRegistry":
        """
        Build a registry from a JSON file holding a list of model objects.

        Each object uses the ModelSpec field names; `aliases` is an optional list.
        """
        registry = cls(DEFAULT_MODELS if include_defaults else ())
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        for entry in raw:
            entry = dict(entry)
            entry["aliases"] = tuple(entry.get("aliases", ()))
            registry.register(ModelSpec(**entry))
        logger.info(f"Loaded {len(raw)} embedding models from {path}")
        return registry

    def register(self, spec: ModelSpec) -> None:
        """Add or replace a model; raises ValueError when the spec is invalid."""
        issues = spec.validate()
        if issues:
            raise ValueError("; ".join(issues))

        self._models[spec.model_id] = spec
        for key in (spec.model_id, *spec.aliases):
            self._keys[key.lower()] = spec.model_id

    def describe(self, model_id: str) -> ModelSpec:
        """Look up a model by id or alias."""
        if model_id is None:
            raise ModelNotFound(str(model_id))
        canonical = self._keys.get(model_id.strip().lower())
        if canonical is None:
            raise ModelNotFound(model_id)
        return self._models[canonical]

    def is_known(self, model_id: str) -> bool:
        return model_id is not None and model_id.strip().lower() in self._keys

    def available_models(self) -> List[ModelSpec]:
        return sorted(self._models.values(), key=lambda s: (s.language, s.name))

    def resolve_chunk_params(self, model_id: str, chunk_size: Optional[int] = None, overlap: Optional[int] = None) -> Tuple[int, int]:
        """Explicit values win; missing ones come from the model's recommendation."""
        spec = self.describe(model_id)
        size = chunk_size if chunk_size is not None else spec.recommended_chunk_size
        ovl = overlap if overlap is not None else spec.recommended_overlap
        if ovl >= size:
            # explicit chunk size smaller than the recommended overlap
            ovl = max(0, size // 4) if overlap is None else ovl
        return size, ovl

    def default_threshold(self, model_id: str, fallback: float) -> float:
        """Per-model default threshold, or fallback for unknown models."""
        if not self.is_known(model_id):
            return fallback
        return self.describe(model_id).default_threshold

    def shape_query(self, model_id: str, text: str) -> str:
        """Prefix query text for asymmetric retrieval models. Never used on documents."""
        spec = self.describe(model_id)
        if spec.query_instruction:
            return f"{spec.query_instruction}{text}"
        return text

    def to_dicts(self) -> List[Dict]:
        return [asdict(spec) for spec in self.available_models()]
