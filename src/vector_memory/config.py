"""
Configuration surface for the store.

Values are read from the environment by :meth:`StoreConfig.from_env`:

    VECTOR_MEMORY_DB_PATH          - path to the ChromaDB store (default: ~/.cache/vector-memory)
    VECTOR_MEMORY_DIMENSION        - embedding width fixed per deployed schema (default: 384)
    VECTOR_MEMORY_MATCH_THRESHOLD  - threshold used when a caller omits one (default: 0.7)
    VECTOR_MEMORY_MATCH_COUNT      - result count used when a caller omits one (default: 10)
    VECTOR_MEMORY_MODEL            - sentence-transformers model (default: all-MiniLM-L6-v2)
    VECTOR_MEMORY_CHUNK_SIZE       - max characters per knowledge chunk (default: 500)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .errors import ValidationError

DEFAULT_DB_PATH = str(Path.home() / ".cache" / "vector-memory")
DEFAULT_EMBEDDING_DIMENSION = 384
DEFAULT_MATCH_THRESHOLD = 0.7
DEFAULT_MATCH_COUNT = 10
DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"
DEFAULT_CHUNK_SIZE = 500

_ENV_PREFIX = "VECTOR_MEMORY_"


@dataclass(frozen=True)
class StoreConfig:
    db_path: str = DEFAULT_DB_PATH
    embedding_dimension: int = DEFAULT_EMBEDDING_DIMENSION
    default_match_threshold: float = DEFAULT_MATCH_THRESHOLD
    default_match_count: int = DEFAULT_MATCH_COUNT
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self) -> None:
        if self.embedding_dimension <= 0:
            raise ValidationError("embedding_dimension must be positive")
        if self.default_match_count <= 0:
            raise ValidationError("default_match_count must be positive")
        if not -1.0 <= self.default_match_threshold <= 1.0:
            raise ValidationError("default_match_threshold must be within [-1, 1]")
        if self.chunk_size <= 0:
            raise ValidationError("chunk_size must be positive")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> StoreConfig:
        """Build a config from ``VECTOR_MEMORY_*`` variables, falling back to defaults."""
        env = os.environ if environ is None else environ

        def _get(name: str, default, cast):
            raw = env.get(_ENV_PREFIX + name)
            if raw is None or raw == "":
                return default
            try:
                return cast(raw)
            except ValueError as exc:
                raise ValidationError(f"invalid value for {_ENV_PREFIX}{name}: {raw!r}") from exc

        return cls(
            db_path=_get("DB_PATH", DEFAULT_DB_PATH, str),
            embedding_dimension=_get("DIMENSION", DEFAULT_EMBEDDING_DIMENSION, int),
            default_match_threshold=_get("MATCH_THRESHOLD", DEFAULT_MATCH_THRESHOLD, float),
            default_match_count=_get("MATCH_COUNT", DEFAULT_MATCH_COUNT, int),
            embedding_model=_get("MODEL", DEFAULT_EMBEDDING_MODEL, str),
            chunk_size=_get("CHUNK_SIZE", DEFAULT_CHUNK_SIZE, int),
        )
