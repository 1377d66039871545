"""
vector-memory: a vector memory & knowledge store.

Persists memories and knowledge items with their embeddings, retrieves them
by cosine similarity, deduplicates near-duplicates on insert, chunks large
documents and caches embeddings and knowledge-search results.
"""

from .config import StoreConfig
from .embedding_cache import CachedEmbedder, EmbeddingCache
from .errors import (
    BackendError,
    CachePersistenceWarning,
    DimensionMismatch,
    ValidationError,
    VectorMemoryError,
)
from .knowledge import KnowledgeStore
from .memory import MemoryStore
from .models import CachedEmbedding, Content, KnowledgeRecord, MemoryRecord, SimilaritySearchResult
from .result_cache import ResultCache
from .service import VectorMemory
from .similarity import SearchFilter, SimilarityEngine, sanitize, score
from .store import VectorStore

__all__ = [
    "BackendError",
    "CachePersistenceWarning",
    "CachedEmbedding",
    "CachedEmbedder",
    "Content",
    "DimensionMismatch",
    "EmbeddingCache",
    "KnowledgeRecord",
    "KnowledgeStore",
    "MemoryRecord",
    "MemoryStore",
    "ResultCache",
    "SearchFilter",
    "SimilarityEngine",
    "SimilaritySearchResult",
    "StoreConfig",
    "ValidationError",
    "VectorMemory",
    "VectorMemoryError",
    "VectorStore",
    "sanitize",
    "score",
]
