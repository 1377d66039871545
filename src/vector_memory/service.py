"""
VectorMemory: wires every component from a :class:`StoreConfig`.

Usage example::

    from vector_memory import StoreConfig, VectorMemory

    vm = VectorMemory(StoreConfig(db_path="./my_memory"))
    vector = vm.embedder.embed("The user's name is Alice.")
    vm.memories.insert(MemoryRecord(..., embedding=vector), table="facts")
"""

from __future__ import annotations

import logging

import chromadb

from .config import StoreConfig
from .embedding_cache import CachedEmbedder, EmbeddingCache, EmbeddingFunction
from .knowledge import KnowledgeStore
from .memory import MemoryStore
from .result_cache import ResultCache
from .similarity import SimilarityEngine
from .store import VectorStore, get_embedding_function

logger = logging.getLogger(__name__)


class VectorMemory:
    """
    One store, one engine, two caches, two record stores.

    The caches are owned by this instance rather than being process-wide,
    so independent instances never share state.  The embedding model is
    loaded lazily on first use of :attr:`embedder`.
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        collection_prefix: str = "",
        _client: chromadb.ClientAPI | None = None,
        _embedding_function: EmbeddingFunction | None = None,
    ) -> None:
        self.config = config or StoreConfig.from_env()
        self.store = VectorStore(
            path=self.config.db_path,
            embedding_dimension=self.config.embedding_dimension,
            collection_prefix=collection_prefix,
            _client=_client,
        )
        self.engine = SimilarityEngine(self.store)
        self.embedding_cache = EmbeddingCache(self.store)
        self.result_cache = ResultCache(self.store)
        self.memories = MemoryStore(
            self.store,
            self.engine,
            default_match_threshold=self.config.default_match_threshold,
            default_match_count=self.config.default_match_count,
        )
        self.knowledge = KnowledgeStore(
            self.store,
            self.engine,
            result_cache=self.result_cache,
            default_match_threshold=self.config.default_match_threshold,
            default_match_count=self.config.default_match_count,
            chunk_size=self.config.chunk_size,
        )
        self._embedding_function = _embedding_function
        self._embedder: CachedEmbedder | None = None

        if self.init_schema():
            logger.info("Initialised vector memory schema at %s", self.config.db_path)
        self.embedding_cache.load()

    @property
    def embedder(self) -> CachedEmbedder:
        if self._embedder is None:
            fn = self._embedding_function or get_embedding_function(self.config.embedding_model)
            self._embedder = CachedEmbedder(fn, self.embedding_cache)
        return self._embedder

    def init_schema(self) -> bool:
        return self.store.init_schema()

    def clear_caches(self) -> None:
        """Empty both caches.  Stored memories and knowledge are untouched."""
        self.embedding_cache.clear()
        self.result_cache.clear()
