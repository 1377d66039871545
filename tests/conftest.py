"""
Shared pytest fixtures for vector-memory tests.

Uses ChromaDB in ephemeral (in-memory) mode and a deterministic fake
embedding function so that tests run fast without downloading any ML
models.
"""

from __future__ import annotations

import hashlib
import math
import uuid

import chromadb
import numpy as np
import pytest

from vector_memory.config import StoreConfig
from vector_memory.embedding_cache import CachedEmbedder, EmbeddingCache
from vector_memory.knowledge import KnowledgeStore
from vector_memory.memory import MemoryStore
from vector_memory.models import MemoryRecord
from vector_memory.result_cache import ResultCache
from vector_memory.service import VectorMemory
from vector_memory.similarity import SimilarityEngine
from vector_memory.store import VectorStore

#: Embedding width used by most tests.
DIM = 32

ROOM = "11111111-1111-1111-1111-111111111111"
OTHER_ROOM = "22222222-2222-2222-2222-222222222222"
AGENT = "aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa"
OTHER_AGENT = "bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb"
USER = "cccccccc-cccc-cccc-cccc-cccccccccccc"


class FakeEmbeddingFunction:
    """
    Deterministic embedding function mapping text to a unit vector seeded
    from its SHA-256 hash.  Counts how many texts it was asked to embed.
    """

    def __init__(self, dimension: int = DIM) -> None:
        self.dimension = dimension
        self.calls = 0

    def name(self) -> str:
        return "fake-sha256-embedding"

    def __call__(self, input: list[str]) -> list[list[float]]:  # noqa: A002
        self.calls += len(input)
        vectors = []
        for text in input:
            seed = int.from_bytes(hashlib.sha256(text.encode()).digest()[:8], "big")
            vec = np.random.default_rng(seed).standard_normal(self.dimension)
            vectors.append((vec / np.linalg.norm(vec)).tolist())
        return vectors


def axis(index: int, dim: int = DIM) -> list[float]:
    """Unit vector along *index*."""
    vec = [0.0] * dim
    vec[index] = 1.0
    return vec


def at_similarity(cos: float, dim: int = DIM, other_axis: int = 1) -> list[float]:
    """Unit vector whose cosine similarity with ``axis(0)`` is exactly *cos*."""
    vec = [0.0] * dim
    vec[0] = cos
    vec[other_axis] = math.sqrt(max(0.0, 1.0 - cos * cos))
    return vec


def memory(embedding, room=ROOM, agent=AGENT, text="memory", **kwargs) -> MemoryRecord:
    return MemoryRecord(
        room_id=room,
        agent_id=agent,
        user_id=USER,
        content={"text": text},
        embedding=embedding,
        **kwargs,
    )


# A single shared EphemeralClient instance for the test session.
# Each fixture call uses a unique collection prefix so tests are isolated.
_EPHEMERAL_CLIENT = chromadb.EphemeralClient()


def _prefix() -> str:
    return f"t{uuid.uuid4().hex}_"


@pytest.fixture()
def make_store():
    """Factory for isolated in-memory VectorStores of a given width."""

    def _make(dimension: int = DIM, prefix: str | None = None) -> VectorStore:
        store = VectorStore(
            embedding_dimension=dimension,
            collection_prefix=prefix or _prefix(),
            _client=_EPHEMERAL_CLIENT,
        )
        store.init_schema()
        return store

    return _make


@pytest.fixture()
def vector_store(make_store) -> VectorStore:
    return make_store()


@pytest.fixture()
def engine(vector_store: VectorStore) -> SimilarityEngine:
    return SimilarityEngine(vector_store)


@pytest.fixture()
def memory_store(vector_store: VectorStore, engine: SimilarityEngine) -> MemoryStore:
    return MemoryStore(vector_store, engine)


@pytest.fixture()
def result_cache(vector_store: VectorStore) -> ResultCache:
    return ResultCache(vector_store)


@pytest.fixture()
def knowledge_store(vector_store: VectorStore, engine: SimilarityEngine, result_cache: ResultCache) -> KnowledgeStore:
    return KnowledgeStore(vector_store, engine, result_cache=result_cache, chunk_size=120)


@pytest.fixture()
def embedding_cache(vector_store: VectorStore) -> EmbeddingCache:
    return EmbeddingCache(vector_store)


@pytest.fixture()
def fake_embedding_function() -> FakeEmbeddingFunction:
    return FakeEmbeddingFunction(DIM)


@pytest.fixture()
def embedder(fake_embedding_function, embedding_cache: EmbeddingCache) -> CachedEmbedder:
    return CachedEmbedder(fake_embedding_function, embedding_cache)


@pytest.fixture()
def vector_memory(fake_embedding_function) -> VectorMemory:
    """VectorMemory wired to the ephemeral client and the fake embedder."""
    return VectorMemory(
        StoreConfig(db_path="unused", embedding_dimension=DIM, default_match_threshold=0.0),
        collection_prefix=_prefix(),
        _client=_EPHEMERAL_CLIENT,
        _embedding_function=fake_embedding_function,
    )
