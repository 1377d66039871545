"""
Durable backing store: a thin wrapper around ChromaDB collections.

Every logical collection (memories, knowledge, embedding cache, result
cache) lives in its own ChromaDB collection using cosine space.  Rows that
carry no embedding are stored against a placeholder unit vector and flagged
with ``has_embedding=False`` so similarity scans can skip them.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Sequence

import chromadb
from chromadb.errors import ChromaError
from chromadb.utils import embedding_functions

from .errors import BackendError, DimensionMismatch, ValidationError

logger = logging.getLogger(__name__)

MEMORIES = "memories"
KNOWLEDGE = "knowledge"
EMBEDDING_CACHE = "embedding_cache"
RESULT_CACHE = "result_cache"

COLLECTIONS = (MEMORIES, KNOWLEDGE, EMBEDDING_CACHE, RESULT_CACHE)

_HNSW_SPACE_KEY = "hnsw:space"
_SPACE_KEY = "space"
_DIMENSION_KEY = "embedding_dimension"


def get_embedding_function(
    model_name: str = "all-MiniLM-L6-v2",
) -> embedding_functions.SentenceTransformerEmbeddingFunction:
    """Return a sentence-transformer embedding function for ChromaDB."""
    return embedding_functions.SentenceTransformerEmbeddingFunction(
        model_name=model_name
    )


@dataclass
class StoredRow:
    """One row as read back from a collection."""

    id: str
    document: str
    metadata: dict[str, Any]
    embedding: list[float] | None = None

    @property
    def created_at(self) -> float:
        return float(self.metadata.get("created_at", 0.0))


def build_where(*conditions: dict[str, Any] | None) -> dict[str, Any] | None:
    """
    AND together ChromaDB ``where`` clauses, dropping empty ones.

    ChromaDB rejects a bare ``$and`` with fewer than two operands, so a single
    clause is returned unwrapped and no clause at all becomes ``None``.
    """
    clauses = [c for c in conditions if c]
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


@contextmanager
def _backend_call(action: str) -> Iterator[None]:
    try:
        yield
    except (ChromaError, OSError) as exc:
        logger.error("ChromaDB %s failed: %s", action, exc)
        raise BackendError(f"{action} failed: {exc}") from exc


class VectorStore:
    """
    Persistent vector store backed by ChromaDB.

    Collections use cosine space, so ChromaDB distances fall in [0, 2]:
        distance = 1 - cosine_similarity
    The store itself never asks ChromaDB to rank; scoring happens in
    :mod:`vector_memory.similarity` so ordering and pagination stay exact.
    """

    def __init__(
        self,
        path: str = "./chroma_db",
        embedding_dimension: int = 384,
        collection_prefix: str = "",
        _client: chromadb.ClientAPI | None = None,
    ) -> None:
        if embedding_dimension <= 0:
            raise ValidationError("embedding_dimension must be positive")
        self.client = _client or chromadb.PersistentClient(path=path)
        self.embedding_dimension = embedding_dimension
        self.collection_prefix = collection_prefix
        self._collections: dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def full_name(self, name: str) -> str:
        return f"{self.collection_prefix}{name}"

    def init_schema(self) -> bool:
        """
        Create any missing collection.  Idempotent.

        Existing collections are checked for cosine space and the configured
        dimension and reused untouched.  Returns ``True`` when at least one
        collection had to be created.
        """
        with _backend_call("list collections"):
            # Older clients return names, newer ones return Collection objects.
            existing = {getattr(c, "name", c) for c in self.client.list_collections()}

        created = False
        for name in COLLECTIONS:
            full = self.full_name(name)
            if full in existing:
                with _backend_call(f"open collection {full}"):
                    collection = self.client.get_collection(name=full, embedding_function=None)
                self._validate_collection(collection)
            else:
                logger.info("Creating collection %s (%d dimensions)", full, self.embedding_dimension)
                with _backend_call(f"create collection {full}"):
                    collection = self.client.create_collection(
                        name=full,
                        embedding_function=None,
                        metadata={
                            _HNSW_SPACE_KEY: "cosine",
                            _SPACE_KEY: "cosine",
                            _DIMENSION_KEY: self.embedding_dimension,
                        },
                    )
                created = True
            self._collections[name] = collection
        return created

    def _validate_collection(self, collection: Any) -> None:
        metadata = collection.metadata or {}
        if metadata.get(_SPACE_KEY) != "cosine":
            raise ValidationError(
                f"collection {collection.name} does not use cosine space"
            )
        stored = metadata.get(_DIMENSION_KEY)
        if stored is not None and int(stored) != self.embedding_dimension:
            raise ValidationError(
                f"collection {collection.name} is configured for {stored} "
                f"dimensions, not {self.embedding_dimension}"
            )

    def _collection(self, name: str) -> Any:
        if name not in self._collections:
            self.init_schema()
        return self._collections[name]

    def check_dimension(self, vector: Sequence[float]) -> None:
        if len(vector) != self.embedding_dimension:
            raise DimensionMismatch(self.embedding_dimension, len(vector))

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def _placeholder(self) -> list[float]:
        # A unit vector keeps the HNSW index free of zero-norm entries.
        return [1.0] + [0.0] * (self.embedding_dimension - 1)

    def _prepare(
        self,
        embeddings: Sequence[Sequence[float] | None],
        metadatas: Sequence[dict[str, Any]],
    ) -> tuple[list[list[float]], list[dict[str, Any]]]:
        vectors: list[list[float]] = []
        prepared: list[dict[str, Any]] = []
        for embedding, metadata in zip(embeddings, metadatas):
            # ChromaDB rejects None metadata values.
            meta = {k: v for k, v in metadata.items() if v is not None}
            if embedding is None:
                vectors.append(self._placeholder())
                meta["has_embedding"] = False
            else:
                self.check_dimension(embedding)
                vectors.append([float(x) for x in embedding])
                meta["has_embedding"] = True
            prepared.append(meta)
        return vectors, prepared

    def add(
        self,
        name: str,
        ids: list[str],
        documents: list[str],
        metadatas: list[dict[str, Any]],
        embeddings: Sequence[Sequence[float] | None],
    ) -> None:
        """Add new rows.  Embeddings may be ``None`` for rows without one."""
        vectors, prepared = self._prepare(embeddings, metadatas)
        with _backend_call(f"add to {name}"):
            self._collection(name).add(
                ids=ids,
                documents=documents,
                metadatas=prepared,
                embeddings=vectors,
            )

    def upsert(
        self,
        name: str,
        ids: list[str],
        documents: list[str],
        metadatas: list[dict[str, Any]],
        embeddings: Sequence[Sequence[float] | None],
    ) -> None:
        """Insert rows or replace them when the id already exists."""
        vectors, prepared = self._prepare(embeddings, metadatas)
        with _backend_call(f"upsert into {name}"):
            self._collection(name).upsert(
                ids=ids,
                documents=documents,
                metadatas=prepared,
                embeddings=vectors,
            )

    def delete(
        self,
        name: str,
        ids: list[str] | None = None,
        where: dict[str, Any] | None = None,
    ) -> int:
        """Delete rows by id and/or filter.  Returns the number of rows removed."""
        matched = [row.id for row in self.get(name, ids=ids, where=where)]
        if not matched:
            return 0
        with _backend_call(f"delete from {name}"):
            self._collection(name).delete(ids=matched)
        return len(matched)

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get(
        self,
        name: str,
        ids: list[str] | None = None,
        where: dict[str, Any] | None = None,
        include_embeddings: bool = False,
    ) -> list[StoredRow]:
        """Fetch rows by id and/or filter, in no particular order."""
        if ids is not None and not ids:
            return []
        include = ["documents", "metadatas"]
        if include_embeddings:
            include.append("embeddings")
        with _backend_call(f"get from {name}"):
            result = self._collection(name).get(ids=ids, where=where, include=include)

        row_ids = result.get("ids") or []
        documents = result.get("documents")
        metadatas = result.get("metadatas")
        embeddings = result.get("embeddings") if include_embeddings else None

        rows: list[StoredRow] = []
        for i, row_id in enumerate(row_ids):
            meta = dict(metadatas[i] or {}) if metadatas is not None else {}
            embedding = None
            if embeddings is not None and meta.get("has_embedding", True):
                embedding = [float(x) for x in embeddings[i]]
            rows.append(
                StoredRow(
                    id=row_id,
                    document=documents[i] if documents is not None else "",
                    metadata=meta,
                    embedding=embedding,
                )
            )
        return rows

    def exists(self, name: str, id: str) -> bool:
        return bool(self.get(name, ids=[id]))

    def count(self, name: str, where: dict[str, Any] | None = None) -> int:
        """Return the number of rows, optionally restricted by a filter."""
        if where is None:
            with _backend_call(f"count {name}"):
                return self._collection(name).count()
        with _backend_call(f"count {name}"):
            result = self._collection(name).get(where=where, include=[])
        return len(result.get("ids") or [])
