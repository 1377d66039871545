"""
Embedding cache keyed by a normalised hash of the source text.

The cache is an optimisation, never a source of truth: every mutation is
written through to the ``embedding_cache`` collection, and a failed write
leaves the in-memory state intact and is reported as a
:class:`~vector_memory.errors.CachePersistenceWarning`.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Callable, Sequence

from .errors import BackendError, CachePersistenceWarning, ValidationError
from .intelligence import closest_by_edit_distance, hash_text
from .models import CachedEmbedding
from .store import EMBEDDING_CACHE, VectorStore

logger = logging.getLogger(__name__)

#: Signature of the external embedding model: a batch of texts in, one
#: vector per text out.  ChromaDB embedding functions satisfy it.
EmbeddingFunction = Callable[[list[str]], Sequence[Sequence[float]]]

_ENTRY = "entry"
_LINK = "link"


@dataclass
class EmbeddingCacheEntry:
    text_hash: str
    text: str
    embedding: list[float]
    owner_record_id: str | None = None


class EmbeddingCache:
    """
    Append-only text → embedding cache with a reverse record-id index.

    Two indices are maintained: hash → entry, and owning record id → hash,
    so the embedding behind a stored record can be recovered without
    re-embedding its text.
    """

    def __init__(self, store: VectorStore) -> None:
        self._store = store
        self._entries: dict[str, EmbeddingCacheEntry] = {}
        self._owners: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, text: str) -> bool:
        return hash_text(text) in self._entries

    @staticmethod
    def hash(text: str) -> str:
        return hash_text(text)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, text: str) -> list[float] | None:
        entry = self._entries.get(hash_text(text))
        return list(entry.embedding) if entry else None

    def entry(self, text: str) -> EmbeddingCacheEntry | None:
        return self._entries.get(hash_text(text))

    def by_record_id(self, record_id: str) -> EmbeddingCacheEntry | None:
        """Return the entry whose text produced *record_id*, if linked."""
        text_hash = self._owners.get(record_id)
        return self._entries.get(text_hash) if text_hash else None

    def similar(self, text: str, max_distance: int, limit: int = 1) -> list[CachedEmbedding]:
        """
        Cached embeddings whose source text is within *max_distance* edits of
        *text*, closest first.  Lets a caller reuse the embedding of a near
        identical text instead of calling the model.
        """
        if max_distance < 0 or limit < 0:
            raise ValidationError("max_distance and limit must be non-negative")
        matches = closest_by_edit_distance(
            text,
            ((e.text, e) for e in self._entries.values()),
            max_distance,
            limit,
        )
        return [CachedEmbedding(list(e.embedding), distance) for e, distance in matches]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def put(self, text: str, embedding: Sequence[float]) -> bool:
        """
        Cache *embedding* for *text*.  The first write wins.

        Returns ``True`` if a new entry was created.
        """
        text_hash = hash_text(text)
        if text_hash in self._entries:
            return False
        self._store.check_dimension(embedding)
        entry = EmbeddingCacheEntry(text_hash, text, [float(x) for x in embedding])
        self._entries[text_hash] = entry
        self._persist(
            "entry",
            lambda: self._store.upsert(
                EMBEDDING_CACHE,
                ids=[text_hash],
                documents=[text],
                metadatas=[{"kind": _ENTRY}],
                embeddings=[entry.embedding],
            ),
        )
        return True

    def link_to_record(self, text: str, record_id: str) -> bool:
        """
        Record that *record_id* was produced from *text*.

        Returns ``False`` when *text* has no cached embedding to link.
        """
        text_hash = hash_text(text)
        entry = self._entries.get(text_hash)
        if entry is None:
            logger.debug("No cached embedding to link for record %s", record_id)
            return False
        entry.owner_record_id = record_id
        self._owners[record_id] = text_hash
        self._persist(
            "link",
            lambda: self._store.upsert(
                EMBEDDING_CACHE,
                ids=[f"{_LINK}:{record_id}"],
                documents=[""],
                metadatas=[{"kind": _LINK, "text_hash": text_hash, "record_id": record_id}],
                embeddings=[None],
            ),
        )
        return True

    def clear(self) -> None:
        """Drop every entry, in memory and on disk."""
        self._entries.clear()
        self._owners.clear()
        self._persist("clear", lambda: self._store.delete(EMBEDDING_CACHE))

    def load(self) -> int:
        """Populate the in-memory indices from disk.  Returns the entry count."""
        try:
            rows = self._store.get(EMBEDDING_CACHE, include_embeddings=True)
        except BackendError as exc:
            self._warn("load", exc)
            return len(self._entries)

        links = []
        for row in rows:
            if row.metadata.get("kind") == _LINK:
                links.append(row)
            elif row.embedding is not None:
                self._entries.setdefault(
                    row.id, EmbeddingCacheEntry(row.id, row.document, row.embedding)
                )
        for row in links:
            text_hash = row.metadata.get("text_hash")
            record_id = row.metadata.get("record_id")
            entry = self._entries.get(text_hash)
            if entry is not None and record_id:
                self._owners[record_id] = text_hash
                entry.owner_record_id = record_id
        logger.debug("Loaded %d cached embeddings", len(self._entries))
        return len(self._entries)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _persist(self, what: str, write: Callable[[], object]) -> bool:
        try:
            write()
        except BackendError as exc:
            self._warn(f"persist {what}", exc)
            return False
        return True

    @staticmethod
    def _warn(action: str, exc: Exception) -> None:
        logger.warning("Embedding cache could not %s: %s", action, exc)
        warnings.warn(
            f"embedding cache could not {action}: {exc}",
            CachePersistenceWarning,
            stacklevel=3,
        )


class CachedEmbedder:
    """
    Cache-aware front for the external embedding model.

    The cache is consulted first; only misses reach *embedding_function*,
    and their results are written back.
    """

    def __init__(self, embedding_function: EmbeddingFunction, cache: EmbeddingCache) -> None:
        self._embed = embedding_function
        self.cache = cache

    def embed(self, text: str, record_id: str | None = None) -> list[float]:
        vector = self.cache.get(text)
        if vector is None:
            vector = [float(x) for x in self._embed([text])[0]]
            self.cache.put(text, vector)
        if record_id is not None:
            self.cache.link_to_record(text, record_id)
        return vector

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch, sending only the cache misses to the model in one call."""
        missing = [t for t in dict.fromkeys(texts) if t not in self.cache]
        if missing:
            for text, vector in zip(missing, self._embed(missing)):
                self.cache.put(text, [float(x) for x in vector])
        return [self.cache.get(t) for t in texts]
