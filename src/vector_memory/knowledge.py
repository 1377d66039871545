"""
KnowledgeStore: larger documents split into independently embedded chunks.

A main document (``is_main=True``) owns zero or more chunk rows that point
back to it through ``original_id`` and carry a sequential ``chunk_index``.
Documents without an owning agent are shared and visible to every agent.

Parents and chunks are written separately, not in one transaction, and
removing a parent does not remove its chunks: readers must tolerate
orphaned chunks and parents with missing chunks.  Use
:meth:`KnowledgeStore.remove_with_chunks` to delete both explicitly.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Sequence

from .config import DEFAULT_CHUNK_SIZE, DEFAULT_MATCH_COUNT, DEFAULT_MATCH_THRESHOLD
from .errors import BackendError, ValidationError
from .intelligence import (
    KEYWORD_RESCUE_FLOOR,
    chunk_pattern_id,
    chunk_text,
    generate_id,
    keyword_score,
)
from .models import Content, KnowledgeRecord, SimilaritySearchResult
from .result_cache import ResultCache
from .similarity import SimilarityEngine
from .store import KNOWLEDGE, StoredRow, VectorStore, build_where

logger = logging.getLogger(__name__)


def _visible_to(agent_id: str) -> dict[str, Any]:
    return {"$or": [{"agent_id": agent_id}, {"is_shared": True}]}


class KnowledgeStore:
    def __init__(
        self,
        store: VectorStore,
        engine: SimilarityEngine | None = None,
        result_cache: ResultCache | None = None,
        default_match_threshold: float = DEFAULT_MATCH_THRESHOLD,
        default_match_count: int = DEFAULT_MATCH_COUNT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._store = store
        self._engine = engine or SimilarityEngine(store)
        self._result_cache = result_cache
        self.default_match_threshold = default_match_threshold
        self.default_match_count = default_match_count
        self.chunk_size = chunk_size

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def create(self, record: KnowledgeRecord) -> bool:
        """
        Store *record*, routing it to :meth:`create_chunk` when its content
        metadata marks it as a chunk of an existing document.

        Shared items are stored without an owning agent.  Returns ``False``
        if an item with the same id already exists.
        """
        meta = record.content.metadata
        is_shared = bool(meta.get("is_shared", record.is_shared))
        agent_id = None if is_shared else record.agent_id

        if meta.get("is_chunk") and meta.get("original_id"):
            return self.create_chunk(
                original_id=meta["original_id"],
                agent_id=record.agent_id,
                content=record.content,
                embedding=record.embedding,
                chunk_index=int(meta.get("chunk_index") or 0),
                is_shared=is_shared,
                created_at=record.created_at,
                id=record.id,
            )

        stored = KnowledgeRecord(
            id=record.id or generate_id(),
            agent_id=agent_id,
            content=record.content,
            embedding=record.embedding,
            is_main=True,
            original_id=None,
            chunk_index=None,
            is_shared=is_shared,
            created_at=record.created_at or time.time(),
        )
        if not self._insert(stored, owner_agent_id=record.agent_id):
            return False
        record.id = stored.id
        record.created_at = stored.created_at
        record.agent_id = stored.agent_id
        record.is_shared = stored.is_shared
        return True

    def create_chunk(
        self,
        original_id: str,
        agent_id: str | None,
        content: Content | dict | str,
        embedding: Sequence[float] | None,
        chunk_index: int,
        is_shared: bool = False,
        created_at: float | None = None,
        id: str | None = None,
    ) -> bool:
        """
        Store one chunk of the document *original_id*.

        The parent is not required to exist, but should be created first.
        ``pattern_id`` (``<original_id>-chunk-<index>``) is stamped into the
        chunk's content metadata.
        """
        return self._insert(
            self._chunk_record(
                original_id, agent_id, content, embedding, chunk_index, is_shared, created_at, id
            ),
            owner_agent_id=agent_id,
        )

    @staticmethod
    def _chunk_record(
        original_id: str,
        agent_id: str | None,
        content: Content | dict | str,
        embedding: Sequence[float] | None,
        chunk_index: int,
        is_shared: bool,
        created_at: float | None,
        id: str | None,
    ) -> KnowledgeRecord:
        if not original_id:
            raise ValidationError("original_id is required")
        if not isinstance(content, Content):
            content = Content.from_dict(content)
        content = Content(
            text=content.text,
            type=content.type,
            metadata={
                **content.metadata,
                "is_chunk": True,
                "original_id": original_id,
                "chunk_index": chunk_index,
                "is_shared": is_shared,
                "pattern_id": chunk_pattern_id(original_id, chunk_index),
            },
        )
        return KnowledgeRecord(
            id=id or generate_id(),
            agent_id=None if is_shared else agent_id,
            content=content,
            embedding=list(embedding) if embedding is not None else None,
            is_main=False,
            original_id=original_id,
            chunk_index=chunk_index,
            is_shared=is_shared,
            created_at=created_at or time.time(),
        )

    def ingest(
        self,
        agent_id: str | None,
        text: str,
        embedder,
        metadata: dict[str, Any] | None = None,
        is_shared: bool = False,
        id: str | None = None,
    ) -> tuple[KnowledgeRecord, list[KnowledgeRecord]]:
        """
        Embed and store *text* as a main document, then chunk it.

        Texts longer than ``chunk_size`` are split with :func:`chunk_text`
        and each chunk is embedded and stored after the parent.  *embedder*
        is anything with ``embed(text, record_id=None)`` and
        ``embed_many(texts)``, e.g. :class:`~vector_memory.embedding_cache.CachedEmbedder`.

        Returns the main record and its chunk records.
        """
        if not text.strip():
            raise ValidationError("cannot ingest empty text")
        main_id = id or generate_id()
        main = KnowledgeRecord(
            id=main_id,
            agent_id=agent_id,
            content=Content(
                text=text,
                type="knowledge",
                metadata={**(metadata or {}), "is_main": True, "is_shared": is_shared},
            ),
            embedding=embedder.embed(text, record_id=main_id),
            is_shared=is_shared,
        )
        if not self.create(main):
            raise ValidationError(f"knowledge {main_id} already exists")

        chunks: list[KnowledgeRecord] = []
        if len(text) > self.chunk_size:
            pieces = chunk_text(text, self.chunk_size)
            # One batched model call; the per-chunk embed() below hits the
            # cache and links each chunk id to its text.
            embedder.embed_many(pieces)
            for index, piece in enumerate(pieces):
                chunk = self._chunk_record(
                    original_id=main_id,
                    agent_id=agent_id,
                    content=Content(text=piece, type="knowledge", metadata=dict(metadata or {})),
                    embedding=None,
                    chunk_index=index,
                    is_shared=is_shared,
                    created_at=main.created_at,
                    id=None,
                )
                chunk.embedding = embedder.embed(piece, record_id=chunk.id)
                self._insert(chunk, owner_agent_id=agent_id)
                chunks.append(chunk)

        logger.info("Ingested knowledge %s with %d chunk(s)", main_id, len(chunks))
        return main, chunks

    def remove(self, knowledge_id: str) -> bool:
        """Remove one item.  Its chunks, if any, are left in place."""
        return self._store.delete(KNOWLEDGE, ids=[knowledge_id]) > 0

    def remove_with_chunks(self, knowledge_id: str) -> int:
        """Remove a main document and every chunk pointing at it."""
        removed = self._store.delete(KNOWLEDGE, where={"original_id": knowledge_id})
        return removed + self._store.delete(KNOWLEDGE, ids=[knowledge_id])

    def clear(self, agent_id: str, shared_only: bool = False) -> int:
        """
        Remove the agent's private items, or, with *shared_only*, the shared
        items the agent published.  Other agents' items are never touched.
        """
        if not agent_id:
            raise ValidationError("agent_id is required")
        if shared_only:
            where = build_where({"owner_agent_id": agent_id}, {"is_shared": True})
        else:
            where = {"agent_id": agent_id}
        removed = self._store.delete(KNOWLEDGE, where=where)
        logger.debug("Cleared %d knowledge item(s) (agent=%s, shared_only=%s)", removed, agent_id, shared_only)
        return removed

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get(
        self,
        agent_id: str,
        id: str | None = None,
        limit: int | None = None,
    ) -> list[KnowledgeRecord]:
        """Items visible to *agent_id* (its own plus shared), newest first."""
        rows = self._store.get(
            KNOWLEDGE,
            ids=[id] if id else None,
            where=_visible_to(agent_id),
            include_embeddings=True,
        )
        rows.sort(key=lambda r: (-r.created_at, r.id))
        records = [self._from_row(r) for r in rows]
        return records[:limit] if limit is not None else records

    def search(
        self,
        agent_id: str,
        query: Sequence[float],
        query_text: str | None = None,
        threshold: float | None = None,
        limit: int | None = None,
    ) -> list[SimilaritySearchResult]:
        """
        Rank visible knowledge by ``vector_score * keyword_score``.

        A row qualifies when its vector score reaches *threshold*, or when it
        has a keyword score above 1.0 and a vector score of at least 0.3.
        The ranked list is memoised in the result cache under
        ``(agent_id, "knowledge:<query_text>")`` and a cache hit is returned
        verbatim.  A missing query text matches every row and is cached
        under ``"knowledge:"``.
        """
        threshold = self.default_match_threshold if threshold is None else threshold
        limit = self.default_match_count if limit is None else limit
        if limit < 0:
            raise ValidationError("limit must be non-negative")
        signature = f"knowledge:{query_text or ''}"

        cached = self._cached(agent_id, signature)
        if cached is not None:
            return cached

        rows = self._store.get(
            KNOWLEDGE,
            where=build_where(_visible_to(agent_id), {"has_embedding": True}),
            include_embeddings=True,
        )
        results: list[SimilaritySearchResult] = []
        for scored in self._engine.rank(query, rows):
            record = self._from_row(scored.row)
            vector_score = scored.similarity
            kw_score = keyword_score(record.content.text, record.content.metadata, query_text)
            if vector_score >= threshold or (kw_score > 1.0 and vector_score >= KEYWORD_RESCUE_FLOOR):
                results.append(
                    SimilaritySearchResult(
                        record=record,
                        similarity=vector_score * kw_score,
                        vector_score=vector_score,
                        keyword_score=kw_score,
                    )
                )
        results.sort(key=lambda r: (-r.similarity, -(r.record.created_at or 0.0), r.record.id))
        results = results[:limit]

        if self._result_cache is not None:
            payload = json.dumps([r.to_dict() for r in results])
            if not self._result_cache.set(agent_id, signature, payload):
                logger.warning("Knowledge search results for agent %s were not cached", agent_id)
        return results

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _cached(self, agent_id: str, signature: str) -> list[SimilaritySearchResult] | None:
        if self._result_cache is None:
            return None
        try:
            payload = self._result_cache.get(agent_id, signature)
        except BackendError as exc:
            logger.warning("Result cache lookup failed, recomputing: %s", exc)
            return None
        if payload is None:
            return None
        try:
            return [SimilaritySearchResult.from_dict(item) for item in json.loads(payload)]
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding unreadable cached results for agent %s: %s", agent_id, exc)
            return None

    def _insert(self, record: KnowledgeRecord, owner_agent_id: str | None = None) -> bool:
        if record.embedding is not None:
            self._store.check_dimension(record.embedding)
        if self._store.exists(KNOWLEDGE, record.id):
            logger.warning("Knowledge %s already exists; not inserted", record.id)
            return False
        self._store.add(
            KNOWLEDGE,
            ids=[record.id],
            documents=[record.content.text],
            metadatas=[self._to_metadata(record, owner_agent_id)],
            embeddings=[record.embedding],
        )
        return True

    @staticmethod
    def _to_metadata(record: KnowledgeRecord, owner_agent_id: str | None) -> dict[str, Any]:
        return {
            "agent_id": record.agent_id,
            # Shared rows have no agent_id; this remembers who published them.
            "owner_agent_id": owner_agent_id or record.agent_id,
            "is_main": record.is_main,
            "original_id": record.original_id,
            "chunk_index": record.chunk_index,
            "is_shared": record.is_shared,
            "created_at": float(record.created_at),
            "content_type": record.content.type,
            "content_metadata": json.dumps(record.content.metadata),
        }

    @staticmethod
    def _from_row(row: StoredRow) -> KnowledgeRecord:
        meta = row.metadata
        chunk_index = meta.get("chunk_index")
        return KnowledgeRecord(
            id=row.id,
            agent_id=meta.get("agent_id"),
            content=Content(
                text=row.document,
                type=meta.get("content_type", "knowledge"),
                metadata=json.loads(meta.get("content_metadata") or "{}"),
            ),
            embedding=row.embedding,
            is_main=bool(meta.get("is_main", True)),
            original_id=meta.get("original_id"),
            chunk_index=int(chunk_index) if chunk_index is not None else None,
            is_shared=bool(meta.get("is_shared", False)),
            created_at=row.created_at,
        )
