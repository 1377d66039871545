"""
MemoryStore: durable, timestamped memories with embeddings.

Usage example::

    from vector_memory import MemoryRecord, MemoryStore, VectorStore

    store = VectorStore(path="./my_memory", embedding_dimension=384)
    memories = MemoryStore(store)

    record = MemoryRecord(
        room_id=room, agent_id=agent, user_id=user,
        content={"text": "cats and dogs"}, embedding=vector,
    )
    memories.insert(record, table="messages")

    for hit in memories.search_by_embedding(vector, table="messages", room_id=room):
        print(hit.record.content.text, hit.similarity)
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Sequence

from .config import DEFAULT_MATCH_COUNT, DEFAULT_MATCH_THRESHOLD
from .errors import ValidationError
from .intelligence import DUPLICATE_THRESHOLD, closest_by_edit_distance, generate_id
from .models import CachedEmbedding, Content, MemoryRecord, SimilaritySearchResult
from .similarity import SearchFilter, SimilarityEngine
from .store import MEMORIES, StoredRow, VectorStore, build_where

logger = logging.getLogger(__name__)


def _require(**fields: Any) -> None:
    for name, value in fields.items():
        if not value:
            raise ValidationError(f"{name} is required")


class MemoryStore:
    """
    Memories scoped by table, room and agent.

    Inserts are deduplicated by similarity: a memory whose embedding scores
    at least 0.95 against an existing memory in the same room and table is
    stored with ``unique=False``.  The check and the insert are two separate
    round trips, so concurrent inserts of near-identical content can both be
    stored as unique.
    """

    def __init__(
        self,
        store: VectorStore,
        engine: SimilarityEngine | None = None,
        default_match_threshold: float = DEFAULT_MATCH_THRESHOLD,
        default_match_count: int = DEFAULT_MATCH_COUNT,
    ) -> None:
        self._store = store
        self._engine = engine or SimilarityEngine(store)
        self.default_match_threshold = default_match_threshold
        self.default_match_count = default_match_count

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def insert(
        self,
        record: MemoryRecord,
        table: str | None = None,
        unique: bool | None = None,
    ) -> bool:
        """
        Persist *record* in *table*.

        ``unique`` overrides the computed flag.  The record is updated in
        place with its id, table, unique flag and creation time.  Returns
        ``False`` (and logs a warning) if a memory with the same id exists.
        """
        table = table or record.table
        _require(table=table, room_id=record.room_id)
        if record.embedding is not None:
            self._store.check_dimension(record.embedding)

        record_id = record.id or generate_id()
        if record.id and self._store.exists(MEMORIES, record_id):
            logger.warning("Memory %s already exists in %s; not inserted", record_id, table)
            return False

        is_unique = True
        if record.embedding is not None:
            similar = self._engine.search(
                MEMORIES,
                record.embedding,
                SearchFilter(table=table, room_id=record.room_id),
                threshold=DUPLICATE_THRESHOLD,
                limit=1,
            )
            is_unique = not similar

        if unique is None:
            unique = is_unique

        record.id = record_id
        record.table = table
        record.unique = unique
        if record.created_at is None:
            record.created_at = time.time()

        self._store.add(
            MEMORIES,
            ids=[record_id],
            documents=[record.content.text],
            metadatas=[self._to_metadata(record)],
            embeddings=[record.embedding],
        )
        logger.debug(
            "Inserted memory %s into %s (room=%s, unique=%s)",
            record_id, table, record.room_id, unique,
        )
        return True

    def delete_by_id(self, memory_id: str, table: str) -> bool:
        """Delete one memory.  Returns ``True`` if it existed."""
        _require(table=table)
        return self._store.delete(MEMORIES, ids=[memory_id], where={"table": table}) > 0

    def delete_all_in_room(self, room_id: str, table: str) -> int:
        """Delete every memory of *table* in *room_id*.  Returns the count removed."""
        _require(room_id=room_id, table=table)
        removed = self._store.delete(
            MEMORIES, where=build_where({"room_id": room_id}, {"table": table})
        )
        logger.debug("Removed %d memories from room %s (%s)", removed, room_id, table)
        return removed

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get_by_id(self, memory_id: str) -> MemoryRecord | None:
        rows = self._store.get(MEMORIES, ids=[memory_id], include_embeddings=True)
        return self._from_row(rows[0]) if rows else None

    def get_by_ids(self, memory_ids: Sequence[str], table: str | None = None) -> list[MemoryRecord]:
        """Fetch several memories; ids that do not exist are skipped."""
        if not memory_ids:
            return []
        where = {"table": table} if table else None
        rows = self._store.get(MEMORIES, ids=list(memory_ids), where=where, include_embeddings=True)
        return self._newest_first(rows)

    def list(
        self,
        room_id: str,
        table: str,
        agent_id: str | None = None,
        unique_only: bool = False,
        start: float | None = None,
        end: float | None = None,
        limit: int | None = None,
    ) -> list[MemoryRecord]:
        """Memories in a room, newest first; ``start``/``end`` bound ``created_at`` inclusively."""
        _require(room_id=room_id, table=table)
        where = build_where(
            {"table": table},
            {"room_id": room_id},
            {"agent_id": agent_id} if agent_id else None,
            {"unique": True} if unique_only else None,
            {"created_at": {"$gte": start}} if start is not None else None,
            {"created_at": {"$lte": end}} if end is not None else None,
        )
        rows = self._store.get(MEMORIES, where=where, include_embeddings=True)
        records = self._newest_first(rows)
        return records[:limit] if limit is not None else records

    def list_by_room_ids(
        self,
        room_ids: Sequence[str],
        table: str,
        agent_id: str | None = None,
        limit: int | None = None,
    ) -> list[MemoryRecord]:
        """Memories across several rooms, newest first."""
        _require(table=table)
        if not room_ids:
            return []
        where = build_where(
            {"table": table},
            {"room_id": {"$in": list(room_ids)}},
            {"agent_id": agent_id} if agent_id else None,
        )
        rows = self._store.get(MEMORIES, where=where, include_embeddings=True)
        records = self._newest_first(rows)
        return records[:limit] if limit is not None else records

    def count(self, room_id: str, unique_only: bool = True, table: str = "") -> int:
        _require(table=table)
        where = build_where(
            {"room_id": room_id},
            {"table": table},
            {"unique": True} if unique_only else None,
        )
        return self._store.count(MEMORIES, where=where)

    def search_by_embedding(
        self,
        embedding: Sequence[float],
        table: str,
        room_id: str | None = None,
        agent_id: str | None = None,
        unique_only: bool = False,
        threshold: float | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[SimilaritySearchResult]:
        """Rank memories of *table* against *embedding*; see :meth:`SimilarityEngine.search`."""
        hits = self._engine.search(
            MEMORIES,
            embedding,
            SearchFilter(table=table, room_id=room_id, agent_id=agent_id, unique_only=unique_only),
            threshold=threshold,
            limit=limit,
            offset=offset,
        )
        return [SimilaritySearchResult(self._from_row(h.row), h.similarity) for h in hits]

    def search_memories(
        self,
        embedding: Sequence[float],
        table: str,
        room_id: str,
        agent_id: str | None = None,
        unique_only: bool = False,
        match_threshold: float | None = None,
        match_count: int | None = None,
    ) -> list[SimilaritySearchResult]:
        """Like :meth:`search_by_embedding` but falls back to the configured defaults."""
        return self.search_by_embedding(
            embedding,
            table=table,
            room_id=room_id,
            agent_id=agent_id,
            unique_only=unique_only,
            threshold=self.default_match_threshold if match_threshold is None else match_threshold,
            limit=self.default_match_count if match_count is None else match_count,
        )

    def get_cached_embeddings(
        self,
        table: str,
        query_input: str,
        max_distance: int,
        match_count: int,
    ) -> list[CachedEmbedding]:
        """
        Embeddings of stored memories in *table* whose text is within
        *max_distance* Levenshtein edits of *query_input*, closest first.
        """
        _require(table=table)
        if max_distance < 0 or match_count < 0:
            raise ValidationError("max_distance and match_count must be non-negative")
        rows = self._store.get(
            MEMORIES,
            where=build_where({"table": table}, {"has_embedding": True}),
            include_embeddings=True,
        )
        rows.sort(key=lambda r: (-r.created_at, r.id))
        matches = closest_by_edit_distance(
            query_input,
            ((r.document or "", r) for r in rows if r.embedding is not None),
            max_distance,
            match_count,
        )
        return [CachedEmbedding(list(r.embedding), distance) for r, distance in matches]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_metadata(record: MemoryRecord) -> dict[str, Any]:
        return {
            "table": record.table,
            "room_id": record.room_id,
            "agent_id": record.agent_id,
            "user_id": record.user_id,
            "unique": bool(record.unique),
            "created_at": float(record.created_at),
            "content_type": record.content.type,
            "content_metadata": json.dumps(record.content.metadata),
        }

    @staticmethod
    def _from_row(row: StoredRow) -> MemoryRecord:
        meta = row.metadata
        return MemoryRecord(
            id=row.id,
            table=meta.get("table"),
            room_id=meta.get("room_id", ""),
            agent_id=meta.get("agent_id", ""),
            user_id=meta.get("user_id", ""),
            content=Content(
                text=row.document,
                type=meta.get("content_type", "message"),
                metadata=json.loads(meta.get("content_metadata") or "{}"),
            ),
            embedding=row.embedding,
            unique=bool(meta.get("unique", False)),
            created_at=row.created_at,
        )

    def _newest_first(self, rows: list[StoredRow]) -> list[MemoryRecord]:
        rows = sorted(rows, key=lambda r: (-r.created_at, r.id))
        return [self._from_row(r) for r in rows]
