"""
Vector similarity engine: cosine scoring, thresholds, ordering and
pagination over rows held in the :class:`~vector_memory.store.VectorStore`.

Scoring is exact (a full scan of the filtered rows) rather than delegated to
the approximate HNSW index, so that repeated queries over an unchanged
dataset always return the same ranked slice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, NamedTuple, Sequence

import numpy as np

from .config import DEFAULT_MATCH_COUNT
from .errors import DimensionMismatch, ValidationError
from .store import StoredRow, VectorStore, build_where

logger = logging.getLogger(__name__)

#: Digits kept when sanitising a query vector.
ROUNDING_DIGITS = 6


def sanitize(vector: Sequence[float]) -> np.ndarray:
    """Replace non-finite components with 0 and round to 6 decimal digits."""
    arr = np.asarray(vector, dtype=np.float64)
    arr = np.where(np.isfinite(arr), arr, 0.0)
    return np.round(arr, ROUNDING_DIGITS)


def score(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity ``1 - cosine_distance(a, b)`` in [-1, 1].

    Both vectors are sanitised first.  A zero vector has no direction and
    scores 0.0 against anything.
    """
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))
    va, vb = sanitize(a), sanitize(b)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / denom, -1.0, 1.0))


class ScoredRow(NamedTuple):
    row: StoredRow
    similarity: float


@dataclass
class SearchFilter:
    """AND-ed scope predicates for a memory similarity search."""

    table: str
    room_id: str | None = None
    agent_id: str | None = None
    unique_only: bool = False

    def to_where(self) -> dict[str, Any] | None:
        if not self.table:
            raise ValidationError("table is required")
        return build_where(
            {"table": self.table},
            {"room_id": self.room_id} if self.room_id else None,
            {"agent_id": self.agent_id} if self.agent_id else None,
            {"unique": True} if self.unique_only else None,
        )


def order_key(item: ScoredRow) -> tuple[float, float, str]:
    """Descending similarity, then most recent first, then id for a total order."""
    return (-item.similarity, -item.row.created_at, item.row.id)


class SimilarityEngine:
    """Ranks stored rows against a query vector."""

    def __init__(self, store: VectorStore) -> None:
        self.store = store

    @property
    def dimension(self) -> int:
        return self.store.embedding_dimension

    def rank(self, query: Sequence[float], rows: Sequence[StoredRow]) -> list[ScoredRow]:
        """
        Score every row that carries an embedding against *query*.

        Returned rows are ordered by :func:`order_key`; no threshold applied.
        """
        if len(query) != self.dimension:
            raise DimensionMismatch(self.dimension, len(query))
        candidates = [r for r in rows if r.embedding is not None]
        if not candidates:
            return []

        q = sanitize(query)
        matrix = np.asarray([r.embedding for r in candidates], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
        dots = matrix @ q
        with np.errstate(divide="ignore", invalid="ignore"):
            sims = np.where(norms > 0.0, dots / norms, 0.0)
        sims = np.clip(sims, -1.0, 1.0)

        scored = [ScoredRow(row, float(sim)) for row, sim in zip(candidates, sims)]
        scored.sort(key=order_key)
        return scored

    def search(
        self,
        collection: str,
        query: Sequence[float],
        filter: SearchFilter,
        threshold: float | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ScoredRow]:
        """
        Rank the rows of *collection* matching *filter* against *query*.

        Rows scoring below *threshold* are dropped (the boundary itself is
        kept).  ``offset`` skips that many ranked rows before ``limit`` is
        applied.  Nothing qualifying is an empty list, not an error.
        """
        if len(query) != self.dimension:
            raise DimensionMismatch(self.dimension, len(query))
        limit = DEFAULT_MATCH_COUNT if limit is None else limit
        if limit < 0 or offset < 0:
            raise ValidationError("limit and offset must not be negative")

        where = build_where(filter.to_where(), {"has_embedding": True})
        rows = self.store.get(collection, where=where, include_embeddings=True)
        ranked = self.rank(query, rows)
        if threshold is not None:
            ranked = [item for item in ranked if item.similarity >= threshold]

        logger.debug(
            "Similarity search on %s: %d candidates, %d above threshold %s",
            collection, len(rows), len(ranked), threshold,
        )
        return ranked[offset:offset + limit]
