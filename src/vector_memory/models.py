"""
Record shapes exchanged with callers.

Embeddings always cross the boundary as plain lists of floats so that any
caller can serialise them uniformly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NamedTuple, Sequence, Union

#: Discriminator values used by the surrounding components.  The set is open:
#: any other string is accepted as a custom content type.
CONTENT_TYPES = ("message", "document", "fact", "knowledge")


def _as_float_list(vector: Sequence[float] | None) -> list[float] | None:
    if vector is None:
        return None
    return [float(x) for x in vector]


@dataclass
class Content:
    """Tagged content variant: ``type`` discriminates, ``metadata`` stays open."""

    text: str
    type: str = "message"
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "type": self.type, "metadata": dict(self.metadata)}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | str) -> Content:
        if isinstance(data, str):
            return cls(text=data)
        metadata = dict(data.get("metadata") or {})
        # Unknown top-level keys are folded into metadata.
        for key, value in data.items():
            if key not in ("text", "type", "metadata"):
                metadata.setdefault(key, value)
        return cls(
            text=data.get("text", ""),
            type=data.get("type") or "message",
            metadata=metadata,
        )


@dataclass
class MemoryRecord:
    room_id: str
    agent_id: str
    user_id: str
    content: Content
    embedding: list[float] | None = None
    id: str | None = None
    table: str | None = None
    unique: bool | None = None
    created_at: float | None = None

    def __post_init__(self) -> None:
        if isinstance(self.content, (dict, str)):
            self.content = Content.from_dict(self.content)
        self.embedding = _as_float_list(self.embedding)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "table": self.table,
            "room_id": self.room_id,
            "agent_id": self.agent_id,
            "user_id": self.user_id,
            "content": self.content.to_dict(),
            "embedding": self.embedding,
            "unique": self.unique,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryRecord:
        return cls(
            id=data.get("id"),
            table=data.get("table"),
            room_id=data["room_id"],
            agent_id=data["agent_id"],
            user_id=data["user_id"],
            content=Content.from_dict(data["content"]),
            embedding=data.get("embedding"),
            unique=data.get("unique"),
            created_at=data.get("created_at"),
        )


@dataclass
class KnowledgeRecord:
    content: Content
    agent_id: str | None = None
    embedding: list[float] | None = None
    id: str | None = None
    is_main: bool = True
    original_id: str | None = None
    chunk_index: int | None = None
    is_shared: bool = False
    created_at: float | None = None

    def __post_init__(self) -> None:
        if isinstance(self.content, (dict, str)):
            self.content = Content.from_dict(self.content)
        self.embedding = _as_float_list(self.embedding)

    @property
    def is_chunk(self) -> bool:
        return not self.is_main

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "content": self.content.to_dict(),
            "embedding": self.embedding,
            "is_main": self.is_main,
            "original_id": self.original_id,
            "chunk_index": self.chunk_index,
            "is_shared": self.is_shared,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KnowledgeRecord:
        return cls(
            id=data.get("id"),
            agent_id=data.get("agent_id"),
            content=Content.from_dict(data["content"]),
            embedding=data.get("embedding"),
            is_main=bool(data.get("is_main", True)),
            original_id=data.get("original_id"),
            chunk_index=data.get("chunk_index"),
            is_shared=bool(data.get("is_shared", False)),
            created_at=data.get("created_at"),
        )


Record = Union[MemoryRecord, KnowledgeRecord]


@dataclass
class SimilaritySearchResult:
    """One ranked hit.  Ephemeral; only ever persisted inside the result cache."""

    record: Record
    similarity: float
    vector_score: float | None = None
    keyword_score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "record": self.record.to_dict(),
            "similarity": self.similarity,
        }
        if self.vector_score is not None:
            data["vector_score"] = self.vector_score
        if self.keyword_score is not None:
            data["keyword_score"] = self.keyword_score
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], record_type: type = KnowledgeRecord) -> SimilaritySearchResult:
        return cls(
            record=record_type.from_dict(data["record"]),
            similarity=float(data["similarity"]),
            vector_score=data.get("vector_score"),
            keyword_score=data.get("keyword_score"),
        )


class CachedEmbedding(NamedTuple):
    """A stored embedding whose text is within some edit distance of a query."""

    embedding: list[float]
    levenshtein_score: int
