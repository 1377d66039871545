"""
Text-level helpers shared by the stores: chunking, normalised hashing,
keyword scoring, edit-distance matching and id generation.
"""

from __future__ import annotations

import hashlib
import re
import uuid
from typing import Iterable, TypeVar

from rapidfuzz.distance import Levenshtein

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Cosine similarity at or above which a new memory restates an existing one
#: in the same room and is stored with ``unique=False``.
DUPLICATE_THRESHOLD: float = 0.95

#: Maximum number of characters per knowledge chunk.
DEFAULT_CHUNK_SIZE: int = 500

#: Keyword weights used by knowledge search.
KEYWORD_MATCH_WEIGHT: float = 3.0
KEYWORD_MISS_WEIGHT: float = 1.0
CHUNK_BOOST: float = 1.5
MAIN_BOOST: float = 1.2

#: Minimum vector score a strong keyword hit needs to qualify on its own.
KEYWORD_RESCUE_FLOOR: float = 0.3

_WHITESPACE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


def normalize_text(text: str) -> str:
    """Case-fold, collapse runs of whitespace and trim."""
    return _WHITESPACE.sub(" ", text.casefold()).strip()


def hash_text(text: str) -> str:
    """Deterministic cache key for *text*, insensitive to case and spacing."""
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


def chunk_text(text: str, max_chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    """
    Split *text* into chunks of at most *max_chunk_size* characters.

    Paragraphs (blank-line separated) are packed greedily; a paragraph that
    is too long on its own is split on sentence boundaries, and a sentence
    that is still too long is cut hard.  Empty input yields an empty list.
    """
    if max_chunk_size <= 0:
        raise ValueError("max_chunk_size must be positive")

    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]
    chunks: list[str] = []
    buffer: list[str] = []
    size = 0

    def flush() -> None:
        nonlocal buffer, size
        if buffer:
            chunks.append("\n\n".join(buffer))
        buffer, size = [], 0

    for para in paragraphs:
        if len(para) > max_chunk_size:
            flush()
            chunks.extend(_pack_sentences(para, max_chunk_size))
            continue
        # Account for the blank-line separator when joining.
        extra = len(para) + (2 if buffer else 0)
        if size + extra > max_chunk_size:
            flush()
            extra = len(para)
        buffer.append(para)
        size += extra

    flush()
    return chunks


def _pack_sentences(paragraph: str, max_chunk_size: int) -> list[str]:
    sentences = [s.strip() for s in re.split(r"(?<=[.!?])\s+", paragraph) if s.strip()]
    chunks: list[str] = []
    current = ""
    for sentence in sentences:
        while len(sentence) > max_chunk_size:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(sentence[:max_chunk_size])
            sentence = sentence[max_chunk_size:].lstrip()
        if not sentence:
            continue
        candidate = f"{current} {sentence}" if current else sentence
        if len(candidate) > max_chunk_size:
            chunks.append(current)
            current = sentence
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


# ---------------------------------------------------------------------------
# Keyword scoring
# ---------------------------------------------------------------------------


def keyword_score(text: str, metadata: dict, query_text: str | None) -> float:
    """
    Keyword weight for a knowledge row.

    The base weight is 3.0 when *query_text* occurs in *text*
    (case-insensitive), otherwise 1.0.  It is multiplied by 1.5 for chunks
    and 1.2 for main documents so precise chunk hits outrank coarse
    whole-document hits.  A missing or empty query text is a substring of
    everything, so it counts as a hit.
    """
    if not query_text or query_text.casefold() in text.casefold():
        base = KEYWORD_MATCH_WEIGHT
    else:
        base = KEYWORD_MISS_WEIGHT

    if metadata.get("is_chunk"):
        boost = CHUNK_BOOST
    elif metadata.get("is_main"):
        boost = MAIN_BOOST
    else:
        boost = 1.0
    return base * boost


# ---------------------------------------------------------------------------
# Edit distance
# ---------------------------------------------------------------------------


def closest_by_edit_distance(
    query: str,
    candidates: Iterable[tuple[str, T]],
    max_distance: int,
    limit: int,
) -> list[tuple[T, int]]:
    """
    Rank *candidates* (``(text, payload)`` pairs) by Levenshtein distance to
    *query*, keeping those within *max_distance*.  Closest first; ties keep
    input order.
    """
    if max_distance < 0 or limit < 0:
        raise ValueError("max_distance and limit must be non-negative")
    matches = []
    for position, (text, payload) in enumerate(candidates):
        distance = Levenshtein.distance(query, text, score_cutoff=max_distance)
        if distance <= max_distance:
            matches.append((distance, position, payload))
    matches.sort(key=lambda m: (m[0], m[1]))
    return [(payload, distance) for distance, _, payload in matches[:limit]]


# ---------------------------------------------------------------------------
# ID generation
# ---------------------------------------------------------------------------


def generate_id() -> str:
    """Return a new unique record ID."""
    return str(uuid.uuid4())


def chunk_pattern_id(original_id: str, chunk_index: int) -> str:
    """Traceable id stamped into chunk metadata: ``<original_id>-chunk-<index>``."""
    return f"{original_id}-chunk-{chunk_index}"
