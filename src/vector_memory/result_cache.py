"""
Result cache: memoised, serialised search results keyed by
``(agent_id, query_signature)``.

There is no invalidation when the underlying records change; a cached
ranking stays until it is overwritten, deleted or cleared.
"""

from __future__ import annotations

import hashlib
import logging
import time

from .errors import BackendError
from .store import RESULT_CACHE, VectorStore

logger = logging.getLogger(__name__)


def cache_key(agent_id: str, signature: str) -> str:
    digest = hashlib.sha256(f"{agent_id}\x00{signature}".encode("utf-8")).hexdigest()
    return f"result:{digest}"


class ResultCache:
    def __init__(self, store: VectorStore) -> None:
        self._store = store

    def get(self, agent_id: str, signature: str) -> str | None:
        """Return the cached value, or ``None`` on a miss."""
        rows = self._store.get(RESULT_CACHE, ids=[cache_key(agent_id, signature)])
        return rows[0].document if rows else None

    def set(self, agent_id: str, signature: str, value: str) -> bool:
        """Insert or replace the cached value.  Returns ``False`` if it could not be stored."""
        try:
            self._store.upsert(
                RESULT_CACHE,
                ids=[cache_key(agent_id, signature)],
                documents=[value],
                metadatas=[{"agent_id": agent_id, "signature": signature, "created_at": time.time()}],
                embeddings=[None],
            )
        except BackendError as exc:
            logger.warning("Error setting cache for agent %s: %s", agent_id, exc)
            return False
        return True

    def delete(self, agent_id: str, signature: str) -> bool:
        """Remove a cached value.  Returns ``True`` if something was removed."""
        try:
            removed = self._store.delete(RESULT_CACHE, ids=[cache_key(agent_id, signature)])
        except BackendError as exc:
            logger.warning("Error deleting cache for agent %s: %s", agent_id, exc)
            return False
        return removed > 0

    def clear(self, agent_id: str | None = None) -> int:
        """Drop every cached value, or only those belonging to *agent_id*."""
        where = {"agent_id": agent_id} if agent_id else None
        return self._store.delete(RESULT_CACHE, where=where)
