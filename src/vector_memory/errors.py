"""
Error taxonomy for the vector memory store.

Not-found lookups are not errors: single-record reads return ``None`` and
bulk reads return an empty list.
"""

from __future__ import annotations


class VectorMemoryError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(VectorMemoryError):
    """The request itself is malformed; fix it rather than retrying."""


class DimensionMismatch(ValidationError):
    """An embedding does not match the configured dimensionality."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"different vector dimensions {expected} and {actual}")
        self.expected = expected
        self.actual = actual


class BackendError(VectorMemoryError):
    """The underlying storage engine failed.  ``__cause__`` holds the original."""


class CachePersistenceWarning(UserWarning):
    """A cache mutation was applied in memory but could not be persisted."""
