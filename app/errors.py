"""Exceptions raised by the sync and query layers."""

from __future__ import annotations


class StashMirrorError(Exception):
    """Base class for service errors."""


class UpstreamError(StashMirrorError):
    """The upstream catalog could not be reached or returned an error."""

    def __init__(self, message: str, *, entity_type: str | None = None):
        super().__init__(message)
        self.entity_type = entity_type


class CacheNotReadyError(StashMirrorError):
    """Raised when the local cache has not completed an initial sync."""


class FilterValidationError(StashMirrorError):
    """A query was rejected before any SQL was built."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class QueryTimeoutError(StashMirrorError):
    """A query exceeded its time budget."""
