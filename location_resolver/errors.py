"""
Exception types shared across the resolution pipeline.

Only `Cancelled` and `NothingToResolve` ever reach the caller of
`resolve_all`; the others are converted to a "no match" outcome for the
single item that raised them.
"""

from __future__ import annotations


class LocationResolverError(Exception):
    """Base class for all resolver errors."""


class DatasetLoadFailed(LocationResolverError):
    """The gazetteer dataset could not be read or held no usable rows."""


class RemoteLookupFailed(LocationResolverError):
    """The geocoding provider answered with an error or an unusable payload."""

    def __init__(self, query: str, reason: str, status_code: int | None = None):
        super().__init__(f"remote lookup failed for {query!r}: {reason}")
        self.query = query
        self.reason = reason
        self.status_code = status_code


class StorageError(LocationResolverError):
    """The persistent key-value store failed."""


class StorageQuotaExceeded(StorageError):
    """The persistent store refused a write because it is full."""


class MalformedCacheEntry(LocationResolverError):
    """A persisted cache value could not be decoded."""


class Cancelled(LocationResolverError):
    """The resolution run was cancelled by its caller."""

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)


class NothingToResolve(LocationResolverError):
    """resolve_all was called without any non-empty location string."""
