"""Typed failures raised by the feed client, the catalog store and the query layer.

The transport layer translates these into HTTP status codes; nothing below
the API routes knows about HTTP responses.
"""

from __future__ import annotations

from typing import Optional


class CatalogError(Exception):
    """Base class for all domain errors."""


class FeedError(CatalogError):
    """The external price feed could not deliver a page."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class FeedUnavailable(FeedError):
    """Network failure, 5xx, unexpected 4xx or an unreadable body."""


class FeedTimeout(FeedError):
    """The feed did not answer within the per-call timeout."""


class FeedRateLimited(FeedError):
    """The feed answered 429 on every attempt."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class NotFound(CatalogError):
    """Query target is absent."""


class InvalidQuery(CatalogError):
    """Malformed filter, sort or identifier input."""


class ServiceUnavailable(CatalogError):
    """The catalog store could not be read or written."""
