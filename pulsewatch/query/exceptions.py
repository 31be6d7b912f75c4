"""Exception hierarchy for history reads."""

from __future__ import annotations


class QueryError(Exception):
    """Base exception for all query errors."""


class TargetNotFoundError(QueryError):
    """The requested target is not configured."""


class InvalidContinuationTokenError(QueryError):
    """A continuation token is malformed, tampered with, or for another target."""
