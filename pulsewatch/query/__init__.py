"""Read-only history views."""

from pulsewatch.query.exceptions import (
    InvalidContinuationTokenError,
    QueryError,
    TargetNotFoundError,
)
from pulsewatch.query.projection import QueryService, build_ranges
from pulsewatch.query.tokens import ContinuationToken, ContinuationTokenCodec

__all__ = [
    "ContinuationToken",
    "ContinuationTokenCodec",
    "InvalidContinuationTokenError",
    "QueryError",
    "QueryService",
    "TargetNotFoundError",
    "build_ranges",
]
