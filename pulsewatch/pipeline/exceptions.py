"""Exception hierarchy for the ingestion pipeline and storage."""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for all pipeline errors."""


class PersistenceTransientFailure(PipelineError):
    """Storage append failed; the drain loop retries it with backoff."""


class PipelineClosedError(PipelineError):
    """The pipeline is shutting down and no longer accepts observations."""


class RecordDecodeError(PipelineError):
    """A durable observation record could not be decoded."""
