"""Durable observation pipeline: codec, storage, ingestion and retention."""

from pulsewatch.pipeline.codec import ObservationRecord, decode_record, encode_record
from pulsewatch.pipeline.exceptions import (
    PersistenceTransientFailure,
    PipelineClosedError,
    PipelineError,
    RecordDecodeError,
)
from pulsewatch.pipeline.ingestion import IngestionPipeline
from pulsewatch.pipeline.retention import CompactionPlan, RetentionSweeper, compact_history
from pulsewatch.pipeline.store import MemoryObservationStore, ObservationStore

__all__ = [
    "CompactionPlan",
    "IngestionPipeline",
    "MemoryObservationStore",
    "ObservationRecord",
    "ObservationStore",
    "PersistenceTransientFailure",
    "PipelineClosedError",
    "PipelineError",
    "RecordDecodeError",
    "RetentionSweeper",
    "compact_history",
    "decode_record",
    "encode_record",
]
