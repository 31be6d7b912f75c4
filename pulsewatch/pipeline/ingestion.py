"""Ingestion pipeline — bounded observation queue drained into the store in batches."""

from __future__ import annotations

import asyncio
from types import TracebackType

import structlog

from pulsewatch.core.types import Observation, TargetConfiguration
from pulsewatch.pipeline.codec import ObservationRecord
from pulsewatch.pipeline.exceptions import PipelineClosedError
from pulsewatch.pipeline.store import ObservationStore

logger = structlog.stdlib.get_logger()


class IngestionPipeline:
    """Multi-producer queue with a single drain task.

    - ``put()`` waits while the queue is full, pushing backpressure onto the
      scheduler's hand-off step.
    - The drain task groups up to ``batch_size`` queued records per
      ``append_batch`` call.
    - A failing batch is retried with capped exponential backoff until it is
      stored or the pipeline is stopped. Failures are logged and counted and
      never reach producers.

    Usage::

        pipeline = IngestionPipeline(store)
        async with pipeline:
            await pipeline.put(observation, target)
    """

    def __init__(
        self,
        store: ObservationStore,
        queue_size: int = 1000,
        batch_size: int = 32,
        retry_base_secs: float = 0.5,
        retry_cap_secs: float = 30.0,
        shutdown_drain_secs: float = 10.0,
    ) -> None:
        self._store = store
        self._queue: asyncio.Queue[ObservationRecord] = asyncio.Queue(maxsize=queue_size)
        self._batch_size = batch_size
        self._retry_base_secs = retry_base_secs
        self._retry_cap_secs = retry_cap_secs
        self._shutdown_drain_secs = shutdown_drain_secs
        self._task: asyncio.Task[None] | None = None
        self._accepting = False
        self._in_progress = 0
        self._stored = 0
        self._failed_appends = 0
        self._dropped_on_shutdown = 0

    # ── Stats ───────────────────────────────────────────────────

    @property
    def stored(self) -> int:
        return self._stored

    @property
    def failed_appends(self) -> int:
        return self._failed_appends

    @property
    def pending(self) -> int:
        """Records queued or in the batch currently being written."""
        return self._queue.qsize() + self._in_progress

    @property
    def dropped_on_shutdown(self) -> int:
        return self._dropped_on_shutdown

    @property
    def accepting(self) -> bool:
        return self._accepting

    # ── Producer side ───────────────────────────────────────────

    async def put(self, observation: Observation, target: TargetConfiguration) -> None:
        """Enqueue an observation, waiting for room if the queue is full.

        Raises:
            PipelineClosedError: if the pipeline is not accepting records.
        """
        if not self._accepting:
            raise PipelineClosedError("Ingestion pipeline is not accepting observations")
        await self._queue.put(ObservationRecord(observation=observation, target=target))

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        if self._task is not None:
            return
        self._accepting = True
        self._task = asyncio.create_task(self._drain_loop())
        logger.info("ingestion_started", batch_size=self._batch_size)

    async def stop(self) -> None:
        """Stop accepting, drain what is queued, then abandon the rest."""
        self._accepting = False
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=self._shutdown_drain_secs)
        except TimeoutError:
            logger.warning("ingestion_drain_timeout", pending=self.pending)

        abandoned = self.pending
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._in_progress = 0

        if abandoned:
            self._dropped_on_shutdown += abandoned
            logger.error("ingestion_dropped_on_shutdown", count=abandoned)
        logger.info("ingestion_stopped", stored=self._stored, failed_appends=self._failed_appends)

    # ── Drain loop ──────────────────────────────────────────────

    async def _drain_loop(self) -> None:
        while True:
            batch = [await self._queue.get()]
            while len(batch) < self._batch_size:
                try:
                    batch.append(self._queue.get_nowait())
                except asyncio.QueueEmpty:
                    break
            self._in_progress = len(batch)
            await self._write(batch)
            self._in_progress = 0
            for _ in batch:
                self._queue.task_done()

    async def _write(self, batch: list[ObservationRecord]) -> None:
        """Append *batch*, retrying with backoff until it is stored."""
        delay = self._retry_base_secs
        while True:
            try:
                await self._store.append_batch(batch)
            except Exception:
                self._failed_appends += 1
                logger.warning(
                    "ingestion_append_failed",
                    batch_size=len(batch),
                    failed_appends=self._failed_appends,
                    retry_in=delay,
                    exc_info=True,
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._retry_cap_secs)
                continue
            self._stored += len(batch)
            return

    async def __aenter__(self) -> IngestionPipeline:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
