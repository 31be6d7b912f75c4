"""Convenience factory for wiring the full monitoring stack."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from pulsewatch.core.config import Settings
from pulsewatch.pipeline.ingestion import IngestionPipeline
from pulsewatch.pipeline.retention import RetentionSweeper
from pulsewatch.pipeline.store import MemoryObservationStore, ObservationStore
from pulsewatch.probes.executor import ProbeExecutor
from pulsewatch.query.projection import QueryService
from pulsewatch.query.tokens import ContinuationTokenCodec
from pulsewatch.scheduler.runtime import RuntimeRegistry
from pulsewatch.scheduler.scheduler import PulseScheduler
from pulsewatch.webhooks.dispatcher import WebhookDispatcher

logger = structlog.stdlib.get_logger()


@dataclass
class PulseStack:
    """All long-running components, started and stopped in dependency order."""

    store: ObservationStore
    executor: ProbeExecutor
    registry: RuntimeRegistry
    ingestion: IngestionPipeline
    dispatcher: WebhookDispatcher
    scheduler: PulseScheduler
    sweeper: RetentionSweeper
    query: QueryService

    async def start(self) -> None:
        await self.ingestion.start()
        await self.dispatcher.start()
        await self.sweeper.start()
        await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.ingestion.stop()
        await self.sweeper.stop()
        await self.dispatcher.stop()
        await self.executor.close()


def create_pulse_stack(
    settings: Settings,
    store: ObservationStore | None = None,
    executor: ProbeExecutor | None = None,
) -> PulseStack:
    """Build every component from *settings*.

    Targets and subscriptions are read from *settings* on each tick, so
    callers may swap the lists at runtime.
    """
    store = store or MemoryObservationStore()
    # A target silent for more than three intervals starts a fresh range.
    max_gap_secs = 3 * settings.pulse.interval_secs
    executor = executor or ProbeExecutor()
    registry = RuntimeRegistry()

    ingestion = IngestionPipeline(
        store,
        queue_size=settings.ingestion.queue_size,
        batch_size=settings.ingestion.batch_size,
        retry_base_secs=settings.ingestion.retry_base_secs,
        retry_cap_secs=settings.ingestion.retry_cap_secs,
        shutdown_drain_secs=settings.ingestion.shutdown_drain_secs,
    )

    dispatcher = WebhookDispatcher(
        lambda: settings.subscriptions,
        queue_size=settings.webhooks.queue_size,
        subscription_queue_size=settings.webhooks.subscription_queue_size,
        max_attempts=settings.webhooks.max_attempts,
        backoff_base_secs=settings.webhooks.backoff_base_secs,
        backoff_cap_secs=settings.webhooks.backoff_cap_secs,
        request_timeout_secs=settings.webhooks.request_timeout_secs,
        block_when_full=settings.webhooks.block_when_full,
    )

    scheduler = PulseScheduler(
        executor,
        registry,
        ingestion,
        dispatcher,
        target_source=lambda: settings.targets,
        interval_secs=settings.pulse.interval_secs,
        simultaneous_pulses=settings.pulse.simultaneous_pulses,
        alert_threshold=settings.pulse.alert_threshold,
        shutdown_grace_secs=settings.pulse.shutdown_grace_secs,
    )

    sweeper = RetentionSweeper(
        store,
        cleaning_interval_secs=settings.retention.cleaning_interval_secs,
        retention_secs=settings.retention.retention_secs,
        max_gap_secs=max_gap_secs,
    )

    secret = settings.query.token_secret.get_secret_value()
    if not secret:
        logger.warning("query_token_secret_missing")
    query = QueryService(
        store,
        lambda: settings.targets,
        ContinuationTokenCodec(secret or None),
        default_page_size=settings.query.default_page_size,
        recent_minutes=settings.query.recent_minutes,
        max_gap_secs=max_gap_secs,
    )

    return PulseStack(
        store=store,
        executor=executor,
        registry=registry,
        ingestion=ingestion,
        dispatcher=dispatcher,
        scheduler=scheduler,
        sweeper=sweeper,
        query=query,
    )
