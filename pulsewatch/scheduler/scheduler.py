"""Pulse scheduler — launches due probes within a global concurrency bound."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Iterable
from types import TracebackType
from typing import TYPE_CHECKING

import structlog

from pulsewatch.core.types import Observation, TargetConfiguration
from pulsewatch.engine.transitions import apply_observation
from pulsewatch.scheduler.runtime import RuntimeRegistry, SlotPool

if TYPE_CHECKING:
    from pulsewatch.pipeline.ingestion import IngestionPipeline
    from pulsewatch.probes.executor import ProbeExecutor
    from pulsewatch.webhooks.dispatcher import WebhookDispatcher

logger = structlog.stdlib.get_logger()

TargetSource = Callable[
    [], Iterable[TargetConfiguration] | Awaitable[Iterable[TargetConfiguration]]
]
ObservationCallback = Callable[[Observation], Awaitable[None] | None]


class PulseScheduler:
    """Runs every enabled target once per interval.

    Each tick reads the current targets, skips anything still in flight,
    and starts a probe for each remaining target that can take a slot from
    the :class:`SlotPool`. A target that finds no free slot is skipped until
    the next tick. Completed probes are folded through the transition engine
    under the target's lock, then handed to ingestion and the dispatcher.

    Usage::

        scheduler = PulseScheduler(executor, registry, ingestion, dispatcher,
                                   target_source=lambda: settings.targets)
        async with scheduler:
            await asyncio.sleep(600)
    """

    def __init__(
        self,
        executor: ProbeExecutor,
        registry: RuntimeRegistry,
        ingestion: IngestionPipeline,
        dispatcher: WebhookDispatcher,
        target_source: TargetSource,
        interval_secs: float = 60.0,
        simultaneous_pulses: int = 5,
        alert_threshold: int | None = None,
        shutdown_grace_secs: float = 30.0,
    ) -> None:
        self._executor = executor
        self._registry = registry
        self._ingestion = ingestion
        self._dispatcher = dispatcher
        self._target_source = target_source
        self._interval_secs = interval_secs
        self._alert_threshold = alert_threshold
        self._shutdown_grace_secs = shutdown_grace_secs
        self._slots = SlotPool(simultaneous_pulses)
        self._probes: dict[str, asyncio.Task[None]] = {}
        self._callbacks: list[ObservationCallback] = []
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._error_count = 0
        self._skipped_count = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def slots(self) -> SlotPool:
        return self._slots

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def skipped_count(self) -> int:
        """Launches skipped because no slot was free."""
        return self._skipped_count

    def on_observation(self, callback: ObservationCallback) -> None:
        """Register a callback invoked after each observation is handed off."""
        self._callbacks.append(callback)

    async def _emit(self, observation: Observation) -> None:
        for cb in self._callbacks:
            try:
                result = cb(observation)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("observation_callback_error", target_id=observation.target_id)

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "scheduler_started",
            interval_secs=self._interval_secs,
            simultaneous_pulses=self._slots.capacity,
        )

    async def stop(self) -> None:
        """Stop ticking, then wait for in-flight probes up to the grace period."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        pending = list(self._probes.values())
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=self._shutdown_grace_secs)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
                logger.warning("probes_cancelled_on_shutdown", count=len(still_running))
        logger.info("scheduler_stopped", peak_slots=self._slots.peak)

    async def wait_idle(self) -> None:
        """Wait until every probe launched so far has been handed off."""
        while self._probes:
            await asyncio.gather(*list(self._probes.values()), return_exceptions=True)

    # ── Ticking ─────────────────────────────────────────────────

    async def tick(self) -> list[str]:
        """Launch probes for all due targets. Returns the launched target ids."""
        targets = await self._load_targets()
        enabled = [t for t in targets if t.enabled]
        removed = self._registry.prune(t.id for t in enabled)
        if removed:
            logger.info("targets_pruned", target_ids=removed)

        # Least recently observed first, so no target starves when slots run out.
        due = sorted(enabled, key=self._last_seen)

        loop = asyncio.get_running_loop()
        launched: list[str] = []
        for target in due:
            if self._registry.get(target.id).in_flight:
                logger.debug("probe_still_in_flight", target_id=target.id)
                continue
            if not self._slots.try_acquire():
                self._skipped_count += 1
                logger.info(
                    "probe_skipped_no_slot",
                    target_id=target.id,
                    slots_in_use=self._slots.in_use,
                )
                continue
            self._registry.mark_in_flight(target.id)
            deadline = loop.time() + target.timeout
            self._probes[target.id] = asyncio.create_task(
                self._run_probe(target, deadline), name=f"probe:{target.id}"
            )
            launched.append(target.id)
        return launched

    def _last_seen(self, target: TargetConfiguration) -> float:
        seen = self._registry.get(target.id).last_observation_at
        return float("-inf") if seen is None else seen

    async def _load_targets(self) -> list[TargetConfiguration]:
        result = self._target_source()
        if inspect.isawaitable(result):
            result = await result
        return list(result)

    async def _run_probe(self, target: TargetConfiguration, deadline: float) -> None:
        holding_slot = True
        try:
            observation = await self._executor.execute(target, deadline)
            self._slots.release()
            holding_slot = False
            await self._hand_off(target, observation)
            await self._emit(observation)
        except Exception:
            logger.exception("probe_task_error", target_id=target.id)
        finally:
            if holding_slot:
                self._slots.release()
            self._registry.clear_in_flight(target.id)
            self._probes.pop(target.id, None)

    async def _hand_off(self, target: TargetConfiguration, observation: Observation) -> None:
        async with self._registry.lock(target.id):
            result = apply_observation(
                self._registry.get(target.id), observation, target, self._alert_threshold
            )
            self._registry.set(result.state)
            await self._ingestion.put(observation, target)
            for event in result.events:
                await self._dispatcher.offer(event)

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception:
                self._error_count += 1
                logger.exception("scheduler_tick_error", error_count=self._error_count)

            try:
                await asyncio.sleep(self._interval_secs)
            except asyncio.CancelledError:
                break

    async def __aenter__(self) -> PulseScheduler:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
