"""Retention sweep — compacts old observations into same-state runs."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import structlog

from pulsewatch.core.types import CompactedRun, Observation
from pulsewatch.pipeline.store import ObservationStore

logger = structlog.stdlib.get_logger()


@dataclass(frozen=True)
class CompactionPlan:
    """Raw observations to delete and the full replacement run list."""

    removed_ids: list[str] = field(default_factory=list)
    runs: list[CompactedRun] = field(default_factory=list)


def compact_history(
    observations: Sequence[Observation],
    runs: Sequence[CompactedRun],
    cutoff: float,
    max_gap: float | None = None,
) -> CompactionPlan | None:
    """Fold observations created before *cutoff* into runs.

    Only the oldest observations are ever compacted, so the newest existing
    run always borders the first candidate and is extended when the states
    match, unless more than *max_gap* seconds of silence separate them. The
    newest observation is never compacted. Returns ``None`` when there is
    nothing to do.
    """
    ordered = sorted(observations, key=lambda o: o.id)
    candidates: list[Observation] = []
    for obs in ordered[:-1]:
        if obs.created_at >= cutoff:
            break
        candidates.append(obs)
    if not candidates:
        return None

    merged = sorted(runs, key=lambda r: r.id)
    for obs in candidates:
        if merged and _continues(merged[-1], obs, max_gap):
            last = merged[-1]
            merged[-1] = last.model_copy(update={"end": max(last.end, obs.created_at)})
        else:
            merged.append(CompactedRun(
                id=obs.id,
                target_id=obs.target_id,
                state=obs.state,
                start=obs.created_at,
                end=obs.created_at,
            ))
    return CompactionPlan(removed_ids=[o.id for o in candidates], runs=merged)


def _continues(run: CompactedRun, obs: Observation, max_gap: float | None) -> bool:
    if run.state != obs.state:
        return False
    return max_gap is None or obs.created_at - run.end <= max_gap


class RetentionSweeper:
    """Background task that compacts every target's history periodically.

    Usage::

        sweeper = RetentionSweeper(store, cleaning_interval_secs=780, retention_secs=86400)
        await sweeper.start()
        # ...
        await sweeper.stop()
    """

    def __init__(
        self,
        store: ObservationStore,
        cleaning_interval_secs: float = 780.0,
        retention_secs: float = 86400.0,
        max_gap_secs: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._interval_secs = cleaning_interval_secs
        self._retention_secs = retention_secs
        self._max_gap_secs = max_gap_secs
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._error_count = 0

    @property
    def error_count(self) -> int:
        return self._error_count

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def sweep_once(self) -> int:
        """Compact every target once. Returns the number of observations removed."""
        cutoff = self._clock() - self._retention_secs
        removed = 0
        for target_id in await self._store.target_ids():
            try:
                plan = compact_history(
                    await self._store.observations(target_id),
                    await self._store.runs(target_id),
                    cutoff,
                    self._max_gap_secs,
                )
                if plan is None:
                    continue
                await self._store.compact(target_id, plan.removed_ids, plan.runs)
                removed += len(plan.removed_ids)
            except Exception:
                self._error_count += 1
                logger.exception("retention_target_error", target_id=target_id)
        if removed:
            logger.info("retention_sweep_completed", removed=removed)
        return removed

    # ── Internal loop ───────────────────────────────────────────

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval_secs)
                await self.sweep_once()
            except asyncio.CancelledError:
                return
            except Exception:
                self._error_count += 1
                logger.exception("retention_sweep_error")
