"""History projection — state ranges for overview and paginated detail reads."""

from __future__ import annotations

import inspect
import time
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass

import structlog

from pulsewatch.core.types import (
    CompactedRun,
    DetailPage,
    Observation,
    OverviewGroup,
    OverviewItem,
    PulseState,
    StateRange,
    TargetConfiguration,
)
from pulsewatch.pipeline.store import ObservationStore
from pulsewatch.query.exceptions import TargetNotFoundError
from pulsewatch.query.tokens import ContinuationToken, ContinuationTokenCodec

logger = structlog.stdlib.get_logger()

TargetSource = Callable[
    [], Iterable[TargetConfiguration] | Awaitable[Iterable[TargetConfiguration]]
]


@dataclass(frozen=True)
class _Entry:
    id: str
    state: PulseState
    start: float
    end: float
    message: str | None
    error: str | None


def build_ranges(
    runs: Sequence[CompactedRun],
    observations: Sequence[Observation],
    max_gap: float | None = None,
) -> list[StateRange]:
    """Merge runs and raw observations into contiguous same-state ranges.

    A silence longer than *max_gap* seconds starts a new range even when the
    state is unchanged. Ranges are returned newest first. Each range's
    ``key`` is the id of its oldest constituent; message and error come from
    its newest observation.
    """
    entries = [_Entry(r.id, r.state, r.start, r.end, None, None) for r in runs]
    entries += [
        _Entry(o.id, o.state, o.created_at, o.created_at, o.message, o.error)
        for o in observations
    ]
    entries.sort(key=lambda e: e.id)

    ranges: list[StateRange] = []
    for entry in entries:
        current = ranges[-1] if ranges else None
        if (
            current is not None
            and current.state == entry.state
            and (max_gap is None or entry.start - current.end <= max_gap)
        ):
            current.end = max(current.end, entry.end)
            if entry.message is not None:
                current.message = entry.message
                current.error = entry.error
            continue
        ranges.append(StateRange(
            state=entry.state,
            start=entry.start,
            end=entry.end,
            message=entry.message,
            error=entry.error,
            key=entry.id,
        ))
    ranges.reverse()
    return ranges


class QueryService:
    """Read side over an :class:`ObservationStore`."""

    def __init__(
        self,
        store: ObservationStore,
        targets: TargetSource,
        token_codec: ContinuationTokenCodec | None = None,
        default_page_size: int = 10,
        recent_minutes: int | None = None,
        max_gap_secs: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._targets = targets
        self._tokens = token_codec or ContinuationTokenCodec()
        self._default_page_size = default_page_size
        self._recent_minutes = recent_minutes
        self._max_gap_secs = max_gap_secs
        self._clock = clock

    async def _load_targets(self) -> list[TargetConfiguration]:
        result = self._targets()
        if inspect.isawaitable(result):
            result = await result
        return list(result)

    async def _target(self, target_id: str) -> TargetConfiguration:
        for target in await self._load_targets():
            if target.id == target_id:
                return target
        raise TargetNotFoundError(f"Unknown target {target_id!r}")

    async def _ranges(self, target_id: str) -> list[StateRange]:
        return build_ranges(
            await self._store.runs(target_id),
            await self._store.observations(target_id),
            self._max_gap_secs,
        )

    async def overview(self, minutes: int | None = None) -> list[OverviewGroup]:
        """Timelines for every configured target, grouped by target group.

        Only ranges that ended within the last *minutes* are kept; the
        configured ``recent_minutes`` applies when *minutes* is omitted.
        """
        if minutes is None:
            minutes = self._recent_minutes
        cutoff = self._clock() - minutes * 60 if minutes is not None else None
        groups: dict[str, OverviewGroup] = {}
        targets = sorted(await self._load_targets(), key=lambda t: (t.group, t.name))
        for target in targets:
            ranges = await self._ranges(target.id)
            if cutoff is not None:
                ranges = [r for r in ranges if r.end >= cutoff]
            group = groups.setdefault(target.group, OverviewGroup(group=target.group))
            group.items.append(OverviewItem(id=target.id, name=target.name, items=ranges))
        return list(groups.values())

    async def detail(
        self,
        target_id: str,
        page_size: int | None = None,
        continuation_token: str | None = None,
    ) -> DetailPage:
        """One page of *target_id*'s ranges, newest first.

        Raises:
            TargetNotFoundError: if *target_id* is not configured.
            InvalidContinuationTokenError: if the token does not verify.
        """
        target = await self._target(target_id)
        size = page_size or self._default_page_size
        if size < 1:
            raise ValueError("page_size must be at least 1")

        ranges = await self._ranges(target_id)
        if continuation_token:
            cursor = self._tokens.decode(continuation_token, target_id)
            ranges = [r for r in ranges if r.key < cursor.key]

        page = ranges[:size]
        next_token: str | None = None
        if len(ranges) > size:
            next_token = self._tokens.encode(ContinuationToken(target_id, page[-1].key))
        logger.debug("detail_page_served", target_id=target_id, count=len(page))
        return DetailPage(
            id=target.id,
            name=target.name,
            continuation_token=next_token,
            items=page,
        )

    async def current_state(self, target_id: str) -> PulseState:
        """State of the newest stored observation, or Unknown without history."""
        latest = await self._store.latest(target_id)
        if latest is None:
            return PulseState.UNKNOWN
        return latest.state
