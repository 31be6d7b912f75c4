"""Tests for pulsewatch/query/projection.py — ranges, overview, paginated detail."""

from __future__ import annotations

import pytest

from pulsewatch.core.types import (
    CompactedRun,
    Observation,
    PulseState,
    TargetConfiguration,
)
from pulsewatch.pipeline.codec import ObservationRecord
from pulsewatch.pipeline.store import MemoryObservationStore
from pulsewatch.query.exceptions import InvalidContinuationTokenError, TargetNotFoundError
from pulsewatch.query.projection import QueryService, build_ranges
from pulsewatch.query.tokens import ContinuationTokenCodec

H = PulseState.HEALTHY
D = PulseState.DEGRADED
U = PulseState.UNHEALTHY


# ── Helpers ─────────────────────────────────────────────────────


def _key(seq: int) -> str:
    return f"{seq:016x}"


def _obs(seq: int, state: PulseState, target_id: str = "t1", **kw: object) -> Observation:
    defaults: dict[str, object] = {
        "id": _key(seq),
        "target_id": target_id,
        "elapsed_ms": 5,
        "state": state,
        "message": f"msg-{seq}",
        "created_at": float(seq * 60),
    }
    defaults.update(kw)
    return Observation(**defaults)  # type: ignore[arg-type]


def _target(target_id: str, group: str = "G", name: str | None = None) -> TargetConfiguration:
    return TargetConfiguration(
        id=target_id, group=group, name=name or target_id, location="https://x.example.com"
    )


async def _seed(
    store: MemoryObservationStore, target: TargetConfiguration, states: list[PulseState]
) -> None:
    await store.append_batch([
        ObservationRecord(observation=_obs(i + 1, s, target.id), target=target)
        for i, s in enumerate(states)
    ])


def _service(
    store: MemoryObservationStore,
    targets: list[TargetConfiguration],
    **kw: object,
) -> QueryService:
    defaults: dict[str, object] = {
        "token_codec": ContinuationTokenCodec("k"),
        "default_page_size": 2,
        "clock": lambda: 600.0,
    }
    defaults.update(kw)
    return QueryService(store, lambda: targets, **defaults)  # type: ignore[arg-type]


# ── build_ranges ────────────────────────────────────────────────


class TestBuildRanges:
    def test_merges_neighbours_newest_first(self) -> None:
        ranges = build_ranges([], [_obs(1, H), _obs(2, H), _obs(3, U), _obs(4, H)])
        assert [(r.state, r.start, r.end, r.key) for r in ranges] == [
            (H, 240.0, 240.0, _key(4)),
            (U, 180.0, 180.0, _key(3)),
            (H, 60.0, 120.0, _key(1)),
        ]

    def test_message_from_newest_observation(self) -> None:
        ranges = build_ranges([], [_obs(1, U, error="e1"), _obs(2, U, error="e2")])
        assert len(ranges) == 1
        assert ranges[0].message == "msg-2"
        assert ranges[0].error == "e2"

    def test_runs_merge_with_observations(self) -> None:
        run = CompactedRun(id=_key(1), target_id="t1", state=H, start=60.0, end=180.0)
        ranges = build_ranges([run], [_obs(4, H), _obs(5, D)])
        assert [(r.state, r.start, r.end) for r in ranges] == [
            (D, 300.0, 300.0),
            (H, 60.0, 240.0),
        ]
        assert ranges[1].key == _key(1)
        assert ranges[1].message == "msg-4"

    def test_run_only_range_has_no_message(self) -> None:
        run = CompactedRun(id=_key(1), target_id="t1", state=U, start=60.0, end=120.0)
        ranges = build_ranges([run], [_obs(3, H)])
        assert ranges[1].message is None

    def test_silence_splits_same_state(self) -> None:
        # 60s cadence, then ten minutes of silence before seq 14
        observations = [_obs(1, H), _obs(2, H), _obs(14, H), _obs(15, H)]
        ranges = build_ranges([], observations, max_gap=180.0)
        assert [(r.start, r.end) for r in ranges] == [(840.0, 900.0), (60.0, 120.0)]

    def test_gap_within_limit_merges(self) -> None:
        ranges = build_ranges([], [_obs(1, H), _obs(4, H)], max_gap=180.0)
        assert len(ranges) == 1

    def test_silence_after_run_splits(self) -> None:
        run = CompactedRun(id=_key(1), target_id="t1", state=H, start=60.0, end=120.0)
        ranges = build_ranges([run], [_obs(20, H)], max_gap=180.0)
        assert [r.key for r in ranges] == [_key(20), _key(1)]

    def test_empty(self) -> None:
        assert build_ranges([], []) == []


# ── Overview ────────────────────────────────────────────────────


class TestOverview:
    async def test_grouped_and_sorted(self) -> None:
        store = MemoryObservationStore()
        targets = [
            _target("b", group="Beta", name="Zed"),
            _target("a2", group="Alpha", name="Two"),
            _target("a1", group="Alpha", name="One"),
        ]
        for t in targets:
            await _seed(store, t, [H])

        groups = await _service(store, targets).overview()

        assert [g.group for g in groups] == ["Alpha", "Beta"]
        assert [i.name for i in groups[0].items] == ["One", "Two"]
        assert groups[1].items[0].id == "b"

    async def test_target_without_history_is_listed(self) -> None:
        groups = await _service(MemoryObservationStore(), [_target("t1")]).overview()
        assert groups[0].items[0].items == []

    async def test_recent_minutes_is_default_window(self) -> None:
        store = MemoryObservationStore()
        target = _target("t1")
        await _seed(store, target, [H, H, U, U, H, H, D, D])

        service = _service(store, [target], recent_minutes=4)

        assert [r.state for r in (await service.overview())[0].items[0].items] == [D, H]
        wide = await service.overview(minutes=60)
        assert [r.state for r in wide[0].items[0].items] == [D, H, U, H]

    async def test_silence_splits_timeline(self) -> None:
        store = MemoryObservationStore()
        target = _target("t1")
        await store.append_batch([
            ObservationRecord(observation=_obs(seq, H), target=target) for seq in (1, 2, 30)
        ])
        groups = await _service(store, [target], max_gap_secs=180.0).overview(minutes=60)
        assert [r.key for r in groups[0].items[0].items] == [_key(30), _key(1)]

    async def test_minutes_window(self) -> None:
        store = MemoryObservationStore()
        target = _target("t1")
        # observations at 60, 120, ... 480; clock is 600
        await _seed(store, target, [H, H, U, U, H, H, D, D])

        groups = await _service(store, [target]).overview(minutes=4)

        ranges = groups[0].items[0].items
        assert [r.state for r in ranges] == [D, H]
        assert all(r.end >= 360.0 for r in ranges)


# ── Detail ──────────────────────────────────────────────────────


class TestDetail:
    async def test_pages_walk_history(self) -> None:
        store = MemoryObservationStore()
        target = _target("t1", name="API")
        await _seed(store, target, [H, U, H, D, H])
        service = _service(store, [target])

        first = await service.detail("t1")
        assert first.name == "API"
        assert [r.key for r in first.items] == [_key(5), _key(4)]
        assert first.continuation_token is not None

        second = await service.detail("t1", continuation_token=first.continuation_token)
        assert [r.key for r in second.items] == [_key(3), _key(2)]
        assert second.continuation_token is not None

        last = await service.detail("t1", continuation_token=second.continuation_token)
        assert [r.key for r in last.items] == [_key(1)]
        assert last.continuation_token is None

    async def test_exact_page_has_no_token(self) -> None:
        store = MemoryObservationStore()
        target = _target("t1")
        await _seed(store, target, [H, U])
        page = await _service(store, [target]).detail("t1")
        assert len(page.items) == 2
        assert page.continuation_token is None

    async def test_explicit_page_size(self) -> None:
        store = MemoryObservationStore()
        target = _target("t1")
        await _seed(store, target, [H, U, H, U])
        page = await _service(store, [target]).detail("t1", page_size=3)
        assert len(page.items) == 3

    async def test_history_with_delimiters_in_headers(self) -> None:
        store = MemoryObservationStore()
        target = TargetConfiguration(
            id="t1",
            name="T",
            location="https://x.example.com",
            headers={"Accept": "text/html;q=0.9", "Cookie": "a=1;X-Admin:yes"},
        )
        await _seed(store, target, [H, U])
        page = await _service(store, [target]).detail("t1")
        assert [r.state for r in page.items] == [U, H]

    async def test_invalid_page_size(self) -> None:
        service = _service(MemoryObservationStore(), [_target("t1")])
        with pytest.raises(ValueError):
            await service.detail("t1", page_size=-1)

    async def test_unknown_target(self) -> None:
        with pytest.raises(TargetNotFoundError):
            await _service(MemoryObservationStore(), [_target("t1")]).detail("nope")

    async def test_token_from_another_target_rejected(self) -> None:
        store = MemoryObservationStore()
        t1, t2 = _target("t1"), _target("t2")
        await _seed(store, t1, [H, U, H])
        await _seed(store, t2, [H, U, H])
        service = _service(store, [t1, t2])

        token = (await service.detail("t1")).continuation_token
        assert token is not None
        with pytest.raises(InvalidContinuationTokenError):
            await service.detail("t2", continuation_token=token)

    async def test_token_from_another_process_rejected(self) -> None:
        store = MemoryObservationStore()
        target = _target("t1")
        await _seed(store, target, [H, U, H])
        token = (await _service(store, [target]).detail("t1")).continuation_token
        assert token is not None

        restarted = _service(store, [target], token_codec=ContinuationTokenCodec())
        with pytest.raises(InvalidContinuationTokenError):
            await restarted.detail("t1", continuation_token=token)


class TestCurrentState:
    async def test_latest_state(self) -> None:
        store = MemoryObservationStore()
        target = _target("t1")
        await _seed(store, target, [H, U, D])
        assert await _service(store, [target]).current_state("t1") == D

    async def test_unknown_without_history(self) -> None:
        service = _service(MemoryObservationStore(), [_target("t1")])
        assert await service.current_state("t1") == PulseState.UNKNOWN
