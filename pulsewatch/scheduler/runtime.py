"""Per-target runtime bookkeeping and the global concurrency slot pool."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from pulsewatch.core.exceptions import ConcurrencyGuardViolation
from pulsewatch.core.types import TargetRuntimeState


class SlotPool:
    """Fixed number of probe slots shared by all targets.

    Non-blocking: a target that cannot get a slot is skipped for the tick
    rather than queued behind the others.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._in_use = 0
        self._peak = 0

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def available(self) -> int:
        return self.capacity - self._in_use

    @property
    def peak(self) -> int:
        """Highest number of slots ever held at once."""
        return self._peak

    def try_acquire(self) -> bool:
        """Try to take one slot. Returns True if successful."""
        if self._in_use >= self.capacity:
            return False
        self._in_use += 1
        self._peak = max(self._peak, self._in_use)
        return True

    def release(self) -> None:
        if self._in_use <= 0:
            raise RuntimeError("release() called with no slot held")
        self._in_use -= 1


class RuntimeRegistry:
    """Owns the mutable runtime state of every scheduled target.

    Each target gets its own :class:`asyncio.Lock` so that the apply/enqueue
    step after a probe is serialized per target.
    """

    def __init__(self) -> None:
        self._states: dict[str, TargetRuntimeState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __contains__(self, target_id: object) -> bool:
        return target_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def get(self, target_id: str) -> TargetRuntimeState:
        """Return the state for *target_id*, creating it on first use."""
        state = self._states.get(target_id)
        if state is None:
            state = TargetRuntimeState(target_id=target_id)
            self._states[target_id] = state
        return state

    def set(self, state: TargetRuntimeState) -> None:
        self._states[state.target_id] = state

    def lock(self, target_id: str) -> asyncio.Lock:
        lock = self._locks.get(target_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[target_id] = lock
        return lock

    def in_flight(self) -> list[str]:
        return [tid for tid, state in self._states.items() if state.in_flight]

    def mark_in_flight(self, target_id: str) -> None:
        state = self.get(target_id)
        if state.in_flight:
            raise ConcurrencyGuardViolation(f"Target {target_id!r} is already in flight")
        state.in_flight = True

    def clear_in_flight(self, target_id: str) -> None:
        state = self._states.get(target_id)
        if state is not None:
            state.in_flight = False

    def prune(self, active_ids: Iterable[str]) -> list[str]:
        """Drop state for targets no longer active. In-flight targets are kept.

        Returns the ids that were removed.
        """
        active = set(active_ids)
        removed = [
            tid for tid, state in self._states.items()
            if tid not in active and not state.in_flight
        ]
        for tid in removed:
            del self._states[tid]
            self._locks.pop(tid, None)
        return removed
