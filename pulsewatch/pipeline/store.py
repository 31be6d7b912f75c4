"""Observation storage contract and the in-memory reference store."""

from __future__ import annotations

import abc
from collections.abc import Sequence

import structlog

from pulsewatch.core.types import CompactedRun, Observation
from pulsewatch.pipeline.codec import ObservationRecord, decode_record, encode_record
from pulsewatch.pipeline.exceptions import PersistenceTransientFailure

logger = structlog.stdlib.get_logger()


class ObservationStore(abc.ABC):
    """Append-only observation history plus compacted runs, keyed by target.

    Observations and runs share one ordering: their ids are time-ordered
    and a run takes the id of its oldest observation.
    """

    @abc.abstractmethod
    async def append_batch(self, records: Sequence[ObservationRecord]) -> None:
        """Persist *records* atomically.

        Raises:
            PersistenceTransientFailure: if the batch could not be written.
        """

    @abc.abstractmethod
    async def target_ids(self) -> list[str]:
        """Ids of every target with stored history."""

    @abc.abstractmethod
    async def observations(self, target_id: str) -> list[Observation]:
        """Raw observations of *target_id*, sorted by id (oldest first)."""

    @abc.abstractmethod
    async def runs(self, target_id: str) -> list[CompactedRun]:
        """Compacted runs of *target_id*, sorted by id (oldest first)."""

    @abc.abstractmethod
    async def latest(self, target_id: str) -> Observation | None:
        """The newest raw observation of *target_id*, if any."""

    @abc.abstractmethod
    async def compact(
        self,
        target_id: str,
        removed_ids: Sequence[str],
        runs: Sequence[CompactedRun],
    ) -> None:
        """Delete *removed_ids* and replace the target's runs with *runs*."""


class MemoryObservationStore(ObservationStore):
    """Process-local store that keeps each record in its encoded form."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, bytes]] = {}
        self._runs: dict[str, list[CompactedRun]] = {}
        self._fail_appends = 0

    def fail_next_appends(self, count: int) -> None:
        """Make the next *count* calls to :meth:`append_batch` fail."""
        self._fail_appends = count

    async def append_batch(self, records: Sequence[ObservationRecord]) -> None:
        if self._fail_appends > 0:
            self._fail_appends -= 1
            raise PersistenceTransientFailure("Simulated append failure")
        encoded = [(r.observation.target_id, r.observation.id, encode_record(r)) for r in records]
        for target_id, obs_id, data in encoded:
            self._records.setdefault(target_id, {})[obs_id] = data
        logger.debug("observations_appended", count=len(encoded))

    async def target_ids(self) -> list[str]:
        return sorted(set(self._records) | set(self._runs))

    async def observations(self, target_id: str) -> list[Observation]:
        stored = self._records.get(target_id, {})
        return [decode_record(stored[obs_id]).observation for obs_id in sorted(stored)]

    async def runs(self, target_id: str) -> list[CompactedRun]:
        return sorted(self._runs.get(target_id, []), key=lambda r: r.id)

    async def latest(self, target_id: str) -> Observation | None:
        stored = self._records.get(target_id)
        if not stored:
            return None
        return decode_record(stored[max(stored)]).observation

    async def compact(
        self,
        target_id: str,
        removed_ids: Sequence[str],
        runs: Sequence[CompactedRun],
    ) -> None:
        stored = self._records.get(target_id, {})
        for obs_id in removed_ids:
            stored.pop(obs_id, None)
        self._runs[target_id] = sorted(runs, key=lambda r: r.id)
