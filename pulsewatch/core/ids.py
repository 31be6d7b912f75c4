"""Monotonic, sortable observation identifiers."""

from __future__ import annotations

import time
from collections.abc import Callable


class ObservationIdGenerator:
    """Generates strictly increasing fixed-width hex ids.

    The high bits hold wall-clock milliseconds, the low 16 bits a sequence,
    so ids sort by creation time both lexicographically and numerically.
    A clock that steps backwards never produces a smaller id.
    """

    _WIDTH = 16

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._last = 0

    def next_id(self) -> str:
        base = int(self._clock() * 1000) << 16
        value = max(base, self._last + 1)
        self._last = value
        return f"{value:0{self._WIDTH}x}"

    @staticmethod
    def timestamp_of(identifier: str) -> float:
        """Recover the creation time (epoch seconds) encoded in an id."""
        return (int(identifier, 16) >> 16) / 1000.0
