"""Concurrency-bounded probe scheduling."""

from pulsewatch.scheduler.runtime import RuntimeRegistry, SlotPool
from pulsewatch.scheduler.scheduler import PulseScheduler

__all__ = [
    "PulseScheduler",
    "RuntimeRegistry",
    "SlotPool",
]
