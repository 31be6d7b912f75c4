"""Core exceptions shared across the engine."""

from __future__ import annotations


class PulseWatchError(Exception):
    """Base exception for all pulsewatch errors."""


class ConfigurationError(PulseWatchError):
    """Invalid target, subscription, or settings definition."""


class ConcurrencyGuardViolation(PulseWatchError):
    """A target was about to be probed while a probe was already in flight.

    Internal invariant only — if this is ever raised it is a bug.
    """
