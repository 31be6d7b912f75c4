"""State transition engine."""

from pulsewatch.engine.transitions import TransitionResult, apply_observation

__all__ = [
    "TransitionResult",
    "apply_observation",
]
