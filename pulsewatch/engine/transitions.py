"""State transition engine — decides which notifications an observation emits.

:func:`apply_observation` is pure: it never mutates the state passed in and
returns the updated copy alongside the events to publish.

- ``StateChangeEvent`` is edge-triggered: exactly one per state change. The
  first observation of a target has no predecessor and emits nothing.
- ``ThresholdCrossedEvent`` fires when the consecutive non-healthy counter
  becomes exactly ``alert_threshold``, i.e. once per non-healthy run. A
  Healthy observation resets the counter.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from pulsewatch.core.types import (
    NotificationEvent,
    Observation,
    PulseState,
    StateChangeEvent,
    TargetConfiguration,
    TargetRuntimeState,
    ThresholdCrossedEvent,
)


@dataclass(frozen=True)
class TransitionResult:
    """Updated runtime state plus the notifications to publish."""

    state: TargetRuntimeState
    events: list[NotificationEvent] = field(default_factory=list)


def apply_observation(
    state: TargetRuntimeState,
    observation: Observation,
    target: TargetConfiguration,
    alert_threshold: int | None = None,
) -> TransitionResult:
    """Fold one observation into a target's runtime state."""
    events: list[NotificationEvent] = []
    now = observation.created_at
    had_data = state.last_observation_at is not None
    changed = observation.state != state.last_state

    if had_data and changed:
        duration: float | None = None
        if state.state_since is not None:
            duration = max(now - state.state_since, 0.0) / 60.0
        events.append(StateChangeEvent(
            target_id=target.id,
            group=target.group,
            name=target.name,
            old_state=state.last_state,
            new_state=observation.state,
            timestamp=now,
            duration=duration,
            reason=observation.message,
        ))

    if observation.state == PulseState.HEALTHY:
        streak = 0
    else:
        streak = state.consecutive_non_healthy + 1

    if alert_threshold is not None and streak == alert_threshold:
        events.append(ThresholdCrossedEvent(
            target_id=target.id,
            group=target.group,
            name=target.name,
            timestamp=now,
            threshold=alert_threshold,
        ))

    state_since = now if (changed or not had_data) else state.state_since

    updated = replace(
        state,
        last_state=observation.state,
        consecutive_non_healthy=streak,
        last_observation_at=now,
        state_since=state_since,
    )
    return TransitionResult(state=updated, events=events)
