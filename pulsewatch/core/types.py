"""Domain types for targets, observations, notifications and history views."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator


class PulseState(StrEnum):
    """Health state of a single observation."""

    UNKNOWN = "Unknown"
    HEALTHY = "Healthy"
    DEGRADED = "Degraded"
    UNHEALTHY = "Unhealthy"

    @property
    def wire_number(self) -> int:
        return _STATE_NUMBERS[self]

    @property
    def severity(self) -> int:
        """Rank for alerting: Healthy < Degraded < Unhealthy < Unknown."""
        return _STATE_SEVERITY[self]

    @classmethod
    def from_wire_number(cls, number: int) -> PulseState:
        for state, value in _STATE_NUMBERS.items():
            if value == number:
                return state
        raise ValueError(f"Invalid state number: {number}")


_STATE_NUMBERS: dict[PulseState, int] = {
    PulseState.UNKNOWN: 0,
    PulseState.HEALTHY: 1,
    PulseState.DEGRADED: 2,
    PulseState.UNHEALTHY: 3,
}

_STATE_SEVERITY: dict[PulseState, int] = {
    PulseState.HEALTHY: 0,
    PulseState.DEGRADED: 1,
    PulseState.UNHEALTHY: 2,
    PulseState.UNKNOWN: 3,
}

# External health vocabularies (ASP.NET health checks, Spring actuator, RFC health+json).
_STATE_ALIASES: dict[str, PulseState] = {
    "healthy": PulseState.HEALTHY,
    "up": PulseState.HEALTHY,
    "ok": PulseState.HEALTHY,
    "pass": PulseState.HEALTHY,
    "degraded": PulseState.DEGRADED,
    "warn": PulseState.DEGRADED,
    "unhealthy": PulseState.UNHEALTHY,
    "down": PulseState.UNHEALTHY,
    "fail": PulseState.UNHEALTHY,
    "out_of_service": PulseState.UNHEALTHY,
    "timedout": PulseState.UNHEALTHY,
    "unknown": PulseState.UNKNOWN,
}


def parse_state(value: Any) -> PulseState:
    """Map an external state value (string or wire number) onto PulseState.

    Raises:
        ValueError: if the value is not a recognised state.
    """
    if isinstance(value, PulseState):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid state value: {value!r}")
    if isinstance(value, int):
        return PulseState.from_wire_number(value)
    if isinstance(value, str):
        state = _STATE_ALIASES.get(value.strip().lower())
        if state is not None:
            return state
    raise ValueError(f"Invalid state value: {value!r}")


def worst_state(states: list[PulseState]) -> PulseState:
    """Return the most severe state, or Unknown for an empty list."""
    if not states:
        return PulseState.UNKNOWN
    return max(states, key=lambda s: s.severity)


# ── Target Types ────────────────────────────────────────────────


class CheckKind(StrEnum):
    """How a probe response is classified."""

    HEALTH_API = "HealthApi"
    STATUS_CODE = "StatusCode"
    JSON = "Json"
    CONTAINS = "Contains"
    HEALTH_CHECK = "HealthCheck"
    STATUS_API = "StatusApi"


class TargetConfiguration(BaseModel):
    """A configured endpoint to be health-checked.

    ``timeout`` and ``degradation_timeout`` are in seconds.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    kind: CheckKind = CheckKind.STATUS_CODE
    group: str = ""
    name: str
    location: str
    timeout: float = 10.0
    degradation_timeout: float | None = None
    enabled: bool = True
    ignore_tls_errors: bool = False
    comparison_value: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("timeout", "degradation_timeout")
    @classmethod
    def _millisecond_resolution(cls, value: float | None) -> float | None:
        # History records store timeouts in whole milliseconds.
        return None if value is None else round(value, 3)

    @model_validator(mode="after")
    def _check_timeouts(self) -> TargetConfiguration:
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.degradation_timeout is not None:
            if self.degradation_timeout <= 0:
                raise ValueError("degradation_timeout must be positive")
            if self.degradation_timeout >= self.timeout:
                raise ValueError("degradation_timeout must be lower than timeout")
        if self.kind == CheckKind.CONTAINS and not self.comparison_value:
            raise ValueError("Contains checks require a comparison_value")
        if self.kind == CheckKind.JSON and self.comparison_value:
            try:
                json.loads(self.comparison_value)
            except ValueError as exc:
                raise ValueError("comparison_value must be valid JSON for Json checks") from exc
        return self

    @property
    def full_name(self) -> str:
        if self.group.strip():
            return f"{self.group} > {self.name}"
        return self.name


# ── Observation Types ───────────────────────────────────────────


class Observation(BaseModel):
    """One completed probe result. Append-only."""

    model_config = ConfigDict(frozen=True)

    id: str
    target_id: str
    elapsed_ms: int
    state: PulseState
    message: str
    error: str | None = None
    created_at: float


class CompactedRun(BaseModel):
    """A run of same-state observations merged by the retention sweep.

    ``id`` is the id of the oldest observation in the run, so runs and raw
    observations share a single ordering.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    target_id: str
    state: PulseState
    start: float
    end: float


@dataclass
class TargetRuntimeState:
    """Scheduler-owned, in-memory state for one target."""

    target_id: str
    last_state: PulseState = PulseState.UNKNOWN
    consecutive_non_healthy: int = 0
    in_flight: bool = False
    last_observation_at: float | None = None
    state_since: float | None = None


# ── Webhook Types ───────────────────────────────────────────────


class WebhookKind(StrEnum):
    """Which notifications a subscription receives."""

    ALL = "All"
    STATE_CHANGE = "StateChange"
    THRESHOLD_BREACH = "ThresholdBreach"


class WebhookSubscription(BaseModel):
    """An outbound webhook sink. ``group``/``name`` accept the ``*`` wildcard."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: WebhookKind = WebhookKind.ALL
    secret: SecretStr = SecretStr("")
    group: str = "*"
    name: str = "*"
    location: str
    enabled: bool = True

    def matches(self, kind: WebhookKind, group: str, name: str) -> bool:
        return (
            (self.kind == WebhookKind.ALL or self.kind == kind)
            and (self.group == "*" or self.group == group)
            and (self.name == "*" or self.name == name)
        )


class StateChangeEvent(BaseModel):
    """Fired exactly once per state transition of a target."""

    model_config = ConfigDict(frozen=True)

    event_type: Literal["StateChange"] = "StateChange"
    target_id: str
    group: str = ""
    name: str = ""
    old_state: PulseState
    new_state: PulseState
    timestamp: float
    duration: float | None = None  # minutes the old state lasted
    reason: str | None = None

    @property
    def webhook_kind(self) -> WebhookKind:
        return WebhookKind.STATE_CHANGE


class ThresholdCrossedEvent(BaseModel):
    """Fired when a run of non-healthy observations first reaches the threshold."""

    model_config = ConfigDict(frozen=True)

    event_type: Literal["ThresholdCrossed"] = "ThresholdCrossed"
    target_id: str
    group: str = ""
    name: str = ""
    timestamp: float
    threshold: int

    @property
    def webhook_kind(self) -> WebhookKind:
        return WebhookKind.THRESHOLD_BREACH


NotificationEvent = Annotated[
    StateChangeEvent | ThresholdCrossedEvent,
    Field(discriminator="event_type"),
]


# ── History View Types ──────────────────────────────────────────


class StateRange(BaseModel):
    """Contiguous span of a single state, as shown in overview/detail reads."""

    state: PulseState
    start: float
    end: float
    message: str | None = None
    error: str | None = None
    key: str = ""


class OverviewItem(BaseModel):
    """Timeline of one target in the overview."""

    id: str
    name: str
    items: list[StateRange] = Field(default_factory=list)


class OverviewGroup(BaseModel):
    """All targets in one group."""

    group: str
    items: list[OverviewItem] = Field(default_factory=list)


class DetailPage(BaseModel):
    """One page of a target's history, newest first."""

    id: str
    name: str
    continuation_token: str | None = None
    items: list[StateRange] = Field(default_factory=list)
