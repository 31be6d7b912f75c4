"""Structured health payloads returned by monitored services.

Two shapes are understood::

    {"state": "Healthy", "message": "...", "dependencies": [{"name": "db", "state": "Degraded"}]}
    {"status": "UP", "details": {"db": {"status": "DOWN"}}}

State values are mapped through :func:`pulsewatch.core.types.parse_state`.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ValidationError

from pulsewatch.core.types import PulseState, parse_state, worst_state
from pulsewatch.probes.exceptions import ProbeUnexpectedPayload

State = Annotated[PulseState, BeforeValidator(parse_state)]


class HealthApiDependency(BaseModel):
    name: str
    state: State


class HealthApiResponse(BaseModel):
    """``{state, message, dependencies}`` payload."""

    state: State
    message: str | None = None
    dependencies: list[HealthApiDependency] | None = None

    def failing(self) -> dict[str, PulseState]:
        return {
            d.name: d.state
            for d in self.dependencies or []
            if d.state != PulseState.HEALTHY
        }

    def overall(self) -> PulseState:
        return worst_state([self.state, *(d.state for d in self.dependencies or [])])


class StatusApiDetail(BaseModel):
    status: State


class StatusApiResponse(BaseModel):
    """``{status, details|entries}`` payload."""

    status: State
    details: dict[str, StatusApiDetail] | None = None
    entries: dict[str, StatusApiDetail] | None = None

    def components(self) -> dict[str, PulseState]:
        merged: dict[str, PulseState] = {}
        for source in (self.details, self.entries):
            for name, detail in (source or {}).items():
                merged[name] = detail.status
        return merged

    def failing(self) -> dict[str, PulseState]:
        return {k: v for k, v in self.components().items() if v != PulseState.HEALTHY}

    def overall(self) -> PulseState:
        return worst_state([self.status, *self.components().values()])


HealthPayload = HealthApiResponse | StatusApiResponse


def _lower_keys(body: dict[str, Any]) -> dict[str, Any]:
    # Serialisers disagree on casing ("State" vs "state"); nested keys are names.
    return {k.lower() if isinstance(k, str) else k: v for k, v in body.items()}


def parse_health_api(body: Any) -> HealthApiResponse:
    if not isinstance(body, dict):
        raise ProbeUnexpectedPayload("Pulse check failed due to deserialization error")
    data = _lower_keys(body)
    if isinstance(data.get("dependencies"), list):
        data["dependencies"] = [
            _lower_keys(d) if isinstance(d, dict) else d for d in data["dependencies"]
        ]
    try:
        return HealthApiResponse.model_validate(data)
    except ValidationError as exc:
        raise ProbeUnexpectedPayload(
            "Pulse check failed due to deserialization error", detail=str(exc)
        ) from exc


def parse_status_api(body: Any) -> StatusApiResponse:
    if not isinstance(body, dict):
        raise ProbeUnexpectedPayload("Pulse check failed due to deserialization error")
    data = _lower_keys(body)
    for key in ("details", "entries"):
        section = data.get(key)
        if isinstance(section, dict):
            data[key] = {
                name: _lower_keys(v) if isinstance(v, dict) else v
                for name, v in section.items()
            }
    try:
        return StatusApiResponse.model_validate(data)
    except ValidationError as exc:
        raise ProbeUnexpectedPayload(
            "Pulse check failed due to deserialization error", detail=str(exc)
        ) from exc


def parse_any_health_payload(body: Any) -> HealthPayload:
    """Detect the payload shape by its top-level state key."""
    if isinstance(body, dict):
        keys = {k.lower() for k in body if isinstance(k, str)}
        if "state" in keys:
            return parse_health_api(body)
        if "status" in keys:
            return parse_status_api(body)
    raise ProbeUnexpectedPayload("Pulse check failed due to unrecognised health payload")


def describe_failures(failing: dict[str, PulseState]) -> str:
    parts = [f"{name} is {state.value}" for name, state in sorted(failing.items())]
    return "Dependencies reporting problems: " + ", ".join(parts)
