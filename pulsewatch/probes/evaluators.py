"""Per-kind response classification, dispatched through ``EVALUATORS``.

An evaluator turns a raw HTTP response into a :class:`Verdict` or raises a
:class:`~pulsewatch.probes.exceptions.ProbeError` subclass.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from pulsewatch.core.types import CheckKind, PulseState, TargetConfiguration, parse_state
from pulsewatch.probes.exceptions import ProbeComparisonMismatch, ProbeUnexpectedPayload
from pulsewatch.probes.payloads import (
    HealthPayload,
    describe_failures,
    parse_any_health_payload,
    parse_health_api,
    parse_status_api,
)

HEALTHY_MESSAGE = "Pulse check succeeded"

# Stored error bodies are truncated to keep records small.
_MAX_DETAIL_CHARS = 2000


@dataclass(frozen=True)
class Verdict:
    """Classification of a single probe response."""

    state: PulseState
    message: str
    error: str | None = None

    @classmethod
    def healthy(cls) -> Verdict:
        return cls(PulseState.HEALTHY, HEALTHY_MESSAGE)


Evaluator = Callable[[TargetConfiguration, httpx.Response], Verdict]


def _truncate(text: str | None) -> str | None:
    if text is None:
        return None
    return text[:_MAX_DETAIL_CHARS]


def _load_json(response: httpx.Response) -> Any:
    try:
        return json.loads(response.text)
    except ValueError as exc:
        raise ProbeUnexpectedPayload(
            "Pulse check failed due to deserialization error",
            detail=_truncate(response.text),
        ) from exc


def _require_success(response: httpx.Response) -> None:
    if not response.is_success:
        raise ProbeComparisonMismatch(
            f"Pulse check failed with status code {response.status_code}",
            detail=_truncate(response.text),
        )


def _payload_verdict(payload: HealthPayload, own_message: str | None = None) -> Verdict:
    state = payload.overall()
    if state == PulseState.HEALTHY:
        return Verdict.healthy()

    failing = payload.failing()
    if own_message:
        message = own_message
    elif failing:
        message = describe_failures(failing)
    else:
        message = f"Pulse check failed with status {state.value}"
    normalised = payload.model_dump_json(exclude_none=True)
    return Verdict(state, message, _truncate(normalised))


# ── Evaluators ──────────────────────────────────────────────────


def evaluate_status_code(config: TargetConfiguration, response: httpx.Response) -> Verdict:
    _require_success(response)
    return Verdict.healthy()


def evaluate_contains(config: TargetConfiguration, response: httpx.Response) -> Verdict:
    _require_success(response)
    expected = config.comparison_value or ""
    if expected not in response.text:
        raise ProbeComparisonMismatch(
            f"Pulse check failed because the response does not contain '{expected}'",
            detail=_truncate(response.text),
        )
    return Verdict.healthy()


def evaluate_json(config: TargetConfiguration, response: httpx.Response) -> Verdict:
    """Structural JSON comparison, or a health payload when nothing to compare."""
    if not config.comparison_value:
        payload = parse_any_health_payload(_load_json(response))
        return _payload_verdict(payload, getattr(payload, "message", None))

    _require_success(response)
    actual = _load_json(response)
    expected = json.loads(config.comparison_value)
    if actual != expected:
        raise ProbeComparisonMismatch(
            "Pulse check failed due to JSON mismatch",
            detail=_truncate(response.text),
        )
    return Verdict.healthy()


def evaluate_health_api(config: TargetConfiguration, response: httpx.Response) -> Verdict:
    payload = parse_health_api(_load_json(response))
    return _payload_verdict(payload, payload.message)


def evaluate_status_api(config: TargetConfiguration, response: httpx.Response) -> Verdict:
    return _payload_verdict(parse_status_api(_load_json(response)))


def evaluate_health_check(config: TargetConfiguration, response: httpx.Response) -> Verdict:
    """Plain-text body holding a single state word, e.g. ``Healthy``."""
    body = response.text.strip()
    try:
        state = parse_state(body)
    except ValueError as exc:
        raise ProbeUnexpectedPayload(
            "Pulse check failed due to unknown health response",
            detail=_truncate(body),
        ) from exc

    if state == PulseState.HEALTHY:
        return Verdict.healthy()
    return Verdict(state, f"Pulse check failed with status {state.value}", _truncate(body))


EVALUATORS: dict[CheckKind, Evaluator] = {
    CheckKind.STATUS_CODE: evaluate_status_code,
    CheckKind.CONTAINS: evaluate_contains,
    CheckKind.JSON: evaluate_json,
    CheckKind.HEALTH_API: evaluate_health_api,
    CheckKind.STATUS_API: evaluate_status_api,
    CheckKind.HEALTH_CHECK: evaluate_health_check,
}
