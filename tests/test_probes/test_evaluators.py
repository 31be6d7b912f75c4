"""Tests for pulsewatch/probes/evaluators.py — per-kind response classification."""

from __future__ import annotations

import json

import httpx
import pytest

from pulsewatch.core.types import CheckKind, PulseState, TargetConfiguration
from pulsewatch.probes.evaluators import EVALUATORS, HEALTHY_MESSAGE, Verdict
from pulsewatch.probes.exceptions import ProbeComparisonMismatch, ProbeUnexpectedPayload


# ── Helpers ─────────────────────────────────────────────────────


def _cfg(**kw: object) -> TargetConfiguration:
    defaults: dict[str, object] = {
        "id": "t1",
        "name": "Target",
        "location": "https://svc.example.com/health",
    }
    defaults.update(kw)
    return TargetConfiguration(**defaults)  # type: ignore[arg-type]


def _response(status_code: int = 200, text: str | None = None, body: object = None) -> httpx.Response:
    if body is not None:
        text = json.dumps(body)
    return httpx.Response(
        status_code=status_code,
        text=text or "",
        request=httpx.Request("GET", "https://svc.example.com/health"),
    )


def _evaluate(config: TargetConfiguration, response: httpx.Response) -> Verdict:
    return EVALUATORS[config.kind](config, response)


class TestRegistry:
    def test_every_kind_has_an_evaluator(self) -> None:
        assert set(EVALUATORS) == set(CheckKind)


# ── StatusCode ──────────────────────────────────────────────────


class TestStatusCode:
    def test_2xx_is_healthy(self) -> None:
        verdict = _evaluate(_cfg(), _response(204))
        assert verdict.state == PulseState.HEALTHY
        assert verdict.message == HEALTHY_MESSAGE
        assert verdict.error is None

    def test_5xx_mismatch(self) -> None:
        with pytest.raises(ProbeComparisonMismatch) as exc_info:
            _evaluate(_cfg(), _response(503, "maintenance"))
        assert exc_info.value.message == "Pulse check failed with status code 503"
        assert exc_info.value.detail == "maintenance"


# ── Contains ────────────────────────────────────────────────────


class TestContains:
    def test_contains_match(self) -> None:
        cfg = _cfg(kind=CheckKind.CONTAINS, comparison_value="<title>Home")
        verdict = _evaluate(cfg, _response(200, "<html><title>Home</title></html>"))
        assert verdict.state == PulseState.HEALTHY

    def test_contains_missing(self) -> None:
        cfg = _cfg(kind=CheckKind.CONTAINS, comparison_value="needle")
        with pytest.raises(ProbeComparisonMismatch) as exc_info:
            _evaluate(cfg, _response(200, "haystack"))
        assert "does not contain 'needle'" in exc_info.value.message

    def test_contains_requires_success_status(self) -> None:
        cfg = _cfg(kind=CheckKind.CONTAINS, comparison_value="needle")
        with pytest.raises(ProbeComparisonMismatch):
            _evaluate(cfg, _response(500, "needle"))


# ── Json ────────────────────────────────────────────────────────


class TestJson:
    def test_structural_equality_ignores_key_order(self) -> None:
        cfg = _cfg(kind=CheckKind.JSON, comparison_value='{"a": 1, "b": [1, 2]}')
        verdict = _evaluate(cfg, _response(200, '{"b":[1,2],"a":1}'))
        assert verdict.state == PulseState.HEALTHY

    def test_mismatch(self) -> None:
        cfg = _cfg(kind=CheckKind.JSON, comparison_value='{"a": 1}')
        with pytest.raises(ProbeComparisonMismatch) as exc_info:
            _evaluate(cfg, _response(200, body={"a": 2}))
        assert exc_info.value.message == "Pulse check failed due to JSON mismatch"

    def test_invalid_body(self) -> None:
        cfg = _cfg(kind=CheckKind.JSON, comparison_value='{"a": 1}')
        with pytest.raises(ProbeUnexpectedPayload):
            _evaluate(cfg, _response(200, "not json"))

    def test_without_comparison_reads_health_payload(self) -> None:
        cfg = _cfg(kind=CheckKind.JSON)
        verdict = _evaluate(cfg, _response(200, body={"status": "DOWN"}))
        assert verdict.state == PulseState.UNHEALTHY


# ── HealthApi ───────────────────────────────────────────────────


class TestHealthApi:
    def test_healthy(self) -> None:
        cfg = _cfg(kind=CheckKind.HEALTH_API)
        verdict = _evaluate(cfg, _response(200, body={"state": "Healthy"}))
        assert verdict == Verdict.healthy()

    def test_degraded_dependency_worsens_state(self) -> None:
        cfg = _cfg(kind=CheckKind.HEALTH_API)
        body = {
            "State": "Healthy",
            "Dependencies": [
                {"Name": "db", "State": "Healthy"},
                {"Name": "cache", "State": "Degraded"},
            ],
        }
        verdict = _evaluate(cfg, _response(200, body=body))
        assert verdict.state == PulseState.DEGRADED
        assert verdict.message == "Dependencies reporting problems: cache is Degraded"
        assert verdict.error is not None

    def test_own_message_is_kept(self) -> None:
        cfg = _cfg(kind=CheckKind.HEALTH_API)
        body = {"state": "Unhealthy", "message": "disk full"}
        verdict = _evaluate(cfg, _response(503, body=body))
        assert verdict.state == PulseState.UNHEALTHY
        assert verdict.message == "disk full"

    def test_unknown_state_value(self) -> None:
        cfg = _cfg(kind=CheckKind.HEALTH_API)
        with pytest.raises(ProbeUnexpectedPayload) as exc_info:
            _evaluate(cfg, _response(200, body={"state": "sideways"}))
        assert exc_info.value.message == "Pulse check failed due to deserialization error"

    def test_non_object_body(self) -> None:
        cfg = _cfg(kind=CheckKind.HEALTH_API)
        with pytest.raises(ProbeUnexpectedPayload):
            _evaluate(cfg, _response(200, body=["Healthy"]))


# ── StatusApi ───────────────────────────────────────────────────


class TestStatusApi:
    def test_up_is_healthy(self) -> None:
        cfg = _cfg(kind=CheckKind.STATUS_API)
        verdict = _evaluate(cfg, _response(200, body={"status": "UP"}))
        assert verdict.state == PulseState.HEALTHY

    def test_failing_component(self) -> None:
        cfg = _cfg(kind=CheckKind.STATUS_API)
        body = {"status": "UP", "details": {"db": {"status": "DOWN"}, "disk": {"status": "UP"}}}
        verdict = _evaluate(cfg, _response(200, body=body))
        assert verdict.state == PulseState.UNHEALTHY
        assert verdict.message == "Dependencies reporting problems: db is Unhealthy"

    def test_entries_section(self) -> None:
        cfg = _cfg(kind=CheckKind.STATUS_API)
        body = {"status": "Healthy", "entries": {"queue": {"status": "Degraded"}}}
        verdict = _evaluate(cfg, _response(200, body=body))
        assert verdict.state == PulseState.DEGRADED


# ── HealthCheck ─────────────────────────────────────────────────


class TestHealthCheck:
    def test_plain_healthy(self) -> None:
        cfg = _cfg(kind=CheckKind.HEALTH_CHECK)
        assert _evaluate(cfg, _response(200, "Healthy\n")).state == PulseState.HEALTHY

    def test_plain_degraded(self) -> None:
        cfg = _cfg(kind=CheckKind.HEALTH_CHECK)
        verdict = _evaluate(cfg, _response(200, "Degraded"))
        assert verdict.state == PulseState.DEGRADED
        assert verdict.message == "Pulse check failed with status Degraded"

    def test_unrecognised_body(self) -> None:
        cfg = _cfg(kind=CheckKind.HEALTH_CHECK)
        with pytest.raises(ProbeUnexpectedPayload) as exc_info:
            _evaluate(cfg, _response(200, "<html>"))
        assert exc_info.value.message == "Pulse check failed due to unknown health response"
