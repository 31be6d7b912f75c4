"""Tests for pulsewatch/core/types.py and ids.py — states, validation, identifiers."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from pulsewatch.core.ids import ObservationIdGenerator
from pulsewatch.core.types import (
    CheckKind,
    PulseState,
    TargetConfiguration,
    WebhookKind,
    WebhookSubscription,
    parse_state,
    worst_state,
)


# ── Helpers ─────────────────────────────────────────────────────


def _target(**kw: object) -> TargetConfiguration:
    defaults: dict[str, object] = {
        "id": "t1",
        "name": "Target",
        "location": "https://example.com/health",
    }
    defaults.update(kw)
    return TargetConfiguration(**defaults)  # type: ignore[arg-type]


class _StepClock:
    def __init__(self, *values: float) -> None:
        self._values = list(values)

    def __call__(self) -> float:
        if len(self._values) > 1:
            return self._values.pop(0)
        return self._values[0]


# ── PulseState ──────────────────────────────────────────────────


class TestPulseState:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Healthy", PulseState.HEALTHY),
            ("UP", PulseState.HEALTHY),
            ("pass", PulseState.HEALTHY),
            ("warn", PulseState.DEGRADED),
            ("Degraded", PulseState.DEGRADED),
            ("down", PulseState.UNHEALTHY),
            ("TimedOut", PulseState.UNHEALTHY),
            ("unknown", PulseState.UNKNOWN),
            (3, PulseState.UNHEALTHY),
            (PulseState.DEGRADED, PulseState.DEGRADED),
        ],
    )
    def test_parse_state(self, raw: object, expected: PulseState) -> None:
        assert parse_state(raw) == expected

    @pytest.mark.parametrize("raw", ["sideways", 7, True, None, 1.0])
    def test_parse_state_rejects(self, raw: object) -> None:
        with pytest.raises(ValueError):
            parse_state(raw)

    def test_wire_numbers(self) -> None:
        assert PulseState.UNKNOWN.wire_number == 0
        assert PulseState.HEALTHY.wire_number == 1
        assert PulseState.from_wire_number(2) == PulseState.DEGRADED

    def test_worst_state(self) -> None:
        assert worst_state([PulseState.HEALTHY, PulseState.DEGRADED]) == PulseState.DEGRADED
        assert worst_state([PulseState.UNHEALTHY, PulseState.DEGRADED]) == PulseState.UNHEALTHY
        assert worst_state([]) == PulseState.UNKNOWN


# ── TargetConfiguration ─────────────────────────────────────────


class TestTargetConfiguration:
    def test_defaults(self) -> None:
        t = _target()
        assert t.kind == CheckKind.STATUS_CODE
        assert t.enabled is True
        assert t.headers == {}
        assert t.full_name == "Target"

    def test_full_name_with_group(self) -> None:
        assert _target(group="Platform").full_name == "Platform > Target"

    def test_degradation_must_be_below_timeout(self) -> None:
        with pytest.raises(ValidationError):
            _target(timeout=2, degradation_timeout=2)

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            _target(timeout=0)

    def test_timeouts_rounded_to_milliseconds(self) -> None:
        t = _target(timeout=2.00049, degradation_timeout=1.2346)
        assert t.timeout == 2.0
        assert t.degradation_timeout == 1.235

    def test_degradation_equal_after_rounding_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _target(timeout=5.0, degradation_timeout=4.9996)

    def test_sub_millisecond_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _target(timeout=0.0004)

    def test_contains_requires_comparison(self) -> None:
        with pytest.raises(ValidationError):
            _target(kind=CheckKind.CONTAINS)

    def test_json_comparison_must_parse(self) -> None:
        with pytest.raises(ValidationError):
            _target(kind=CheckKind.JSON, comparison_value="{not json")

    def test_frozen(self) -> None:
        t = _target()
        with pytest.raises(ValidationError):
            t.name = "other"  # type: ignore[misc]


# ── WebhookSubscription ─────────────────────────────────────────


class TestSubscriptionMatching:
    def test_wildcards_match_everything(self) -> None:
        sub = WebhookSubscription(id="s", location="https://h.example.com")
        assert sub.matches(WebhookKind.STATE_CHANGE, "g", "n")
        assert sub.matches(WebhookKind.THRESHOLD_BREACH, "", "")

    def test_kind_filter(self) -> None:
        sub = WebhookSubscription(
            id="s", kind=WebhookKind.THRESHOLD_BREACH, location="https://h.example.com"
        )
        assert sub.matches(WebhookKind.THRESHOLD_BREACH, "g", "n")
        assert not sub.matches(WebhookKind.STATE_CHANGE, "g", "n")

    def test_group_and_name_filter(self) -> None:
        sub = WebhookSubscription(
            id="s", group="Billing", name="API", location="https://h.example.com"
        )
        assert sub.matches(WebhookKind.STATE_CHANGE, "Billing", "API")
        assert not sub.matches(WebhookKind.STATE_CHANGE, "Billing", "Web")
        assert not sub.matches(WebhookKind.STATE_CHANGE, "Platform", "API")


# ── ObservationIdGenerator ──────────────────────────────────────


class TestObservationIds:
    def test_fixed_width_hex(self) -> None:
        gen = ObservationIdGenerator(clock=lambda: 1_700_000_000.0)
        value = gen.next_id()
        assert len(value) == 16
        int(value, 16)

    def test_strictly_increasing_within_same_millisecond(self) -> None:
        gen = ObservationIdGenerator(clock=lambda: 1_700_000_000.0)
        ids = [gen.next_id() for _ in range(5)]
        assert ids == sorted(ids)
        assert len(set(ids)) == 5

    def test_clock_stepping_backwards(self) -> None:
        gen = ObservationIdGenerator(clock=_StepClock(1_700_000_010.0, 1_700_000_000.0))
        first = gen.next_id()
        second = gen.next_id()
        assert second > first

    def test_timestamp_roundtrip(self) -> None:
        gen = ObservationIdGenerator(clock=lambda: 1_700_000_000.25)
        assert ObservationIdGenerator.timestamp_of(gen.next_id()) == 1_700_000_000.25
