"""Probe executors — HTTP checks classified per check kind."""

from pulsewatch.probes.evaluators import EVALUATORS, HEALTHY_MESSAGE, Verdict
from pulsewatch.probes.exceptions import (
    ProbeComparisonMismatch,
    ProbeError,
    ProbeNetworkFailure,
    ProbeTimeout,
    ProbeUnexpectedPayload,
)
from pulsewatch.probes.executor import CONNECTION_FAILED, ProbeExecutor, apply_degradation

__all__ = [
    "CONNECTION_FAILED",
    "EVALUATORS",
    "HEALTHY_MESSAGE",
    "ProbeComparisonMismatch",
    "ProbeError",
    "ProbeExecutor",
    "ProbeNetworkFailure",
    "ProbeTimeout",
    "ProbeUnexpectedPayload",
    "Verdict",
    "apply_degradation",
]
