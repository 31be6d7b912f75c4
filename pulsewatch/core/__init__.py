"""Core module — config, types, identifiers, logging."""

from pulsewatch.core.config import Settings, get_settings, load_settings, reset_settings
from pulsewatch.core.exceptions import ConcurrencyGuardViolation, ConfigurationError
from pulsewatch.core.ids import ObservationIdGenerator
from pulsewatch.core.logging import setup_logging
from pulsewatch.core.types import (
    CheckKind,
    CompactedRun,
    NotificationEvent,
    Observation,
    PulseState,
    StateChangeEvent,
    TargetConfiguration,
    TargetRuntimeState,
    ThresholdCrossedEvent,
    WebhookKind,
    WebhookSubscription,
)

__all__ = [
    "CheckKind",
    "CompactedRun",
    "ConcurrencyGuardViolation",
    "ConfigurationError",
    "NotificationEvent",
    "Observation",
    "ObservationIdGenerator",
    "PulseState",
    "Settings",
    "StateChangeEvent",
    "TargetConfiguration",
    "TargetRuntimeState",
    "ThresholdCrossedEvent",
    "WebhookKind",
    "WebhookSubscription",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
