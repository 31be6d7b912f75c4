"""JSON wire format for outbound webhook notifications.

Every body carries a ``type`` discriminator::

    {"type": "StateChange", "id": ..., "group": ..., "name": ...,
     "payload": {"oldState": ..., "newState": ..., "timestamp": ...,
                 "duration": ..., "reason": ...}}

    {"type": "Threshold", "id": ..., "group": ..., "name": ...,
     "timestamp": ..., "threshold": ...}

Timestamps are unix seconds, ``duration`` is in minutes.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from pulsewatch.core.types import (
    NotificationEvent,
    StateChangeEvent,
    ThresholdCrossedEvent,
    parse_state,
)
from pulsewatch.webhooks.exceptions import WebhookPayloadError

STATE_CHANGE_TYPE = "StateChange"
THRESHOLD_TYPE = "Threshold"


def event_to_dict(event: NotificationEvent) -> dict[str, Any]:
    if isinstance(event, StateChangeEvent):
        return {
            "type": STATE_CHANGE_TYPE,
            "id": event.target_id,
            "group": event.group,
            "name": event.name,
            "payload": {
                "oldState": event.old_state.value,
                "newState": event.new_state.value,
                "timestamp": int(event.timestamp),
                "duration": event.duration,
                "reason": event.reason,
            },
        }
    return {
        "type": THRESHOLD_TYPE,
        "id": event.target_id,
        "group": event.group,
        "name": event.name,
        "timestamp": int(event.timestamp),
        "threshold": event.threshold,
    }


def encode_event(event: NotificationEvent) -> bytes:
    """Serialize *event* to a compact UTF-8 JSON body."""
    return json.dumps(event_to_dict(event), separators=(",", ":")).encode("utf-8")


def _decode_state_change(data: dict[str, Any]) -> StateChangeEvent:
    payload = data["payload"]
    return StateChangeEvent(
        target_id=data["id"],
        group=data.get("group", ""),
        name=data.get("name", ""),
        old_state=parse_state(payload["oldState"]),
        new_state=parse_state(payload["newState"]),
        timestamp=payload["timestamp"],
        duration=payload.get("duration"),
        reason=payload.get("reason"),
    )


def _decode_threshold(data: dict[str, Any]) -> ThresholdCrossedEvent:
    return ThresholdCrossedEvent(
        target_id=data["id"],
        group=data.get("group", ""),
        name=data.get("name", ""),
        timestamp=data["timestamp"],
        threshold=data["threshold"],
    )


_DECODERS: dict[str, Callable[[dict[str, Any]], NotificationEvent]] = {
    STATE_CHANGE_TYPE: _decode_state_change,
    THRESHOLD_TYPE: _decode_threshold,
}


def decode_event(body: bytes | str) -> NotificationEvent:
    """Parse a webhook body back into its notification event.

    Raises:
        WebhookPayloadError: on invalid JSON, an unknown ``type``, or missing fields.
    """
    try:
        data = json.loads(body)
    except ValueError as exc:
        raise WebhookPayloadError(f"Invalid webhook JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise WebhookPayloadError("Webhook body must be a JSON object")

    event_type = data.get("type")
    decoder = _DECODERS.get(event_type) if isinstance(event_type, str) else None
    if decoder is None:
        raise WebhookPayloadError(f"Unknown webhook type: {event_type!r}")
    try:
        return decoder(data)
    except (KeyError, TypeError, ValueError, ValidationError) as exc:
        raise WebhookPayloadError(f"Malformed {data['type']} webhook: {exc}") from exc
