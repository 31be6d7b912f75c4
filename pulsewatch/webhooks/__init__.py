"""Outbound webhook notifications."""

from pulsewatch.webhooks.dispatcher import WebhookDispatcher
from pulsewatch.webhooks.exceptions import DeliveryFailure, WebhookError, WebhookPayloadError
from pulsewatch.webhooks.payloads import decode_event, encode_event
from pulsewatch.webhooks.signing import SIGNATURE_HEADER, sign, verify

__all__ = [
    "SIGNATURE_HEADER",
    "DeliveryFailure",
    "WebhookDispatcher",
    "WebhookError",
    "WebhookPayloadError",
    "decode_event",
    "encode_event",
    "sign",
    "verify",
]
