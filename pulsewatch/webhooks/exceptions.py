"""Exception hierarchy for webhook delivery."""

from __future__ import annotations


class WebhookError(Exception):
    """Base exception for all webhook errors."""


class DeliveryFailure(WebhookError):
    """A webhook POST failed (non-2xx response or network error)."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class WebhookPayloadError(WebhookError):
    """A webhook body could not be decoded into a notification event."""
